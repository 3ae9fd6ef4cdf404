"""
CosmoCard Backend — Rate Limit Middleware Tests
=================================================

What:  The sliding window on code endpoints, on a small app with a fake clock.
"""

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from cosmocard.middleware.rate_limit import RateLimitMiddleware


class Clock:
    now = 1_000.0

    def __call__(self):
        return self.now


def build_app(clock) -> FastAPI:
    app = FastAPI()
    app.add_middleware(
        RateLimitMiddleware,
        paths={"/send-code"},
        max_requests=2,
        window=60,
        clock=clock,
    )

    @app.post("/send-code")
    async def send_code():
        return {"success": True}

    @app.get("/send-code")
    async def read_code():
        return {"success": True}

    @app.post("/other")
    async def other():
        return {"success": True}

    return app


@pytest.fixture
def clock():
    return Clock()


@pytest_asyncio.fixture
async def client(clock):
    transport = ASGITransport(app=build_app(clock))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_third_request_rejected(client, clock):
    assert (await client.post("/send-code")).status_code == 200
    assert (await client.post("/send-code")).status_code == 200

    clock.now += 10
    response = await client.post("/send-code")

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "51"
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "rate_limit_exceeded"


@pytest.mark.asyncio
async def test_window_slides(client, clock):
    await client.post("/send-code")
    await client.post("/send-code")

    clock.now += 61

    assert (await client.post("/send-code")).status_code == 200


@pytest.mark.asyncio
async def test_unlisted_paths_and_methods_not_limited(client):
    for _ in range(5):
        assert (await client.post("/other")).status_code == 200
        assert (await client.get("/send-code")).status_code == 200
