"""
CosmoCard Backend — One-Time Code Rate Limiting
=================================================

What:  Per-IP sliding window limit on the endpoints that send or check
       one-time codes.
Why:   Each send-code call emails a code; each verify call is a guess at a
       six-digit code. Card endpoints are gated by the JWT instead.

Algorithm: Sliding Window Counter
    1. Each IP keeps the timestamps of its limited requests
    2. Timestamps older than the window are dropped on every request
    3. At `rate_limit_requests` timestamps the request is rejected with 429
       and Retry-After set to when the oldest one leaves the window

State is in memory, so limits are per worker process.
"""

import logging
import time
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from cosmocard.config import settings
from cosmocard.exceptions import RateLimitExceededError
from cosmocard.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

LIMITED_PATHS = frozenset(
    {
        "/api/auth/register/email/send-code",
        "/api/auth/register/email/verify",
        "/api/auth/login/email",
        "/api/auth/login/email/verify",
    }
)


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        paths: Iterable[str] = LIMITED_PATHS,
        max_requests: Optional[int] = None,
        window: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(app)
        self.paths = frozenset(paths)
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window = window or settings.rate_limit_window
        self._clock = clock
        self._requests: Dict[str, List[float]] = defaultdict(list)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.method != "POST" or request.url.path not in self.paths:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = self._clock()
        window_start = now - self.window

        recent = [ts for ts in self._requests[client_ip] if ts > window_start]
        self._requests[client_ip] = recent

        if len(recent) >= self.max_requests:
            retry_after = int(recent[0] + self.window - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s on %s: %d requests in %ds",
                client_ip, request.url.path, len(recent), self.window,
            )
            exc = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": exc.message,
                    "code": exc.code,
                    "request_id": request_id_var.get("") or None,
                },
                headers={"Retry-After": str(retry_after)},
            )

        recent.append(now)
        self._cleanup_inactive_ips(window_start)
        return await call_next(request)

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]
