"""
CosmoCard Backend — Request ID Middleware
===========================================

What:  Assigns a short correlation ID to each request and echoes it in X-Request-ID.
Why:   Every log line and error body for one request carries the same ID, so a
       user reporting an error can be matched to the server logs.
How:   Client-supplied X-Request-ID is reused; otherwise an 8-char UUID prefix.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests in one thread each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = rid
        return response
