"""
Request correlation middleware.

Reuses an incoming x-request-id or mints one, binds it for the request's
logs, echoes it on the response and logs one completion line per request.
Health probes are not logged.
"""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware

from webaudit.core.logging import latency_bucket_ms, request_context

logger = logging.getLogger("webaudit.http")

QUIET_PATHS = frozenset({"/healthz", "/readyz"})


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        started = time.perf_counter()
        with request_context(request.headers.get(self.header_name), prefix="req") as rid:
            request.state.request_id = rid
            response = await call_next(request)

        response.headers[self.header_name] = rid
        if request.url.path not in QUIET_PATHS:
            logger.info(
                "request.complete",
                extra={
                    "request_id": rid,
                    "path": request.url.path,
                    "method": request.method,
                    "status": response.status_code,
                    "user_id": request.headers.get("x-user-id"),
                    "latency_bucket": latency_bucket_ms((time.perf_counter() - started) * 1000),
                },
            )
        return response
