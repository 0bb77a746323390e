"""
Request middleware for logging, timing, and request ID tracking.

MercadoPago sends an X-Request-ID with every notification (it is also part
of the signed manifest), so an incoming id is kept rather than replaced:
the provider's delivery logs and ours then share the same key.
"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import structlog

from raffle.core.logging import get_logger
from raffle.core.metrics import record_http_request

logger = get_logger(__name__)

# Scraped every few seconds; logged at debug
QUIET_PATHS = {"/health", "/metrics"}


def _route_template(request: Request) -> str:
    # "/api/v1/orders/{order_id}" rather than one label per order
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        started = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.perf_counter() - started
            record_http_request(request.method, _route_template(request), 500, elapsed)
            logger.error("request_failed", error=str(e), duration_ms=round(elapsed * 1000, 2))
            raise

        elapsed = time.perf_counter() - started
        record_http_request(request.method, _route_template(request), response.status_code, elapsed)

        log = logger.debug if request.url.path in QUIET_PATHS else logger.info
        log("request_completed", status_code=response.status_code, duration_ms=round(elapsed * 1000, 2))

        response.headers["X-Request-ID"] = request_id
        return response
