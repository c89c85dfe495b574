"""Per-request correlation id and timing."""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from product_refresh.logging_config import (
    CORRELATION_HEADER,
    bind_correlation_id,
    clear_log_context,
    resolve_correlation_id,
)

logger = structlog.get_logger()


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags each request with a correlation id and reports its latency.

    The id comes from a valid UUID ``X-Correlation-ID`` request header or is
    generated. It is bound into every log line for the request and echoed
    back in the response header.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = correlation_id
        clear_log_context()
        bind_correlation_id(correlation_id)

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Response-Time-Ms"] = str(duration_ms)

        logger.info(
            "request_completed",
            path=request.url.path,
            method=request.method,
            status=response.status_code,
            duration_ms=duration_ms,
        )
        return response
