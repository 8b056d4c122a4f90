"""
Request middleware for correlation ids, logging and timing.
"""

import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import structlog

from hotel_booking.core.config import get_settings
from hotel_booking.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()


def _correlation_id(supplied: Optional[str]) -> str:
    if supplied and len(supplied) <= settings.CORRELATION_ID_MAX_LENGTH:
        return supplied
    if supplied:
        logger.warning("correlation_id_replaced", supplied_length=len(supplied))
    return str(uuid.uuid4())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that:
    1. Takes the caller's correlation id, or mints one when it is missing
       or too long to serve as a request id
    2. Stores it on request.state for the request context dependency
    3. Logs request method, path, status code, and duration
    4. Echoes the correlation id in the response
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        header = settings.CORRELATION_ID_HEADER
        correlation_id = _correlation_id(request.headers.get(header))
        request.state.correlation_id = correlation_id
        start_time = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            method=request.method,
            path=request.url.path,
        )
        log = logger.bind(correlation_id=correlation_id)

        try:
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

            log.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

            response.headers[header] = correlation_id
            response.headers["X-Response-Time"] = f"{duration_ms}ms"

            return response

        except Exception as e:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            log.error(
                "request_failed",
                error=str(e),
                duration_ms=duration_ms,
            )
            raise
