"""Per-request correlation id and access log line."""

import logging
import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from peekstash.infrastructure.observability.logging import set_correlation_id

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind the caller's X-Correlation-ID (or a new one) and log one line per request.

    The id is echoed back on the response so a client can quote it when reporting a
    problem. Unhandled errors are logged with their type and re-raised for the
    exception handlers.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_HEADER))
        fields = {"method": request.method, "path": request.url.path}
        started = time.monotonic()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "%s %s failed",
                fields["method"],
                fields["path"],
                extra={**fields, "duration_ms": _elapsed_ms(started), "error_type": type(e).__name__},
            )
            raise

        duration_ms = _elapsed_ms(started)
        logger.info(
            "%s %s → %d (%dms)",
            fields["method"],
            fields["path"],
            response.status_code,
            duration_ms,
            extra={**fields, "status_code": response.status_code, "duration_ms": duration_ms},
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
