"""Map domain errors onto HTTP responses.

Hey future me - services raise domain exceptions and know nothing about HTTP. The
_STATUS_MAP below is the ONE place where they become status codes. Starlette picks the
handler by walking the exception's MRO, so SyncInProgressError lands on the
InvalidStateException entry and StashApiError on ExternalServiceError without being
listed here.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from peekstash.domain.exceptions import (
    ConfigurationError,
    DomainException,
    DuplicateEntityException,
    EntityNotFoundException,
    ExternalServiceError,
    InvalidStateException,
    ValidationException,
)

logger = logging.getLogger(__name__)

# exception class → (status code, log level)
_STATUS_MAP: dict[type[Exception], tuple[int, int]] = {
    EntityNotFoundException: (status.HTTP_404_NOT_FOUND, logging.INFO),
    ValidationException: (status.HTTP_400_BAD_REQUEST, logging.WARNING),
    ValueError: (status.HTTP_400_BAD_REQUEST, logging.WARNING),
    InvalidStateException: (status.HTTP_409_CONFLICT, logging.WARNING),
    DuplicateEntityException: (status.HTTP_409_CONFLICT, logging.WARNING),
    ConfigurationError: (status.HTTP_503_SERVICE_UNAVAILABLE, logging.ERROR),
    ExternalServiceError: (status.HTTP_502_BAD_GATEWAY, logging.WARNING),
}


def _jsonable(value: Any) -> Any:
    """exc.errors() may carry the raw body as bytes or the ctx error object."""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Exception):
        return str(value)
    return value


def _detail(exc: Exception) -> str:
    return exc.message if isinstance(exc, DomainException) else str(exc)


def _mapped_handler(status_code: int, level: int) -> Any:
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        detail = _detail(exc)
        logger.log(
            level,
            "%s at %s: %s",
            type(exc).__name__,
            request.url.path,
            detail,
            extra={
                "path": request.url.path,
                "error_type": type(exc).__name__,
                "status_code": status_code,
            },
        )
        return JSONResponse(status_code=status_code, content={"detail": detail})

    return handler


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = _jsonable(list(exc.errors()))
    logger.warning(
        "Request validation failed at %s",
        request.url.path,
        extra={"path": request.url.path, "errors": errors},
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": errors}
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the domain-error handlers plus the 422 body sanitizer on ``app``."""
    for exc_class, (status_code, level) in _STATUS_MAP.items():
        app.add_exception_handler(exc_class, _mapped_handler(status_code, level))
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
