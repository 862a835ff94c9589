"""Map domain exceptions onto JSON error responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from billing_engine.logging import logger
from billing_engine.services.exceptions import (
    InvalidSignatureError,
    ServiceError,
    StorageUnavailableFatal,
    TransientStorageError,
    UserNotFoundError,
)

# (status, code, retryable); first match by isinstance wins.
ERROR_TABLE: tuple[tuple[type[ServiceError], int, str, bool], ...] = (
    (InvalidSignatureError, 401, "invalid_signature", False),
    (UserNotFoundError, 404, "user_not_found", False),
    (StorageUnavailableFatal, 503, "storage_unavailable", True),
    (TransientStorageError, 503, "storage_unavailable", True),
    (ServiceError, 400, "service_error", False),
)


def _lookup(exc: ServiceError) -> tuple[int, str, bool]:
    for exc_type, status, code, retryable in ERROR_TABLE:
        if isinstance(exc, exc_type):
            return status, code, retryable
    return 500, "internal_error", False


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status, code, retryable = _lookup(exc)
    log = logger.warning if status < 500 else logger.error
    log(
        "request_failed",
        path=request.url.path,
        error_code=code,
        error_kind=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(
        status_code=status,
        content={"error": {"code": code, "message": str(exc), "retryable": retryable}},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)


__all__ = ["ERROR_TABLE", "register_error_handlers", "service_error_handler"]
