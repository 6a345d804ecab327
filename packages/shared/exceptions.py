"""Shared exception classes and handlers."""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from packages.storage.errors import (
    StorageConfigurationError,
    StorageError,
    StorageFileNotFoundError,
    StorageFileSizeExceededError,
    StorageInvalidFileTypeError,
    StoragePermissionError,
    StorageQuotaExceededError,
    StorageTimeoutError,
)


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.detail = detail or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found exception."""

    def __init__(
        self,
        resource: str,
        identifier: str | None = None,
    ) -> None:
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ValidationError(AppException):
    """Validation error exception."""

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"errors": errors or []},
        )


async def app_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle AppException and return JSON response."""
    if isinstance(exc, AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.message,
                "detail": exc.detail,
            },
        )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": {}},
    )


# =============================================================================
# Storage Errors
# =============================================================================

_BAD_REQUEST_ERRORS = (
    StorageQuotaExceededError,
    StorageFileSizeExceededError,
    StorageInvalidFileTypeError,
)


def storage_error_status(exc: StorageError) -> int:
    """Map a storage error kind onto an HTTP status code."""
    if isinstance(exc, StorageFileNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, _BAD_REQUEST_ERRORS):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, StoragePermissionError):
        return status.HTTP_403_FORBIDDEN
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def storage_error_detail(exc: StorageError) -> dict[str, Any]:
    """Structured fields of a storage error, safe to return to clients."""
    if isinstance(exc, StorageFileNotFoundError):
        return {"path": exc.path}
    if isinstance(exc, StorageQuotaExceededError):
        return {
            "organization_id": exc.organization_id,
            "quota_bytes": exc.quota_bytes,
            "requested_bytes": exc.requested_bytes,
        }
    if isinstance(exc, StorageFileSizeExceededError):
        return {"size": exc.size, "max_size": exc.max_size}
    if isinstance(exc, StorageInvalidFileTypeError):
        return {"content_type": exc.content_type, "allowed_types": exc.allowed_types}
    if isinstance(exc, StorageConfigurationError) and exc.missing_fields:
        return {"missing_fields": exc.missing_fields}
    if isinstance(exc, StorageTimeoutError):
        return {"operation": exc.operation, "timeout_ms": exc.timeout_ms}
    return {}


async def storage_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle StorageError and return JSON response with the normalized message."""
    if isinstance(exc, StorageError):
        return JSONResponse(
            status_code=storage_error_status(exc),
            content={
                "error": exc.message,
                "detail": storage_error_detail(exc),
            },
        )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": {}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the shared exception handlers on an application."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StorageError, storage_exception_handler)
