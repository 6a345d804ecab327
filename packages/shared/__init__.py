"""Shared utilities package."""

from packages.shared.exceptions import (
    AppException,
    NotFoundError,
    ValidationError,
    register_exception_handlers,
    storage_exception_handler,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "register_exception_handlers",
    "storage_exception_handler",
]
