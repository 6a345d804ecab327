"""
Storage exception types.

Every provider normalizes its native failures into this closed set before
they reach the orchestrator.
"""

import asyncio
import re
from typing import Any


class StorageError(Exception):
    """Base exception for storage operations (the generic kind)."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class StorageFileNotFoundError(StorageError):
    """Raised when a file is not found in storage."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File not found at path: {path}")


class StorageFileExistsError(StorageError):
    """Raised when a file already exists and cannot be overwritten."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File already exists at path: {path}")


class StoragePermissionError(StorageError):
    """Raised when the backend refuses the operation."""


class StorageQuotaExceededError(StorageError):
    """Raised when an upload would push an organization past its quota."""

    def __init__(
        self,
        organization_id: str,
        quota_bytes: int,
        requested_bytes: int,
    ):
        self.organization_id = organization_id
        self.quota_bytes = quota_bytes
        self.requested_bytes = requested_bytes
        super().__init__(
            f"Storage quota exceeded for organization {organization_id}. "
            f"Quota: {quota_bytes} bytes, Requested: {requested_bytes} bytes"
        )


class StorageInvalidFileTypeError(StorageError):
    """Raised when a content type is not accepted by the provider."""

    def __init__(self, content_type: str, allowed_types: list[str]):
        self.content_type = content_type
        self.allowed_types = list(allowed_types)
        super().__init__(
            f"Invalid file type: {content_type}. "
            f"Allowed types: {', '.join(self.allowed_types)}"
        )


class StorageFileSizeExceededError(StorageError):
    """Raised when a file exceeds the maximum allowed size."""

    def __init__(self, size: int, max_size: int):
        self.size = size
        self.max_size = max_size
        super().__init__(
            f"File size exceeded. Size: {size} bytes, Max allowed: {max_size} bytes"
        )


class StorageConfigurationError(StorageError):
    """Raised for invalid provider configuration or unknown provider names."""

    def __init__(self, message: str, missing_fields: list[str] | tuple[str, ...] = ()):
        self.missing_fields = list(missing_fields)
        if self.missing_fields:
            message = f"{message} (missing: {', '.join(self.missing_fields)})"
        super().__init__(message)


class StorageUnsupportedOperationError(StorageConfigurationError):
    """Raised when a provider cannot perform an optional operation."""

    def __init__(self, operation: str, provider: str):
        self.operation = operation
        self.provider = provider
        super().__init__(f"Operation '{operation}' is not supported by the {provider} provider")


class StorageTimeoutError(StorageError):
    """Raised when a storage operation times out."""

    def __init__(self, operation: str, timeout_ms: int):
        self.operation = operation
        self.timeout_ms = timeout_ms
        super().__init__(f"Storage operation '{operation}' timed out after {timeout_ms}ms")


# =============================================================================
# Normalization
# =============================================================================

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
_EXISTS_CODES = {"409", "Conflict", "BucketAlreadyExists"}
_FORBIDDEN_CODES = {"401", "403", "AccessDenied", "Forbidden", "InvalidAccessKeyId"}

_PATH_PATTERNS = (
    re.compile(r"path[:\s]+['\"]?([^'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"file[:\s]+['\"]?([^'\"]+)['\"]?", re.IGNORECASE),
)


def _error_code(error: BaseException) -> str | None:
    """Pull a status/code out of botocore or httpx style errors."""
    response: Any = getattr(error, "response", None)
    if isinstance(response, dict):
        code = response.get("Error", {}).get("Code")
        if code:
            return str(code)
        status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if status:
            return str(status)
    status_code = getattr(response, "status_code", None)
    if status_code is not None:
        return str(status_code)
    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        return str(status_code)
    return None


def _extract_path(message: str) -> str:
    for pattern in _PATH_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1)
    return "unknown"


def normalize_storage_error(error: BaseException, path: str | None = None) -> StorageError:
    """
    Map a provider-native exception onto the storage taxonomy.

    Args:
        error: Exception raised by a backend client or the filesystem
        path: Storage path involved, used in place of message parsing

    Returns:
        A StorageError subclass (never raises)
    """
    if isinstance(error, StorageError):
        return error

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return StorageTimeoutError("storage", 0)

    if isinstance(error, FileNotFoundError):
        return StorageFileNotFoundError(path or error.filename or "unknown")
    if isinstance(error, FileExistsError):
        return StorageFileExistsError(path or error.filename or "unknown")
    if isinstance(error, PermissionError):
        return StoragePermissionError(str(error))

    code = _error_code(error)
    if code in _NOT_FOUND_CODES:
        return StorageFileNotFoundError(path or _extract_path(str(error)))
    if code in _EXISTS_CODES:
        return StorageFileExistsError(path or _extract_path(str(error)))
    if code in _FORBIDDEN_CODES:
        return StoragePermissionError(str(error))

    message = str(error).lower()
    if "not found" in message or "no such file" in message:
        return StorageFileNotFoundError(path or _extract_path(str(error)))
    if "already exists" in message:
        return StorageFileExistsError(path or _extract_path(str(error)))
    if "permission" in message or "access denied" in message or "forbidden" in message:
        return StoragePermissionError(str(error))
    if "quota" in message or "limit exceeded" in message:
        return StorageQuotaExceededError("unknown", 0, 0)

    return StorageError(f"Storage operation failed: {error}")
