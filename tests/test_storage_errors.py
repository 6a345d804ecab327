"""
Tests for storage error types and provider error normalization.

Covers:
- Message formatting of the structured error kinds
- Mapping of filesystem, botocore, and httpx failures onto the taxonomy
"""

import asyncio

import httpx
import pytest
from botocore.exceptions import ClientError

from packages.storage.errors import (
    StorageConfigurationError,
    StorageError,
    StorageFileExistsError,
    StorageFileNotFoundError,
    StorageFileSizeExceededError,
    StorageInvalidFileTypeError,
    StoragePermissionError,
    StorageQuotaExceededError,
    StorageTimeoutError,
    StorageUnsupportedOperationError,
    normalize_storage_error,
)


def _client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "backend said no"}}, operation)


# =============================================================================
# Error Types
# =============================================================================


class TestErrorTypes:
    """Structured fields and messages of the error kinds."""

    def test_all_kinds_are_storage_errors(self):
        errors = [
            StorageFileNotFoundError("a.txt"),
            StorageFileExistsError("a.txt"),
            StoragePermissionError("denied"),
            StorageQuotaExceededError("1", 1000, 200),
            StorageInvalidFileTypeError("text/plain", ["image/"]),
            StorageFileSizeExceededError(10, 5),
            StorageConfigurationError("bad"),
            StorageTimeoutError("upload", 100),
        ]
        for error in errors:
            assert isinstance(error, StorageError)

    def test_quota_exceeded_fields(self):
        error = StorageQuotaExceededError("1", 1000, 200)

        assert error.organization_id == "1"
        assert error.quota_bytes == 1000
        assert error.requested_bytes == 200
        assert "organization 1" in error.message

    def test_configuration_error_lists_missing_fields(self):
        error = StorageConfigurationError(
            "Missing required fields for s3 storage provider",
            missing_fields=["region", "bucket"],
        )

        assert error.missing_fields == ["region", "bucket"]
        assert error.message.endswith("(missing: region, bucket)")

    def test_unsupported_operation_is_configuration_error(self):
        error = StorageUnsupportedOperationError("presign", "github")

        assert isinstance(error, StorageConfigurationError)
        assert "presign" in error.message
        assert "github" in error.message

    def test_invalid_file_type_message(self):
        error = StorageInvalidFileTypeError("text/plain", ["image/", "application/pdf"])

        assert error.message == (
            "Invalid file type: text/plain. Allowed types: image/, application/pdf"
        )


# =============================================================================
# Normalization
# =============================================================================


class TestNormalizeStorageError:
    """Provider-native failures are mapped onto the storage taxonomy."""

    def test_storage_error_passes_through(self):
        original = StorageFileNotFoundError("a.txt")

        assert normalize_storage_error(original) is original

    def test_timeout(self):
        assert isinstance(normalize_storage_error(asyncio.TimeoutError()), StorageTimeoutError)

    def test_filesystem_not_found_uses_given_path(self):
        error = normalize_storage_error(FileNotFoundError(2, "No such file"), "docs/a.txt")

        assert isinstance(error, StorageFileNotFoundError)
        assert error.path == "docs/a.txt"

    def test_filesystem_permission(self):
        error = normalize_storage_error(PermissionError(13, "Permission denied"))

        assert isinstance(error, StoragePermissionError)

    @pytest.mark.parametrize("code", ["NoSuchKey", "NotFound", "404"])
    def test_client_error_not_found(self, code):
        error = normalize_storage_error(_client_error(code), "docs/a.txt")

        assert isinstance(error, StorageFileNotFoundError)
        assert error.path == "docs/a.txt"

    @pytest.mark.parametrize("code", ["AccessDenied", "403", "InvalidAccessKeyId"])
    def test_client_error_forbidden(self, code):
        assert isinstance(normalize_storage_error(_client_error(code)), StoragePermissionError)

    def test_client_error_conflict(self):
        error = normalize_storage_error(_client_error("BucketAlreadyExists"), "bucket")

        assert isinstance(error, StorageFileExistsError)

    def test_http_status_error(self):
        request = httpx.Request("GET", "https://api.example.com/files/a.txt")
        response = httpx.Response(404, request=request)
        error = httpx.HTTPStatusError("Not Found", request=request, response=response)

        normalized = normalize_storage_error(error, "a.txt")

        assert isinstance(normalized, StorageFileNotFoundError)
        assert normalized.path == "a.txt"

    def test_message_keywords(self):
        assert isinstance(
            normalize_storage_error(Exception("access denied for bucket")),
            StoragePermissionError,
        )
        assert isinstance(
            normalize_storage_error(Exception("object already exists"), "a.txt"),
            StorageFileExistsError,
        )
        assert isinstance(
            normalize_storage_error(Exception("account quota reached")),
            StorageQuotaExceededError,
        )

    def test_unknown_error_becomes_generic(self):
        error = normalize_storage_error(RuntimeError("boom"))

        assert type(error) is StorageError
        assert error.message == "Storage operation failed: boom"
