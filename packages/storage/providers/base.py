"""Abstract base class for storage providers."""

import posixpath
from abc import ABC, abstractmethod

from packages.storage.config import BaseStorageConfig
from packages.storage.errors import (
    StorageFileSizeExceededError,
    StorageInvalidFileTypeError,
    StoragePermissionError,
    StorageUnsupportedOperationError,
)
from packages.storage.schemas import (
    DownloadResult,
    MetadataUpdate,
    PresignRequest,
    PresignResult,
    StorageItem,
    StorageMetadata,
    StorageResult,
    UploadOptions,
)


def normalize_path(path: str | None) -> str:
    """
    Normalize a storage path relative to its root.

    Strips leading slashes, collapses `.` and inner `..` segments, and
    rejects any path that would climb above the root.

    Raises:
        StoragePermissionError: If the path escapes its root
    """
    raw = (path or "").replace("\\", "/")
    parts: list[str] = []
    for segment in raw.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not parts:
                raise StoragePermissionError(
                    f"Invalid storage path: potential path traversal detected in '{path}'"
                )
            parts.pop()
            continue
        parts.append(segment)
    return "/".join(parts)


def join_root(root: str | None, path: str | None) -> str:
    """Compose a normalized path under a configured root/base path."""
    relative = normalize_path(path)
    prefix = normalize_path(root)
    if not prefix:
        return relative
    if not relative:
        return prefix
    return posixpath.join(prefix, relative)


def strip_root(root: str | None, key: str) -> str:
    """Inverse of join_root for keys returned by a backend listing."""
    prefix = normalize_path(root)
    key = key.lstrip("/")
    if prefix and (key == prefix or key.startswith(prefix + "/")):
        return key[len(prefix):].lstrip("/")
    return key


def validate_upload(
    config: BaseStorageConfig,
    content_type: str,
    size: int | None,
) -> None:
    """Enforce a provider's size and MIME type restrictions."""
    if config.max_file_size and size is not None and size > config.max_file_size:
        raise StorageFileSizeExceededError(size, config.max_file_size)

    allowed = config.allowed_mime_types
    if allowed and not any(content_type.lower().startswith(t.lower()) for t in allowed):
        raise StorageInvalidFileTypeError(content_type, allowed)


class StorageProvider(ABC):
    """
    Abstract base for storage providers.

    Implementations hold only their resolved configuration and client
    handle; they are created once and shared across requests. Every path
    argument is relative to the provider's configured root and has already
    been tenant-prefixed by the caller.
    """

    provider_type: str = "unknown"
    supports_presign: bool = False

    @abstractmethod
    async def upload(self, options: UploadOptions) -> StorageResult:
        """
        Write content, creating parent paths implicitly.

        Raises:
            StoragePermissionError: If the path escapes the provider root
            StorageFileSizeExceededError: If the provider size limit is hit
            StorageInvalidFileTypeError: If the content type is not allowed
        """
        pass

    @abstractmethod
    async def download(self, path: str) -> DownloadResult:
        """
        Open a file for reading.

        Raises:
            StorageFileNotFoundError: If the file doesn't exist
        """
        pass

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove a file. Deleting a missing file is a no-op."""
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check for a file. Only transport or auth failures raise."""
        pass

    @abstractmethod
    async def list(self, prefix: str = "") -> list[StorageItem]:
        """List the direct children of a prefix (empty prefix is the root)."""
        pass

    @abstractmethod
    async def get_metadata(self, path: str) -> StorageMetadata:
        """
        Read file metadata.

        Raises:
            StorageFileNotFoundError: If the file doesn't exist
        """
        pass

    @abstractmethod
    async def update_metadata(self, path: str, update: MetadataUpdate) -> StorageMetadata:
        """Read-merge-write the mutable metadata of a file."""
        pass

    async def presign(self, request: PresignRequest) -> PresignResult:
        """Create a time-limited direct upload URL."""
        raise StorageUnsupportedOperationError("presign", self.provider_type)

    async def generate_presigned_url(self, path: str, expires_in: int = 3600) -> str:
        """Create a time-limited direct download URL."""
        raise StorageUnsupportedOperationError("generate_presigned_url", self.provider_type)

    async def close(self) -> None:
        """Release client resources."""
        return None
