"""Provider-neutral data types shared by every storage backend."""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from packages.storage.errors import StorageFileSizeExceededError

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StorageAcl(str, Enum):
    """Access control level for stored objects (S3 canned ACL names)."""

    PRIVATE = "private"
    PUBLIC_READ = "public-read"
    PUBLIC_READ_WRITE = "public-read-write"
    AUTHENTICATED_READ = "authenticated-read"


def utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# =============================================================================
# Upload Content
# =============================================================================


@dataclass
class StreamContent:
    """
    Streamed upload body.

    `size` is the declared length of the stream. It is required for quota
    checks; uploads of a stream without a declared size are rejected by the
    service before any provider call. A stream that yields more bytes than
    it declared fails with StorageFileSizeExceededError while being read.
    """

    chunks: AsyncIterator[bytes]
    size: int | None = None


UploadContent = bytes | StreamContent


def content_size(content: UploadContent) -> int | None:
    """Return the byte length of upload content, or None if undeclared."""
    if isinstance(content, (bytes, bytearray, memoryview)):
        return len(content)
    return content.size


async def iter_content(content: UploadContent) -> AsyncIterator[bytes]:
    """Iterate over upload content as chunks regardless of its shape."""
    if isinstance(content, (bytes, bytearray, memoryview)):
        yield bytes(content)
        return
    received = 0
    async for chunk in content.chunks:
        received += len(chunk)
        if content.size is not None and received > content.size:
            raise StorageFileSizeExceededError(received, content.size)
        yield chunk


async def read_content(content: UploadContent) -> bytes:
    """Fully buffer upload content (for backends without streaming writes)."""
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    parts = [chunk async for chunk in iter_content(content)]
    return b"".join(parts)


# =============================================================================
# Metadata and Results
# =============================================================================


@dataclass
class StorageMetadata:
    """Metadata for a stored file."""

    content_type: str
    size: int
    created_at: datetime
    last_modified: datetime
    etag: str | None = None
    custom: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_type": self.content_type,
            "size": self.size,
            "created_at": self.created_at.isoformat(),
            "last_modified": self.last_modified.isoformat(),
            "etag": self.etag,
            "custom": dict(self.custom),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StorageMetadata":
        return cls(
            content_type=data.get("content_type") or DEFAULT_CONTENT_TYPE,
            size=int(data.get("size", 0)),
            created_at=_parse_datetime(data["created_at"]),
            last_modified=_parse_datetime(data["last_modified"]),
            etag=data.get("etag"),
            custom={str(k): str(v) for k, v in (data.get("custom") or {}).items()},
        )


@dataclass
class MetadataUpdate:
    """
    Client-supplied metadata changes.

    Only the content type and custom key/value pairs are mutable. Size and
    etag are always recomputed by the provider.
    """

    content_type: str | None = None
    custom: dict[str, str] | None = None


@dataclass
class StorageItem:
    """A file or directory returned by a listing."""

    path: str
    is_directory: bool
    size: int
    last_modified: datetime
    content_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "is_directory": self.is_directory,
            "size": self.size,
            "last_modified": self.last_modified.isoformat(),
            "content_type": self.content_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StorageItem":
        return cls(
            path=data["path"],
            is_directory=bool(data["is_directory"]),
            size=int(data.get("size", 0)),
            last_modified=_parse_datetime(data["last_modified"]),
            content_type=data.get("content_type"),
        )


@dataclass
class UploadOptions:
    """Upload request handed to a provider."""

    path: str
    content: UploadContent
    content_type: str | None = None
    acl: StorageAcl | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class StorageResult:
    """Result of a successful upload."""

    path: str
    size: int
    content_type: str
    last_modified: datetime
    metadata: StorageMetadata
    url: str | None = None


@dataclass
class DownloadResult:
    """Result of a download: a chunk stream plus its metadata."""

    content: AsyncIterator[bytes]
    content_type: str
    size: int
    metadata: StorageMetadata

    async def read(self) -> bytes:
        """Drain the stream into memory. Only for small files and tests."""
        return b"".join([chunk async for chunk in self.content])


@dataclass
class PresignRequest:
    """Request for a direct-to-provider upload URL."""

    path: str
    content_type: str = DEFAULT_CONTENT_TYPE
    acl: StorageAcl | None = None
    expires_in: int = 3600


@dataclass
class PresignResult:
    url: str
    token: str | None = None


@dataclass
class StorageUsage:
    """Storage consumption for one organization. A limit of 0 means unlimited."""

    used: int
    limit: int

    @property
    def percentage(self) -> float:
        if self.limit == 0:
            return 0.0
        return (self.used / self.limit) * 100
