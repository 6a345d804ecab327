"""
Selective cache for storage metadata, listings, and existence checks.

Three independent caches share one backend:

- metadata: small files (<= 100KB) are always cached; larger files only when
  within `max_size`, not an excluded content type, and matching the
  allow-list if one is configured
- listing: only directories with at most `listing_max_items` entries
- existence: always cached, short TTL

A hit that no longer satisfies the current rules is evicted and reported as
a miss. The cache is never authoritative: every failure is logged and
treated as a miss.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from packages.storage.cache import CacheBackend
from packages.storage.schemas import StorageItem, StorageMetadata, utcnow
from packages.storage.settings import StorageSettings

logger = logging.getLogger(__name__)

METADATA_PREFIX = "storage:metadata:"
LISTING_PREFIX = "storage:listing:"
EXISTENCE_PREFIX = "storage:exists:"
ROOT_LISTING_KEY = "root"

ALWAYS_CACHE_SIZE = 100 * 1024
DEFAULT_EXCLUDED_TYPES = ("video/", "application/x-msdownload", "application/x-binary")


@dataclass
class CachingPolicy:
    """Inclusion rules and TTLs (seconds) for the three caches."""

    max_size: int = 10 * 1024 * 1024
    allowed_types: list[str] = field(default_factory=list)
    excluded_types: tuple[str, ...] = DEFAULT_EXCLUDED_TYPES
    listing_max_items: int = 1000
    metadata_ttl: int = 3600
    listing_ttl: int = 300
    existence_ttl: int = 60

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "CachingPolicy":
        return cls(
            max_size=settings.storage_cache_max_size,
            allowed_types=settings.cache_allowed_types,
            listing_max_items=settings.storage_cache_max_listing_items,
            metadata_ttl=settings.storage_cache_metadata_ttl,
            listing_ttl=settings.storage_cache_listing_ttl,
            existence_ttl=settings.storage_cache_existence_ttl,
        )

    def should_cache_metadata(self, metadata: StorageMetadata) -> bool:
        if metadata.size <= ALWAYS_CACHE_SIZE:
            return True
        if metadata.size > self.max_size:
            return False

        content_type = metadata.content_type.lower()
        if any(content_type.startswith(t) for t in self.excluded_types):
            return False
        if self.allowed_types:
            return any(content_type.startswith(t.lower()) for t in self.allowed_types)
        return True

    def should_cache_listing(self, items: list[StorageItem]) -> bool:
        return len(items) <= self.listing_max_items


# =============================================================================
# Cache Entries
# =============================================================================


@dataclass
class MetadataCacheEntry:
    metadata: StorageMetadata
    cached_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"metadata": self.metadata.to_dict(), "cached_at": self.cached_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetadataCacheEntry":
        return cls(
            metadata=StorageMetadata.from_dict(data["metadata"]),
            cached_at=datetime.fromisoformat(data["cached_at"]),
        )


@dataclass
class ListingCacheEntry:
    items: list[StorageItem]
    cached_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "cached_at": self.cached_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ListingCacheEntry":
        return cls(
            items=[StorageItem.from_dict(item) for item in data["items"]],
            cached_at=datetime.fromisoformat(data["cached_at"]),
        )


@dataclass
class ExistenceCacheEntry:
    exists: bool
    cached_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"exists": self.exists, "cached_at": self.cached_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExistenceCacheEntry":
        return cls(
            exists=bool(data["exists"]),
            cached_at=datetime.fromisoformat(data["cached_at"]),
        )


# =============================================================================
# Cache Service
# =============================================================================


class StorageCacheService:
    """
    Best-effort cache in front of storage providers.

    Keys are `<prefix><provider>:<path>` so that providers sharing one
    backend never collide. Listing keys use `root` for the empty prefix.
    """

    def __init__(self, backend: CacheBackend, policy: CachingPolicy | None = None):
        self.backend = backend
        self.policy = policy or CachingPolicy()

    @staticmethod
    def _key(prefix: str, provider: str, path: str) -> str:
        return f"{prefix}{provider}:{path}"

    def _metadata_key(self, provider: str, path: str) -> str:
        return self._key(METADATA_PREFIX, provider, path)

    def _listing_key(self, provider: str, prefix: str) -> str:
        return self._key(LISTING_PREFIX, provider, prefix.strip("/") or ROOT_LISTING_KEY)

    def _existence_key(self, provider: str, path: str) -> str:
        return self._key(EXISTENCE_PREFIX, provider, path)

    # =========================================================================
    # Writes
    # =========================================================================

    async def cache_metadata(
        self,
        path: str,
        metadata: StorageMetadata,
        *,
        provider: str = "default",
        ttl: int | None = None,
    ) -> bool:
        """Cache metadata if it meets the caching rules. Returns True if stored."""
        if not self.policy.should_cache_metadata(metadata):
            logger.debug(f"Skipping metadata cache for {path} due to caching rules")
            return False
        try:
            entry = MetadataCacheEntry(metadata=metadata, cached_at=utcnow())
            await self.backend.set(
                self._metadata_key(provider, path),
                entry.to_dict(),
                ttl or self.policy.metadata_ttl,
            )
            return True
        except Exception as e:
            logger.warning(f"Failed to cache metadata for {path}: {e}")
            return False

    async def cache_listing(
        self,
        prefix: str,
        items: list[StorageItem],
        *,
        provider: str = "default",
        ttl: int | None = None,
    ) -> bool:
        if not self.policy.should_cache_listing(items):
            logger.debug(f"Skipping listing cache for {prefix or '/'} ({len(items)} items)")
            return False
        try:
            entry = ListingCacheEntry(items=list(items), cached_at=utcnow())
            await self.backend.set(
                self._listing_key(provider, prefix),
                entry.to_dict(),
                ttl or self.policy.listing_ttl,
            )
            return True
        except Exception as e:
            logger.warning(f"Failed to cache listing for {prefix or '/'}: {e}")
            return False

    async def cache_existence(
        self,
        path: str,
        exists: bool,
        *,
        provider: str = "default",
        ttl: int | None = None,
    ) -> None:
        try:
            entry = ExistenceCacheEntry(exists=exists, cached_at=utcnow())
            await self.backend.set(
                self._existence_key(provider, path),
                entry.to_dict(),
                ttl or self.policy.existence_ttl,
            )
        except Exception as e:
            logger.warning(f"Failed to cache existence for {path}: {e}")

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_cached_metadata(
        self, path: str, *, provider: str = "default"
    ) -> StorageMetadata | None:
        key = self._metadata_key(provider, path)
        try:
            data = await self.backend.get(key)
            if data is None:
                return None
            entry = MetadataCacheEntry.from_dict(data)
            if not self.policy.should_cache_metadata(entry.metadata):
                # Caching rules changed since the entry was written
                await self.backend.delete(key)
                return None
            logger.debug(f"Metadata cache hit: {path}")
            return entry.metadata
        except Exception as e:
            logger.warning(f"Failed to read cached metadata for {path}: {e}")
            return None

    async def get_cached_listing(
        self, prefix: str, *, provider: str = "default"
    ) -> list[StorageItem] | None:
        key = self._listing_key(provider, prefix)
        try:
            data = await self.backend.get(key)
            if data is None:
                return None
            entry = ListingCacheEntry.from_dict(data)
            if not self.policy.should_cache_listing(entry.items):
                await self.backend.delete(key)
                return None
            logger.debug(f"Listing cache hit: {prefix or '/'}")
            return entry.items
        except Exception as e:
            logger.warning(f"Failed to read cached listing for {prefix or '/'}: {e}")
            return None

    async def get_cached_existence(
        self, path: str, *, provider: str = "default"
    ) -> bool | None:
        try:
            data = await self.backend.get(self._existence_key(provider, path))
            if data is None:
                return None
            return ExistenceCacheEntry.from_dict(data).exists
        except Exception as e:
            logger.warning(f"Failed to read cached existence for {path}: {e}")
            return None

    # =========================================================================
    # Invalidation
    # =========================================================================

    async def invalidate(self, path: str, *, provider: str = "default") -> None:
        """
        Drop every cache entry a write to `path` can make stale.

        That is the path's own metadata, listing, and existence entries plus
        the listings of each ancestor directory up to the root.
        """
        path = path.strip("/")
        keys = [
            self._metadata_key(provider, path),
            self._existence_key(provider, path),
            self._listing_key(provider, path),
        ]
        parts = path.split("/")[:-1]
        while parts:
            keys.append(self._listing_key(provider, "/".join(parts)))
            parts.pop()
        keys.append(self._listing_key(provider, ""))

        try:
            await self.backend.delete(*keys)
        except Exception as e:
            logger.warning(f"Failed to invalidate cache for {path}: {e}")

    async def clear(self) -> int:
        """Drop every storage cache entry."""
        cleared = 0
        for prefix in (METADATA_PREFIX, LISTING_PREFIX, EXISTENCE_PREFIX):
            try:
                cleared += await self.backend.clear_prefix(prefix)
            except Exception as e:
                logger.warning(f"Failed to clear cache prefix {prefix}: {e}")
        return cleared

    async def close(self) -> None:
        await self.backend.close()
