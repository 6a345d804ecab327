"""
Key-value cache backends for the storage cache service.

Values are JSON documents (the `to_dict()` form of cache entries). Redis
serves shared deployments; the in-memory backend serves tests and
single-process use. Both are best-effort: backend errors are logged and
surface as misses.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import redis.asyncio as redis

from packages.storage.settings import StorageSettings

logger = logging.getLogger(__name__)

CLEAR_BATCH_SIZE = 500


def _encode(value: Any) -> str:
    return json.dumps(value, default=str, separators=(",", ":"))


def _decode(raw: str | bytes) -> Any:
    return json.loads(raw)


# =============================================================================
# Abstract Cache Interface
# =============================================================================


class CacheBackend(ABC):
    """Abstract cache backend interface."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Get a document. Returns None if missing, expired or unreadable."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store a JSON-serializable document with optional TTL (seconds)."""
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        pass

    @abstractmethod
    async def clear_prefix(self, prefix: str) -> int:
        """Remove every key under a prefix. Returns the number removed."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


# =============================================================================
# Redis Cache Backend
# =============================================================================


class RedisCache(CacheBackend):
    """Redis cache backend shared by every worker."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._client: redis.Redis | None = None

    async def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info(f"Redis storage cache configured: {self.redis_url}")
        return self._client

    async def get(self, key: str) -> Any | None:
        try:
            client = await self._get_client()
            raw = await client.get(key)
        except Exception as e:
            logger.warning(f"Storage cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None

        try:
            return _decode(raw)
        except ValueError:
            logger.warning(f"Dropping undecodable storage cache value at {key}")
            await self.delete(key)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        try:
            client = await self._get_client()
            await client.set(key, _encode(value), ex=ttl or None)
        except Exception as e:
            logger.warning(f"Storage cache write failed for {key}: {e}")

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            client = await self._get_client()
            await client.delete(*keys)
        except Exception as e:
            logger.warning(f"Storage cache delete failed for {', '.join(keys)}: {e}")

    async def clear_prefix(self, prefix: str) -> int:
        deleted = 0
        batch: list[str] = []
        try:
            client = await self._get_client()
            async for key in client.scan_iter(match=f"{prefix}*", count=CLEAR_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= CLEAR_BATCH_SIZE:
                    deleted += await client.delete(*batch)
                    batch = []
            if batch:
                deleted += await client.delete(*batch)
        except Exception as e:
            logger.warning(f"Storage cache clear failed for {prefix}: {e}")
        return deleted

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


# =============================================================================
# In-Memory Cache Backend
# =============================================================================


class MemoryCache(CacheBackend):
    """
    In-process cache with TTL support.

    Documents are stored encoded, so a caller mutating a returned entry never
    changes what the next reader sees. When full, expired entries are purged
    first and then the oldest tenth of the remaining entries.

    Not shared across workers.
    """

    def __init__(self, max_size: int = 10000):
        self._entries: dict[str, tuple[str, float | None]] = {}
        self._max_size = max_size

    @staticmethod
    def _expired(expires_at: float | None, now: float) -> bool:
        return expires_at is not None and now >= expires_at

    def _make_room(self) -> None:
        now = time.monotonic()
        for key in [k for k, (_, exp) in self._entries.items() if self._expired(exp, now)]:
            del self._entries[key]
        if len(self._entries) < self._max_size:
            return
        for key in list(self._entries)[: max(self._max_size // 10, 1)]:
            del self._entries[key]

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        raw, expires_at = entry
        if self._expired(expires_at, time.monotonic()):
            del self._entries[key]
            return None
        return _decode(raw)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        if key not in self._entries and len(self._entries) >= self._max_size:
            self._make_room()
        expires_at = time.monotonic() + ttl if ttl else None
        self._entries[key] = (_encode(value), expires_at)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._entries.pop(key, None)

    async def clear_prefix(self, prefix: str) -> int:
        matching = [k for k in self._entries if k.startswith(prefix)]
        for key in matching:
            del self._entries[key]
        return len(matching)

    async def close(self) -> None:
        self._entries.clear()


# =============================================================================
# Cache Factory
# =============================================================================


def create_cache_backend(settings: StorageSettings) -> CacheBackend:
    """Create the cache backend selected by `storage_cache_backend`."""
    if settings.storage_cache_backend == "redis":
        return RedisCache(settings.redis_url)
    logger.info("Using in-memory storage cache (not shared across workers)")
    return MemoryCache()
