"""
Per-organization storage usage accounting.

Usage is a running byte counter per organization: incremented after a
successful upload and decremented after a successful delete. It never goes
below zero. Limits fall back to the configured default quota when no
per-organization limit has been set; a limit of 0 means unlimited.
"""

import logging
from abc import ABC, abstractmethod

import redis.asyncio as redis

from packages.storage.schemas import StorageUsage

logger = logging.getLogger(__name__)

USAGE_KEY_PREFIX = "storage:usage:"
QUOTA_KEY_PREFIX = "storage:quota:"


class UsageTracker(ABC):
    """Abstract usage-metrics sink."""

    def __init__(self, default_limit: int = 0):
        self.default_limit = default_limit

    @abstractmethod
    async def get_usage(self, organization_id: str) -> StorageUsage:
        pass

    @abstractmethod
    async def record(self, organization_id: str, delta: int) -> int:
        """Apply a signed byte delta. Returns the new usage."""
        pass

    @abstractmethod
    async def set_limit(self, organization_id: str, limit: int) -> None:
        pass

    async def close(self) -> None:
        return None


class MemoryUsageTracker(UsageTracker):
    """
    In-process usage counters.

    Note: Not shared across workers. Use for tests and single-process
    deployments.
    """

    def __init__(self, default_limit: int = 0):
        super().__init__(default_limit)
        self._used: dict[str, int] = {}
        self._limits: dict[str, int] = {}

    async def get_usage(self, organization_id: str) -> StorageUsage:
        return StorageUsage(
            used=self._used.get(organization_id, 0),
            limit=self._limits.get(organization_id, self.default_limit),
        )

    async def record(self, organization_id: str, delta: int) -> int:
        used = max(self._used.get(organization_id, 0) + delta, 0)
        self._used[organization_id] = used
        return used

    async def set_limit(self, organization_id: str, limit: int) -> None:
        if limit < 0:
            raise ValueError("Storage limit must be >= 0")
        self._limits[organization_id] = limit


class RedisUsageTracker(UsageTracker):
    """Usage counters in Redis (`INCRBY storage:usage:<org>`)."""

    def __init__(self, redis_url: str, default_limit: int = 0):
        super().__init__(default_limit)
        self.redis_url = redis_url
        self._client: redis.Redis | None = None

    async def _get_client(self) -> redis.Redis:
        """Lazy initialize Redis client."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def get_usage(self, organization_id: str) -> StorageUsage:
        client = await self._get_client()
        used, limit = await client.mget(
            f"{USAGE_KEY_PREFIX}{organization_id}",
            f"{QUOTA_KEY_PREFIX}{organization_id}",
        )
        return StorageUsage(
            used=max(int(used or 0), 0),
            limit=int(limit) if limit is not None else self.default_limit,
        )

    async def record(self, organization_id: str, delta: int) -> int:
        client = await self._get_client()
        key = f"{USAGE_KEY_PREFIX}{organization_id}"
        used = await client.incrby(key, delta)
        if used < 0:
            await client.set(key, 0)
            used = 0
        return used

    async def set_limit(self, organization_id: str, limit: int) -> None:
        if limit < 0:
            raise ValueError("Storage limit must be >= 0")
        client = await self._get_client()
        await client.set(f"{QUOTA_KEY_PREFIX}{organization_id}", limit)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
