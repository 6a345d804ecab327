"""
Pytest configuration and fixtures.

Provides reusable fixtures for storage testing:
- storage_settings: Settings isolated from the environment and .env
- local_config / local_provider: Local disk provider rooted in tmp_path
- storage_service: StorageService over the local provider with in-memory cache
- db_session: Async SQLite session with the storage config tables created
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.base import Base
from db.models import StorageProviderConfigRecord  # noqa: F401
from packages.storage.cache import MemoryCache
from packages.storage.cache_service import CachingPolicy, StorageCacheService
from packages.storage.config import LocalStorageConfig
from packages.storage.providers.local import LocalStorageProvider
from packages.storage.service import StorageService
from packages.storage.settings import StorageSettings
from packages.storage.usage import MemoryUsageTracker

# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def storage_settings(tmp_path: Path) -> StorageSettings:
    """
    Storage settings for tests.

    Ignores .env and points the local provider at a temporary directory.
    """
    return StorageSettings(
        _env_file=None,
        storage_provider="local",
        storage_local_directory=str(tmp_path / "storage"),
        storage_default_quota=0,
        app_base_url="https://app.example.com",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'storage.db'}",
    )


# =============================================================================
# Provider Fixtures
# =============================================================================


@pytest.fixture
def local_config(tmp_path: Path) -> LocalStorageConfig:
    return LocalStorageConfig(directory=str(tmp_path / "storage"))


@pytest.fixture
def local_provider(local_config: LocalStorageConfig) -> LocalStorageProvider:
    return LocalStorageProvider(local_config)


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def usage_tracker() -> MemoryUsageTracker:
    """Usage tracker with unlimited default quota."""
    return MemoryUsageTracker(default_limit=0)


@pytest.fixture
async def storage_service(
    storage_settings: StorageSettings,
    local_provider: LocalStorageProvider,
    memory_cache: MemoryCache,
    usage_tracker: MemoryUsageTracker,
) -> AsyncGenerator[StorageService, None]:
    """StorageService with the local provider registered as `default`."""
    service = StorageService(
        {"default": local_provider},
        cache=StorageCacheService(memory_cache, CachingPolicy.from_settings(storage_settings)),
        usage=usage_tracker,
        settings=storage_settings,
    )
    yield service
    await service.close()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def db_session(tmp_path: Path) -> AsyncGenerator[AsyncSession, None]:
    """
    Async session on a throwaway SQLite database.

    Tables are created from the model metadata; the database file is
    discarded with tmp_path.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'config.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()
