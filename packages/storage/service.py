"""
Storage service.

Single entry point for file storage. Resolves the provider (default or
named), isolates tenants under `organizations/<id>/`, enforces quotas before
uploads, keeps usage counters current, and fronts reads with the selective
cache.

Usage:
    service = StorageService.from_settings()
    await service.upload_file(
        UploadOptions(path="docs/readme.txt", content=b"hello"),
        organization_id="1",
    )
    result = await service.download_file("docs/readme.txt", organization_id="1")
"""

import dataclasses
import logging
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from packages.storage.cache import MemoryCache, create_cache_backend
from packages.storage.cache_service import CachingPolicy, StorageCacheService
from packages.storage.config import BaseStorageConfig
from packages.storage.errors import (
    StorageConfigurationError,
    StorageError,
    StorageFileNotFoundError,
    StoragePermissionError,
    StorageQuotaExceededError,
)
from packages.storage.factory import create_provider
from packages.storage.providers.base import StorageProvider, normalize_path
from packages.storage.schemas import (
    DownloadResult,
    MetadataUpdate,
    PresignRequest,
    PresignResult,
    StorageItem,
    StorageMetadata,
    StorageResult,
    StorageUsage,
    UploadOptions,
    content_size,
)
from packages.storage.settings import StorageSettings, get_storage_settings
from packages.storage.usage import MemoryUsageTracker, RedisUsageTracker, UsageTracker

logger = logging.getLogger(__name__)

ORGANIZATION_ROOT = "organizations"
SIGNED_URL_PATH = "/api/v1/storage/files"


class StorageService:
    """
    Orchestrates storage providers, tenancy, quotas, and caching.

    Providers are created once, at construction or through
    `register_provider` during startup, and shared for the lifetime of the
    service.

    Quota enforcement is check-then-act: two concurrent uploads for the
    same organization can both pass the check and jointly exceed the quota.
    """

    def __init__(
        self,
        providers: Mapping[str, StorageProvider | BaseStorageConfig | dict[str, Any]] | None = None,
        *,
        default_provider: str | None = None,
        cache: StorageCacheService | None = None,
        usage: UsageTracker | None = None,
        settings: StorageSettings | None = None,
    ):
        """
        Initialize the storage service.

        Args:
            providers: Registry of provider name to provider instance or config.
                Defaults to the provider described by `settings`.
            default_provider: Name of the provider used when none is requested
            cache: Cache service (in-memory cache if not provided)
            usage: Usage tracker (in-memory counters if not provided)
            settings: Storage settings (process settings if not provided)

        Raises:
            StorageConfigurationError: If a provider config is invalid or the
                default provider is not registered
        """
        self.settings = settings or get_storage_settings()
        self.default_provider = default_provider or self.settings.storage_provider_name
        self.cache = cache or StorageCacheService(
            MemoryCache(),
            CachingPolicy.from_settings(self.settings),
        )
        self.usage = usage or MemoryUsageTracker(self.settings.storage_default_quota)
        self._providers: dict[str, StorageProvider] = {}

        if providers is None:
            providers = {self.default_provider: self.settings.default_provider_config()}
        for name, provider in providers.items():
            self.register_provider(name, provider)

        if self.default_provider not in self._providers:
            raise StorageConfigurationError(
                f"Default storage provider '{self.default_provider}' is not configured"
            )
        logger.info(
            f"Storage service initialized with providers: {', '.join(self._providers)} "
            f"(default: {self.default_provider})"
        )

    @classmethod
    def from_settings(cls, settings: StorageSettings | None = None) -> "StorageService":
        """Build the service with the cache and usage backends selected by settings."""
        settings = settings or get_storage_settings()
        cache = StorageCacheService(
            create_cache_backend(settings),
            CachingPolicy.from_settings(settings),
        )
        if settings.storage_cache_backend == "redis":
            usage: UsageTracker = RedisUsageTracker(
                settings.redis_url, settings.storage_default_quota
            )
        else:
            usage = MemoryUsageTracker(settings.storage_default_quota)
        return cls(cache=cache, usage=usage, settings=settings)

    # =========================================================================
    # Provider Registry
    # =========================================================================

    def register_provider(
        self,
        name: str,
        provider: StorageProvider | BaseStorageConfig | dict[str, Any],
    ) -> StorageProvider:
        """Add a provider (or build one from a config) under `name`."""
        if name in self._providers:
            raise StorageConfigurationError(f"Storage provider '{name}' is already registered")
        if not isinstance(provider, StorageProvider):
            provider = create_provider(
                provider,
                http_timeout=self.settings.storage_http_timeout,
                http_max_retries=self.settings.storage_http_max_retries,
            )
        self._providers[name] = provider
        return provider

    @property
    def provider_names(self) -> list[str]:
        return list(self._providers)

    def get_provider(self, name: str | None = None) -> tuple[str, StorageProvider]:
        """
        Resolve a provider by name, falling back to the default.

        Raises:
            StorageConfigurationError: If the name is not registered
        """
        name = name or self.default_provider
        provider = self._providers.get(name)
        if provider is None:
            raise StorageConfigurationError(f"Storage provider '{name}' not found")
        return name, provider

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
        await self.cache.close()
        await self.usage.close()

    # =========================================================================
    # Tenancy
    # =========================================================================

    @staticmethod
    def _organization_prefix(organization_id: str) -> str:
        if (
            not organization_id
            or any(sep in organization_id for sep in ("/", "\\"))
            or organization_id in (".", "..")
        ):
            raise StoragePermissionError(f"Invalid organization id: {organization_id!r}")
        return f"{ORGANIZATION_ROOT}/{organization_id}"

    def get_path_with_organization(self, path: str | None, organization_id: str | None) -> str:
        """
        Compose the tenant-scoped storage path.

        The caller's path is normalized first, so it can never climb out of
        the organization directory.
        """
        relative = normalize_path(path)
        if organization_id is None:
            return relative
        prefix = self._organization_prefix(organization_id)
        return f"{prefix}/{relative}" if relative else prefix

    def _tenant_relative(self, full_path: str, organization_id: str | None) -> str:
        if organization_id is None:
            return full_path
        prefix = self._organization_prefix(organization_id) + "/"
        return full_path[len(prefix):] if full_path.startswith(prefix) else full_path

    # =========================================================================
    # Quota and Usage
    # =========================================================================

    async def get_storage_usage(self, organization_id: str | None = None) -> StorageUsage:
        """
        Get storage usage for an organization.

        Without an organization only the default quota is reported.
        """
        if organization_id is None:
            return StorageUsage(used=0, limit=self.usage.default_limit)
        try:
            return await self.usage.get_usage(organization_id)
        except Exception as e:
            logger.error(f"Failed to get storage usage for organization {organization_id}: {e}")
            raise StorageError(f"Failed to get storage usage: {e}") from e

    async def _check_quota(self, organization_id: str, size: int) -> None:
        usage = await self.get_storage_usage(organization_id)
        # A limit of 0 is unlimited
        if usage.limit == 0:
            return
        if usage.used + size > usage.limit:
            raise StorageQuotaExceededError(organization_id, usage.limit, size)

    async def _record_usage(self, organization_id: str, delta: int) -> None:
        try:
            await self.usage.record(organization_id, delta)
        except Exception as e:
            logger.warning(
                f"Failed to update storage usage for organization {organization_id} "
                f"by {delta} bytes: {e}"
            )

    # =========================================================================
    # File Operations
    # =========================================================================

    async def upload_file(
        self,
        options: UploadOptions,
        organization_id: str | None = None,
        provider: str | None = None,
    ) -> StorageResult:
        """
        Upload a file.

        Raises:
            StorageConfigurationError: If the provider is unknown or the
                content size cannot be determined
            StorageQuotaExceededError: If the upload would exceed the quota
            StorageFileSizeExceededError: If a stream yields more bytes than
                its declared size (nothing is stored or counted)
        """
        if not normalize_path(options.path):
            raise StorageError("Upload path must name a file")
        provider_name, storage_provider = self.get_provider(provider)
        full_path = self.get_path_with_organization(options.path, organization_id)

        size = content_size(options.content)
        if size is None:
            raise StorageConfigurationError(
                "Cannot determine file size for quota check. "
                "Provide content as bytes or a stream with a declared size."
            )

        if organization_id is not None:
            await self._check_quota(organization_id, size)

        try:
            result = await storage_provider.upload(
                dataclasses.replace(options, path=full_path)
            )
        except StorageError as e:
            logger.error(f"Failed to upload file {full_path}: {e}")
            raise

        if organization_id is not None:
            await self._record_usage(organization_id, result.size)

        await self.cache.invalidate(full_path, provider=provider_name)
        await self.cache.cache_metadata(full_path, result.metadata, provider=provider_name)

        logger.info(f"Uploaded {result.size} bytes to {full_path} ({provider_name})")
        return dataclasses.replace(result, path=self._tenant_relative(full_path, organization_id))

    async def download_file(
        self,
        path: str,
        organization_id: str | None = None,
        provider: str | None = None,
    ) -> DownloadResult:
        _, storage_provider = self.get_provider(provider)
        full_path = self.get_path_with_organization(path, organization_id)

        try:
            return await storage_provider.download(full_path)
        except StorageError as e:
            logger.error(f"Failed to download file {full_path}: {e}")
            raise

    async def delete_file(
        self,
        path: str,
        organization_id: str | None = None,
        provider: str | None = None,
    ) -> None:
        """Delete a file and release its bytes from the organization's usage."""
        provider_name, storage_provider = self.get_provider(provider)
        full_path = self.get_path_with_organization(path, organization_id)

        size = 0
        if organization_id is not None:
            try:
                size = (await storage_provider.get_metadata(full_path)).size
            except StorageFileNotFoundError:
                size = 0
            except StorageError as e:
                logger.warning(f"Failed to get size of {full_path} before deletion: {e}")

        try:
            await storage_provider.delete(full_path)
        except StorageError as e:
            logger.error(f"Failed to delete file {full_path}: {e}")
            raise

        if organization_id is not None and size > 0:
            await self._record_usage(organization_id, -size)

        await self.cache.invalidate(full_path, provider=provider_name)

    async def file_exists(
        self,
        path: str,
        organization_id: str | None = None,
        provider: str | None = None,
    ) -> bool:
        provider_name, storage_provider = self.get_provider(provider)
        full_path = self.get_path_with_organization(path, organization_id)

        cached = await self.cache.get_cached_existence(full_path, provider=provider_name)
        if cached is not None:
            return cached

        try:
            exists = await storage_provider.exists(full_path)
        except StorageError as e:
            logger.error(f"Failed to check if file exists {full_path}: {e}")
            raise

        await self.cache.cache_existence(full_path, exists, provider=provider_name)
        return exists

    async def list_files(
        self,
        prefix: str = "",
        organization_id: str | None = None,
        provider: str | None = None,
    ) -> list[StorageItem]:
        """List the direct children of `prefix`, with tenant-relative paths."""
        provider_name, storage_provider = self.get_provider(provider)
        full_prefix = self.get_path_with_organization(prefix, organization_id)

        items = await self.cache.get_cached_listing(full_prefix, provider=provider_name)
        if items is None:
            try:
                items = await storage_provider.list(full_prefix)
            except StorageError as e:
                logger.error(f"Failed to list files under {full_prefix or '/'}: {e}")
                raise
            await self.cache.cache_listing(full_prefix, items, provider=provider_name)

        return [
            dataclasses.replace(item, path=self._tenant_relative(item.path, organization_id))
            for item in items
        ]

    async def get_file_metadata(
        self,
        path: str,
        organization_id: str | None = None,
        provider: str | None = None,
    ) -> StorageMetadata:
        provider_name, storage_provider = self.get_provider(provider)
        full_path = self.get_path_with_organization(path, organization_id)

        cached = await self.cache.get_cached_metadata(full_path, provider=provider_name)
        if cached is not None:
            return cached

        try:
            metadata = await storage_provider.get_metadata(full_path)
        except StorageError as e:
            logger.error(f"Failed to get file metadata {full_path}: {e}")
            raise

        await self.cache.cache_metadata(full_path, metadata, provider=provider_name)
        return metadata

    async def update_file_metadata(
        self,
        path: str,
        update: MetadataUpdate,
        organization_id: str | None = None,
        provider: str | None = None,
    ) -> StorageMetadata:
        provider_name, storage_provider = self.get_provider(provider)
        full_path = self.get_path_with_organization(path, organization_id)

        try:
            metadata = await storage_provider.update_metadata(full_path, update)
        except StorageError as e:
            logger.error(f"Failed to update file metadata {full_path}: {e}")
            raise

        await self.cache.invalidate(full_path, provider=provider_name)
        await self.cache.cache_metadata(full_path, metadata, provider=provider_name)
        return metadata

    # =========================================================================
    # URLs
    # =========================================================================

    async def generate_signed_url(
        self,
        path: str,
        organization_id: str | None = None,
        provider: str | None = None,
        expires_in: int | None = None,
    ) -> str:
        """
        Create a time-limited download URL.

        Providers that presign natively are delegated to. For the rest the
        file must exist, and the URL points back at this service's download
        endpoint with an `expires` timestamp (epoch milliseconds). That
        fallback URL is not signed; the endpoint must check the expiry.

        Raises:
            StorageError: If expires_in is not a positive number of seconds
            StorageFileNotFoundError: If the fallback is used and the file
                does not exist
        """
        if expires_in is None:
            expires_in = self.settings.storage_signed_url_ttl
        if expires_in <= 0:
            raise StorageError(f"Signed URL expiry must be positive, got {expires_in}")
        _, storage_provider = self.get_provider(provider)
        full_path = self.get_path_with_organization(path, organization_id)

        try:
            if storage_provider.supports_presign:
                return await storage_provider.generate_presigned_url(full_path, expires_in)

            if not await storage_provider.exists(full_path):
                raise StorageFileNotFoundError(path)
        except StorageError as e:
            logger.error(f"Failed to generate signed URL for {full_path}: {e}")
            raise

        expires_at = int(time.time() * 1000) + expires_in * 1000
        base_url = self.settings.app_base_url.rstrip("/")
        return f"{base_url}{SIGNED_URL_PATH}/{quote(full_path, safe='')}?expires={expires_at}"

    async def presign(
        self,
        request: PresignRequest,
        organization_id: str | None = None,
        provider: str | None = None,
    ) -> PresignResult:
        """
        Create a direct-to-provider upload URL.

        Raises:
            StorageUnsupportedOperationError: If the provider cannot presign
        """
        _, storage_provider = self.get_provider(provider)
        full_path = self.get_path_with_organization(request.path, organization_id)

        try:
            return await storage_provider.presign(dataclasses.replace(request, path=full_path))
        except StorageError as e:
            logger.error(f"Failed to presign upload for {full_path}: {e}")
            raise
