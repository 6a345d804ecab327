"""
Settings for the storage core.

Environment variables (case-insensitive, also read from .env):
- STORAGE_PROVIDER: "local", "s3", "do_spaces" or "github"
- STORAGE_PROVIDER_NAME: Registry name of the default provider
- STORAGE_LOCAL_* / STORAGE_S3_* / STORAGE_DO_* / STORAGE_GITHUB_*: Provider fields

- STORAGE_DEFAULT_QUOTA: Per-organization quota in bytes (0 = unlimited)

- STORAGE_CACHE_BACKEND: "redis" or "memory"
- STORAGE_CACHE_MAX_SIZE / STORAGE_CACHE_ALLOWED_TYPES / STORAGE_CACHE_*_TTL

- APP_BASE_URL: Public base URL used for fallback signed URLs
- REDIS_URL: Redis connection URL (cache and usage counters)
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from packages.storage.config import (
    BaseStorageConfig,
    DOSpacesStorageConfig,
    GitHubStorageConfig,
    LocalStorageConfig,
    S3StorageConfig,
)


class StorageSettings(BaseSettings):
    """Settings for storage providers, caching, and quotas."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Provider Selection
    # ==========================================================================

    storage_provider: Literal["local", "s3", "do_spaces", "github"] = Field(
        default="local",
        description="Backend used for the default provider",
    )
    storage_provider_name: str = Field(
        default="default",
        description="Registry name of the default provider",
    )

    # ==========================================================================
    # Local Disk
    # ==========================================================================

    storage_local_directory: str = Field(
        default="./storage",
        description="Base directory for local storage",
    )
    storage_local_base_url: str | None = None
    storage_local_root_path: str | None = None

    # ==========================================================================
    # AWS S3
    # ==========================================================================

    storage_s3_region: str | None = None
    storage_s3_bucket: str | None = None
    storage_s3_access_key: str | None = None
    storage_s3_secret_key: str | None = None
    storage_s3_endpoint: str | None = Field(
        default=None,
        description="Custom endpoint for S3-compatible services (None for AWS S3)",
    )
    storage_s3_base_url: str | None = None
    storage_s3_root_path: str | None = None

    # ==========================================================================
    # DigitalOcean Spaces
    # ==========================================================================

    storage_do_region: str | None = None
    storage_do_space: str | None = None
    storage_do_access_key: str | None = None
    storage_do_secret_key: str | None = None
    storage_do_cdn_endpoint: str | None = None
    storage_do_custom_domain: str | None = None
    storage_do_use_cdn: bool = True
    storage_do_force_path_style: bool = False
    storage_do_root_path: str | None = None

    # ==========================================================================
    # GitHub
    # ==========================================================================

    storage_github_token: str | None = None
    storage_github_owner: str | None = None
    storage_github_repo: str | None = None
    storage_github_branch: str = "main"
    storage_github_base_path: str | None = None
    storage_github_use_raw_url: bool = True
    storage_github_custom_domain: str | None = None

    storage_http_timeout: int = Field(
        default=30,
        description="HTTP request timeout in seconds (GitHub API)",
        ge=1,
        le=300,
    )
    storage_http_max_retries: int = Field(
        default=3,
        description="Maximum number of retry attempts (GitHub API)",
        ge=0,
        le=10,
    )

    # ==========================================================================
    # Quotas
    # ==========================================================================

    storage_default_quota: int = Field(
        default=1024 * 1024 * 1024,
        description="Default per-organization quota in bytes (1GB, 0 = unlimited)",
        ge=0,
    )

    # ==========================================================================
    # Caching
    # ==========================================================================

    storage_cache_backend: str = Field(
        default="memory",
        description="Cache backend: 'redis' or 'memory'",
        pattern="^(redis|memory)$",
    )
    storage_cache_max_size: int = Field(
        default=10 * 1024 * 1024,
        description="Largest file size (bytes) whose metadata may be cached",
        ge=0,
    )
    storage_cache_allowed_types: str = Field(
        default="",
        description="Comma-separated content-type prefixes allowed in the metadata cache",
    )
    storage_cache_max_listing_items: int = Field(
        default=1000,
        description="Largest directory listing that may be cached",
        ge=0,
    )
    storage_cache_metadata_ttl: int = Field(
        default=3600,
        description="Metadata cache TTL in seconds (1 hour)",
    )
    storage_cache_listing_ttl: int = Field(
        default=300,
        description="Listing cache TTL in seconds (5 min)",
    )
    storage_cache_existence_ttl: int = Field(
        default=60,
        description="Existence cache TTL in seconds (1 min)",
    )

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the storage cache and usage counters",
    )

    # ==========================================================================
    # Signed URLs
    # ==========================================================================

    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Public base URL of this service (fallback signed URLs)",
    )
    storage_signed_url_ttl: int = Field(
        default=3600,
        description="Default signed URL lifetime in seconds",
        ge=1,
    )

    # ==========================================================================
    # Persistence
    # ==========================================================================

    database_url: str = Field(
        default="sqlite+aiosqlite:///./storage.db",
        description="Database holding provider and project storage configuration",
    )

    @property
    def cache_allowed_types(self) -> list[str]:
        return [t.strip() for t in self.storage_cache_allowed_types.split(",") if t.strip()]

    def default_provider_config(self) -> BaseStorageConfig:
        """
        Build the default provider configuration from the flat settings.

        Required fields are not checked here; the provider factory does that.
        """
        if self.storage_provider == "s3":
            return S3StorageConfig(
                region=self.storage_s3_region,
                bucket=self.storage_s3_bucket,
                access_key_id=self.storage_s3_access_key,
                secret_access_key=self.storage_s3_secret_key,
                endpoint=self.storage_s3_endpoint,
                base_url=self.storage_s3_base_url,
                root_path=self.storage_s3_root_path,
            )
        if self.storage_provider == "do_spaces":
            return DOSpacesStorageConfig(
                region=self.storage_do_region,
                space=self.storage_do_space,
                access_key_id=self.storage_do_access_key,
                secret_access_key=self.storage_do_secret_key,
                cdn_endpoint=self.storage_do_cdn_endpoint,
                custom_domain=self.storage_do_custom_domain,
                use_cdn=self.storage_do_use_cdn,
                force_path_style=self.storage_do_force_path_style,
                root_path=self.storage_do_root_path,
            )
        if self.storage_provider == "github":
            return GitHubStorageConfig(
                token=self.storage_github_token,
                owner=self.storage_github_owner,
                repo=self.storage_github_repo,
                branch=self.storage_github_branch,
                base_path=self.storage_github_base_path,
                use_raw_url=self.storage_github_use_raw_url,
                custom_domain=self.storage_github_custom_domain,
            )
        return LocalStorageConfig(
            directory=self.storage_local_directory,
            base_url=self.storage_local_base_url,
            root_path=self.storage_local_root_path,
        )


@lru_cache
def get_storage_settings() -> StorageSettings:
    """Get cached storage settings instance."""
    return StorageSettings()
