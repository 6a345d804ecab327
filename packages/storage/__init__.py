"""
Multi-tenant file storage.

Provides a provider-neutral storage service over:
- Local disk (development)
- AWS S3 and S3-compatible services
- DigitalOcean Spaces
- GitHub repositories

with per-organization path isolation, quotas, and a selective cache for
metadata, listings, and existence checks.
"""

from packages.storage.config import (
    DOSpacesStorageConfig,
    GitHubStorageConfig,
    LocalStorageConfig,
    ProviderConfig,
    S3StorageConfig,
    StorageProviderType,
)
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
from packages.storage.factory import create_provider
from packages.storage.schemas import (
    DownloadResult,
    MetadataUpdate,
    PresignRequest,
    PresignResult,
    StorageAcl,
    StorageItem,
    StorageMetadata,
    StorageResult,
    StorageUsage,
    StreamContent,
    UploadOptions,
)
from packages.storage.service import StorageService

__all__ = [
    # Service
    "StorageService",
    "create_provider",
    # Configuration
    "ProviderConfig",
    "StorageProviderType",
    "LocalStorageConfig",
    "S3StorageConfig",
    "DOSpacesStorageConfig",
    "GitHubStorageConfig",
    # Data types
    "DownloadResult",
    "MetadataUpdate",
    "PresignRequest",
    "PresignResult",
    "StorageAcl",
    "StorageItem",
    "StorageMetadata",
    "StorageResult",
    "StorageUsage",
    "StreamContent",
    "UploadOptions",
    # Errors
    "StorageError",
    "StorageFileNotFoundError",
    "StorageFileExistsError",
    "StoragePermissionError",
    "StorageQuotaExceededError",
    "StorageInvalidFileTypeError",
    "StorageFileSizeExceededError",
    "StorageConfigurationError",
    "StorageUnsupportedOperationError",
    "StorageTimeoutError",
    "normalize_storage_error",
]
