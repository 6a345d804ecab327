"""Factory for creating storage providers from configuration."""

import logging
from typing import Any

from pydantic import ValidationError

from packages.storage.config import (
    BaseStorageConfig,
    DOSpacesStorageConfig,
    GitHubStorageConfig,
    LocalStorageConfig,
    S3StorageConfig,
    provider_config_adapter,
)
from packages.storage.errors import StorageConfigurationError
from packages.storage.providers import (
    DOSpacesStorageProvider,
    GitHubStorageProvider,
    LocalStorageProvider,
    S3StorageProvider,
    StorageProvider,
)

logger = logging.getLogger(__name__)


def parse_provider_config(config: BaseStorageConfig | dict[str, Any]) -> BaseStorageConfig:
    """
    Parse a raw configuration mapping into its `ProviderConfig` variant.

    Raises:
        StorageConfigurationError: If the type is unknown or a field is malformed
    """
    if isinstance(config, BaseStorageConfig):
        return config
    try:
        return provider_config_adapter.validate_python(config)
    except ValidationError as e:
        provider_type = config.get("type") if isinstance(config, dict) else None
        raise StorageConfigurationError(
            f"Invalid storage provider configuration for type '{provider_type}': "
            f"{e.errors()[0]['msg']}"
        ) from e


def create_provider(
    config: BaseStorageConfig | dict[str, Any],
    *,
    http_timeout: float = 30.0,
    http_max_retries: int = 3,
) -> StorageProvider:
    """
    Create a storage provider from a configuration variant.

    Required fields are checked before anything is constructed, so a
    rejected configuration never opens a client or touches the network.

    Args:
        config: Provider config model or raw mapping with a `type` key
        http_timeout: Request timeout for HTTP-based providers (seconds)
        http_max_retries: Retry attempts for HTTP-based providers

    Returns:
        Configured StorageProvider instance

    Raises:
        StorageConfigurationError: If the config is unsupported or incomplete
    """
    config = parse_provider_config(config)

    missing = config.missing_fields()
    if missing:
        raise StorageConfigurationError(
            f"Missing required fields for {config.type} storage provider",
            missing_fields=missing,
        )

    if isinstance(config, LocalStorageConfig):
        provider = LocalStorageProvider(config)
    elif isinstance(config, S3StorageConfig):
        provider = S3StorageProvider(config)
    elif isinstance(config, DOSpacesStorageConfig):
        provider = DOSpacesStorageProvider(config)
    elif isinstance(config, GitHubStorageConfig):
        provider = GitHubStorageProvider(
            config,
            timeout=http_timeout,
            max_retries=http_max_retries,
        )
    else:
        raise StorageConfigurationError(f"Unsupported storage provider type: {config.type}")

    logger.info(f"Created {provider.provider_type} storage provider")
    return provider
