"""
Tests for provider configuration parsing and the provider factory.

A rejected configuration must fail before any client is constructed.
"""

from pathlib import Path

import pytest

from packages.storage.config import (
    GitHubStorageConfig,
    LocalStorageConfig,
    S3StorageConfig,
    provider_config_to_dict,
)
from packages.storage.errors import StorageConfigurationError
from packages.storage.factory import create_provider, parse_provider_config
from packages.storage.providers import (
    DOSpacesStorageProvider,
    GitHubStorageProvider,
    LocalStorageProvider,
    S3StorageProvider,
)
from packages.storage.schemas import StorageAcl

S3_CONFIG = {
    "type": "s3",
    "region": "us-east-1",
    "bucket": "assets",
    "access_key_id": "AKIA",
    "secret_access_key": "secret",
}


class TestParseProviderConfig:
    """Tagged-union parsing of raw configuration mappings."""

    def test_discriminates_on_type(self, tmp_path: Path):
        config = parse_provider_config({"type": "local", "directory": str(tmp_path)})

        assert isinstance(config, LocalStorageConfig)
        assert config.directory == str(tmp_path)

    def test_accepts_camel_case_keys(self):
        config = parse_provider_config(
            {
                "type": "s3",
                "bucket": "assets",
                "accessKeyId": "AKIA",
                "secretAccessKey": "secret",
                "defaultAcl": "public-read",
                "maxFileSize": 1024,
            }
        )

        assert isinstance(config, S3StorageConfig)
        assert config.access_key_id == "AKIA"
        assert config.default_acl == StorageAcl.PUBLIC_READ
        assert config.max_file_size == 1024

    def test_model_passes_through(self):
        config = GitHubStorageConfig(owner="acme", repo="assets", token="t")

        assert parse_provider_config(config) is config

    def test_unknown_type(self):
        with pytest.raises(StorageConfigurationError) as exc_info:
            parse_provider_config({"type": "ftp", "host": "example.com"})

        assert "'ftp'" in exc_info.value.message

    def test_negative_max_file_size(self, tmp_path: Path):
        with pytest.raises(StorageConfigurationError):
            parse_provider_config(
                {"type": "local", "directory": str(tmp_path), "max_file_size": -1}
            )

    def test_to_dict_is_snake_case_without_unset_fields(self):
        data = provider_config_to_dict(S3StorageConfig(**{k: v for k, v in S3_CONFIG.items() if k != "type"}))

        assert data["type"] == "s3"
        assert data["access_key_id"] == "AKIA"
        assert "endpoint" not in data
        assert parse_provider_config(data) == S3StorageConfig(**data)


class TestCreateProvider:
    """Provider construction per configuration variant."""

    def test_local(self, tmp_path: Path):
        provider = create_provider({"type": "local", "directory": str(tmp_path / "files")})

        assert isinstance(provider, LocalStorageProvider)
        assert (tmp_path / "files").is_dir()

    def test_s3(self):
        provider = create_provider(S3_CONFIG)

        assert isinstance(provider, S3StorageProvider)
        assert provider.bucket == "assets"
        assert provider.supports_presign is True

    def test_do_spaces(self):
        provider = create_provider(
            {
                "type": "do_spaces",
                "region": "nyc3",
                "space": "assets",
                "access_key_id": "DO",
                "secret_access_key": "secret",
            }
        )

        assert isinstance(provider, DOSpacesStorageProvider)
        assert provider.bucket == "assets"
        assert provider.endpoint == "https://nyc3.digitaloceanspaces.com"

    def test_github(self):
        provider = create_provider(
            {"type": "github", "owner": "acme", "repo": "assets", "token": "t"},
            http_timeout=5,
            http_max_retries=1,
        )

        assert isinstance(provider, GitHubStorageProvider)
        assert provider.client.branch == "main"
        assert provider.supports_presign is False

    def test_missing_required_fields_are_listed(self):
        with pytest.raises(StorageConfigurationError) as exc_info:
            create_provider({"type": "s3", "bucket": "x"})

        assert exc_info.value.missing_fields == ["region", "access_key_id", "secret_access_key"]
        assert "s3" in exc_info.value.message

    def test_empty_required_field_counts_as_missing(self):
        with pytest.raises(StorageConfigurationError) as exc_info:
            create_provider({"type": "github", "owner": "acme", "repo": "", "token": "t"})

        assert exc_info.value.missing_fields == ["repo"]

    def test_local_requires_directory(self):
        with pytest.raises(StorageConfigurationError) as exc_info:
            create_provider({"type": "local"})

        assert exc_info.value.missing_fields == ["directory"]
