"""Tests for storage settings and the default provider configuration."""

import pytest

from packages.storage.config import (
    DOSpacesStorageConfig,
    GitHubStorageConfig,
    LocalStorageConfig,
    S3StorageConfig,
)
from packages.storage.settings import StorageSettings


class TestStorageSettings:
    def test_defaults(self):
        settings = StorageSettings(_env_file=None)

        assert settings.storage_provider == "local"
        assert settings.storage_provider_name == "default"
        assert settings.storage_default_quota == 1024 * 1024 * 1024
        assert settings.storage_cache_backend == "memory"
        assert settings.cache_allowed_types == []

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("STORAGE_PROVIDER", "s3")
        monkeypatch.setenv("STORAGE_S3_BUCKET", "assets")
        monkeypatch.setenv("STORAGE_DEFAULT_QUOTA", "1000")

        settings = StorageSettings(_env_file=None)

        assert settings.storage_provider == "s3"
        assert settings.storage_s3_bucket == "assets"
        assert settings.storage_default_quota == 1000

    def test_rejects_unknown_cache_backend(self):
        with pytest.raises(ValueError):
            StorageSettings(_env_file=None, storage_cache_backend="memcached")

    def test_cache_allowed_types_parsing(self):
        settings = StorageSettings(
            _env_file=None,
            storage_cache_allowed_types="image/, text/plain,,application/json ",
        )

        assert settings.cache_allowed_types == ["image/", "text/plain", "application/json"]


class TestDefaultProviderConfig:
    """The flat settings build the matching provider config variant."""

    def test_local(self):
        config = StorageSettings(
            _env_file=None,
            storage_local_directory="/srv/files",
            storage_local_base_url="https://files.example.com",
        ).default_provider_config()

        assert isinstance(config, LocalStorageConfig)
        assert config.directory == "/srv/files"
        assert config.base_url == "https://files.example.com"

    def test_s3(self):
        config = StorageSettings(
            _env_file=None,
            storage_provider="s3",
            storage_s3_region="eu-west-1",
            storage_s3_bucket="assets",
            storage_s3_access_key="AKIA",
            storage_s3_secret_key="secret",
        ).default_provider_config()

        assert isinstance(config, S3StorageConfig)
        assert config.access_key_id == "AKIA"
        assert config.missing_fields() == []

    def test_do_spaces(self):
        config = StorageSettings(
            _env_file=None,
            storage_provider="do_spaces",
            storage_do_region="nyc3",
            storage_do_space="assets",
        ).default_provider_config()

        assert isinstance(config, DOSpacesStorageConfig)
        assert config.missing_fields() == ["access_key_id", "secret_access_key"]

    def test_github(self):
        config = StorageSettings(
            _env_file=None,
            storage_provider="github",
            storage_github_owner="acme",
            storage_github_repo="assets",
            storage_github_token="t",
            storage_github_base_path="uploads",
        ).default_provider_config()

        assert isinstance(config, GitHubStorageConfig)
        assert config.base_path == "uploads"
        assert config.branch == "main"
