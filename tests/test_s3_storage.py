"""
Tests for the S3 and DigitalOcean Spaces storage providers.

The aioboto3 client is replaced with an AsyncMock behind an async context
manager - does not hit real object storage.
"""

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError

from packages.storage.config import DOSpacesStorageConfig, S3StorageConfig
from packages.storage.errors import (
    StorageFileNotFoundError,
    StorageFileSizeExceededError,
    StoragePermissionError,
)
from packages.storage.providers.do_spaces import DOSpacesStorageProvider
from packages.storage.providers.s3 import S3StorageProvider, _as_fileobj, _ChunkReader
from packages.storage.schemas import (
    MetadataUpdate,
    PresignRequest,
    StorageAcl,
    StreamContent,
    UploadOptions,
)

LAST_MODIFIED = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


async def _pages(*pages: dict) -> AsyncIterator[dict]:
    for page in pages:
        yield page


async def _chunks(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


def _attach_client(provider: S3StorageProvider, s3: AsyncMock) -> None:
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=s3)
    context.__aexit__ = AsyncMock(return_value=False)
    provider._client = MagicMock(return_value=context)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def s3() -> AsyncMock:
    client = AsyncMock()
    client.head_object.return_value = {
        "ContentType": "text/plain",
        "ContentLength": 5,
        "LastModified": LAST_MODIFIED,
        "ETag": '"d41d8cd98f00b204"',
        "Metadata": {"owner": "alice"},
    }
    return client


@pytest.fixture
def s3_config() -> S3StorageConfig:
    return S3StorageConfig(
        region="us-east-1",
        bucket="assets",
        access_key_id="AKIA",
        secret_access_key="secret",
        root_path="tenant-root",
        base_url="https://assets.example.com",
        default_acl=StorageAcl.PUBLIC_READ,
    )


@pytest.fixture
def s3_provider(s3_config: S3StorageConfig, s3: AsyncMock) -> S3StorageProvider:
    provider = S3StorageProvider(s3_config)
    _attach_client(provider, s3)
    return provider


# =============================================================================
# S3 Provider
# =============================================================================


class TestS3Provider:
    def test_client_kwargs(self, s3_config: S3StorageConfig):
        kwargs = S3StorageProvider(s3_config)._get_client_kwargs()

        assert kwargs == {
            "region_name": "us-east-1",
            "aws_access_key_id": "AKIA",
            "aws_secret_access_key": "secret",
        }

    def test_custom_endpoint(self):
        provider = S3StorageProvider(
            S3StorageConfig(
                region="us-east-1",
                bucket="assets",
                access_key_id="minio",
                secret_access_key="minio123",
                endpoint="http://localhost:9000",
            )
        )

        assert provider._get_client_kwargs()["endpoint_url"] == "http://localhost:9000"

    async def test_upload(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        result = await s3_provider.upload(
            UploadOptions(path="docs/readme.txt", content=b"hello", metadata={"owner": "alice"})
        )

        args, kwargs = s3.upload_fileobj.call_args
        assert args[0].read() == b"hello"
        assert args[1:] == ("assets", "tenant-root/docs/readme.txt")
        assert kwargs["ExtraArgs"] == {
            "ContentType": "application/octet-stream",
            "Metadata": {"owner": "alice"},
            "ACL": "public-read",
        }
        assert result.path == "docs/readme.txt"
        assert result.size == 5
        assert result.url == "https://assets.example.com/tenant-root/docs/readme.txt"

    async def test_upload_acl_override(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        await s3_provider.upload(
            UploadOptions(path="a.txt", content=b"x", acl=StorageAcl.PRIVATE)
        )

        assert s3.upload_fileobj.call_args.kwargs["ExtraArgs"]["ACL"] == "private"

    async def test_upload_stream(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        await s3_provider.upload(
            UploadOptions(path="a.bin", content=StreamContent(_chunks(b"ab", b"cd"), size=4))
        )

        fileobj = s3.upload_fileobj.call_args.args[0]
        assert isinstance(fileobj, _ChunkReader)

    async def test_upload_denied(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        s3.upload_fileobj.side_effect = _client_error("AccessDenied", "PutObject")

        with pytest.raises(StoragePermissionError):
            await s3_provider.upload(UploadOptions(path="a.txt", content=b"x"))

    async def test_download(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        body = AsyncMock()
        body.read.side_effect = [b"hel", b"lo", b""]
        s3.get_object.return_value = {"Body": body}

        result = await s3_provider.download("docs/readme.txt")

        assert await result.read() == b"hello"
        assert result.content_type == "text/plain"
        s3.get_object.assert_awaited_once_with(Bucket="assets", Key="tenant-root/docs/readme.txt")

    async def test_download_missing(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        s3.head_object.side_effect = _client_error("404")

        with pytest.raises(StorageFileNotFoundError) as exc_info:
            await s3_provider.download("missing.txt")

        assert exc_info.value.path == "missing.txt"
        s3.get_object.assert_not_awaited()

    async def test_delete(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        await s3_provider.delete("docs/readme.txt")

        s3.delete_object.assert_awaited_once_with(
            Bucket="assets", Key="tenant-root/docs/readme.txt"
        )

    async def test_exists(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        assert await s3_provider.exists("docs/readme.txt") is True

        s3.head_object.side_effect = _client_error("404")
        assert await s3_provider.exists("docs/readme.txt") is False

    async def test_exists_denied_raises(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        s3.head_object.side_effect = _client_error("403")

        with pytest.raises(StoragePermissionError):
            await s3_provider.exists("docs/readme.txt")

    async def test_list(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        paginator = MagicMock()
        paginator.paginate.return_value = _pages(
            {
                "CommonPrefixes": [{"Prefix": "tenant-root/docs/img/"}],
                "Contents": [
                    {"Key": "tenant-root/docs/", "Size": 0},
                    {"Key": "tenant-root/docs/a.txt", "Size": 3, "LastModified": LAST_MODIFIED},
                ],
            },
            {"Contents": [{"Key": "tenant-root/docs/b.txt", "Size": 7, "LastModified": LAST_MODIFIED}]},
        )
        s3.get_paginator = MagicMock(return_value=paginator)

        items = await s3_provider.list("docs")

        paginator.paginate.assert_called_once_with(
            Bucket="assets", Prefix="tenant-root/docs/", Delimiter="/"
        )
        assert [(i.path, i.is_directory, i.size) for i in items] == [
            ("docs/img", True, 0),
            ("docs/a.txt", False, 3),
            ("docs/b.txt", False, 7),
        ]

    async def test_get_metadata(self, s3_provider: S3StorageProvider):
        metadata = await s3_provider.get_metadata("docs/readme.txt")

        assert metadata.content_type == "text/plain"
        assert metadata.size == 5
        assert metadata.etag == "d41d8cd98f00b204"
        assert metadata.custom == {"owner": "alice"}
        assert metadata.created_at == metadata.last_modified == LAST_MODIFIED

    async def test_update_metadata_copies_in_place(
        self, s3_provider: S3StorageProvider, s3: AsyncMock
    ):
        await s3_provider.update_metadata(
            "docs/readme.txt",
            MetadataUpdate(custom={"reviewed": "yes"}),
        )

        s3.copy_object.assert_awaited_once_with(
            Bucket="assets",
            Key="tenant-root/docs/readme.txt",
            CopySource={"Bucket": "assets", "Key": "tenant-root/docs/readme.txt"},
            ContentType="text/plain",
            Metadata={"owner": "alice", "reviewed": "yes"},
            MetadataDirective="REPLACE",
        )

    async def test_presign(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        s3.generate_presigned_url.return_value = "https://assets.s3.amazonaws.com/put?sig=1"

        result = await s3_provider.presign(
            PresignRequest(path="docs/new.txt", content_type="text/plain", expires_in=600)
        )

        assert result.url == "https://assets.s3.amazonaws.com/put?sig=1"
        assert result.token == "tenant-root/docs/new.txt"
        s3.generate_presigned_url.assert_awaited_once_with(
            ClientMethod="put_object",
            Params={
                "Bucket": "assets",
                "Key": "tenant-root/docs/new.txt",
                "ContentType": "text/plain",
                "ACL": "public-read",
            },
            ExpiresIn=600,
        )

    async def test_generate_presigned_url(self, s3_provider: S3StorageProvider, s3: AsyncMock):
        s3.generate_presigned_url.return_value = "https://assets.s3.amazonaws.com/get?sig=1"

        url = await s3_provider.generate_presigned_url("docs/readme.txt", expires_in=60)

        assert url == "https://assets.s3.amazonaws.com/get?sig=1"
        assert s3.generate_presigned_url.call_args.kwargs["ClientMethod"] == "get_object"


class TestChunkReader:
    async def test_reads_across_chunk_boundaries(self):
        reader = _ChunkReader(_chunks(b"abc", b"de", b"fgh"))

        assert await reader.read(4) == b"abcd"
        assert await reader.read(2) == b"ef"
        assert await reader.read() == b"gh"
        assert await reader.read(10) == b""

    async def test_stream_longer_than_declared_fails(self):
        reader = _as_fileobj(StreamContent(_chunks(b"abc", b"def"), size=4))

        with pytest.raises(StorageFileSizeExceededError) as exc_info:
            await reader.read()

        assert (exc_info.value.size, exc_info.value.max_size) == (6, 4)

    async def test_upload_of_overlong_stream_fails(
        self, s3_provider: S3StorageProvider, s3: AsyncMock
    ):
        async def drain(fileobj, bucket, key, ExtraArgs):
            while await fileobj.read(2):
                pass

        s3.upload_fileobj.side_effect = drain

        with pytest.raises(StorageFileSizeExceededError):
            await s3_provider.upload(
                UploadOptions(path="a.bin", content=StreamContent(_chunks(b"x" * 50), size=10))
            )

        s3.head_object.assert_not_awaited()


class TestS3PathTraversal:
    """Paths that climb out of the root never reach the S3 client."""

    @pytest.mark.parametrize("operation", ["upload", "download", "delete", "exists", "list"])
    @pytest.mark.parametrize("path", ["../escape.txt", "docs/../../escape.txt"])
    async def test_escaping_path_rejected(
        self, s3_provider: S3StorageProvider, operation: str, path: str
    ):
        with pytest.raises(StoragePermissionError):
            if operation == "upload":
                await s3_provider.upload(UploadOptions(path=path, content=b"x"))
            else:
                await getattr(s3_provider, operation)(path)

        s3_provider._client.assert_not_called()


# =============================================================================
# DigitalOcean Spaces Provider
# =============================================================================


def _spaces_config(**overrides) -> DOSpacesStorageConfig:
    return DOSpacesStorageConfig(
        region="nyc3",
        space="assets",
        access_key_id="DO",
        secret_access_key="secret",
        **overrides,
    )


class TestDOSpacesProvider:
    def test_endpoint_and_bucket(self):
        provider = DOSpacesStorageProvider(_spaces_config())

        kwargs = provider._get_client_kwargs()
        assert kwargs["endpoint_url"] == "https://nyc3.digitaloceanspaces.com"
        assert kwargs["region_name"] == "nyc3"
        assert "config" not in kwargs
        assert provider.bucket == "assets"

    def test_force_path_style(self):
        provider = DOSpacesStorageProvider(_spaces_config(force_path_style=True))

        config = provider._get_client_kwargs()["config"]
        assert config.s3 == {"addressing_style": "path"}

    def test_public_url_prefers_cdn(self):
        provider = DOSpacesStorageProvider(
            _spaces_config(
                cdn_endpoint="https://assets.nyc3.cdn.digitaloceanspaces.com/",
                custom_domain="https://files.example.com",
            )
        )

        assert provider._public_url("a.txt") == "https://assets.nyc3.cdn.digitaloceanspaces.com/a.txt"

    def test_public_url_custom_domain_when_cdn_disabled(self):
        provider = DOSpacesStorageProvider(
            _spaces_config(
                cdn_endpoint="https://assets.nyc3.cdn.digitaloceanspaces.com",
                custom_domain="https://files.example.com",
                use_cdn=False,
            )
        )

        assert provider._public_url("a.txt") == "https://files.example.com/a.txt"

    def test_public_url_origin_fallback(self):
        provider = DOSpacesStorageProvider(_spaces_config())

        assert provider._public_url("a.txt") == "https://nyc3.digitaloceanspaces.com/assets/a.txt"

    async def test_operations_use_space_as_bucket(self, s3: AsyncMock):
        provider = DOSpacesStorageProvider(_spaces_config(root_path="media"))
        _attach_client(provider, s3)

        await provider.delete("a.txt")

        s3.delete_object.assert_awaited_once_with(Bucket="assets", Key="media/a.txt")
