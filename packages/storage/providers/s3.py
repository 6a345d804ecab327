"""S3 (and S3-compatible) storage provider."""

import logging
from collections.abc import AsyncIterator
from io import BytesIO
from typing import Any

import aioboto3
from botocore.exceptions import ClientError

from packages.storage.config import S3StorageConfig
from packages.storage.errors import StorageError, normalize_storage_error
from packages.storage.providers.base import (
    StorageProvider,
    join_root,
    strip_root,
    validate_upload,
)
from packages.storage.schemas import (
    DEFAULT_CONTENT_TYPE,
    DownloadResult,
    MetadataUpdate,
    PresignRequest,
    PresignResult,
    StorageItem,
    StorageMetadata,
    StorageResult,
    UploadContent,
    UploadOptions,
    content_size,
    iter_content,
    utcnow,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class _ChunkReader:
    """Async file-like adapter over streamed upload content for upload_fileobj."""

    def __init__(self, chunks: AsyncIterator[bytes]):
        self._chunks = chunks
        self._buffer = b""
        self._done = False

    async def read(self, size: int = -1) -> bytes:
        while not self._done and (size < 0 or len(self._buffer) < size):
            try:
                self._buffer += await self._chunks.__anext__()
            except StopAsyncIteration:
                self._done = True
        if size < 0:
            data, self._buffer = self._buffer, b""
        else:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data


def _as_fileobj(content: UploadContent) -> Any:
    if isinstance(content, (bytes, bytearray, memoryview)):
        return BytesIO(bytes(content))
    return _ChunkReader(iter_content(content))


class S3StorageProvider(StorageProvider):
    """
    AWS S3 storage provider.

    Also serves S3-compatible services (MinIO etc.) through `endpoint`.
    Object keys are `root_path/<path>`. Listings use "/" as the delimiter so
    that a prefix lists its direct children only.
    """

    provider_type = "s3"
    supports_presign = True

    def __init__(self, config: S3StorageConfig):
        self.config = config
        self.bucket = config.bucket
        self.root_path = config.root_path
        self._session = aioboto3.Session()

    def _get_client_kwargs(self) -> dict:
        """Build kwargs for S3 client."""
        kwargs = {
            "region_name": self.config.region,
        }
        if self.config.endpoint:
            kwargs["endpoint_url"] = self.config.endpoint
        if self.config.access_key_id and self.config.secret_access_key:
            kwargs["aws_access_key_id"] = self.config.access_key_id
            kwargs["aws_secret_access_key"] = self.config.secret_access_key
        return kwargs

    def _client(self):
        return self._session.client("s3", **self._get_client_kwargs())

    def _key(self, path: str) -> str:
        return join_root(self.root_path, path)

    def _public_url(self, key: str) -> str | None:
        if not self.config.base_url:
            return None
        return f"{self.config.base_url.rstrip('/')}/{key}"

    @staticmethod
    def _is_missing(error: ClientError) -> bool:
        return error.response.get("Error", {}).get("Code") in _MISSING_CODES

    # =========================================================================
    # StorageProvider
    # =========================================================================

    async def upload(self, options: UploadOptions) -> StorageResult:
        content_type = options.content_type or DEFAULT_CONTENT_TYPE
        validate_upload(self.config, content_type, content_size(options.content))
        key = self._key(options.path)
        if not key:
            raise StorageError("Upload path must name a file")

        extra_args = {
            "ContentType": content_type,
            "Metadata": dict(options.metadata),
        }
        acl = options.acl or self.config.default_acl
        if acl:
            extra_args["ACL"] = acl.value

        try:
            async with self._client() as s3:
                await s3.upload_fileobj(
                    _as_fileobj(options.content),
                    self.bucket,
                    key,
                    ExtraArgs=extra_args,
                )
        except Exception as e:
            raise normalize_storage_error(e, options.path) from e

        metadata = await self.get_metadata(options.path)
        return StorageResult(
            path=options.path,
            size=metadata.size,
            content_type=metadata.content_type,
            last_modified=metadata.last_modified,
            metadata=metadata,
            url=self._public_url(key),
        )

    async def download(self, path: str) -> DownloadResult:
        metadata = await self.get_metadata(path)
        key = self._key(path)

        async def stream() -> AsyncIterator[bytes]:
            try:
                async with self._client() as s3:
                    response = await s3.get_object(Bucket=self.bucket, Key=key)
                    body = response["Body"]
                    while True:
                        chunk = await body.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        yield chunk
            except ClientError as e:
                raise normalize_storage_error(e, path) from e

        return DownloadResult(
            content=stream(),
            content_type=metadata.content_type,
            size=metadata.size,
            metadata=metadata,
        )

    async def delete(self, path: str) -> None:
        key = self._key(path)
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=self.bucket, Key=key)
        except Exception as e:
            raise normalize_storage_error(e, path) from e

    async def exists(self, path: str) -> bool:
        key = self._key(path)
        try:
            async with self._client() as s3:
                await s3.head_object(Bucket=self.bucket, Key=key)
                return True
        except ClientError as e:
            if self._is_missing(e):
                return False
            raise normalize_storage_error(e, path) from e

    async def list(self, prefix: str = "") -> list[StorageItem]:
        key_prefix = self._key(prefix)
        if key_prefix:
            key_prefix += "/"

        items: list[StorageItem] = []
        try:
            async with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(
                    Bucket=self.bucket,
                    Prefix=key_prefix,
                    Delimiter="/",
                ):
                    for common_prefix in page.get("CommonPrefixes", []):
                        items.append(
                            StorageItem(
                                path=strip_root(self.root_path, common_prefix["Prefix"].rstrip("/")),
                                is_directory=True,
                                size=0,
                                last_modified=utcnow(),
                            )
                        )
                    for obj in page.get("Contents", []):
                        if obj["Key"] == key_prefix:
                            continue
                        items.append(
                            StorageItem(
                                path=strip_root(self.root_path, obj["Key"]),
                                is_directory=False,
                                size=obj.get("Size", 0),
                                last_modified=obj.get("LastModified") or utcnow(),
                            )
                        )
        except Exception as e:
            raise normalize_storage_error(e, prefix) from e
        return items

    async def get_metadata(self, path: str) -> StorageMetadata:
        key = self._key(path)
        try:
            async with self._client() as s3:
                result = await s3.head_object(Bucket=self.bucket, Key=key)
        except Exception as e:
            raise normalize_storage_error(e, path) from e

        last_modified = result.get("LastModified") or utcnow()
        return StorageMetadata(
            content_type=result.get("ContentType") or DEFAULT_CONTENT_TYPE,
            size=result.get("ContentLength", 0),
            created_at=last_modified,
            last_modified=last_modified,
            etag=(result.get("ETag") or "").strip('"') or None,
            custom=dict(result.get("Metadata") or {}),
        )

    async def update_metadata(self, path: str, update: MetadataUpdate) -> StorageMetadata:
        """Replace object metadata by copying the object onto itself."""
        current = await self.get_metadata(path)
        key = self._key(path)
        try:
            async with self._client() as s3:
                await s3.copy_object(
                    Bucket=self.bucket,
                    Key=key,
                    CopySource={"Bucket": self.bucket, "Key": key},
                    ContentType=update.content_type or current.content_type,
                    Metadata={**current.custom, **(update.custom or {})},
                    MetadataDirective="REPLACE",
                )
        except Exception as e:
            raise normalize_storage_error(e, path) from e
        return await self.get_metadata(path)

    async def presign(self, request: PresignRequest) -> PresignResult:
        key = self._key(request.path)
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "ContentType": request.content_type,
        }
        acl = request.acl or self.config.default_acl
        if acl:
            params["ACL"] = acl.value

        try:
            async with self._client() as s3:
                url = await s3.generate_presigned_url(
                    ClientMethod="put_object",
                    Params=params,
                    ExpiresIn=request.expires_in,
                )
        except Exception as e:
            raise normalize_storage_error(e, request.path) from e
        return PresignResult(url=url, token=key)

    async def generate_presigned_url(self, path: str, expires_in: int = 3600) -> str:
        try:
            async with self._client() as s3:
                return await s3.generate_presigned_url(
                    ClientMethod="get_object",
                    Params={"Bucket": self.bucket, "Key": self._key(path)},
                    ExpiresIn=expires_in,
                )
        except Exception as e:
            raise normalize_storage_error(e, path) from e
