"""GitHub repository storage provider."""

import logging
from collections.abc import AsyncIterator

from packages.storage.config import GitHubStorageConfig
from packages.storage.errors import (
    StorageError,
    StorageFileNotFoundError,
    normalize_storage_error,
)
from packages.storage.github_client import GitHubApiClient, infer_content_type
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
    StorageItem,
    StorageMetadata,
    StorageResult,
    UploadOptions,
    read_content,
    utcnow,
)

logger = logging.getLogger(__name__)


class GitHubStorageProvider(StorageProvider):
    """
    Stores files as commits in a GitHub repository.

    The contents API requires the current blob sha to update or delete a
    file. The provider-internal `_put_file` and `_delete_file` take that sha
    explicitly; the public operations fetch it before calling them.

    Limitations:
    - Downloads are fully buffered (the API has no streaming primitive).
    - Custom metadata is not persisted. Content type is inferred from the
      file extension on every read.
    - Presigned URLs are unsupported.
    """

    provider_type = "github"

    def __init__(
        self,
        config: GitHubStorageConfig,
        client: GitHubApiClient | None = None,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        self.config = config
        self.root_path = config.base_path or config.root_path
        self.client = client or GitHubApiClient(
            config.token,
            config.owner,
            config.repo,
            config.branch,
            timeout=timeout,
            max_retries=max_retries,
        )

    def _full_path(self, path: str) -> str:
        return join_root(self.root_path, path)

    def _public_url(self, full_path: str) -> str:
        if self.config.custom_domain:
            return f"{self.config.custom_domain.rstrip('/')}/{full_path}"
        if self.config.use_raw_url:
            return (
                f"https://raw.githubusercontent.com/{self.config.owner}/"
                f"{self.config.repo}/{self.config.branch}/{full_path}"
            )
        return (
            f"https://github.com/{self.config.owner}/{self.config.repo}/blob/"
            f"{self.config.branch}/{full_path}"
        )

    @staticmethod
    def _commit_message(operation: str, path: str) -> str:
        return f"{operation} {path} via storage provider"

    async def _current_sha(self, full_path: str) -> str | None:
        try:
            return (await self.client.get_file(full_path)).sha
        except StorageFileNotFoundError:
            return None

    async def _put_file(
        self,
        full_path: str,
        content: bytes,
        message: str,
        current_sha: str | None,
    ) -> str:
        """Commit content; returns the new blob sha."""
        result = await self.client.create_or_update_file(
            full_path,
            content,
            message,
            sha=current_sha,
        )
        return result.sha

    async def _delete_file(self, full_path: str, message: str, current_sha: str) -> None:
        await self.client.delete_file(full_path, message, current_sha)

    # =========================================================================
    # StorageProvider
    # =========================================================================

    async def upload(self, options: UploadOptions) -> StorageResult:
        full_path = self._full_path(options.path)
        if not full_path:
            raise StorageError("Upload path must name a file")

        try:
            content = await read_content(options.content)
            content_type = options.content_type or infer_content_type(full_path)
            validate_upload(self.config, content_type, len(content))

            current_sha = await self._current_sha(full_path)
            sha = await self._put_file(
                full_path,
                content,
                self._commit_message("Upload" if current_sha is None else "Update", options.path),
                current_sha,
            )
        except Exception as e:
            raise normalize_storage_error(e, options.path) from e

        now = utcnow()
        metadata = StorageMetadata(
            content_type=content_type,
            size=len(content),
            created_at=now,
            last_modified=now,
            etag=sha,
            custom=dict(options.metadata),
        )
        return StorageResult(
            path=options.path,
            size=metadata.size,
            content_type=content_type,
            last_modified=now,
            metadata=metadata,
            url=self._public_url(full_path),
        )

    async def download(self, path: str) -> DownloadResult:
        full_path = self._full_path(path)
        try:
            metadata = await self.get_metadata(path)
            content = await self.client.get_file_bytes(full_path)
        except Exception as e:
            raise normalize_storage_error(e, path) from e

        async def stream() -> AsyncIterator[bytes]:
            yield content

        return DownloadResult(
            content=stream(),
            content_type=metadata.content_type,
            size=len(content),
            metadata=metadata,
        )

    async def delete(self, path: str) -> None:
        full_path = self._full_path(path)
        try:
            current_sha = await self._current_sha(full_path)
            if current_sha is None:
                logger.debug(f"Delete of missing GitHub file {full_path} is a no-op")
                return
            await self._delete_file(full_path, self._commit_message("Delete", path), current_sha)
        except Exception as e:
            raise normalize_storage_error(e, path) from e

    async def exists(self, path: str) -> bool:
        try:
            return await self.client.file_exists(self._full_path(path))
        except Exception as e:
            raise normalize_storage_error(e, path) from e

    async def list(self, prefix: str = "") -> list[StorageItem]:
        try:
            entries = await self.client.list_files(self._full_path(prefix))
        except Exception as e:
            raise normalize_storage_error(e, prefix) from e

        now = utcnow()
        return [
            StorageItem(
                path=strip_root(self.root_path, entry.path),
                is_directory=entry.type == "dir",
                size=entry.size if entry.type == "file" else 0,
                last_modified=now,
                content_type=entry.content_type,
            )
            for entry in entries
        ]

    async def get_metadata(self, path: str) -> StorageMetadata:
        try:
            file = await self.client.get_file(self._full_path(path))
        except Exception as e:
            raise normalize_storage_error(e, path) from e

        # The contents API exposes no timestamps
        now = utcnow()
        return StorageMetadata(
            content_type=file.content_type or DEFAULT_CONTENT_TYPE,
            size=file.size,
            created_at=now,
            last_modified=now,
            etag=file.sha,
        )

    async def update_metadata(self, path: str, update: MetadataUpdate) -> StorageMetadata:
        """Re-commit the file's current content; returns the merged metadata."""
        full_path = self._full_path(path)
        try:
            current = await self.get_metadata(path)
            content = await self.client.get_file_bytes(full_path)
            sha = await self._put_file(
                full_path,
                content,
                self._commit_message("Update metadata for", path),
                current.etag,
            )
        except Exception as e:
            raise normalize_storage_error(e, path) from e

        return StorageMetadata(
            content_type=update.content_type or current.content_type,
            size=len(content),
            created_at=current.created_at,
            last_modified=utcnow(),
            etag=sha,
            custom={**current.custom, **(update.custom or {})},
        )

    async def close(self) -> None:
        await self.client.close()
