"""Local disk storage provider."""

import json
import logging
import uuid
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from pathlib import Path

import aiofiles
import aiofiles.os

from packages.storage.config import LocalStorageConfig
from packages.storage.errors import (
    StorageError,
    StorageFileNotFoundError,
    StoragePermissionError,
    normalize_storage_error,
)
from packages.storage.providers.base import (
    StorageProvider,
    join_root,
    normalize_path,
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
    content_size,
    iter_content,
)

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".metadata.json"
TEMP_SUFFIX = ".upload-tmp"
RESERVED_SUFFIXES = (METADATA_SUFFIX, TEMP_SUFFIX)
CHUNK_SIZE = 64 * 1024


def _from_timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=UTC)


class LocalStorageProvider(StorageProvider):
    """
    Local disk storage, used mainly for development and tests.

    Files live under `directory/root_path/<path>`. Content type, creation
    time, and custom metadata are kept in a `<file>.metadata.json` sidecar
    next to each file; sidecars never show up in listings, and user paths may
    not use the sidecar or temporary-upload suffixes.
    """

    provider_type = "local"

    def __init__(self, config: LocalStorageConfig):
        self.config = config
        self.base_path = Path(config.directory).resolve()
        root = self.base_path.joinpath(*normalize_path(config.root_path).split("/"))
        # Create base directory synchronously on init
        root.mkdir(parents=True, exist_ok=True)
        self.root = root.resolve()

    # =========================================================================
    # Path helpers
    # =========================================================================

    def _full_path(self, path: str) -> Path:
        """
        Resolve a storage path to an absolute file path under the root.

        Raises:
            StoragePermissionError: If the resolved path leaves the root or
                uses a reserved file name
        """
        relative = normalize_path(path)
        if any(segment.endswith(RESERVED_SUFFIXES) for segment in relative.split("/")):
            raise StoragePermissionError(
                f"Invalid storage path: names ending in {', '.join(RESERVED_SUFFIXES)} are reserved"
            )
        full_path = (self.root / relative).resolve() if relative else self.root
        if full_path != self.root and self.root not in full_path.parents:
            raise StoragePermissionError(
                "Invalid storage path: potential path traversal detected"
            )
        return full_path

    def _metadata_path(self, full_path: Path) -> Path:
        return full_path.with_name(full_path.name + METADATA_SUFFIX)

    def _relative_path(self, full_path: Path) -> str:
        return full_path.relative_to(self.root).as_posix()

    def _public_url(self, path: str) -> str | None:
        if not self.config.base_url:
            return None
        base_url = self.config.base_url.rstrip("/")
        return f"{base_url}/{join_root(self.config.root_path, path)}"

    async def _read_sidecar(self, full_path: Path) -> dict:
        metadata_path = self._metadata_path(full_path)
        if not await aiofiles.os.path.exists(metadata_path):
            return {}
        try:
            async with aiofiles.open(metadata_path, "r") as f:
                return json.loads(await f.read())
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable metadata sidecar {metadata_path}: {e}")
            return {}

    async def _write_sidecar(self, full_path: Path, data: dict) -> None:
        async with aiofiles.open(self._metadata_path(full_path), "w") as f:
            await f.write(json.dumps(data))

    async def _ensure_file(self, full_path: Path, path: str) -> None:
        if not await aiofiles.os.path.isfile(full_path):
            raise StorageFileNotFoundError(path)

    async def _build_metadata(self, full_path: Path) -> StorageMetadata:
        stats = await aiofiles.os.stat(full_path)
        sidecar = await self._read_sidecar(full_path)
        created_at = sidecar.get("created_at")
        return StorageMetadata(
            content_type=sidecar.get("content_type") or DEFAULT_CONTENT_TYPE,
            size=stats.st_size,
            created_at=(
                datetime.fromisoformat(created_at)
                if created_at
                else _from_timestamp(stats.st_ctime)
            ),
            last_modified=_from_timestamp(stats.st_mtime),
            custom={str(k): str(v) for k, v in (sidecar.get("custom") or {}).items()},
        )

    # =========================================================================
    # StorageProvider
    # =========================================================================

    async def upload(self, options: UploadOptions) -> StorageResult:
        content_type = options.content_type or DEFAULT_CONTENT_TYPE
        validate_upload(self.config, content_type, content_size(options.content))
        full_path = self._full_path(options.path)
        if full_path == self.root:
            raise StorageError("Upload path must name a file")

        # A failed write must leave any existing file untouched
        temp_path = full_path.with_name(f".{full_path.name}.{uuid.uuid4().hex}{TEMP_SUFFIX}")
        try:
            await aiofiles.os.makedirs(full_path.parent, exist_ok=True)
            try:
                async with aiofiles.open(temp_path, "wb") as f:
                    async for chunk in iter_content(options.content):
                        await f.write(chunk)
                await aiofiles.os.replace(temp_path, full_path)
            except Exception:
                if await aiofiles.os.path.exists(temp_path):
                    await aiofiles.os.remove(temp_path)
                raise

            stats = await aiofiles.os.stat(full_path)
            metadata = StorageMetadata(
                content_type=content_type,
                size=stats.st_size,
                created_at=_from_timestamp(stats.st_mtime),
                last_modified=_from_timestamp(stats.st_mtime),
                custom=dict(options.metadata),
            )
            await self._write_sidecar(
                full_path,
                {
                    "content_type": metadata.content_type,
                    "created_at": metadata.created_at.isoformat(),
                    "custom": metadata.custom,
                },
            )
        except Exception as e:
            raise normalize_storage_error(e, options.path) from e

        logger.debug(f"Wrote {stats.st_size} bytes to {full_path}")
        return StorageResult(
            path=options.path,
            size=metadata.size,
            content_type=metadata.content_type,
            last_modified=metadata.last_modified,
            metadata=metadata,
            url=self._public_url(options.path),
        )

    async def download(self, path: str) -> DownloadResult:
        full_path = self._full_path(path)
        try:
            await self._ensure_file(full_path, path)
            metadata = await self._build_metadata(full_path)
        except Exception as e:
            raise normalize_storage_error(e, path) from e

        async def stream() -> AsyncIterator[bytes]:
            async with aiofiles.open(full_path, "rb") as f:
                while True:
                    chunk = await f.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk

        return DownloadResult(
            content=stream(),
            content_type=metadata.content_type,
            size=metadata.size,
            metadata=metadata,
        )

    async def delete(self, path: str) -> None:
        full_path = self._full_path(path)
        try:
            if await aiofiles.os.path.isfile(full_path):
                await aiofiles.os.remove(full_path)
            metadata_path = self._metadata_path(full_path)
            if await aiofiles.os.path.exists(metadata_path):
                await aiofiles.os.remove(metadata_path)
        except Exception as e:
            raise normalize_storage_error(e, path) from e

    async def exists(self, path: str) -> bool:
        full_path = self._full_path(path)
        return await aiofiles.os.path.isfile(full_path)

    async def list(self, prefix: str = "") -> list[StorageItem]:
        base = self._full_path(prefix)
        try:
            if not await aiofiles.os.path.exists(base):
                return []

            if not await aiofiles.os.path.isdir(base):
                # A file prefix lists as itself
                stats = await aiofiles.os.stat(base)
                sidecar = await self._read_sidecar(base)
                return [
                    StorageItem(
                        path=self._relative_path(base),
                        is_directory=False,
                        size=stats.st_size,
                        last_modified=_from_timestamp(stats.st_mtime),
                        content_type=sidecar.get("content_type"),
                    )
                ]

            items: list[StorageItem] = []
            for name in sorted(await aiofiles.os.listdir(base)):
                if name.endswith(RESERVED_SUFFIXES):
                    continue
                entry = base / name
                stats = await aiofiles.os.stat(entry)
                is_directory = await aiofiles.os.path.isdir(entry)
                content_type = None
                if not is_directory:
                    content_type = (await self._read_sidecar(entry)).get("content_type")
                items.append(
                    StorageItem(
                        path=self._relative_path(entry),
                        is_directory=is_directory,
                        size=0 if is_directory else stats.st_size,
                        last_modified=_from_timestamp(stats.st_mtime),
                        content_type=content_type,
                    )
                )
            return items
        except Exception as e:
            raise normalize_storage_error(e, prefix) from e

    async def get_metadata(self, path: str) -> StorageMetadata:
        full_path = self._full_path(path)
        try:
            await self._ensure_file(full_path, path)
            return await self._build_metadata(full_path)
        except Exception as e:
            raise normalize_storage_error(e, path) from e

    async def update_metadata(self, path: str, update: MetadataUpdate) -> StorageMetadata:
        full_path = self._full_path(path)
        try:
            current = await self.get_metadata(path)
            custom = {**current.custom, **(update.custom or {})}
            await self._write_sidecar(
                full_path,
                {
                    "content_type": update.content_type or current.content_type,
                    "created_at": current.created_at.isoformat(),
                    "custom": custom,
                },
            )
            return await self._build_metadata(full_path)
        except Exception as e:
            raise normalize_storage_error(e, path) from e
