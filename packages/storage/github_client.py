"""
GitHub contents API client.

Wraps the repository contents endpoints used by the GitHub storage
provider. Requests retry with exponential backoff on rate limiting and
server errors; everything else is mapped straight onto the storage error
taxonomy.
"""

import asyncio
import base64
import logging
import mimetypes
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from packages.storage.errors import (
    StorageError,
    StorageFileExistsError,
    StorageFileNotFoundError,
    StoragePermissionError,
    StorageTimeoutError,
)
from packages.storage.schemas import DEFAULT_CONTENT_TYPE

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


def infer_content_type(filename: str) -> str:
    """Guess a MIME type from the file extension."""
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or DEFAULT_CONTENT_TYPE


@dataclass
class GitHubFile:
    """A file or directory entry from the contents API."""

    name: str
    path: str
    sha: str
    size: int
    type: str
    download_url: str | None = None
    html_url: str | None = None
    content: bytes | None = None

    @property
    def content_type(self) -> str | None:
        if self.type != "file":
            return None
        return infer_content_type(self.name)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "GitHubFile":
        content = None
        if data.get("encoding") == "base64" and data.get("content"):
            content = base64.b64decode(data["content"])
        return cls(
            name=data["name"],
            path=data["path"],
            sha=data["sha"],
            size=data.get("size", 0),
            type=data.get("type", "file"),
            download_url=data.get("download_url"),
            html_url=data.get("html_url"),
            content=content,
        )


class _RetryableError(StorageError):
    def __init__(self, message: str, retry_after: float | None = None):
        self.retry_after = retry_after
        super().__init__(message)


class GitHubApiClient:
    """
    Async client for one repository's contents API.

    Args:
        token: Personal access or app token
        owner: Repository owner (user or organization)
        repo: Repository name
        branch: Branch every read and commit targets
        timeout: Request timeout in seconds
        max_retries: Retry attempts on 429 and 5xx responses
        retry_backoff_base: Base delay in seconds for exponential backoff
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        branch: str = "main",
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff_base: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self._token = token
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_backoff_base = retry_backoff_base
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=GITHUB_API_URL,
                timeout=httpx.Timeout(self._timeout),
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                    "User-Agent": "storage-provider",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _contents_endpoint(self, path: str) -> str:
        path = path.strip("/")
        base = f"/repos/{self.owner}/{self.repo}/contents"
        return f"{base}/{quote(path)}" if path else base

    def _calculate_backoff(self, attempt: int) -> float:
        return self._retry_backoff_base * (2**attempt)

    # =========================================================================
    # HTTP Request with Retries
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json_data: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        last_error: Exception | None = None
        for attempt in range(self._max_retries + 1):
            try:
                return await self._do_request(method, path, params, json_data, headers)
            except _RetryableError as e:
                last_error = e
                if attempt < self._max_retries:
                    wait_time = e.retry_after or self._calculate_backoff(attempt)
                    logger.warning(
                        f"[github] {e.message}, retrying in {wait_time}s "
                        f"(attempt {attempt + 1}/{self._max_retries + 1})"
                    )
                    await asyncio.sleep(wait_time)

        raise StorageError(f"GitHub request failed after retries: {last_error}")

    async def _do_request(
        self,
        method: str,
        path: str,
        params: dict | None,
        json_data: dict | None,
        headers: dict | None,
    ) -> httpx.Response:
        """Execute a single request against the contents endpoint for `path`."""
        client = await self._get_client()
        endpoint = self._contents_endpoint(path)
        logger.debug(f"[github] {method} {endpoint}")

        try:
            response = await client.request(
                method,
                endpoint,
                params=params,
                json=json_data,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise StorageTimeoutError(f"github {method} {path}", int(self._timeout * 1000)) from e
        except httpx.RequestError as e:
            raise StorageError(f"GitHub request failed: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise _RetryableError(
                "Rate limited",
                retry_after=float(retry_after) if retry_after else None,
            )

        if response.status_code >= 500:
            raise _RetryableError(f"Server error: {response.status_code}")

        if response.status_code == 404:
            raise StorageFileNotFoundError(path)

        if response.status_code in (401, 403):
            raise StoragePermissionError(
                f"GitHub denied access to {path}: {response.text[:200]}"
            )

        if response.status_code in (409, 422) and "sha" in response.text:
            raise StorageFileExistsError(path)

        if not response.is_success:
            raise StorageError(
                f"GitHub request failed ({response.status_code}): {response.text[:500]}"
            )

        return response

    # =========================================================================
    # Contents API
    # =========================================================================

    async def get_file(self, path: str) -> GitHubFile:
        """
        Fetch a file entry (including its sha).

        Raises:
            StorageFileNotFoundError: If the file doesn't exist
            StorageError: If the path is a directory
        """
        response = await self._request("GET", path, params={"ref": self.branch})
        data = response.json()
        if isinstance(data, list) or data.get("type") != "file":
            raise StorageError(f"Path is not a file: {path}")
        return GitHubFile.from_api(data)

    async def get_file_bytes(self, path: str) -> bytes:
        """Fetch raw file content (works past the 1MB inline content limit)."""
        response = await self._request(
            "GET",
            path,
            params={"ref": self.branch},
            headers={"Accept": "application/vnd.github.raw+json"},
        )
        return response.content

    async def create_or_update_file(
        self,
        path: str,
        content: bytes,
        message: str,
        sha: str | None = None,
    ) -> GitHubFile:
        """
        Commit a file. `sha` must be the current blob sha when updating.

        Raises:
            StorageFileExistsError: If the sha is missing or stale
        """
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": self.branch,
        }
        if sha:
            payload["sha"] = sha

        response = await self._request("PUT", path, json_data=payload)
        return GitHubFile.from_api(response.json()["content"])

    async def delete_file(self, path: str, message: str, sha: str) -> None:
        await self._request(
            "DELETE",
            path,
            json_data={"message": message, "sha": sha, "branch": self.branch},
        )

    async def file_exists(self, path: str) -> bool:
        try:
            response = await self._request("GET", path, params={"ref": self.branch})
        except StorageFileNotFoundError:
            return False
        data = response.json()
        return isinstance(data, dict) and data.get("type") == "file"

    async def list_files(self, path: str = "") -> list[GitHubFile]:
        """List a directory. Missing paths and plain files list as empty."""
        try:
            response = await self._request("GET", path, params={"ref": self.branch})
        except StorageFileNotFoundError:
            return []
        data = response.json()
        if not isinstance(data, list):
            return []
        return [GitHubFile.from_api(item) for item in data]
