"""Object storage clients for uploaded documents."""

import asyncio
from pathlib import Path
from typing import Protocol

import httpx

from backend.app.config import Settings
from backend.app.errors import StorageError


class ObjectStorage(Protocol):
    """Fetches uploaded document bytes by storage path."""

    async def download(self, path: str) -> bytes:
        """Download an object.

        Raises:
            StorageError: transient=True for retryable failures
        """
        ...


class LocalObjectStorage:
    """Reads objects from a directory on local disk."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self._root / path.lstrip("/")).resolve()
        if not target.is_relative_to(self._root):
            raise StorageError(f"path escapes storage root: {path}")
        return target

    async def download(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as e:
            raise StorageError(f"object not found: {path}") from e
        except OSError as e:
            raise StorageError(f"could not read {path}: {e}", transient=True) from e


class HttpObjectStorage:
    """Downloads objects over HTTP from a bucket base URL."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 30.0,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._headers = headers or {}
        self._client = client

    async def download(self, path: str) -> bytes:
        url = f"{self._base_url}/{path.lstrip('/')}"

        close_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_s)
            close_client = True

        try:
            response = await client.get(url, headers=self._headers)
            response.raise_for_status()
            return response.content
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise StorageError(
                f"download of {path} returned HTTP {status}",
                transient=status == 429 or status >= 500,
            ) from e
        except httpx.HTTPError as e:
            raise StorageError(f"download of {path} failed: {e}", transient=True) from e
        finally:
            if close_client:
                await client.aclose()


class InMemoryObjectStorage:
    """Dict-backed storage for tests and offline runs."""

    def __init__(self, objects: dict[str, bytes] | None = None) -> None:
        self.objects: dict[str, bytes] = dict(objects or {})

    def put(self, path: str, data: bytes) -> None:
        self.objects[path] = data

    async def download(self, path: str) -> bytes:
        try:
            return self.objects[path]
        except KeyError as e:
            raise StorageError(f"object not found: {path}") from e


def get_object_storage(settings: Settings) -> ObjectStorage:
    """Pick HTTP storage when a base URL is configured, else local disk."""
    if settings.storage_base_url:
        return HttpObjectStorage(settings.storage_base_url, timeout_s=settings.download_timeout_s)
    return LocalObjectStorage(settings.storage_root)
