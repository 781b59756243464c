"""Object storage collaborators for render inputs and outputs.

WHY: Source videos, compiled subtitle files, overlay assets and rendered
outputs all live in object storage addressed by opaque keys. The render
engine only needs four operations on it, so storage is a protocol with
an HTTP implementation (a pre-authenticated bucket URL that accepts GET,
PUT and DELETE) and a local-directory implementation for the CLI and
tests.

HOW: Keys are sanitized to [A-Za-z0-9_./-] and must not escape the
bucket. Absolute http(s) URLs (overlay assets, pre-signed URLs) bypass the
bucket and are downloaded directly. Every HTTP call opens its own
httpx.AsyncClient, so one storage object can be shared between render
workers that each run their own event loop.

RULES:
- Failures raise StorageError with the status code and a short body excerpt
- fetch_to_file() streams to disk; put()/put_file() send the content type
- delete() treats a missing object as success
- url_for() returns the durable location recorded on finished jobs
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

import httpx

from autocaps.config import StorageSettings

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_./-]")
_BODY_EXCERPT_CHARS = 200


class StorageError(RuntimeError):
    """Raised when an object cannot be fetched, stored, or deleted."""


def is_absolute_url(path: str) -> bool:
    return path.startswith("http://") or path.startswith("https://")


def sanitize_key(path: str) -> str:
    """Normalize an object key; raise StorageError if it escapes the bucket."""
    key = _UNSAFE_KEY_CHARS.sub("_", path.strip()).lstrip("/")
    if not key or any(part == ".." for part in key.split("/")):
        raise StorageError("Invalid storage path: {!r}".format(path))
    return key


def _new_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(300.0, connect=30.0),
        follow_redirects=True,
        transport=transport,
    )


async def download_url(
    url: str,
    target: Path,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Stream an absolute URL to a local file."""
    try:
        async with _new_client(transport) as client:
            async with client.stream("GET", url) as resp:
                if resp.status_code != 200:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise StorageError("Download failed: {} - {}".format(
                        resp.status_code, body[:_BODY_EXCERPT_CHARS]
                    ))
                with open(target, "wb") as f:
                    async for chunk in resp.aiter_bytes():
                        f.write(chunk)
    except httpx.HTTPError as exc:
        raise StorageError("Download failed: {}".format(exc)) from exc


class ObjectStorage(Protocol):
    """The storage operations the render engine and HTTP API rely on."""

    async def fetch_to_file(self, path: str, target: Path) -> None:
        ...

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        ...

    async def put_file(self, path: str, source: Path, content_type: str) -> None:
        ...

    async def delete(self, path: str) -> None:
        ...

    def url_for(self, path: str) -> str:
        ...


class HttpObjectStorage:
    """Bucket behind a pre-authenticated request URL."""

    def __init__(
        self,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self._transport = transport

    def url_for(self, path: str) -> str:
        if is_absolute_url(path):
            return path
        return self.base_url + quote(sanitize_key(path))

    async def fetch_to_file(self, path: str, target: Path) -> None:
        await download_url(self.url_for(path), target, transport=self._transport)

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        url = self.url_for(path)
        try:
            async with _new_client(self._transport) as client:
                resp = await client.put(
                    url,
                    content=data,
                    headers={"Content-Type": content_type},
                )
        except httpx.HTTPError as exc:
            raise StorageError("Upload failed: {}".format(exc)) from exc
        if resp.status_code not in (200, 201, 204):
            raise StorageError("Upload failed: {} - {}".format(
                resp.status_code, resp.text[:_BODY_EXCERPT_CHARS]
            ))
        logger.info("Uploaded %d bytes to %s", len(data), path)

    async def put_file(self, path: str, source: Path, content_type: str) -> None:
        await self.put(path, Path(source).read_bytes(), content_type)

    async def delete(self, path: str) -> None:
        try:
            async with _new_client(self._transport) as client:
                resp = await client.delete(self.url_for(path))
        except httpx.HTTPError as exc:
            raise StorageError("Delete failed: {}".format(exc)) from exc
        if resp.status_code not in (200, 202, 204, 404):
            raise StorageError("Delete failed: {} - {}".format(
                resp.status_code, resp.text[:_BODY_EXCERPT_CHARS]
            ))


class LocalObjectStorage:
    """Bucket backed by a local directory."""

    def __init__(
        self,
        root: Path,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.root = Path(root)
        self._transport = transport

    def _resolve(self, path: str) -> Path:
        return self.root / sanitize_key(path)

    def url_for(self, path: str) -> str:
        if is_absolute_url(path):
            return path
        return self._resolve(path).resolve().as_uri()

    async def fetch_to_file(self, path: str, target: Path) -> None:
        if is_absolute_url(path):
            await download_url(path, target, transport=self._transport)
            return
        source = self._resolve(path)
        if not source.is_file():
            raise StorageError("Object not found: {}".format(path))
        shutil.copyfile(source, target)

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError("Upload failed: {}".format(exc)) from exc

    async def put_file(self, path: str, source: Path, content_type: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as exc:
            raise StorageError("Upload failed: {}".format(exc)) from exc

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise StorageError("Delete failed: {}".format(exc)) from exc


def storage_from_settings(settings: StorageSettings) -> ObjectStorage:
    """Build the storage implementation a StorageSettings describes."""
    if settings.base_url:
        return HttpObjectStorage(settings.base_url)
    return LocalObjectStorage(settings.root_dir)
