"""
Object storage for binary payloads.

Stream payloads (gzip JSON) and re-hosted photos are written through the
`ObjectStore` protocol. `LocalObjectStore` keeps them on disk, one file
per path, with the content type in a sidecar file.
"""

import asyncio
import logging
from pathlib import Path, PurePosixPath
from typing import Protocol

logger = logging.getLogger(__name__)


class ObjectStoreError(Exception):
    """Object could not be stored or read."""
    pass


class ObjectStore(Protocol):
    """Path-addressed blob storage."""

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store data at path and return a URL (or URI) for it."""
        ...

    async def get(self, path: str) -> bytes:
        ...


class LocalObjectStore:
    """
    Filesystem-backed object store.

    Usage:
        store = LocalObjectStore(settings.object_store_root)
        url = await store.put("streams/u1/42.json.gz", payload, "application/gzip")
    """

    CONTENT_TYPE_SUFFIX = ".content-type"

    def __init__(self, root: Path):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ObjectStoreError(f"Invalid object path: {path}")
        return self.root.joinpath(*relative.parts)

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            target.with_name(target.name + self.CONTENT_TYPE_SUFFIX).write_text(content_type)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise ObjectStoreError(f"Failed to write {path}: {e}") from e

        logger.debug(f"Stored {len(data)} bytes at {path}")
        return target.as_uri()

    async def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as e:
            raise ObjectStoreError(f"Object not found: {path}") from e
