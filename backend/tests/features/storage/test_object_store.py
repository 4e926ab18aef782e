"""
Tests for the filesystem object store.
"""

import pytest

from app.features.storage import LocalObjectStore, ObjectStoreError


class TestLocalObjectStore:

    @pytest.mark.asyncio
    async def test_put_and_get(self, tmp_path):
        store = LocalObjectStore(tmp_path)

        url = await store.put("photos/u1/42/a.jpg", b"data", "image/jpeg")

        assert url.startswith("file://")
        assert await store.get("photos/u1/42/a.jpg") == b"data"
        assert (tmp_path / "photos/u1/42/a.jpg.content-type").read_text() == "image/jpeg"

    @pytest.mark.asyncio
    async def test_overwrite(self, tmp_path):
        store = LocalObjectStore(tmp_path)

        await store.put("streams/u1/1.json.gz", b"old", "application/gzip")
        await store.put("streams/u1/1.json.gz", b"new", "application/gzip")

        assert await store.get("streams/u1/1.json.gz") == b"new"

    @pytest.mark.asyncio
    async def test_missing(self, tmp_path):
        with pytest.raises(ObjectStoreError):
            await LocalObjectStore(tmp_path).get("nope")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["../escape", "/etc/passwd"])
    async def test_path_outside_root(self, tmp_path, path):
        with pytest.raises(ObjectStoreError):
            await LocalObjectStore(tmp_path).put(path, b"x", "text/plain")
