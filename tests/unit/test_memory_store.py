"""
Unit tests for the in-memory object store.

Tests cover:
- put/list/delete semantics shared with the S3 store
- Streamed uploads
- Failure injection used by other tests
"""

import pytest

from nodeops.snapshot_service.config import S3Config
from nodeops.snapshot_service.errors import StorageError, UploadError
from nodeops.snapshot_service.storage import (
    InMemoryObjectStore,
    ObjectStore,
    S3ObjectStore,
    create_object_store,
)


class ListSource:
    def __init__(self, chunks):
        self._chunks = list(chunks)

    async def aread(self):
        return self._chunks.pop(0) if self._chunks else b""


class TestInMemoryObjectStore:
    """Tests for InMemoryObjectStore."""

    def test_implements_protocol(self, store):
        assert isinstance(store, ObjectStore)

    @pytest.mark.asyncio
    async def test_put_and_list_by_prefix(self, store):
        await store.put_object("b", "a/2.json", b"22")
        await store.put_object("b", "a/1.json", b"1")
        await store.put_object("b", "other/1.json", b"x")

        objects = await store.list_objects("b", "a/")

        assert [o.key for o in objects] == ["a/1.json", "a/2.json"]
        assert [o.size for o in objects] == [1, 2]

    @pytest.mark.asyncio
    async def test_put_stream(self, store):
        result = await store.put_stream("b", "k", ListSource([b"ab", b"cd"]))
        assert store.get("b", "k") == b"abcd"
        assert result.size_bytes == 4
        assert result.parts == 2

    @pytest.mark.asyncio
    async def test_delete_missing_key_is_fine(self, store):
        await store.delete_object("b", "missing")
        assert store.deleted_keys() == ["missing"]

    @pytest.mark.asyncio
    async def test_injected_failures(self, store):
        store.fail_puts.add("k")
        store.fail_deletes.add("d")
        store.fail_list = True

        with pytest.raises(StorageError):
            await store.put_object("b", "k", b"")
        with pytest.raises(UploadError):
            await store.put_stream("b", "k", ListSource([b"x"]))
        with pytest.raises(StorageError):
            await store.delete_object("b", "d")
        with pytest.raises(StorageError):
            await store.list_objects("b", "")
        assert store.keys("b") == []


class TestCreateObjectStore:
    """Tests for create_object_store."""

    def test_dry_run(self):
        assert isinstance(create_object_store(S3Config(bucket="b"), dry_run=True), InMemoryObjectStore)

    def test_s3(self):
        store = create_object_store(S3Config(bucket="b"))
        assert isinstance(store, S3ObjectStore)
        assert store.part_size == 16 * 1024 * 1024
