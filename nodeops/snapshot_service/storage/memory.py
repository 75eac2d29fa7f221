"""
In-memory object store for testing and dry runs.

Mirrors the S3 semantics the service relies on: streamed uploads become
visible only once complete, listings are prefix-filtered and sorted by key,
and deleting a missing key succeeds.

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep behavior compatible with S3ObjectStore
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..errors import StorageError, UploadError
from .base import ByteSource, ObjectInfo, UploadResult

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    """An object held by the in-memory store."""

    body: bytes
    content_type: str
    last_modified: datetime


class InMemoryObjectStore:
    """ObjectStore implementation that keeps objects in a dict.

    Attributes:
        calls: Every operation performed, as (operation, bucket, key) tuples
        fail_deletes: Keys whose deletion raises StorageError
        fail_puts: Keys whose put/put_stream raises

    Example:
        >>> store = InMemoryObjectStore()
        >>> await store.put_object("b", "k", b"data")
        >>> store.get("b", "k")
        b'data'
    """

    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, StoredObject]] = defaultdict(dict)
        self._lock = asyncio.Lock()
        self.calls: list[tuple[str, str, str]] = []
        self.fail_deletes: set[str] = set()
        self.fail_puts: set[str] = set()
        self.fail_list = False

    async def __aenter__(self) -> InMemoryObjectStore:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Nothing to release."""

    async def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        self.calls.append(("put", bucket, key))
        if key in self.fail_puts:
            raise StorageError(f"Injected put failure for {key}", key=key)
        async with self._lock:
            self._buckets[bucket][key] = StoredObject(
                body=bytes(body),
                content_type=content_type,
                last_modified=datetime.now(timezone.utc),
            )

    async def put_stream(
        self,
        bucket: str,
        key: str,
        source: ByteSource,
        content_type: str = "application/octet-stream",
    ) -> UploadResult:
        self.calls.append(("put_stream", bucket, key))
        chunks: list[bytes] = []
        try:
            while True:
                chunk = await source.aread()
                if not chunk:
                    break
                chunks.append(chunk)
                if key in self.fail_puts:
                    raise StorageError(f"Injected upload failure for {key}", key=key)
        except Exception as e:
            raise UploadError(f"Upload to {bucket}/{key} failed: {e}") from e

        body = b"".join(chunks)
        async with self._lock:
            self._buckets[bucket][key] = StoredObject(
                body=body,
                content_type=content_type,
                last_modified=datetime.now(timezone.utc),
            )
        return UploadResult(key=key, size_bytes=len(body), parts=len(chunks) or 1)

    async def list_objects(self, bucket: str, prefix: str) -> list[ObjectInfo]:
        self.calls.append(("list", bucket, prefix))
        if self.fail_list:
            raise StorageError(f"Injected list failure for {prefix}", key=prefix)
        async with self._lock:
            return [
                ObjectInfo(key=key, size=len(obj.body), last_modified=obj.last_modified)
                for key, obj in sorted(self._buckets[bucket].items())
                if key.startswith(prefix)
            ]

    async def delete_object(self, bucket: str, key: str) -> None:
        self.calls.append(("delete", bucket, key))
        if key in self.fail_deletes:
            raise StorageError(f"Injected delete failure for {key}", key=key)
        async with self._lock:
            self._buckets[bucket].pop(key, None)

    # Testing helpers

    def get(self, bucket: str, key: str) -> bytes:
        """Return the body of a stored object (KeyError if missing)."""
        return self._buckets[bucket][key].body

    def keys(self, bucket: str) -> list[str]:
        """Return all keys in a bucket, sorted."""
        return sorted(self._buckets[bucket])

    def seed(self, bucket: str, key: str, body: bytes = b"") -> None:
        """Store an object synchronously (test setup)."""
        self._buckets[bucket][key] = StoredObject(
            body=body,
            content_type="application/octet-stream",
            last_modified=datetime.now(timezone.utc),
        )

    def deleted_keys(self) -> list[str]:
        """Keys passed to delete_object, in call order."""
        return [key for op, _, key in self.calls if op == "delete"]
