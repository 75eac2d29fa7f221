"""
Base protocol and types for object storage.

Uploading, pruning and metadata writes all go through one ObjectStore so the
remote side can be swapped for an in-memory store in tests.

Invariants:
    - put_stream() either commits the whole object under the key or nothing
    - list_objects() returns every object under the prefix (all pages)
    - delete_object() of a missing key is not an error (S3 semantics)

How to change safely:
    - Protocol changes require updating all implementations
    - Keep S3 semantics; the in-memory store mirrors them for tests
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ObjectInfo:
    """One entry of a remote object listing.

    Attributes:
        key: Object key
        size: Object size in bytes
        last_modified: Store-reported modification time (informational only)
    """

    key: str
    size: int
    last_modified: datetime | None = None


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a streamed upload.

    Attributes:
        key: Object key written
        size_bytes: Bytes uploaded
        parts: Number of multipart parts (1 for a single PUT)
    """

    key: str
    size_bytes: int
    parts: int


@runtime_checkable
class ByteSource(Protocol):
    """Async source of byte chunks; ``b""`` marks the end of the stream."""

    async def aread(self) -> bytes:
        ...


@runtime_checkable
class ObjectStore(Protocol):
    """Protocol for object storage backends.

    Example:
        >>> async with S3ObjectStore(s3_config) as store:
        ...     await store.put_object("bucket", "a/b.json", b"{}", "application/json")
        ...     objects = await store.list_objects("bucket", "a/")
    """

    @abstractmethod
    async def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        """Store a small, fully materialized object.

        Raises:
            StorageError: If the write fails
        """
        ...

    @abstractmethod
    async def put_stream(
        self,
        bucket: str,
        key: str,
        source: ByteSource,
        content_type: str = "application/octet-stream",
    ) -> UploadResult:
        """Store an object of unknown length read from ``source``.

        Raises:
            UploadError: If the upload fails; nothing is committed under key
        """
        ...

    @abstractmethod
    async def list_objects(self, bucket: str, prefix: str) -> list[ObjectInfo]:
        """List every object whose key starts with ``prefix``.

        Raises:
            StorageError: If listing fails
        """
        ...

    @abstractmethod
    async def delete_object(self, bucket: str, key: str) -> None:
        """Delete one object.

        Raises:
            StorageError: If deletion fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release client resources."""
        ...
