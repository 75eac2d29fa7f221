"""
Object storage abstraction for the snapshot service.

Backends:
- S3 / S3-compatible (aiobotocore), used in production
- In-memory, used for tests and dry runs

Invariants:
    - Uploader, pruner and metadata writer share one ObjectStore instance
    - Streamed uploads are all-or-nothing under the final key
"""

from ..config import S3Config
from .base import ByteSource, ObjectInfo, ObjectStore, UploadResult
from .memory import InMemoryObjectStore
from .s3 import S3ObjectStore


def create_object_store(s3_config: S3Config, dry_run: bool = False) -> ObjectStore:
    """Create the object store for a configuration.

    Args:
        s3_config: S3 configuration
        dry_run: Use an in-memory store instead of S3
    """
    if dry_run:
        return InMemoryObjectStore()
    return S3ObjectStore(s3_config)


__all__ = [
    "ByteSource",
    "ObjectInfo",
    "ObjectStore",
    "UploadResult",
    "InMemoryObjectStore",
    "S3ObjectStore",
    "create_object_store",
]
