"""
Snapshot metadata: content fingerprint, size summary and the JSON record.

The fingerprint is a sha256 over the contents of every included file, fed in
lexicographic order of relative path. Two trees with the same (path, content)
pairs always produce the same digest, whatever order the filesystem lists
them in and whatever OS they live on.

Metadata record (one per run, JSON):
    {
        "timestamp": "20240131-020000",
        "protocol": "nimiq",
        "network": "main-albatross",
        "version": "1.0.0",
        "size_bytes": 123456,
        "fingerprint": "<sha256 hex>",
        "status": "success",
        ...
    }

How to change safely:
    - Add new record fields, don't remove or rename existing ones
    - Never change the fingerprint scheme; stored records depend on it
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .filter import PathFilter
from .walker import list_files

logger = logging.getLogger(__name__)

READ_BUFSIZE = 1024 * 1024


class SnapshotStatus(str, Enum):
    """Outcome recorded in the metadata record."""

    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class MetadataSummary:
    """Size and fingerprint of a source tree.

    Attributes:
        size_bytes: Sum of included file sizes
        fingerprint: sha256 hex digest
        file_count: Number of included files
    """

    size_bytes: int
    fingerprint: str
    file_count: int


class MetadataComputer:
    """Computes size and fingerprint of a snapshot source.

    Uses the same PathFilter and walker as the archive encoder so the
    summary always describes the archived file set.
    """

    def __init__(self, path_filter: PathFilter) -> None:
        self.path_filter = path_filter

    def size(self, root: str | Path) -> int:
        """Sum of included file sizes in bytes (directories excluded)."""
        return sum(
            Path(f.absolute_path).stat().st_size for f in list_files(root, self.path_filter)
        )

    def fingerprint(self, root: str | Path) -> str:
        """sha256 over included file contents in sorted relative-path order."""
        return self.compute(root).fingerprint

    def compute(self, root: str | Path) -> MetadataSummary:
        """Size, fingerprint and file count from a single walk."""
        files = list_files(root, self.path_filter)
        files.sort(key=lambda f: f.relative_path)

        digest = hashlib.sha256()
        size_bytes = 0
        for source in files:
            with open(source.absolute_path, "rb") as f:
                for chunk in iter(lambda: f.read(READ_BUFSIZE), b""):
                    digest.update(chunk)
                    size_bytes += len(chunk)

        summary = MetadataSummary(
            size_bytes=size_bytes,
            fingerprint=digest.hexdigest(),
            file_count=len(files),
        )
        logger.debug(
            "Computed snapshot metadata",
            extra={"root": str(root), "files": summary.file_count, "size_bytes": size_bytes},
        )
        return summary


@dataclass(frozen=True)
class SnapshotRecord:
    """Companion metadata of one snapshot run.

    Attributes:
        timestamp: Snapshot timestamp, YYYYMMDD-HHMMSS
        protocol: Source protocol
        network: Source network
        version: Source version
        size_bytes: Uncompressed size of the archived files
        fingerprint: Content digest (sha256 hex)
        status: success or error
        archive_key: Object key of the archive
        archive_bytes: Compressed archive size
        file_count: Files in the archive
        duration_ms: Capture duration
        error: {"stage": ..., "message": ...} when status is error
    """

    timestamp: str
    protocol: str
    network: str
    version: str
    size_bytes: int
    fingerprint: str | None
    status: SnapshotStatus
    archive_key: str | None = None
    archive_bytes: int | None = None
    file_count: int | None = None
    duration_ms: int | None = None
    error: dict[str, str] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SnapshotRecord:
        return cls(
            timestamp=data["timestamp"],
            protocol=data["protocol"],
            network=data["network"],
            version=data.get("version", "unknown"),
            size_bytes=data["size_bytes"],
            fingerprint=data.get("fingerprint"),
            status=SnapshotStatus(data["status"]),
            archive_key=data.get("archive_key"),
            archive_bytes=data.get("archive_bytes"),
            file_count=data.get("file_count"),
            duration_ms=data.get("duration_ms"),
            error=data.get("error"),
        )

    @property
    def ok(self) -> bool:
        return self.status is SnapshotStatus.SUCCESS
