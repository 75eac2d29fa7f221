"""
Object key layout for snapshots.

Key format (compatible with existing stored history, do not change):
    <protocol>/<network>/<YYYYMMDD-HHMMSS>.tar.gz
    <protocol>/<network>/<YYYYMMDD-HHMMSS>-metadata.json
    <protocol>/<network>/snapshot-latest.json

The timestamp embedded in the key is the sole ordering source for retention,
so formatting and parsing must stay exact inverses of each other.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
ARCHIVE_SUFFIX = ".tar.gz"
METADATA_SUFFIX = "-metadata.json"
LATEST_NAME = "snapshot-latest.json"

_TIMESTAMP_RE = re.compile(r"\d{8}-\d{6}")


def format_timestamp(ts: datetime) -> str:
    """Format a timestamp for use in object keys."""
    return ts.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(text: str) -> datetime:
    """Parse a key timestamp segment.

    Stricter than strptime alone: strptime accepts single-digit fields, so
    the shape is checked first.

    Raises:
        ValueError: If ``text`` is not exactly ``YYYYMMDD-HHMMSS``
    """
    if not _TIMESTAMP_RE.fullmatch(text):
        raise ValueError(f"'{text}' does not match YYYYMMDD-HHMMSS")
    return datetime.strptime(text, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def key_prefix(category: str, environment: str) -> str:
    """Prefix shared by every object of one protocol/network pair."""
    return f"{category}/{environment}/"


@dataclass(frozen=True)
class SnapshotKey:
    """Logical identifier of one snapshot.

    Attributes:
        category: Protocol, e.g. "nimiq"
        environment: Network, e.g. "main-albatross"
        timestamp: Capture time (UTC, second resolution)
    """

    category: str
    environment: str
    timestamp: datetime

    @classmethod
    def now(cls, category: str, environment: str) -> SnapshotKey:
        return cls(category, environment, utc_now())

    @property
    def stamp(self) -> str:
        return format_timestamp(self.timestamp)

    @property
    def prefix(self) -> str:
        return key_prefix(self.category, self.environment)

    @property
    def archive_key(self) -> str:
        return f"{self.prefix}{self.stamp}{ARCHIVE_SUFFIX}"

    @property
    def metadata_key(self) -> str:
        return f"{self.prefix}{self.stamp}{METADATA_SUFFIX}"

    @property
    def latest_key(self) -> str:
        return f"{self.prefix}{LATEST_NAME}"

    def __str__(self) -> str:
        return f"{self.category}/{self.environment}@{self.stamp}"
