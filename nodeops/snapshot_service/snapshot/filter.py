"""Ignore-list matching for snapshot sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable


@dataclass(frozen=True)
class PathFilter:
    """Decides whether a filesystem entry belongs in a snapshot.

    Matching is on base names only. The same instance must drive both the
    archive walk and the fingerprint walk, otherwise the recorded fingerprint
    describes a different file set than the archive.

    Attributes:
        ignore: Base names to exclude (files, or directories with their subtree)
    """

    ignore: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_names(cls, names: Iterable[str]) -> PathFilter:
        return cls(frozenset(names))

    def included(self, base_name: str) -> bool:
        return base_name not in self.ignore
