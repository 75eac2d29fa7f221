"""
Keep-last-N retention for snapshot objects.

History is reconstructed purely from object keys: every key is
``<prefix><YYYYMMDD-HHMMSS><suffix>``, and the embedded timestamp, not the
store's LastModified, defines the order. That keeps retention correct for
objects that were copied or migrated between buckets.

Retention classes (pruned independently, same N):
    ARCHIVE   <prefix><ts>.tar.gz
    METADATA  <prefix><ts>-metadata.json

Objects under the prefix that don't carry the class suffix (the fixed
snapshot-latest.json, the other class, nested keys) are outside the class
and left untouched. A key that carries the suffix but has an unparsable
timestamp aborts the class before anything is deleted.

Invariants:
    - Nothing is deleted unless every class key parsed
    - The N newest timestamps always survive
    - Deletions go oldest first; every failed deletion is reported
    - Archive and metadata objects are never required to come in pairs
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..errors import ConfigurationError, MalformedKeyError, PruneError, SnapshotServiceError
from ..keys import ARCHIVE_SUFFIX, METADATA_SUFFIX, parse_timestamp
from ..storage.base import ObjectStore

logger = logging.getLogger(__name__)


class RetentionClass(Enum):
    """Object classes with their key suffixes."""

    ARCHIVE = ARCHIVE_SUFFIX
    METADATA = METADATA_SUFFIX

    @property
    def suffix(self) -> str:
        return self.value


@dataclass(frozen=True)
class SnapshotObject:
    """A class object with its parsed timestamp."""

    key: str
    timestamp: datetime


@dataclass
class PruneResult:
    """Outcome of pruning one class.

    Attributes:
        retention_class: Class that was pruned
        kept: Keys retained, oldest first
        deleted: Keys deleted, oldest first
    """

    retention_class: RetentionClass
    kept: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


class RetentionPruner:
    """Deletes all but the newest N snapshot objects per class.

    Example:
        >>> pruner = RetentionPruner(store)
        >>> result = await pruner.prune("snapshots", "nimiq/main-albatross/", keep=5)
        >>> print(result.deleted)
    """

    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    async def prune(
        self,
        bucket: str,
        prefix: str,
        keep: int,
        retention_class: RetentionClass = RetentionClass.ARCHIVE,
    ) -> PruneResult:
        """Prune one class under ``prefix`` down to ``keep`` objects.

        Raises:
            ConfigurationError: If keep < 1
            MalformedKeyError: If a class key has an unparsable timestamp
            PruneError: If listing or any deletion failed
        """
        if keep < 1:
            raise ConfigurationError(f"Retention keep must be at least 1, got {keep}")

        try:
            listing = await self.store.list_objects(bucket, prefix)
        except SnapshotServiceError as e:
            raise PruneError(f"Failed to list {bucket}/{prefix}: {e}") from e

        objects = self._parse_class(prefix, [obj.key for obj in listing], retention_class)
        objects.sort(key=lambda o: o.timestamp)

        result = PruneResult(retention_class=retention_class)
        if len(objects) <= keep:
            result.kept = [o.key for o in objects]
            logger.info(
                "Nothing to prune",
                extra={"prefix": prefix, "class": retention_class.name, "count": len(objects)},
            )
            return result

        to_delete = objects[: len(objects) - keep]
        result.kept = [o.key for o in objects[len(objects) - keep :]]

        failures: list[tuple[str, str]] = []
        for obj in to_delete:
            try:
                await self.store.delete_object(bucket, obj.key)
            except SnapshotServiceError as e:
                logger.error(f"Failed to delete {obj.key}: {e}", extra={"key": obj.key})
                failures.append((obj.key, str(e)))
                continue
            result.deleted.append(obj.key)
            logger.info("Deleted old snapshot object", extra={"key": obj.key})

        if failures:
            raise PruneError(
                f"Failed to delete {len(failures)} of {len(to_delete)} "
                f"{retention_class.name.lower()} objects under {prefix}",
                failures=failures,
            )

        logger.info(
            "Pruned snapshot objects",
            extra={
                "prefix": prefix,
                "class": retention_class.name,
                "deleted": len(result.deleted),
                "kept": len(result.kept),
            },
        )
        return result

    async def prune_all(
        self,
        bucket: str,
        prefix: str,
        keep: int,
    ) -> dict[RetentionClass, PruneResult | PruneError]:
        """Prune every class independently.

        A failure in one class does not stop the others; the caller gets
        either a result or the error for each class.
        """
        outcomes: dict[RetentionClass, PruneResult | PruneError] = {}
        for retention_class in RetentionClass:
            try:
                outcomes[retention_class] = await self.prune(bucket, prefix, keep, retention_class)
            except PruneError as e:
                logger.error(
                    f"Pruning {retention_class.name.lower()} objects failed: {e}",
                    extra={"prefix": prefix, "class": retention_class.name},
                )
                outcomes[retention_class] = e
        return outcomes

    @staticmethod
    def _parse_class(
        prefix: str,
        keys: list[str],
        retention_class: RetentionClass,
    ) -> list[SnapshotObject]:
        """Select the class's keys and parse their timestamps.

        Raises:
            MalformedKeyError: On the first key that fails to parse
        """
        objects: list[SnapshotObject] = []
        for key in keys:
            if not key.startswith(prefix):
                continue
            name = key[len(prefix) :]
            if "/" in name or not name.endswith(retention_class.suffix):
                continue
            stamp = name[: -len(retention_class.suffix)]
            try:
                timestamp = parse_timestamp(stamp)
            except ValueError as e:
                raise MalformedKeyError(key, str(e)) from e
            objects.append(SnapshotObject(key=key, timestamp=timestamp))
        return objects
