"""
Snapshot run orchestration.

One run moves through:

    Idle -> Pruning -> Pausing -> Capturing -> Resuming -> Done

- Pruning runs first, against the remote store only, so retention sees the
  previous run's state and never races the in-flight upload. Its failure is
  reported but blocks nothing.
- If Pausing fails, nothing else happens: no capture, no writes, no resume.
- Capturing runs the archive pipeline and the metadata computation
  concurrently (the workload is paused, the tree is stable), then uploads
  the metadata record.
- Resuming always runs once Pausing succeeded, even if Capturing failed or
  the run was cancelled.

Metadata objects written per run:
    <prefix><ts>-metadata.json   always, with status success|error
    <prefix>snapshot-latest.json only when the run captured successfully

Invariants:
    - At most one run in flight per orchestrator (SnapshotInProgressError)
    - Stage failures are collected, never swallowed, never abort later stages
    - status is success only if pause, capture, metadata and resume succeeded
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..config import ServiceConfig
from ..errors import (
    CaptureError,
    MetadataError,
    PauseError,
    PruneError,
    ResumeError,
    SnapshotInProgressError,
    SnapshotServiceError,
)
from ..keys import SnapshotKey, key_prefix, utc_now
from ..retention.pruner import PruneResult, RetentionPruner
from ..storage.base import ObjectStore
from ..workload.base import WorkloadController
from .filter import PathFilter
from .metadata import MetadataComputer, MetadataSummary, SnapshotRecord, SnapshotStatus
from .pipeline import PipelineResult, SnapshotPipeline

logger = logging.getLogger(__name__)

METADATA_CONTENT_TYPE = "application/json"


class RunState(str, Enum):
    """Orchestrator state within one run."""

    IDLE = "idle"
    PRUNING = "pruning"
    PAUSING = "pausing"
    CAPTURING = "capturing"
    RESUMING = "resuming"
    DONE = "done"


class Stage(str, Enum):
    """Stage a failure is attributed to."""

    PRUNE = "prune"
    PAUSE = "pause"
    CAPTURE = "capture"
    METADATA = "metadata"
    RESUME = "resume"


@dataclass(frozen=True)
class StageFailure:
    """A failed stage and its error."""

    stage: Stage
    error: SnapshotServiceError

    def to_dict(self) -> dict[str, str]:
        return {"stage": self.stage.value, "message": str(self.error), "code": self.error.code}


@dataclass
class RunReport:
    """Aggregate outcome of one snapshot run.

    Attributes:
        started_at: Run start (UTC)
        state: Last state reached (DONE after a complete run)
        key: Snapshot key, once capture started
        failures: Every stage failure, in order of occurrence
        record: Metadata record, once built
        pipeline: Archive pipeline result, if the archive was stored
        pruned: Keys deleted per retention class
        duration_ms: Total run duration
    """

    started_at: datetime
    state: RunState = RunState.IDLE
    key: SnapshotKey | None = None
    failures: list[StageFailure] = field(default_factory=list)
    record: SnapshotRecord | None = None
    pipeline: PipelineResult | None = None
    pruned: dict[str, list[str]] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def status(self) -> SnapshotStatus:
        if any(f.stage is not Stage.PRUNE for f in self.failures):
            return SnapshotStatus.ERROR
        return SnapshotStatus.SUCCESS

    @property
    def ok(self) -> bool:
        return self.status is SnapshotStatus.SUCCESS

    @property
    def resume_failed(self) -> bool:
        return self.failed(Stage.RESUME)

    def failed(self, stage: Stage) -> bool:
        return any(f.stage is stage for f in self.failures)

    def fail(self, stage: Stage, error: SnapshotServiceError) -> None:
        self.failures.append(StageFailure(stage, error))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "key": self.key.archive_key if self.key else None,
            "failures": [f.to_dict() for f in self.failures],
            "pruned": self.pruned,
            "duration_ms": self.duration_ms,
        }


class SnapshotOrchestrator:
    """Sequences prune -> pause -> capture -> resume for one snapshot run.

    Attributes:
        store: Object store shared by pipeline, pruner and metadata writes
        controller: Workload controller
        bucket: Target bucket
        target: Workload name passed to the controller
        keep: Generations to keep (None disables pruning)

    Example:
        >>> orchestrator = SnapshotOrchestrator.from_config(config, store, controller)
        >>> report = await orchestrator.run()
        >>> report.status
        <SnapshotStatus.SUCCESS: 'success'>
    """

    def __init__(
        self,
        store: ObjectStore,
        controller: WorkloadController,
        pipeline: SnapshotPipeline,
        metadata: MetadataComputer,
        *,
        bucket: str,
        data_dir: str,
        protocol: str,
        network: str,
        version: str = "unknown",
        target: str = "",
        keep: int | None = None,
        verify_fingerprint: bool = True,
    ) -> None:
        self.store = store
        self.controller = controller
        self.pipeline = pipeline
        self.metadata = metadata
        self.pruner = RetentionPruner(store)
        self.bucket = bucket
        self.data_dir = data_dir
        self.protocol = protocol
        self.network = network
        self.version = version
        self.target = target
        self.keep = keep
        self.verify_fingerprint = verify_fingerprint

        self._lock = asyncio.Lock()
        self._run_count = 0

    @classmethod
    def from_config(
        cls,
        config: ServiceConfig,
        store: ObjectStore,
        controller: WorkloadController,
    ) -> SnapshotOrchestrator:
        """Wire an orchestrator from configuration."""
        path_filter = PathFilter(config.source.ignore)
        return cls(
            store=store,
            controller=controller,
            pipeline=SnapshotPipeline.from_config(store, path_filter, config.pipeline),
            metadata=MetadataComputer(path_filter),
            bucket=config.s3.bucket,
            data_dir=config.source.data_dir,
            protocol=config.source.protocol,
            network=config.source.network,
            version=config.source.version,
            target=config.workload.container_name,
            keep=config.retention.keep if config.retention.enabled else None,
            verify_fingerprint=config.pipeline.verify_fingerprint,
        )

    @property
    def prefix(self) -> str:
        return key_prefix(self.protocol, self.network)

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> RunReport:
        """Execute one snapshot run.

        Returns:
            RunReport; check ``report.ok`` / ``report.failures``

        Raises:
            SnapshotInProgressError: If a run is already in flight
        """
        if self._lock.locked():
            raise SnapshotInProgressError("A snapshot run is already in progress")

        async with self._lock:
            report = RunReport(started_at=utc_now())
            start_time = time.time()
            try:
                await self._run(report)
            finally:
                report.duration_ms = int((time.time() - start_time) * 1000)
                self._run_count += 1
                self._log_report(report)
            return report

    async def _run(self, report: RunReport) -> None:
        if self.keep is not None:
            report.state = RunState.PRUNING
            await self._prune(report)

        report.state = RunState.PAUSING
        try:
            await self.controller.pause(self.target)
        except Exception as e:
            error = PauseError(f"Failed to pause workload {self.target!r}: {e}")
            error.__cause__ = e
            report.fail(Stage.PAUSE, error)
            logger.error(str(error), extra={"target": self.target})
            report.state = RunState.DONE
            return

        try:
            report.state = RunState.CAPTURING
            await self._capture(report)
        finally:
            report.state = RunState.RESUMING
            try:
                await self.controller.resume(self.target)
            except Exception as e:
                error = ResumeError(
                    f"Failed to resume workload {self.target!r}; it may be down: {e}"
                )
                error.__cause__ = e
                report.fail(Stage.RESUME, error)
                logger.critical(str(error), extra={"target": self.target})
            report.state = RunState.DONE

    async def _prune(self, report: RunReport) -> None:
        try:
            outcomes = await self.pruner.prune_all(self.bucket, self.prefix, self.keep)
        except SnapshotServiceError as e:
            report.fail(Stage.PRUNE, PruneError(f"Retention failed: {e}"))
            logger.error(f"Retention failed: {e}", extra={"prefix": self.prefix})
            return

        for retention_class, outcome in outcomes.items():
            name = retention_class.name.lower()
            if isinstance(outcome, PruneResult):
                report.pruned[name] = outcome.deleted
            else:
                report.fail(Stage.PRUNE, outcome)

    async def _capture(self, report: RunReport) -> None:
        key = SnapshotKey.now(self.protocol, self.network)
        report.key = key
        logger.info(
            "Capturing snapshot",
            extra={"key": key.archive_key, "data_dir": self.data_dir},
        )

        pipeline_outcome, metadata_outcome = await asyncio.gather(
            self.pipeline.run(self.data_dir, self.bucket, key.archive_key),
            asyncio.to_thread(self.metadata.compute, self.data_dir),
            return_exceptions=True,
        )

        pipeline_result: PipelineResult | None = None
        summary: MetadataSummary | None = None

        if isinstance(pipeline_outcome, BaseException):
            if not isinstance(pipeline_outcome, Exception):
                raise pipeline_outcome
            if isinstance(pipeline_outcome, CaptureError):
                error: SnapshotServiceError = pipeline_outcome
            else:
                error = CaptureError(f"Snapshot capture failed: {pipeline_outcome}")
                error.__cause__ = pipeline_outcome
            report.fail(Stage.CAPTURE, error)
            logger.error(str(error), extra={"key": key.archive_key})
        else:
            pipeline_result = pipeline_outcome
            report.pipeline = pipeline_result

        if isinstance(metadata_outcome, BaseException):
            if not isinstance(metadata_outcome, Exception):
                raise metadata_outcome
            error = MetadataError(f"Metadata computation failed: {metadata_outcome}")
            error.__cause__ = metadata_outcome
            report.fail(Stage.METADATA, error)
            logger.error(str(error), extra={"key": key.metadata_key})
        else:
            summary = metadata_outcome

        if pipeline_result and summary and self.verify_fingerprint:
            self._verify(report, pipeline_result, summary)

        record = self._build_record(report, key, pipeline_result, summary)
        report.record = record
        await self._write_record(report, key, record)

    def _verify(self, report: RunReport, archived: PipelineResult, summary: MetadataSummary) -> None:
        if (
            archived.fingerprint == summary.fingerprint
            and archived.uncompressed_bytes == summary.size_bytes
            and archived.file_count == summary.file_count
        ):
            return
        error = MetadataError(
            "Archive content does not match the computed fingerprint",
            details={
                "archive_fingerprint": archived.fingerprint,
                "metadata_fingerprint": summary.fingerprint,
                "archive_bytes": archived.uncompressed_bytes,
                "metadata_bytes": summary.size_bytes,
            },
        )
        report.fail(Stage.METADATA, error)
        logger.error(str(error), extra=error.details)

    def _build_record(
        self,
        report: RunReport,
        key: SnapshotKey,
        archived: PipelineResult | None,
        summary: MetadataSummary | None,
    ) -> SnapshotRecord:
        first_error = next((f for f in report.failures if f.stage is not Stage.PRUNE), None)

        if summary is not None:
            size_bytes = summary.size_bytes
            file_count: int | None = summary.file_count
        elif archived is not None:
            size_bytes = archived.uncompressed_bytes
            file_count = archived.file_count
        else:
            size_bytes = 0
            file_count = None

        return SnapshotRecord(
            timestamp=key.stamp,
            protocol=self.protocol,
            network=self.network,
            version=self.version,
            size_bytes=size_bytes,
            fingerprint=summary.fingerprint if summary else None,
            status=report.status,
            archive_key=archived.key if archived else None,
            archive_bytes=archived.compressed_bytes if archived else None,
            file_count=file_count,
            duration_ms=archived.duration_ms if archived else None,
            error=(
                {"stage": first_error.stage.value, "message": str(first_error.error)}
                if first_error
                else None
            ),
        )

    async def _write_record(self, report: RunReport, key: SnapshotKey, record: SnapshotRecord) -> None:
        body = record.to_json()
        targets = [key.metadata_key]
        if record.ok:
            targets.append(key.latest_key)

        for target_key in targets:
            try:
                await self.store.put_object(self.bucket, target_key, body, METADATA_CONTENT_TYPE)
            except SnapshotServiceError as e:
                error = MetadataError(f"Failed to upload metadata record {target_key}: {e}")
                error.__cause__ = e
                report.fail(Stage.METADATA, error)
                logger.error(str(error), extra={"key": target_key})
                return
            logger.info("Uploaded metadata record", extra={"key": target_key})

    def _log_report(self, report: RunReport) -> None:
        extra = report.to_dict()
        if report.ok:
            logger.info("Snapshot run finished", extra=extra)
        elif report.resume_failed:
            logger.critical("Snapshot run finished with workload left stopped", extra=extra)
        else:
            logger.error("Snapshot run failed", extra=extra)

    @property
    def stats(self) -> dict[str, Any]:
        """Get orchestrator statistics."""
        return {
            "running": self.running,
            "run_count": self._run_count,
        }
