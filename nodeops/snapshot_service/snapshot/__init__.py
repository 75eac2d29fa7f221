"""
Snapshot module for the snapshot service.

This module turns a paused workload's data directory into:
- a tar.gz archive streamed straight into object storage
- a JSON metadata record with size and content fingerprint

Invariants:
    - The archive is never staged on local disk
    - Archive and fingerprint are computed over the same filtered file set
    - Only one snapshot run is in flight at a time
"""

from .channel import ByteChannel
from .encoder import ArchiveEncoder, EncodeResult
from .filter import PathFilter
from .metadata import MetadataComputer, MetadataSummary, SnapshotRecord, SnapshotStatus
from .orchestrator import RunReport, RunState, SnapshotOrchestrator, Stage, StageFailure
from .pipeline import PipelineResult, SnapshotPipeline
from .uploader import StreamingUploader

__all__ = [
    "ArchiveEncoder",
    "ByteChannel",
    "EncodeResult",
    "MetadataComputer",
    "MetadataSummary",
    "PathFilter",
    "PipelineResult",
    "RunReport",
    "RunState",
    "SnapshotOrchestrator",
    "SnapshotPipeline",
    "SnapshotRecord",
    "SnapshotStatus",
    "Stage",
    "StageFailure",
    "StreamingUploader",
]
