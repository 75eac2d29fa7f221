"""
Error types for the snapshot service.

Every failure a snapshot run can hit maps to one class here, so the
orchestrator can report which stage failed instead of a bare exception:

- ConfigurationError: invalid configuration, fatal at startup
- PauseError: workload could not be stopped, run aborts before capture
- CaptureError / UploadError: archive walk, compression or upload failed
- MetadataError: fingerprint/size/record upload failed
- ResumeError: workload could not be started again (most severe)
- PruneError / MalformedKeyError: retention could not complete

Invariants:
    - All errors inherit from SnapshotServiceError
    - Errors carry a stable code for programmatic handling
    - Secrets never appear in messages or details
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class SnapshotServiceError(Exception):
    """Base exception for all snapshot service errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    code = "SNAPSHOT_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or type(self).code
        self.details = details or {}


class ConfigurationError(SnapshotServiceError, ValueError):
    """Configuration is missing or invalid."""

    code = "CONFIGURATION_ERROR"


class WorkloadError(SnapshotServiceError):
    """A workload controller command failed.

    Raised by controllers; the orchestrator re-labels it as PauseError
    or ResumeError depending on the stage.
    """

    code = "WORKLOAD_ERROR"

    def __init__(self, message: str, target: Optional[str] = None, stderr: str = "") -> None:
        super().__init__(message, details={"target": target, "stderr": stderr})
        self.target = target
        self.stderr = stderr


class PauseError(SnapshotServiceError):
    """Workload could not be paused. Capture never starts."""

    code = "PAUSE_FAILED"


class ResumeError(SnapshotServiceError):
    """Workload could not be resumed. The service may be down."""

    code = "RESUME_FAILED"


class CaptureError(SnapshotServiceError):
    """Archive encoding or upload failed."""

    code = "CAPTURE_FAILED"


class UploadError(CaptureError):
    """Streaming upload to the object store failed."""

    code = "UPLOAD_FAILED"


class MetadataError(SnapshotServiceError):
    """Metadata computation, verification or record upload failed."""

    code = "METADATA_FAILED"


class StorageError(SnapshotServiceError):
    """Object store operation failed."""

    code = "STORAGE_ERROR"

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(message, details={"key": key})
        self.key = key


class PruneError(SnapshotServiceError):
    """Retention pruning failed.

    Attributes:
        failures: (key, reason) pairs for every object that could not be deleted
    """

    code = "PRUNE_FAILED"

    def __init__(
        self,
        message: str,
        failures: Optional[List[tuple[str, str]]] = None,
    ) -> None:
        failures = failures or []
        super().__init__(message, details={"failures": [k for k, _ in failures]})
        self.failures = failures


class MalformedKeyError(PruneError):
    """An object under a retention prefix has an unparsable timestamp."""

    code = "MALFORMED_KEY"

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Cannot parse snapshot timestamp from key '{key}': {reason}")
        self.key = key
        self.reason = reason


class ChannelClosedError(SnapshotServiceError):
    """The producer closed the byte channel with an error."""

    code = "CHANNEL_CLOSED"


class ChannelAbortedError(SnapshotServiceError):
    """The consumer aborted the byte channel; further writes are refused."""

    code = "CHANNEL_ABORTED"


class SnapshotInProgressError(SnapshotServiceError):
    """A snapshot run was requested while another one is still running."""

    code = "RUN_IN_PROGRESS"
