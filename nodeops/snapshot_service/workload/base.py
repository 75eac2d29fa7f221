"""
Workload controller protocol.

The snapshotted service is stopped for the duration of a capture and started
again afterwards. Controllers are blocking from the orchestrator's point of
view: pause() returns once the workload has stopped writing to disk.

Invariants:
    - pause()/resume() raise WorkloadError on failure, never return a flag
    - Both are idempotent on success (stopping a stopped container is fine)
    - The orchestrator does not retry them
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable


@runtime_checkable
class WorkloadController(Protocol):
    """Stops and starts the snapshotted workload."""

    @abstractmethod
    async def pause(self, target: str) -> None:
        """Stop ``target`` and wait until it has stopped.

        Raises:
            WorkloadError: If the workload could not be stopped
        """
        ...

    @abstractmethod
    async def resume(self, target: str) -> None:
        """Start ``target`` again.

        Raises:
            WorkloadError: If the workload could not be started
        """
        ...
