"""Controller for sources that need no pause (e.g. already offline data)."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class NoopController:
    """WorkloadController that does nothing."""

    async def pause(self, target: str) -> None:
        logger.debug(f"No workload controller configured, not pausing {target!r}")

    async def resume(self, target: str) -> None:
        logger.debug(f"No workload controller configured, not resuming {target!r}")
