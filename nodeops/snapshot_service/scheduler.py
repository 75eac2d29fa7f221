"""
Cron-driven trigger for snapshot runs.

The scheduler computes the next fire time from a cron expression (croniter
syntax, including "@daily"/"@hourly"), sleeps until then and invokes the
orchestrator. A run that is still in flight when the next tick arrives is
rejected by the orchestrator and logged; ticks never queue up.

Invariants:
    - Fire times are computed in UTC
    - An error in one run never stops the loop
    - stop() interrupts the sleep promptly
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from croniter import croniter

from .errors import ConfigurationError, SnapshotInProgressError
from .snapshot.orchestrator import RunReport, SnapshotOrchestrator

logger = logging.getLogger(__name__)


def validate_cron(expression: str) -> None:
    """Raise ConfigurationError if ``expression`` is not a valid cron expression."""
    if not croniter.is_valid(expression):
        raise ConfigurationError(f"Invalid cron expression: {expression!r}")


def next_fire_time(expression: str, after: datetime) -> datetime:
    """Next time ``expression`` fires strictly after ``after``."""
    return croniter(expression, after).get_next(datetime)


class SnapshotScheduler:
    """Runs the orchestrator on a cron schedule.

    Attributes:
        orchestrator: Orchestrator to invoke
        cron_expression: Schedule
        run_on_start: Run once immediately when started

    Example:
        >>> scheduler = SnapshotScheduler(orchestrator, "@daily")
        >>> await scheduler.start()  # Runs until stopped
    """

    def __init__(
        self,
        orchestrator: SnapshotOrchestrator,
        cron_expression: str = "@daily",
        run_on_start: bool = False,
    ) -> None:
        validate_cron(cron_expression)
        self.orchestrator = orchestrator
        self.cron_expression = cron_expression
        self.run_on_start = run_on_start

        self._running = False
        self._stop_event = asyncio.Event()
        self._last_report: RunReport | None = None
        self._tick_count = 0

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._stop_event.clear()
        logger.info("Starting snapshot scheduler", extra={"cron": self.cron_expression})

        try:
            if self.run_on_start:
                await self.tick()

            while self._running:
                now = datetime.now(timezone.utc)
                fire_at = next_fire_time(self.cron_expression, now)
                delay = max(0.0, (fire_at - now).total_seconds())
                logger.info(
                    "Next snapshot scheduled",
                    extra={"fire_at": fire_at.isoformat(), "delay_seconds": int(delay)},
                )

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                    break  # stop requested
                except asyncio.TimeoutError:
                    pass

                await self.tick()

        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the scheduler loop."""
        self._running = False
        self._stop_event.set()
        logger.info("Stopping snapshot scheduler")

    async def tick(self) -> RunReport | None:
        """Trigger one run now; returns None if it was rejected or crashed."""
        self._tick_count += 1
        try:
            report = await self.orchestrator.run()
        except SnapshotInProgressError:
            logger.warning("Previous snapshot run still in progress, skipping this tick")
            return None
        except Exception as e:
            logger.error(f"Snapshot run crashed: {e}", exc_info=True)
            return None

        self._last_report = report
        return report

    @property
    def stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "running": self._running,
            "ticks": self._tick_count,
            "last_status": self._last_report.status.value if self._last_report else None,
        }
