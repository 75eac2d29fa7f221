"""
Snapshot Service - Main entry point.

Commands:
    serve        Run snapshots on the configured cron schedule (default)
    run          Run one snapshot now and exit
    prune        Apply retention only
    fingerprint  Print size and fingerprint of a local directory

Usage:
    snapshot-service [--config config.json] [--dry-run] serve
    python -m nodeops.snapshot_service.main run

Configuration comes from environment variables, optionally overlaid by a
JSON file. See config.py for all available settings.

Exit codes:
    0  success
    1  run finished with an error status
    2  the workload could not be resumed (it may be down)
    3  configuration error

Invariants:
    - Configuration is loaded and validated before anything touches the workload
    - SIGTERM/SIGINT stop the scheduler; an in-flight run still resumes the workload
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Sequence

import json_log_formatter

from . import __version__
from .config import ServiceConfig
from .errors import ConfigurationError
from .retention.pruner import PruneResult, RetentionPruner
from .scheduler import SnapshotScheduler
from .snapshot.filter import PathFilter
from .snapshot.metadata import MetadataComputer
from .snapshot.orchestrator import RunReport, SnapshotOrchestrator
from .storage import ObjectStore, create_object_store
from .workload import NoopController, create_controller

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_RESUME_FAILED = 2
EXIT_CONFIG_ERROR = 3


def setup_logging(config: ServiceConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Service configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


class Service:
    """Snapshot service process.

    Owns the object store, workload controller, orchestrator and scheduler
    for the lifetime of the process.

    Example:
        >>> service = Service(config)
        >>> await service.start()   # blocks until request_shutdown()
        >>> await service.stop()
    """

    def __init__(self, config: ServiceConfig, dry_run: bool = False) -> None:
        self.config = config
        self.dry_run = dry_run
        self.store: ObjectStore = create_object_store(config.s3, dry_run=dry_run)
        controller = NoopController() if dry_run else create_controller(config.workload)
        self.orchestrator = SnapshotOrchestrator.from_config(config, self.store, controller)
        self.scheduler = SnapshotScheduler(
            self.orchestrator,
            cron_expression=config.schedule.cron,
            run_on_start=config.schedule.run_on_start,
        )
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the scheduler and wait for a shutdown request."""
        if self._running:
            logger.warning("Service already running")
            return

        logger.info("Starting snapshot service", extra={"version": __version__})
        self.config.log_config()
        self._running = True

        scheduler_task = asyncio.create_task(self.scheduler.start())
        self._tasks.append(scheduler_task)

        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the service gracefully."""
        if not self._running:
            await self.store.close()
            return

        logger.info("Stopping snapshot service")
        await self.scheduler.stop()

        # Let an in-flight run finish so the workload gets resumed
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        await self.store.close()
        self._running = False
        logger.info("Snapshot service stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()

    async def run_once(self) -> RunReport:
        """Execute a single snapshot run."""
        try:
            return await self.orchestrator.run()
        finally:
            await self.store.close()

    async def prune(self) -> dict[str, list[str] | str]:
        """Apply retention to both object classes."""
        pruner = RetentionPruner(self.store)
        try:
            outcomes = await pruner.prune_all(
                self.config.s3.bucket,
                self.orchestrator.prefix,
                self.config.retention.keep,
            )
        finally:
            await self.store.close()
        return {
            retention_class.name.lower(): (
                outcome.deleted if isinstance(outcome, PruneResult) else str(outcome)
            )
            for retention_class, outcome in outcomes.items()
        }


def exit_code_for(report: RunReport) -> int:
    """Map a run report to a process exit code."""
    if report.resume_failed:
        return EXIT_RESUME_FAILED
    if not report.ok:
        return EXIT_RUN_FAILED
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapshot-service",
        description="Snapshot a node's data directory to S3-compatible storage",
    )
    parser.add_argument("--config", help="Path to a JSON configuration file")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use an in-memory store and do not touch the workload",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run on the configured cron schedule")
    subparsers.add_parser("run", help="Run one snapshot now")
    subparsers.add_parser("prune", help="Apply retention only")
    fingerprint = subparsers.add_parser("fingerprint", help="Fingerprint a local directory")
    fingerprint.add_argument("path", help="Directory to fingerprint")
    fingerprint.add_argument(
        "--ignore",
        default="",
        help="Comma-separated base names to exclude",
    )
    return parser


def _fingerprint(path: str, ignore: frozenset[str]) -> int:
    try:
        summary = MetadataComputer(PathFilter(ignore)).compute(path)
    except OSError as e:
        print(f"Cannot fingerprint {path}: {e}", file=sys.stderr)
        return EXIT_RUN_FAILED
    print(
        json.dumps(
            {
                "path": path,
                "size_bytes": summary.size_bytes,
                "file_count": summary.file_count,
                "fingerprint": summary.fingerprint,
            },
            indent=2,
        )
    )
    return EXIT_OK


def _serve(service: Service) -> int:
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        service.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(service.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(service.stop())
        loop.close()
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "serve"

    if command == "fingerprint":
        logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
        ignore = frozenset(n.strip() for n in args.ignore.split(",") if n.strip())
        return _fingerprint(args.path, ignore)

    try:
        config = ServiceConfig.load(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(config)
    service = Service(config, dry_run=args.dry_run)

    if command == "serve":
        return _serve(service)

    if command == "prune":
        outcome = asyncio.run(service.prune())
        print(json.dumps(outcome, indent=2))
        failed = any(isinstance(v, str) for v in outcome.values())
        return EXIT_RUN_FAILED if failed else EXIT_OK

    report = asyncio.run(service.run_once())
    print(json.dumps(report.to_dict(), indent=2))
    return exit_code_for(report)


if __name__ == "__main__":
    sys.exit(main())
