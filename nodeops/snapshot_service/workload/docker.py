"""
Docker workload controller.

Drives the docker CLI (``docker stop`` / ``docker start``) through asyncio
subprocesses, so it works against whatever daemon DOCKER_HOST points at.

Invariants:
    - stop waits up to stop_timeout seconds before docker kills the container
    - A non-zero exit status always raises WorkloadError with stderr attached
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from ..errors import WorkloadError

logger = logging.getLogger(__name__)


class DockerController:
    """Stops and starts a container by name.

    Attributes:
        docker_binary: docker executable
        stop_timeout: Seconds docker waits for a graceful stop

    Example:
        >>> controller = DockerController(stop_timeout=30)
        >>> await controller.pause("nimiq")
        >>> await controller.resume("nimiq")
    """

    def __init__(self, stop_timeout: int = 30, docker_binary: str = "docker") -> None:
        self.stop_timeout = stop_timeout
        self.docker_binary = docker_binary

    async def pause(self, target: str) -> None:
        logger.info(f"Stopping container {target}", extra={"container": target})
        await self._run(target, ["stop", "--time", str(self.stop_timeout), target])
        logger.info(f"Container {target} stopped", extra={"container": target})

    async def resume(self, target: str) -> None:
        logger.info(f"Starting container {target}", extra={"container": target})
        await self._run(target, ["start", target])
        logger.info(f"Container {target} started", extra={"container": target})

    async def _run(self, target: str, args: Sequence[str]) -> str:
        argv = [self.docker_binary, *args]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise WorkloadError(f"Cannot run {self.docker_binary}: {e}", target=target) from e

        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            error_text = stderr.decode("utf-8", errors="replace").strip()
            raise WorkloadError(
                f"'{' '.join(argv)}' exited with status {proc.returncode}: {error_text}",
                target=target,
                stderr=error_text,
            )
        return stdout.decode("utf-8", errors="replace").strip()
