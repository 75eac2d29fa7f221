"""
Workload lifecycle control for the snapshot service.

Controllers:
- docker: stop/start a container through the docker CLI
- none: no-op, for sources that are not written to during capture
"""

from ..config import WorkloadConfig
from ..errors import ConfigurationError
from .base import WorkloadController
from .docker import DockerController
from .noop import NoopController


def create_controller(config: WorkloadConfig) -> WorkloadController:
    """Factory function to create a controller from configuration.

    Raises:
        ConfigurationError: If the controller is not supported
    """
    if config.controller == "docker":
        return DockerController(stop_timeout=config.stop_timeout_seconds)
    elif config.controller == "none":
        return NoopController()
    else:
        raise ConfigurationError(f"Unsupported workload controller: {config.controller}")


__all__ = [
    "WorkloadController",
    "DockerController",
    "NoopController",
    "create_controller",
]
