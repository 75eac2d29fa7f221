"""
Unit tests for workload controllers.

Tests cover:
- docker stop/start command lines
- Non-zero exit and missing binary raise WorkloadError
- Controller factory
"""

import pytest

from nodeops.snapshot_service.config import WorkloadConfig
from nodeops.snapshot_service.errors import ConfigurationError, WorkloadError
from nodeops.snapshot_service.workload import (
    DockerController,
    NoopController,
    create_controller,
)
from nodeops.snapshot_service.workload import docker as docker_module


class FakeProcess:
    def __init__(self, returncode=0, stdout=b"", stderr=b""):
        self.returncode = returncode
        self._stdout = stdout
        self._stderr = stderr

    async def communicate(self):
        return self._stdout, self._stderr


class ExecCalls(list):
    """argv lists with the canned process result attached."""

    result: dict


@pytest.fixture
def exec_calls(monkeypatch):
    """Capture argv passed to asyncio.create_subprocess_exec."""
    calls = ExecCalls()
    result = {"process": FakeProcess(stdout=b"nimiq\n")}

    async def fake_exec(*argv, **kwargs):
        calls.append(list(argv))
        if isinstance(result["process"], Exception):
            raise result["process"]
        return result["process"]

    monkeypatch.setattr(docker_module.asyncio, "create_subprocess_exec", fake_exec)
    calls.result = result
    return calls


class TestDockerController:
    """Tests for DockerController."""

    @pytest.mark.asyncio
    async def test_pause_runs_docker_stop(self, exec_calls):
        await DockerController(stop_timeout=45).pause("nimiq")
        assert exec_calls == [["docker", "stop", "--time", "45", "nimiq"]]

    @pytest.mark.asyncio
    async def test_resume_runs_docker_start(self, exec_calls):
        await DockerController(docker_binary="/usr/bin/docker").resume("nimiq")
        assert exec_calls == [["/usr/bin/docker", "start", "nimiq"]]

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, exec_calls):
        exec_calls.result["process"] = FakeProcess(
            returncode=1, stderr=b"Error: No such container: nimiq\n"
        )

        with pytest.raises(WorkloadError) as exc_info:
            await DockerController().pause("nimiq")

        assert exc_info.value.target == "nimiq"
        assert exc_info.value.stderr == "Error: No such container: nimiq"

    @pytest.mark.asyncio
    async def test_missing_binary(self, exec_calls):
        exec_calls.result["process"] = FileNotFoundError("docker")
        with pytest.raises(WorkloadError):
            await DockerController().resume("nimiq")


class TestCreateController:
    """Tests for create_controller."""

    def test_docker(self):
        controller = create_controller(WorkloadConfig(container_name="n", stop_timeout_seconds=10))
        assert isinstance(controller, DockerController)
        assert controller.stop_timeout == 10

    def test_none(self):
        assert isinstance(create_controller(WorkloadConfig(controller="none")), NoopController)

    def test_unsupported(self):
        with pytest.raises(ConfigurationError):
            create_controller(WorkloadConfig(controller="k8s"))

    @pytest.mark.asyncio
    async def test_noop_does_nothing(self):
        controller = NoopController()
        await controller.pause("x")
        await controller.resume("x")
