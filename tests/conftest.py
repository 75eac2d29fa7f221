"""
Shared fixtures for snapshot service tests.

Provides:
- source trees on disk (make_tree, sample_tree)
- an in-memory object store
- a recording workload controller with failure injection
"""

import os
import tempfile
from pathlib import Path
from typing import Dict, List

import pytest

from nodeops.snapshot_service.errors import WorkloadError
from nodeops.snapshot_service.storage.memory import InMemoryObjectStore

BUCKET = "snapshots"


class RecordingController:
    """WorkloadController double that records calls.

    Attributes:
        calls: ("pause"|"resume", target) in call order
        fail_pause: Raise WorkloadError from pause()
        fail_resume: Raise WorkloadError from resume()
    """

    def __init__(self, fail_pause: bool = False, fail_resume: bool = False) -> None:
        self.calls: List[tuple] = []
        self.fail_pause = fail_pause
        self.fail_resume = fail_resume

    async def pause(self, target: str) -> None:
        self.calls.append(("pause", target))
        if self.fail_pause:
            raise WorkloadError("docker stop failed", target=target, stderr="No such container")

    async def resume(self, target: str) -> None:
        self.calls.append(("resume", target))
        if self.fail_resume:
            raise WorkloadError("docker start failed", target=target, stderr="daemon gone")

    def operations(self) -> List[str]:
        return [op for op, _ in self.calls]


@pytest.fixture
def source_dir():
    """Temporary snapshot source directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_tree():
    """Factory writing {relative '/'-separated path: bytes} under a root."""

    def _make(root: Path, files: Dict[str, bytes]) -> Path:
        for relative, content in files.items():
            path = root.joinpath(*relative.split("/"))
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        return root

    return _make


@pytest.fixture
def sample_tree(source_dir, make_tree):
    """A small node data directory with nested files and a lock file."""
    return make_tree(
        source_dir,
        {
            "chain/blocks.mdb": os.urandom(64 * 1024),
            "chain/lock.mdb": b"lock",
            "peer-key.dat": b"\x01\x02\x03",
            "LOCK": b"",
            "state/accounts/0001.dat": b"account-0001" * 100,
            "state/accounts/0002.dat": b"account-0002" * 100,
        },
    )


@pytest.fixture
def bucket():
    return BUCKET


@pytest.fixture
def store():
    """Fresh in-memory object store."""
    return InMemoryObjectStore()


@pytest.fixture
def controller():
    """Controller that succeeds."""
    return RecordingController()


@pytest.fixture
def controller_factory():
    """Build controllers with failure injection."""
    return RecordingController


@pytest.fixture
def seed_snapshots(store):
    """Seed archive (and optionally metadata) objects for timestamps."""

    def _seed(prefix: str, stamps: List[str], metadata: bool = True) -> None:
        for stamp in stamps:
            store.seed(BUCKET, f"{prefix}{stamp}.tar.gz", b"archive")
            if metadata:
                store.seed(BUCKET, f"{prefix}{stamp}-metadata.json", b"{}")

    return _seed
