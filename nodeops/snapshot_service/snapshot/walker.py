"""
Deterministic file walk shared by the archive encoder and metadata computer.

Both consumers receive the same entries in the same order, sorted
lexicographically by POSIX relative path, so archive member order and
fingerprint input order coincide and neither depends on the order the
filesystem happens to return directory entries in.

Symlink policy:
    - Symlinks to regular files are included and read through (content of
      the target, stored as a regular member)
    - Symlinked directories are not descended (no cycles, no escaping root)
    - Dangling symlinks are an error, like any file vanishing mid-run
    - Sockets, fifos and device nodes are skipped
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path

from .filter import PathFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceFile:
    """A file selected for snapshotting.

    Attributes:
        relative_path: Path relative to the snapshot root, '/' separated
        absolute_path: Path used to open the file
    """

    relative_path: str
    absolute_path: str


def list_files(root: str | Path, path_filter: PathFilter) -> list[SourceFile]:
    """Collect all included regular files under ``root``, sorted.

    Raises:
        FileNotFoundError: If root does not exist or a symlink target is missing
        NotADirectoryError: If root is not a directory
    """
    root_path = os.fspath(root)
    if not os.path.exists(root_path):
        raise FileNotFoundError(f"Snapshot source does not exist: {root_path}")
    if not os.path.isdir(root_path):
        raise NotADirectoryError(f"Snapshot source is not a directory: {root_path}")

    def on_error(error: OSError) -> None:
        raise error

    files: list[SourceFile] = []
    for dirpath, dirnames, filenames in os.walk(root_path, onerror=on_error):
        # Prune ignored directories in place so os.walk skips their subtree
        dirnames[:] = [d for d in dirnames if path_filter.included(d)]

        for name in filenames:
            if not path_filter.included(name):
                continue
            absolute = os.path.join(dirpath, name)
            mode = os.stat(absolute).st_mode
            if not stat.S_ISREG(mode):
                logger.debug(f"Skipping non-regular file {absolute}")
                continue
            relative = os.path.relpath(absolute, root_path).replace(os.sep, "/")
            files.append(SourceFile(relative_path=relative, absolute_path=absolute))

    files.sort(key=lambda f: f.relative_path)
    return files

