"""
Unit tests for the source walker and path filter.

Tests cover:
- Sorted, relative, '/'-separated output
- Ignore list applied to files and directory subtrees
- Symlink policy
- Invalid roots
"""

import os

import pytest

from nodeops.snapshot_service.snapshot.filter import PathFilter
from nodeops.snapshot_service.snapshot.walker import list_files


def relative_paths(root, path_filter=None):
    return [f.relative_path for f in list_files(root, path_filter or PathFilter())]


class TestPathFilter:
    """Tests for PathFilter."""

    def test_empty_filter_includes_everything(self):
        assert PathFilter().included("LOCK")

    def test_from_names(self):
        path_filter = PathFilter.from_names(["LOCK", "tmp"])
        assert not path_filter.included("LOCK")
        assert not path_filter.included("tmp")
        assert path_filter.included("LOCK.bak")


class TestListFiles:
    """Tests for list_files."""

    def test_sorted_relative_paths(self, sample_tree):
        assert relative_paths(sample_tree) == [
            "LOCK",
            "chain/blocks.mdb",
            "chain/lock.mdb",
            "peer-key.dat",
            "state/accounts/0001.dat",
            "state/accounts/0002.dat",
        ]

    def test_ignored_file_names(self, sample_tree):
        paths = relative_paths(sample_tree, PathFilter.from_names(["LOCK", "lock.mdb"]))
        assert "LOCK" not in paths
        assert "chain/lock.mdb" not in paths
        assert "chain/blocks.mdb" in paths

    def test_ignored_directory_prunes_subtree(self, sample_tree):
        paths = relative_paths(sample_tree, PathFilter.from_names(["state"]))
        assert not any(p.startswith("state/") for p in paths)

    def test_empty_directories_produce_nothing(self, source_dir):
        (source_dir / "empty" / "nested").mkdir(parents=True)
        assert relative_paths(source_dir) == []

    def test_absolute_path_points_at_file(self, sample_tree):
        for source in list_files(sample_tree, PathFilter()):
            assert os.path.isfile(source.absolute_path)

    def test_missing_root(self, source_dir):
        with pytest.raises(FileNotFoundError):
            list_files(source_dir / "missing", PathFilter())

    def test_root_is_a_file(self, sample_tree):
        with pytest.raises(NotADirectoryError):
            list_files(sample_tree / "peer-key.dat", PathFilter())

    def test_symlinked_file_is_included(self, source_dir, make_tree):
        make_tree(source_dir, {"real.dat": b"data"})
        os.symlink(source_dir / "real.dat", source_dir / "alias.dat")
        assert relative_paths(source_dir) == ["alias.dat", "real.dat"]

    def test_symlinked_directory_is_not_descended(self, source_dir, make_tree):
        make_tree(source_dir, {"dir/file.dat": b"data"})
        os.symlink(source_dir / "dir", source_dir / "link")
        assert relative_paths(source_dir) == ["dir/file.dat"]

    def test_dangling_symlink_is_an_error(self, source_dir):
        os.symlink(source_dir / "gone", source_dir / "dangling")
        with pytest.raises(FileNotFoundError):
            list_files(source_dir, PathFilter())
