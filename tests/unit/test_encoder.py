"""
Unit tests for the archive encoder.

Tests cover:
- Archive contents match the filtered source tree
- Member names and header fields
- Fingerprint agreement with MetadataComputer
- Sink closed with the error on failure, and never written afterwards
- Files removed between walk and open
- Hard links stored as regular members
"""

import gc
import gzip
import io
import os
import tarfile

import pytest

from nodeops.snapshot_service.snapshot import encoder as encoder_module
from nodeops.snapshot_service.snapshot.encoder import ArchiveEncoder
from nodeops.snapshot_service.snapshot.filter import PathFilter
from nodeops.snapshot_service.snapshot.metadata import MetadataComputer


class RecordingSink:
    """ByteSink collecting everything in memory."""

    def __init__(self, fail_after=None):
        self.buffer = io.BytesIO()
        self.closed_with = "open"
        self.fail_after = fail_after
        self.late_writes = 0

    def write(self, data):
        if self.closed_with != "open":
            self.late_writes += 1
        if self.fail_after is not None and self.buffer.tell() + len(data) > self.fail_after:
            raise BrokenPipeError("sink full")
        return self.buffer.write(data)

    def flush(self):
        pass

    def close(self, error=None):
        self.closed_with = error

    def members(self):
        with tarfile.open(fileobj=io.BytesIO(self.buffer.getvalue()), mode="r:gz") as tar:
            return {
                member.name: (member, tar.extractfile(member).read())
                for member in tar.getmembers()
            }


class TestArchiveEncoder:
    """Tests for ArchiveEncoder."""

    def test_archive_matches_source(self, sample_tree):
        sink = RecordingSink()
        result = ArchiveEncoder(PathFilter()).encode(sample_tree, sink)

        members = sink.members()
        assert sorted(members) == [
            "LOCK",
            "chain/blocks.mdb",
            "chain/lock.mdb",
            "peer-key.dat",
            "state/accounts/0001.dat",
            "state/accounts/0002.dat",
        ]
        for name, (_, content) in members.items():
            assert content == (sample_tree / name).read_bytes()

        assert result.file_count == 6
        assert result.uncompressed_bytes == sum(len(c) for _, c in members.values())
        assert result.compressed_bytes == len(sink.buffer.getvalue())
        assert sink.closed_with is None

    def test_member_order_is_sorted(self, sample_tree):
        sink = RecordingSink()
        ArchiveEncoder(PathFilter()).encode(sample_tree, sink)
        with tarfile.open(fileobj=io.BytesIO(sink.buffer.getvalue()), mode="r:gz") as tar:
            names = tar.getnames()
        assert names == sorted(names)

    def test_ignored_names_are_excluded(self, sample_tree):
        sink = RecordingSink()
        result = ArchiveEncoder(PathFilter.from_names(["LOCK", "state"])).encode(sample_tree, sink)

        assert sorted(sink.members()) == ["chain/blocks.mdb", "chain/lock.mdb", "peer-key.dat"]
        assert result.file_count == 3

    def test_output_is_gzip(self, sample_tree):
        sink = RecordingSink()
        ArchiveEncoder(PathFilter(), compression_level=1).encode(sample_tree, sink)
        assert sink.buffer.getvalue()[:2] == b"\x1f\x8b"
        # Decompresses cleanly, trailer included
        gzip.decompress(sink.buffer.getvalue())

    def test_headers_carry_mode_and_mtime(self, source_dir, make_tree):
        make_tree(source_dir, {"bin/run.sh": b"#!/bin/sh\n"})
        path = source_dir / "bin" / "run.sh"
        os.chmod(path, 0o750)
        os.utime(path, (1700000000, 1700000000))

        sink = RecordingSink()
        ArchiveEncoder(PathFilter()).encode(source_dir, sink)
        member, _ = sink.members()["bin/run.sh"]

        assert member.isfile()
        assert member.mode & 0o777 == 0o750
        assert int(member.mtime) == 1700000000

    def test_empty_tree(self, source_dir):
        sink = RecordingSink()
        result = ArchiveEncoder(PathFilter()).encode(source_dir, sink)
        assert sink.members() == {}
        assert result.file_count == 0
        assert sink.closed_with is None

    def test_fingerprint_matches_metadata(self, sample_tree):
        path_filter = PathFilter.from_names(["LOCK"])
        sink = RecordingSink()
        result = ArchiveEncoder(path_filter).encode(sample_tree, sink)

        summary = MetadataComputer(path_filter).compute(sample_tree)
        assert result.fingerprint == summary.fingerprint
        assert result.uncompressed_bytes == summary.size_bytes
        assert result.file_count == summary.file_count

    def test_missing_root_closes_sink_with_error(self, source_dir):
        sink = RecordingSink()
        with pytest.raises(FileNotFoundError):
            ArchiveEncoder(PathFilter()).encode(source_dir / "missing", sink)
        assert isinstance(sink.closed_with, FileNotFoundError)

    def test_sink_failure_closes_sink_with_error(self, sample_tree):
        sink = RecordingSink(fail_after=1024)
        with pytest.raises(BrokenPipeError):
            ArchiveEncoder(PathFilter()).encode(sample_tree, sink)
        assert isinstance(sink.closed_with, BrokenPipeError)

    def test_no_writes_after_failure(self, sample_tree):
        sink = RecordingSink(fail_after=1024)
        with pytest.raises(BrokenPipeError):
            ArchiveEncoder(PathFilter()).encode(sample_tree, sink)
        gc.collect()
        assert sink.late_writes == 0

    def test_file_vanishing_after_walk(self, sample_tree, monkeypatch):
        real_list_files = encoder_module.list_files

        def list_then_delete(root, path_filter):
            files = real_list_files(root, path_filter)
            (sample_tree / "peer-key.dat").unlink()
            return files

        monkeypatch.setattr(encoder_module, "list_files", list_then_delete)
        sink = RecordingSink()

        with pytest.raises(FileNotFoundError):
            ArchiveEncoder(PathFilter()).encode(sample_tree, sink)
        assert isinstance(sink.closed_with, FileNotFoundError)
        gc.collect()
        assert sink.late_writes == 0


class TestHardLinks:
    """Hard-linked files are archived like any other regular file."""

    @pytest.fixture
    def linked_tree(self, source_dir, make_tree):
        make_tree(source_dir, {"a.dat": b"x" * 1000, "sub/c.dat": b"other"})
        os.link(source_dir / "a.dat", source_dir / "b.dat")
        os.link(source_dir / "a.dat", source_dir / "sub" / "d.dat")
        return source_dir

    def test_every_link_is_a_regular_member(self, linked_tree):
        sink = RecordingSink()
        ArchiveEncoder(PathFilter()).encode(linked_tree, sink)

        members = sink.members()
        assert sorted(members) == ["a.dat", "b.dat", "sub/c.dat", "sub/d.dat"]
        for name in ("a.dat", "b.dat", "sub/d.dat"):
            member, content = members[name]
            assert member.type == tarfile.REGTYPE
            assert member.size == 1000
            assert content == b"x" * 1000

    def test_digest_matches_metadata(self, linked_tree):
        sink = RecordingSink()
        result = ArchiveEncoder(PathFilter()).encode(linked_tree, sink)

        summary = MetadataComputer(PathFilter()).compute(linked_tree)
        assert result.fingerprint == summary.fingerprint
        assert result.uncompressed_bytes == summary.size_bytes == 3005
        assert result.file_count == summary.file_count == 4
