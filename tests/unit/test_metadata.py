"""
Unit tests for snapshot metadata.

Tests cover:
- Size and fingerprint computation
- Independence from filesystem listing order
- Metadata record serialization
"""

import hashlib
import json
import os

import pytest

from nodeops.snapshot_service.snapshot import walker
from nodeops.snapshot_service.snapshot.filter import PathFilter
from nodeops.snapshot_service.snapshot.metadata import (
    MetadataComputer,
    SnapshotRecord,
    SnapshotStatus,
)


class TestMetadataComputer:
    """Tests for MetadataComputer."""

    def test_size_excludes_ignored(self, source_dir, make_tree):
        make_tree(source_dir, {"a.dat": b"12345", "sub/b.dat": b"678", "LOCK": b"xx"})
        computer = MetadataComputer(PathFilter.from_names(["LOCK"]))
        assert computer.size(source_dir) == 8

    def test_fingerprint_is_sha256_of_sorted_contents(self, source_dir, make_tree):
        make_tree(source_dir, {"b.dat": b"second", "a.dat": b"first", "c/d.dat": b"third"})
        expected = hashlib.sha256(b"first" + b"second" + b"third").hexdigest()
        assert MetadataComputer(PathFilter()).fingerprint(source_dir) == expected

    def test_empty_tree(self, source_dir):
        summary = MetadataComputer(PathFilter()).compute(source_dir)
        assert summary.size_bytes == 0
        assert summary.file_count == 0
        assert summary.fingerprint == hashlib.sha256().hexdigest()

    def test_content_change_changes_fingerprint(self, source_dir, make_tree):
        make_tree(source_dir, {"a.dat": b"one"})
        computer = MetadataComputer(PathFilter())
        before = computer.fingerprint(source_dir)
        make_tree(source_dir, {"a.dat": b"two"})
        assert computer.fingerprint(source_dir) != before

    def test_listing_order_does_not_matter(self, sample_tree, monkeypatch):
        computer = MetadataComputer(PathFilter())
        baseline = computer.compute(sample_tree)

        real_walk = os.walk

        def reversed_walk(top, *args, **kwargs):
            for dirpath, dirnames, filenames in real_walk(top, *args, **kwargs):
                dirnames.reverse()
                filenames.reverse()
                yield dirpath, dirnames, filenames

        monkeypatch.setattr(walker.os, "walk", reversed_walk)
        assert computer.compute(sample_tree) == baseline

    def test_missing_root(self, source_dir):
        with pytest.raises(FileNotFoundError):
            MetadataComputer(PathFilter()).compute(source_dir / "missing")


class TestSnapshotRecord:
    """Tests for SnapshotRecord."""

    @pytest.fixture
    def record(self):
        return SnapshotRecord(
            timestamp="20240131-020000",
            protocol="nimiq",
            network="main-albatross",
            version="1.0.0",
            size_bytes=123,
            fingerprint="ab" * 32,
            status=SnapshotStatus.SUCCESS,
            archive_key="nimiq/main-albatross/20240131-020000.tar.gz",
            archive_bytes=45,
            file_count=3,
            duration_ms=10,
        )

    def test_to_json_fields(self, record):
        data = json.loads(record.to_json())
        assert data["timestamp"] == "20240131-020000"
        assert data["protocol"] == "nimiq"
        assert data["network"] == "main-albatross"
        assert data["version"] == "1.0.0"
        assert data["size_bytes"] == 123
        assert data["fingerprint"] == "ab" * 32
        assert data["status"] == "success"
        assert data["error"] is None

    def test_from_dict(self, record):
        assert SnapshotRecord.from_dict(json.loads(record.to_json())) == record

    def test_from_dict_accepts_minimal_record(self):
        record = SnapshotRecord.from_dict(
            {
                "timestamp": "20240131-020000",
                "protocol": "nimiq",
                "network": "main-albatross",
                "size_bytes": 1,
                "status": "error",
            }
        )
        assert record.version == "unknown"
        assert record.fingerprint is None
        assert not record.ok

    def test_ok(self, record):
        assert record.ok
