"""
Archive encoder: directory tree -> tar stream -> gzip -> byte sink.

Runs synchronously (in a worker thread when driven by the pipeline) and
writes straight into a ByteChannel, so the archive is never materialized.

Archive format:
    gzip( tar(PAX) of every included regular file, member name = path
    relative to the snapshot root, header carries size/mode/mtime/uid/gid )

Shutdown order matters: tar end-of-archive blocks, then the gzip trailer,
then the channel end-of-stream. Closing the channel earlier would let the
uploader commit a truncated object.

Invariants:
    - Member names are relative, '/'-separated and unique
    - No directory members are written (extraction recreates parents)
    - Hard-linked paths are stored as independent regular members
    - A file that vanishes or shrinks mid-copy fails the whole encode
"""

from __future__ import annotations

import gzip
import hashlib
import logging
import tarfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Protocol

from .filter import PathFilter
from .walker import list_files

logger = logging.getLogger(__name__)

COPY_BUFSIZE = 1024 * 1024


class ByteSink(Protocol):
    """Writer side of a byte channel."""

    def write(self, data: bytes) -> int:
        ...

    def flush(self) -> None:
        ...

    def close(self, error: BaseException | None = None) -> None:
        ...


@dataclass(frozen=True)
class EncodeResult:
    """Summary of one encoded archive.

    Attributes:
        file_count: Number of archive members
        uncompressed_bytes: Sum of member sizes
        compressed_bytes: Bytes written to the sink
        fingerprint: sha256 hex digest of member contents in member order
    """

    file_count: int
    uncompressed_bytes: int
    compressed_bytes: int
    fingerprint: str


class _HashingReader:
    """File wrapper feeding every byte read into a running digest."""

    def __init__(self, fileobj: BinaryIO, digest: Any) -> None:
        self._fileobj = fileobj
        self._digest = digest

    def read(self, size: int = -1) -> bytes:
        data = self._fileobj.read(size)
        self._digest.update(data)
        return data


class ArchiveEncoder:
    """Serializes a directory tree into a gzip-compressed tar stream.

    Attributes:
        path_filter: Filter shared with the metadata computer
        compression_level: gzip compression level (1-9)

    Example:
        >>> encoder = ArchiveEncoder(PathFilter(frozenset({"LOCK"})))
        >>> result = encoder.encode("/data/nimiq", channel)
    """

    def __init__(self, path_filter: PathFilter, compression_level: int = 6) -> None:
        self.path_filter = path_filter
        self.compression_level = compression_level

    def encode(self, root: str | Path, sink: ByteSink) -> EncodeResult:
        """Write the archive of ``root`` into ``sink`` and close it.

        The sink is always closed: cleanly on success, with the exception on
        failure so the reader never mistakes a failure for end-of-archive.

        Raises:
            OSError: Walk, open or read failure
            tarfile.TarError: Archive framing failure
            ChannelAbortedError: The reader went away
        """
        start_time = time.time()
        digest = hashlib.sha256()
        file_count = 0
        uncompressed_bytes = 0
        compressed_bytes = _CountingSink(sink)
        gz: gzip.GzipFile | None = None
        tar: tarfile.TarFile | None = None

        try:
            files = list_files(root, self.path_filter)

            gz = gzip.GzipFile(
                filename="",
                mode="wb",
                compresslevel=self.compression_level,
                fileobj=compressed_bytes,
            )
            # Every path is a regular member, hard links included
            tar = tarfile.open(
                fileobj=gz, mode="w|", format=tarfile.PAX_FORMAT, dereference=True
            )

            for source in files:
                with open(source.absolute_path, "rb") as f:
                    info = tar.gettarinfo(arcname=source.relative_path, fileobj=f)
                    tar.addfile(info, _HashingReader(f, digest))
                file_count += 1
                uncompressed_bytes += info.size

            tar.close()
            gz.close()
            sink.close()

        except BaseException as e:
            sink.close(error=e)
            # Half-written streams finish into nothing, never into the sink
            compressed_bytes.detach()
            if tar is not None:
                tar.close()
            if gz is not None:
                gz.close()
            raise

        result = EncodeResult(
            file_count=file_count,
            uncompressed_bytes=uncompressed_bytes,
            compressed_bytes=compressed_bytes.count,
            fingerprint=digest.hexdigest(),
        )
        logger.info(
            "Encoded archive",
            extra={
                "root": str(root),
                "files": file_count,
                "uncompressed_bytes": uncompressed_bytes,
                "compressed_bytes": compressed_bytes.count,
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )
        return result


class _CountingSink:
    """Counts bytes on their way into the sink; never closes it.

    Once detached, writes are accepted and dropped.
    """

    def __init__(self, sink: ByteSink) -> None:
        self._sink: ByteSink | None = sink
        self.count = 0

    def write(self, data: bytes) -> int:
        if self._sink is None:
            return len(data)
        written = self._sink.write(bytes(data))
        self.count += len(data)
        return written

    def flush(self) -> None:
        if self._sink is not None:
            self._sink.flush()

    def detach(self) -> None:
        self._sink = None
