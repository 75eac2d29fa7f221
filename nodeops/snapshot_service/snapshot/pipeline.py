"""
Streaming snapshot pipeline: directory -> tar.gz -> object store.

Two stages run concurrently, joined by a bounded ByteChannel:

    ┌────────────────────┐  write (blocks when full)  ┌────────────────┐
    │ ArchiveEncoder     │───────────────────────────▶│ ByteChannel    │
    │ (worker thread)    │                            │ max_chunks     │
    └────────────────────┘                            └───────┬────────┘
                                                              │ aread
                                                              ▼
                                                     ┌────────────────┐
                                                     │ Uploader       │
                                                     │ (event loop)   │
                                                     └────────────────┘

Failure handling:
    - Encoder fails: channel closed with the error, upload aborted,
      CaptureError raised with the encoder's exception as cause
    - Upload fails: channel aborted, encoder stops on its next write,
      UploadError raised
    - Caller cancels: channel aborted, upload cancelled (multipart aborted),
      CancelledError re-raised once both stages have stopped

Invariants:
    - Exactly one error reaches the caller, naming the root cause
    - The archive is never held whole in memory or on disk
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from ..config import PipelineConfig
from ..errors import CaptureError, ChannelAbortedError, UploadError
from ..storage.base import ObjectStore, UploadResult
from .channel import ByteChannel
from .encoder import ArchiveEncoder, EncodeResult
from .filter import PathFilter
from .uploader import StreamingUploader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one archive capture.

    Attributes:
        key: Object key of the archive
        file_count: Files archived
        uncompressed_bytes: Sum of archived file sizes
        compressed_bytes: Size of the uploaded object
        parts: Upload parts used
        fingerprint: Digest of archived content (same scheme as MetadataComputer)
        duration_ms: Wall time of the pipeline
    """

    key: str
    file_count: int
    uncompressed_bytes: int
    compressed_bytes: int
    parts: int
    fingerprint: str
    duration_ms: int


class SnapshotPipeline:
    """Composes encoder, channel and uploader into one capture operation.

    Example:
        >>> pipeline = SnapshotPipeline.from_config(store, path_filter, config.pipeline)
        >>> result = await pipeline.run("/data/nimiq", "snapshots", key.archive_key)
    """

    def __init__(
        self,
        encoder: ArchiveEncoder,
        uploader: StreamingUploader,
        chunk_size: int = 1024 * 1024,
        max_chunks: int = 8,
    ) -> None:
        self.encoder = encoder
        self.uploader = uploader
        self.chunk_size = chunk_size
        self.max_chunks = max_chunks

    @classmethod
    def from_config(
        cls,
        store: ObjectStore,
        path_filter: PathFilter,
        config: PipelineConfig,
    ) -> SnapshotPipeline:
        return cls(
            encoder=ArchiveEncoder(path_filter, compression_level=config.compression_level),
            uploader=StreamingUploader(store),
            chunk_size=config.chunk_size_bytes,
            max_chunks=config.max_chunks,
        )

    async def run(self, root: str | Path, bucket: str, key: str) -> PipelineResult:
        """Archive ``root`` into ``bucket``/``key``.

        Raises:
            CaptureError: Encoding failed (the encoder's exception is chained as cause)
            UploadError: Upload failed
        """
        start_time = time.time()
        channel = ByteChannel(chunk_size=self.chunk_size, max_chunks=self.max_chunks)

        encode_task = asyncio.create_task(asyncio.to_thread(self.encoder.encode, root, channel))
        upload_task = asyncio.create_task(self.uploader.upload(channel, bucket, key))

        try:
            await asyncio.wait({encode_task, upload_task}, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            logger.warning("Snapshot pipeline cancelled", extra={"key": key})
            channel.abort(asyncio.CancelledError())
            upload_task.cancel()
            await asyncio.gather(encode_task, upload_task, return_exceptions=True)
            raise

        if upload_task.done() and upload_task.exception() is not None:
            # Unblock the encoder; it fails on its next write
            channel.abort(upload_task.exception())

        encode_outcome, upload_outcome = await asyncio.gather(
            encode_task, upload_task, return_exceptions=True
        )

        if isinstance(encode_outcome, BaseException) and not isinstance(
            encode_outcome, ChannelAbortedError
        ):
            raise CaptureError(
                f"Archive encoding of {root} failed: {encode_outcome}",
                details={"key": key, "error_type": type(encode_outcome).__name__},
            ) from encode_outcome

        if isinstance(upload_outcome, BaseException):
            if isinstance(upload_outcome, CaptureError):
                raise upload_outcome
            raise UploadError(f"Upload to {bucket}/{key} failed: {upload_outcome}") from upload_outcome

        if isinstance(encode_outcome, BaseException):
            raise CaptureError(f"Archive encoding of {root} failed: {encode_outcome}") from encode_outcome

        encoded: EncodeResult = encode_outcome
        uploaded: UploadResult = upload_outcome
        result = PipelineResult(
            key=key,
            file_count=encoded.file_count,
            uncompressed_bytes=encoded.uncompressed_bytes,
            compressed_bytes=uploaded.size_bytes,
            parts=uploaded.parts,
            fingerprint=encoded.fingerprint,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        logger.info(
            "Snapshot archive stored",
            extra={
                "bucket": bucket,
                "key": key,
                "files": result.file_count,
                "compressed_bytes": result.compressed_bytes,
                "duration_ms": result.duration_ms,
            },
        )
        return result
