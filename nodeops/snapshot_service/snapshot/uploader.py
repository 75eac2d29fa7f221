"""Streaming upload of an in-process byte stream to the object store."""

from __future__ import annotations

import logging
import time

from ..errors import UploadError
from ..storage.base import ByteSource, ObjectStore, UploadResult

logger = logging.getLogger(__name__)

ARCHIVE_CONTENT_TYPE = "application/gzip"


class StreamingUploader:
    """Transfers a readable stream of unknown length to a bucket/key.

    The stream is opaque: the uploader neither knows nor needs its final
    size. Chunking and multipart handling are delegated to the store.

    Attributes:
        store: Object store receiving the upload
        content_type: Content type set on uploaded objects
    """

    def __init__(self, store: ObjectStore, content_type: str = ARCHIVE_CONTENT_TYPE) -> None:
        self.store = store
        self.content_type = content_type

    async def upload(self, stream: ByteSource, bucket: str, key: str) -> UploadResult:
        """Upload ``stream`` to ``bucket``/``key``.

        Raises:
            UploadError: If the transfer failed; no object is committed
        """
        start_time = time.time()
        logger.info("Starting streaming upload", extra={"bucket": bucket, "key": key})

        try:
            result = await self.store.put_stream(bucket, key, stream, self.content_type)
        except UploadError:
            raise
        except Exception as e:
            raise UploadError(f"Upload to {bucket}/{key} failed: {e}") from e

        logger.info(
            "Finished streaming upload",
            extra={
                "bucket": bucket,
                "key": key,
                "size_bytes": result.size_bytes,
                "parts": result.parts,
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )
        return result
