"""
Bounded byte channel joining the archive encoder to the uploader.

The encoder runs in a worker thread and writes through the file-like side
(``write``/``close``); the uploader reads chunks on the event loop through
``aread``. At most ``max_chunks`` chunks are queued, so a slow upload blocks
the encoder instead of letting it buffer the whole archive.

Errors travel in both directions:
    - close(error) makes the reader raise ChannelClosedError instead of
      seeing a clean end-of-stream (no silently truncated archives)
    - abort(exc) makes every pending and future write raise
      ChannelAbortedError, so the encoder stops when the upload is gone

Invariants:
    - Exactly one writer and one reader
    - b"" is returned only after a clean close()
    - Memory held is bounded by max_chunks * chunk_size (+ one partial chunk)
"""

from __future__ import annotations

import asyncio
import queue
from dataclasses import dataclass

from ..errors import ChannelAbortedError, ChannelClosedError

# How often blocked calls re-check for abort/close
POLL_INTERVAL_SECONDS = 0.05


@dataclass(frozen=True)
class _EndOfStream:
    error: BaseException | None = None


class ByteChannel:
    """Bounded, blocking, in-memory pipe of byte chunks.

    Attributes:
        chunk_size: Writes are coalesced into chunks of this size
        max_chunks: Queue capacity in chunks (backpressure threshold)
        bytes_written: Total bytes accepted from the writer

    Example:
        >>> channel = ByteChannel(chunk_size=1024, max_chunks=4)
        >>> # producer thread
        >>> channel.write(b"data"); channel.close()
        >>> # consumer coroutine
        >>> while chunk := await channel.aread(): ...
    """

    def __init__(self, chunk_size: int = 1024 * 1024, max_chunks: int = 8) -> None:
        if chunk_size < 1 or max_chunks < 1:
            raise ValueError("chunk_size and max_chunks must be positive")
        self.chunk_size = chunk_size
        self.max_chunks = max_chunks
        self.bytes_written = 0

        self._queue: queue.Queue[bytes | _EndOfStream] = queue.Queue(maxsize=max_chunks)
        self._pending = bytearray()
        self._closed = False
        self._end: _EndOfStream | None = None
        self._abort_error: BaseException | None = None

    # Writer side (file-like, called from the encoder thread)

    def write(self, data: bytes) -> int:
        """Append bytes, blocking while the queue is full.

        Raises:
            ChannelAbortedError: If the reader aborted
            ValueError: If the channel is already closed
        """
        self._raise_if_aborted()
        if self._closed:
            raise ValueError("write to closed ByteChannel")

        self._pending += data
        self.bytes_written += len(data)
        while len(self._pending) >= self.chunk_size:
            chunk = bytes(self._pending[: self.chunk_size])
            del self._pending[: self.chunk_size]
            self._put(chunk)
        return len(data)

    def flush(self) -> None:
        """No-op; chunks are handed over as soon as they are full."""

    def close(self, error: BaseException | None = None) -> None:
        """Finish the stream, optionally marking it failed.

        A clean close hands over any partial chunk before end-of-stream.
        Closing an aborted channel is a no-op.
        """
        if self._closed:
            return
        self._closed = True
        if self._abort_error is not None:
            return
        try:
            if error is None and self._pending:
                self._put(bytes(self._pending))
            self._pending.clear()
            self._put(_EndOfStream(error))
        except ChannelAbortedError:
            pass

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, item: bytes | _EndOfStream) -> None:
        while True:
            self._raise_if_aborted()
            try:
                self._queue.put(item, timeout=POLL_INTERVAL_SECONDS)
                return
            except queue.Full:
                continue

    def _raise_if_aborted(self) -> None:
        if self._abort_error is not None:
            raise ChannelAbortedError(
                f"Channel aborted by reader: {self._abort_error}"
            ) from self._abort_error

    # Reader side

    def read(self) -> bytes:
        """Return the next chunk, blocking; ``b""`` at a clean end.

        Raises:
            ChannelClosedError: If the writer closed with an error
            ChannelAbortedError: If the channel was aborted
        """
        if self._end is not None:
            return self._finish(self._end)
        while True:
            self._raise_if_aborted()
            try:
                item = self._queue.get(timeout=POLL_INTERVAL_SECONDS)
            except queue.Empty:
                continue
            if isinstance(item, _EndOfStream):
                self._end = item
                return self._finish(item)
            return item

    def _finish(self, end: _EndOfStream) -> bytes:
        """End-of-stream result; repeated on every later read."""
        if end.error is not None:
            raise ChannelClosedError(
                f"Producer failed: {end.error}",
                details={"error_type": type(end.error).__name__},
            ) from end.error
        return b""

    async def aread(self) -> bytes:
        """Async variant of read() for event-loop consumers."""
        return await asyncio.to_thread(self.read)

    def abort(self, exc: BaseException) -> None:
        """Stop the stream from the reader side.

        Unblocks a writer waiting on a full queue and drops queued chunks.
        """
        if self._abort_error is None:
            self._abort_error = exc
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
