"""Streaming primitives moving bytes between HTTP bodies and the backend."""

from __future__ import annotations

import asyncio
import io
from typing import AsyncIterator, Callable, Optional

import structlog
from botocore.exceptions import BotoCoreError

from .backend import BackendError, StoredObject


LOGGER = structlog.get_logger("s3gate.transfer")


class AsyncBodyReader(io.RawIOBase):
    """Blocking, non-seekable file object fed from an async byte iterator.

    The storage SDK reads from this object on a worker thread; every refill is
    scheduled back onto the event loop that owns the request, so the body is pulled
    chunk by chunk in order and never held in memory as a whole. ``read(n)`` only
    returns fewer than ``n`` bytes at end of stream, which multipart uploads rely on.
    """

    def __init__(self, chunks: AsyncIterator[bytes], loop: asyncio.AbstractEventLoop):
        super().__init__()
        self._chunks = chunks
        self._loop = loop
        self._pending = memoryview(b"")
        self._exhausted = False
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    async def _pull(self) -> Optional[bytes]:
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            return None

    def _fill(self) -> bool:
        while not self._pending and not self._exhausted:
            chunk = asyncio.run_coroutine_threadsafe(self._pull(), self._loop).result()
            if chunk is None:
                self._exhausted = True
            else:
                self._pending = memoryview(chunk)
        return bool(self._pending)

    def read(self, size: int | None = -1) -> bytes:
        if size is None or size < 0:
            return self.readall()
        out = bytearray()
        while len(out) < size and self._fill():
            take = min(size - len(out), len(self._pending))
            out += self._pending[:take]
            self._pending = self._pending[take:]
        self.bytes_read += len(out)
        return bytes(out)

    def readall(self) -> bytes:
        out = bytearray()
        while self._fill():
            out += self._pending
            self._pending = memoryview(b"")
        self.bytes_read += len(out)
        return bytes(out)

    def readinto(self, buffer) -> int:
        data = self.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)


async def iter_object_chunks(
    stored: StoredObject,
    chunk_size: int,
    on_chunk: Optional[Callable[[int], None]] = None,
) -> AsyncIterator[bytes]:
    """Yield an object's content strictly in order, one outstanding read at a time.

    The backend stream is closed when the iterator finishes, fails, or is cancelled
    because the client went away. Read failures are raised rather than ending the
    stream early, so a broken transfer is never mistaken for a complete body.
    """
    body = stored.body
    try:
        while True:
            try:
                chunk = await asyncio.to_thread(body.read, chunk_size)
            except (BotoCoreError, OSError) as exc:
                LOGGER.error("object_stream_failed", key=stored.info.key, error=str(exc))
                raise BackendError(stored.info.key, exc) from exc
            if not chunk:
                break
            if on_chunk is not None:
                on_chunk(len(chunk))
            yield chunk
    finally:
        body.close()
