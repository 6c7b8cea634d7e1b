"""
Byte streams shared by every pipeline stage

A stream is any async iterator of ``bytes``: finite, lazily produced and not
restartable. ``Channel`` is the bounded pipe used to join two concurrently
running stages. A producer blocks while the channel is full and a consumer
blocks while it is empty, so memory stays bounded no matter how large the
dump is.
"""

import asyncio
from collections import deque
from typing import AsyncIterator, Deque, Optional

from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_CHANNEL_DEPTH = 8

ByteStream = AsyncIterator[bytes]


async def close_stream(stream) -> None:
    """Release a stream early; kills the process or task feeding it, if any"""
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


class Channel:
    """Bounded in-memory pipe between a writer and a single reader.

    The writer ends the stream with ``close()``; passing an error makes the
    reader raise it once the buffered chunks are consumed, so a failure is
    never mistaken for a short but complete stream. The reader may abandon
    the stream with ``aclose()``, after which writes raise BrokenPipeError
    and the attached producer task, if any, is cancelled.
    """

    def __init__(self, name: str = "channel", depth: int = DEFAULT_CHANNEL_DEPTH):
        if depth < 1:
            raise ValueError("channel depth must be at least 1")
        self.name = name
        self.depth = depth
        self._buffer: Deque[bytes] = deque()
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._writable.set()
        self._closed = False
        self._error: Optional[BaseException] = None
        self._reader_closed = False
        self._producer: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def reader_closed(self) -> bool:
        """True once the reader has abandoned the stream"""
        return self._reader_closed

    def attach_producer(self, task: asyncio.Task) -> None:
        """Tie a background writer task to this channel's lifetime"""
        self._producer = task
        task.add_done_callback(self._producer_done)

    def _producer_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not self._closed:
            self.close(exc)

    async def write(self, data: bytes) -> None:
        while len(self._buffer) >= self.depth and not self._reader_closed:
            self._writable.clear()
            await self._writable.wait()
        if self._reader_closed:
            raise BrokenPipeError(f"{self.name}: reader closed the stream")
        if self._closed:
            raise ValueError(f"{self.name}: write to a closed channel")
        if not data:
            return
        self._buffer.append(bytes(data))
        self._readable.set()

    def close(self, error: Optional[BaseException] = None) -> None:
        """Writer side: no more data will follow"""
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._readable.set()
        self._writable.set()

    async def read(self) -> bytes:
        """Next chunk, or ``b""`` at end of stream"""
        while not self._buffer:
            if self._closed or self._reader_closed:
                if self._error is not None and not self._reader_closed:
                    raise self._error
                return b""
            self._readable.clear()
            await self._readable.wait()
        chunk = self._buffer.popleft()
        self._writable.set()
        return chunk

    def close_reader(self) -> None:
        """Reader side: stop consuming and unblock the writer"""
        if self._reader_closed:
            return
        self._reader_closed = True
        self._buffer.clear()
        self._writable.set()
        self._readable.set()
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()

    async def aclose(self) -> None:
        self.close_reader()
        if self._producer is not None:
            await asyncio.gather(self._producer, return_exceptions=True)

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.read()
        if not chunk:
            raise StopAsyncIteration
        return chunk

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    def __repr__(self):
        state = "closed" if self._closed else "open"
        return f"<Channel {self.name} {state} buffered={len(self._buffer)}>"
