"""Compressing NDJSON encoder feeding request bodies through a bounded pipe.

:class:`EncodedEventStream` is an async iterator of compressed bytes that
httpx can send as a streaming request body. The first read starts a
producer task which serializes events one per line, compresses them and
hands the output over a :class:`Pipe`. The pipe holds at most ``capacity``
chunks, so the producer waits for the HTTP send to drain it and memory
stays bounded however many events the source yields.

Any failure on the producer side, such as an event that cannot be
serialized or a source that raises, is delivered to the reader as
:class:`~axiom_client.errors.EventEncodingError` and always ends the stream.
When serialization and the final compressor flush both fail, the
serialization error is the one reported.
"""

from __future__ import annotations

import asyncio
import collections.abc as cabc
import typing as typ
import zlib

import msgspec
import zstandard

from axiom_client.errors import EventEncodingError
from axiom_client.ingest.models import ContentEncoding, Event
from axiom_client.logging import get_logger, log_debug

PRODUCER_TASK_NAME = "axiom-event-encoder"

DEFAULT_PIPE_CAPACITY = 8

# zlib window bits selecting the gzip container.
_GZIP_WBITS = 16 + zlib.MAX_WBITS

logger = get_logger(__name__)

type EventSource = cabc.Iterable[Event] | cabc.AsyncIterable[Event]


class Pipe:
    """Bounded, single-producer single-consumer hand-off of byte chunks.

    ``write`` waits while ``capacity`` chunks are pending. ``close`` marks
    the end of the stream without waiting for room; an error passed to it
    is raised by the reader once the chunks written before it have been
    read.
    """

    def __init__(self, capacity: int = DEFAULT_PIPE_CAPACITY) -> None:
        """Create an empty pipe holding at most ``capacity`` chunks."""
        if capacity < 1:
            msg = "pipe capacity must be at least 1"
            raise ValueError(msg)
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._slots = asyncio.Semaphore(capacity)
        self._error: BaseException | None = None
        self._closed = False
        self._drained = False

    @property
    def closed(self) -> bool:
        """Whether the writer has closed the pipe."""
        return self._closed

    async def write(self, data: bytes) -> None:
        """Queue ``data`` for the reader, waiting while the pipe is full."""
        if self._closed:
            msg = "write to closed pipe"
            raise RuntimeError(msg)
        if data:
            await self._slots.acquire()
            self._queue.put_nowait(data)

    def close(self, error: BaseException | None = None) -> None:
        """Close the writing end, optionally failing the reader with ``error``."""
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._queue.put_nowait(None)

    async def read(self) -> bytes:
        """Return the next chunk, or ``b""`` once the pipe is exhausted.

        Raises
        ------
        BaseException
            The error the writer closed the pipe with.

        """
        if self._drained:
            return self._finish()
        chunk = await self._queue.get()
        if chunk is None:
            self._drained = True
            return self._finish()
        self._slots.release()
        return chunk

    def _finish(self) -> bytes:
        if self._error is not None:
            raise self._error
        return b""


class _Compressor(typ.Protocol):
    def compress(self, data: bytes, /) -> bytes: ...

    def flush(self) -> bytes: ...


class _Identity:
    """Passthrough used for uncompressed payloads."""

    def compress(self, data: bytes, /) -> bytes:
        return data

    def flush(self) -> bytes:
        return b""


def new_compressor(encoding: ContentEncoding) -> _Compressor:
    """Return a streaming compressor for ``encoding``."""
    match encoding:
        case ContentEncoding.ZSTD:
            return zstandard.ZstdCompressor().compressobj()
        case ContentEncoding.GZIP:
            return zlib.compressobj(wbits=_GZIP_WBITS)
        case ContentEncoding.IDENTITY:
            return _Identity()


def _finish_compressor(
    compressor: _Compressor, error: EventEncodingError | None
) -> tuple[bytes, EventEncodingError | None]:
    """Flush ``compressor``; a failure only counts when nothing failed before."""
    try:
        return compressor.flush(), error
    except (zstandard.ZstdError, zlib.error) as exc:
        if error is None:
            error = EventEncodingError.compression(exc)
        return b"", error


async def _iterate(events: EventSource) -> cabc.AsyncIterator[Event]:
    if isinstance(events, cabc.AsyncIterable):
        async for event in events:
            yield event
    else:
        for event in events:
            yield event


class EncodedEventStream:
    """Async iterator of compressed NDJSON produced by a background task.

    Events are written in the order the source yields them. Each event must
    not be mutated by the caller until the stream has been consumed.

    Parameters
    ----------
    events
        A finite iterable of events, or an async iterable drained until it
        is exhausted.
    encoding
        Compression applied to the NDJSON lines.
    capacity
        Maximum number of compressed chunks buffered in the pipe.

    """

    def __init__(
        self,
        events: EventSource,
        *,
        encoding: ContentEncoding = ContentEncoding.ZSTD,
        capacity: int = DEFAULT_PIPE_CAPACITY,
    ) -> None:
        """Prepare the stream; no work happens until the first read."""
        self._events = events
        self._encoding = encoding
        self._pipe = Pipe(capacity)
        self._task: asyncio.Task[None] | None = None
        self.events_encoded = 0
        self.bytes_written = 0

    @property
    def encoding(self) -> ContentEncoding:
        """Compression applied to the stream."""
        return self._encoding

    def __aiter__(self) -> EncodedEventStream:
        """Return the stream itself."""
        return self

    async def __anext__(self) -> bytes:
        """Return the next compressed chunk, starting the producer if needed."""
        if self._task is None:
            self._task = asyncio.create_task(self._produce(), name=PRODUCER_TASK_NAME)
        chunk = await self._pipe.read()
        if not chunk:
            raise StopAsyncIteration
        return chunk

    async def aclose(self) -> None:
        """Stop the producer and wait for it to finish.

        Safe to call more than once and after the stream was fully read.
        """
        task = self._task
        if task is None:
            return
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _produce(self) -> None:
        compressor = new_compressor(self._encoding)
        error: EventEncodingError | None = None
        tail = b""
        completed = False
        try:
            try:
                error = await self._encode_events(compressor)
            except Exception as exc:  # noqa: BLE001 - handed to the reader
                error = EventEncodingError.unexpected(exc)
            finally:
                # The compressor is finished before the pipe is closed, also
                # when the producer is cancelled.
                tail, error = _finish_compressor(compressor, error)
            if error is None:
                await self._write(tail)
            completed = True
        finally:
            if error is None and not completed:
                error = EventEncodingError.interrupted()
            log_debug(
                logger,
                "encoder finished events=%d bytes=%d encoding=%s failed=%s",
                self.events_encoded,
                self.bytes_written,
                self._encoding.value,
                error is not None,
            )
            self._pipe.close(error)

    async def _encode_events(
        self, compressor: _Compressor
    ) -> EventEncodingError | None:
        iterator = aiter(_iterate(self._events))
        while True:
            try:
                event = await anext(iterator)
            except StopAsyncIteration:
                return None
            except Exception as exc:  # noqa: BLE001 - handed to the reader
                return EventEncodingError.source(exc)

            try:
                line = msgspec.json.encode(event)
            except Exception as exc:  # noqa: BLE001 - includes RecursionError
                return EventEncodingError.serialization(self.events_encoded, exc)

            try:
                chunk = compressor.compress(line + b"\n")
            except (zstandard.ZstdError, zlib.error) as exc:
                return EventEncodingError.compression(exc)

            self.events_encoded += 1
            await self._write(chunk)

    async def _write(self, chunk: bytes) -> None:
        if chunk:
            self.bytes_written += len(chunk)
            await self._pipe.write(chunk)


__all__ = [
    "DEFAULT_PIPE_CAPACITY",
    "PRODUCER_TASK_NAME",
    "EncodedEventStream",
    "EventSource",
    "Pipe",
    "new_compressor",
]
