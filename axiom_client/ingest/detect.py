"""Detect the framing of a raw ingest payload.

Detection looks at the first non-whitespace character only:

- ``[`` is a JSON array,
- ``{`` is NDJSON,
- a letter or ``"`` starts a CSV table.

A single pretty-printed JSON object such as ``{\\n"a": "b"\\n}`` therefore
classifies as NDJSON. The server rejects it as such; callers with
pretty-printed objects should wrap them in an array or pass the content
type explicitly.

Compressed payloads are never detected; the encoding has to be known out of
band. The stream returned alongside the content type replays the bytes
inspected during detection followed by the unread rest of the original,
which must not be read from again.
"""

from __future__ import annotations

import codecs
import io
import typing as typ

from axiom_client.errors import ContentTypeDetectionError
from axiom_client.ingest.models import ContentType

if typ.TYPE_CHECKING:
    import collections.abc as cabc

_PEEK_SIZE = 4096


def _classify(char: str) -> ContentType:
    if char == "[":
        return ContentType.JSON
    if char == "{":
        return ContentType.NDJSON
    # A CSV table is assumed to start with a header name or a quote.
    if char.isalpha() or char == '"':
        return ContentType.CSV
    raise ContentTypeDetectionError.unknown_format()


class _Scanner:
    """Feed raw chunks until the first non-whitespace character is seen."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.consumed = bytearray()

    def feed(self, chunk: bytes) -> ContentType | None:
        self.consumed.extend(chunk)
        for char in self._decoder.decode(chunk):
            if not char.isspace():
                return _classify(char)
        return None

    def finish(self) -> ContentType:
        for char in self._decoder.decode(b"", final=True):
            if not char.isspace():
                return _classify(char)
        raise ContentTypeDetectionError.empty_input()


class PrefixedReader(io.RawIOBase):
    """Binary reader that replays ``prefix`` before reading ``rest``."""

    def __init__(self, prefix: bytes, rest: typ.BinaryIO) -> None:
        """Wrap ``rest`` so that ``prefix`` is read first."""
        super().__init__()
        self._prefix = memoryview(prefix)
        self._rest = rest

    def readable(self) -> bool:
        """Report that the stream supports reading."""
        return True

    def readinto(self, buffer: cabc.Buffer) -> int:
        """Fill ``buffer`` from the prefix first, then from the rest."""
        view = memoryview(buffer).cast("B")
        if self._prefix:
            size = min(len(view), len(self._prefix))
            view[:size] = self._prefix[:size]
            self._prefix = self._prefix[size:]
            return size
        data = self._rest.read(len(view))
        if not data:
            return 0
        view[: len(data)] = data
        return len(data)


def detect_content_type(
    reader: typ.BinaryIO,
) -> tuple[io.BufferedReader, ContentType]:
    """Detect the content type of the data readable from ``reader``.

    Parameters
    ----------
    reader
        Binary file-like object positioned at the start of the payload.

    Returns
    -------
    tuple[io.BufferedReader, ContentType]
        A reader reproducing the full payload, which must be used instead of
        ``reader``, and the detected content type.

    Raises
    ------
    ContentTypeDetectionError
        If the payload is empty or starts with an unsupported character.

    """
    scanner = _Scanner()
    content_type: ContentType | None = None
    while content_type is None:
        chunk = reader.read(_PEEK_SIZE)
        content_type = scanner.feed(chunk) if chunk else scanner.finish()
    combined = PrefixedReader(bytes(scanner.consumed), reader)
    return io.BufferedReader(combined), content_type


async def _replay(
    prefix: bytes, rest: cabc.AsyncIterator[bytes]
) -> cabc.AsyncIterator[bytes]:
    if prefix:
        yield prefix
    async for chunk in rest:
        yield chunk


async def adetect_content_type(
    stream: cabc.AsyncIterable[bytes],
) -> tuple[cabc.AsyncIterator[bytes], ContentType]:
    """Detect the content type of an async byte stream.

    Behaves like :func:`detect_content_type` but for async iterables, such
    as an upload being proxied. The returned iterator yields the inspected
    chunks first and then continues with ``stream``.

    Raises
    ------
    ContentTypeDetectionError
        If the stream is empty or starts with an unsupported character.

    """
    iterator = aiter(stream)
    scanner = _Scanner()
    content_type: ContentType | None = None
    async for chunk in iterator:
        content_type = scanner.feed(chunk)
        if content_type is not None:
            break
    if content_type is None:
        content_type = scanner.finish()
    return _replay(bytes(scanner.consumed), iterator), content_type


__all__ = ["PrefixedReader", "adetect_content_type", "detect_content_type"]
