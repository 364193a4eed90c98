"""Typed models for event ingestion."""

from __future__ import annotations

import dataclasses
import datetime as dt
import enum
import typing as typ

import msgspec

from axiom_client.errors import UnknownContentEncodingError, UnknownContentTypeError

# Field the server reads the event time from unless told otherwise.
TIMESTAMP_FIELD = "_time"

type Event = dict[str, typ.Any]


class ContentType(enum.Enum):
    """Framing of an ingest payload."""

    JSON = "json"
    NDJSON = "ndjson"
    CSV = "csv"

    @property
    def media_type(self) -> str:
        """Value of the ``Content-Type`` header for this framing."""
        return _CONTENT_TYPE_MEDIA_TYPES[self]

    @classmethod
    def from_media_type(cls, value: str) -> ContentType:
        """Return the content type sent as ``value``.

        Raises
        ------
        UnknownContentTypeError
            If ``value`` names no supported framing.

        """
        for content_type, media_type in _CONTENT_TYPE_MEDIA_TYPES.items():
            if media_type == value:
                return content_type
        raise UnknownContentTypeError(value)


_CONTENT_TYPE_MEDIA_TYPES: dict[ContentType, str] = {
    ContentType.JSON: "application/json",
    ContentType.NDJSON: "application/x-ndjson",
    ContentType.CSV: "text/csv",
}


class ContentEncoding(enum.Enum):
    """Compression applied to an ingest payload."""

    IDENTITY = "identity"
    GZIP = "gzip"
    ZSTD = "zstd"

    @property
    def header_value(self) -> str | None:
        """Value of the ``Content-Encoding`` header, ``None`` for identity."""
        return _CONTENT_ENCODING_HEADERS[self]

    @classmethod
    def from_header_value(cls, value: str) -> ContentEncoding:
        """Return the encoding sent as ``value`` (empty means identity).

        Raises
        ------
        UnknownContentEncodingError
            If ``value`` names no supported encoding.

        """
        if not value:
            return cls.IDENTITY
        for encoding, header_value in _CONTENT_ENCODING_HEADERS.items():
            if header_value == value:
                return encoding
        raise UnknownContentEncodingError(value)


_CONTENT_ENCODING_HEADERS: dict[ContentEncoding, str | None] = {
    ContentEncoding.IDENTITY: None,
    ContentEncoding.GZIP: "gzip",
    ContentEncoding.ZSTD: "zstd",
}


@dataclasses.dataclass(frozen=True, slots=True)
class IngestOptions:
    """Optional parameters for an ingest call.

    Attributes
    ----------
    timestamp_field
        Field the server extracts the event time from. Defaults to
        ``_time`` server side.
    timestamp_format
        Parse pattern for ``timestamp_field``, in the Go reference layout
        (``Mon Jan 2 15:04:05 -0700 MST 2006``).
    csv_delimiter
        Field separator; only meaningful for CSV payloads.

    """

    timestamp_field: str | None = None
    timestamp_format: str | None = None
    csv_delimiter: str | None = None

    def to_params(self) -> dict[str, str]:
        """Return the options as query parameters, omitting unset ones."""
        params = {
            "timestamp-field": self.timestamp_field,
            "timestamp-format": self.timestamp_format,
            "csv-delimiter": self.csv_delimiter,
        }
        return {key: value for key, value in params.items() if value}


class IngestFailure(msgspec.Struct, frozen=True, kw_only=True):
    """One event the server rejected."""

    timestamp: dt.datetime | None = None
    error: str = ""


class IngestStatus(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    """Outcome of one ingest call as reported by the server.

    A call that returns a status succeeded at the HTTP level; rejected
    events are listed in ``failures`` in the order they were sent.
    """

    ingested: int = 0
    failed: int = 0
    failures: tuple[IngestFailure, ...] = ()
    processed_bytes: int = 0
    blocks_created: int = 0
    wal_length: int = 0

    def merge(self, other: IngestStatus) -> IngestStatus:
        """Return the sum of this status and ``other``."""
        return IngestStatus(
            ingested=self.ingested + other.ingested,
            failed=self.failed + other.failed,
            failures=self.failures + other.failures,
            processed_bytes=self.processed_bytes + other.processed_bytes,
            blocks_created=self.blocks_created + other.blocks_created,
            wal_length=other.wal_length,
        )


__all__ = [
    "TIMESTAMP_FIELD",
    "ContentEncoding",
    "ContentType",
    "Event",
    "IngestFailure",
    "IngestOptions",
    "IngestStatus",
]
