"""Event ingestion: content detection, encoding, batching and the service."""

from __future__ import annotations

from .batching import BatchingBuffer, EventSink
from .detect import adetect_content_type, detect_content_type
from .encoder import EncodedEventStream, Pipe
from .models import (
    TIMESTAMP_FIELD,
    ContentEncoding,
    ContentType,
    Event,
    IngestFailure,
    IngestOptions,
    IngestStatus,
)
from .service import DatasetsService

__all__ = [
    "TIMESTAMP_FIELD",
    "BatchingBuffer",
    "ContentEncoding",
    "ContentType",
    "DatasetsService",
    "EncodedEventStream",
    "Event",
    "EventSink",
    "IngestFailure",
    "IngestOptions",
    "IngestStatus",
    "Pipe",
    "adetect_content_type",
    "detect_content_type",
]
