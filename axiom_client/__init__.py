"""Async client for ingesting events into and querying Axiom."""

from __future__ import annotations

from ._version import __version__
from .client import AxiomClient
from .config import CLOUD_URL, ClientConfig, RetryPolicy
from .errors import (
    AlreadyExistsError,
    AxiomError,
    ConfigError,
    ContentTypeDetectionError,
    EventEncodingError,
    HTTPError,
    NotFoundError,
    RateLimitedError,
    ResponseDecodeError,
    RetriesExhaustedError,
    TransportError,
    UnauthenticatedError,
    UnauthorizedError,
    UndecodableContentTypeError,
    UnknownContentEncodingError,
    UnknownContentTypeError,
    UnprivilegedTokenError,
)
from .ingest import (
    BatchingBuffer,
    ContentEncoding,
    ContentType,
    IngestOptions,
    IngestStatus,
    detect_content_type,
)
from .query import QueryResult
from .response import Limit, LimitScope, LimitType, Response

__all__ = [
    "CLOUD_URL",
    "AlreadyExistsError",
    "AxiomClient",
    "AxiomError",
    "BatchingBuffer",
    "ClientConfig",
    "ConfigError",
    "ContentEncoding",
    "ContentType",
    "ContentTypeDetectionError",
    "EventEncodingError",
    "HTTPError",
    "IngestOptions",
    "IngestStatus",
    "Limit",
    "LimitScope",
    "LimitType",
    "NotFoundError",
    "QueryResult",
    "RateLimitedError",
    "Response",
    "ResponseDecodeError",
    "RetriesExhaustedError",
    "RetryPolicy",
    "TransportError",
    "UnauthenticatedError",
    "UnauthorizedError",
    "UndecodableContentTypeError",
    "UnknownContentEncodingError",
    "UnknownContentTypeError",
    "UnprivilegedTokenError",
    "__version__",
    "detect_content_type",
]
