"""Response wrapper and rate-limit metadata."""

from __future__ import annotations

import dataclasses
import datetime as dt
import enum
import typing as typ

if typ.TYPE_CHECKING:
    import httpx

HEADER_HISTORY_QUERY_ID = "X-Axiom-History-Query-Id"

# Vendor status code returned when a query or ingest quota is used up.
HTTP_STATUS_LIMIT_EXCEEDED = 430

_RATE_HEADERS = "X-RateLimit"
_QUERY_HEADERS = "X-QueryLimit"
_INGEST_HEADERS = "X-IngestLimit"
_HEADER_RATE_SCOPE = "X-RateLimit-Scope"


class LimitScope(enum.StrEnum):
    """Who a limit applies to."""

    UNKNOWN = "unknown"
    USER = "user"
    ORGANIZATION = "organization"
    ANONYMOUS = "anonymous"


class LimitType(enum.StrEnum):
    """Which quota a limit describes."""

    RATE = "rate"
    QUERY = "query"
    INGEST = "ingest"


@dataclasses.dataclass(frozen=True, slots=True)
class Limit:
    """Limit metadata reported in response headers.

    Attributes
    ----------
    limit_type
        The quota the headers describe.
    scope
        Who the limit applies to; only reported for rate limits.
    limit
        Maximum number of requests (or bytes, for quotas) in the window.
    remaining
        What is left of ``limit`` in the current window.
    reset
        When the window resets, if reported.

    """

    limit_type: LimitType
    scope: LimitScope = LimitScope.UNKNOWN
    limit: int = 0
    remaining: int = 0
    reset: dt.datetime | None = None


def _int_header(headers: httpx.Headers, name: str) -> int | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _parse_scope(value: str | None) -> LimitScope:
    if value is None:
        return LimitScope.UNKNOWN
    try:
        return LimitScope(value.strip().lower())
    except ValueError:
        return LimitScope.UNKNOWN


def _limit_from_prefix(
    headers: httpx.Headers, prefix: str, limit_type: LimitType
) -> Limit | None:
    limit = _int_header(headers, f"{prefix}-Limit")
    remaining = _int_header(headers, f"{prefix}-Remaining")
    reset = _int_header(headers, f"{prefix}-Reset")
    if limit is None and remaining is None and reset is None:
        return None
    scope = (
        _parse_scope(headers.get(_HEADER_RATE_SCOPE))
        if limit_type is LimitType.RATE
        else LimitScope.UNKNOWN
    )
    return Limit(
        limit_type=limit_type,
        scope=scope,
        limit=limit or 0,
        remaining=remaining or 0,
        reset=dt.datetime.fromtimestamp(reset, tz=dt.UTC) if reset is not None else None,
    )


def parse_limit(headers: httpx.Headers) -> Limit | None:
    """Return the most specific limit reported in ``headers``.

    Ingest and query quota headers take precedence over the generic rate
    limit headers, matching what a ``430`` response reports.
    """
    for prefix, limit_type in (
        (_INGEST_HEADERS, LimitType.INGEST),
        (_QUERY_HEADERS, LimitType.QUERY),
        (_RATE_HEADERS, LimitType.RATE),
    ):
        limit = _limit_from_prefix(headers, prefix, limit_type)
        if limit is not None:
            return limit
    return None


@dataclasses.dataclass(slots=True)
class Response[T]:
    """A completed API response.

    The body of ``raw`` has already been read (or streamed into a sink) and
    closed when a ``Response`` is handed out.

    Attributes
    ----------
    raw
        The underlying httpx response.
    value
        Decoded result, when a result type was requested.
    limit
        Rate-limit metadata reported by the server, if any.

    """

    raw: httpx.Response
    value: T | None = None
    limit: Limit | None = None

    @property
    def status_code(self) -> int:
        """HTTP status code of the response."""
        return self.raw.status_code

    @property
    def headers(self) -> httpx.Headers:
        """Response headers."""
        return self.raw.headers

    @property
    def history_query_id(self) -> str | None:
        """Saved-query identifier reported for query calls."""
        return self.raw.headers.get(HEADER_HISTORY_QUERY_ID)

    @classmethod
    def wrap(cls, raw: httpx.Response, value: T | None = None) -> Response[T]:
        """Wrap ``raw`` and parse its limit headers."""
        return cls(raw=raw, value=value, limit=parse_limit(raw.headers))
