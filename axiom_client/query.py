"""Models for APL query requests and results."""

from __future__ import annotations

import datetime as dt
import typing as typ

import msgspec

# Result format requested from the APL endpoint.
QUERY_RESULT_FORMAT = "legacy"


class AplQueryRequest(msgspec.Struct, kw_only=True, omit_defaults=True):
    """Body of ``POST /api/v1/datasets/_apl``."""

    apl: str
    start_time: dt.datetime | None = msgspec.field(default=None, name="startTime")
    end_time: dt.datetime | None = msgspec.field(default=None, name="endTime")


class QueryStatus(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    """Execution statistics of a query.

    ``elapsed_time`` is reported by the server in microseconds.
    """

    elapsed_time: int = 0
    blocks_examined: int = 0
    rows_examined: int = 0
    rows_matched: int = 0
    num_groups: int = 0
    is_partial: bool = False
    is_estimate: bool = False
    continuation_token: str = ""
    min_block_time: dt.datetime | None = None
    max_block_time: dt.datetime | None = None
    min_cursor: str = ""
    max_cursor: str = ""

    @property
    def elapsed(self) -> dt.timedelta:
        """Elapsed time as a timedelta."""
        return dt.timedelta(microseconds=self.elapsed_time)


class Entry(msgspec.Struct, frozen=True, kw_only=True):
    """One matched event."""

    time: dt.datetime | None = msgspec.field(default=None, name="_time")
    sys_time: dt.datetime | None = msgspec.field(default=None, name="_sysTime")
    row_id: str = msgspec.field(default="", name="_rowId")
    data: dict[str, typ.Any] = msgspec.field(default_factory=dict)


class QueryResult(msgspec.Struct, kw_only=True, rename="camel"):
    """Result of an APL query.

    Fields the server adds for its own UI (``request``, ``datasetNames``,
    ``fieldsMetaMap``) are not modelled and are skipped on decode.
    """

    status: QueryStatus = msgspec.field(default_factory=QueryStatus)
    matches: list[Entry] = msgspec.field(default_factory=list)
    buckets: dict[str, typ.Any] = msgspec.field(default_factory=dict)
    saved_query_id: str = ""


__all__ = [
    "QUERY_RESULT_FORMAT",
    "AplQueryRequest",
    "Entry",
    "QueryResult",
    "QueryStatus",
]
