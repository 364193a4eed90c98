"""Dataset operations: event ingestion and APL queries."""

from __future__ import annotations

import collections.abc as cabc
import datetime as dt
import typing as typ
import urllib.parse

from axiom_client.errors import UnknownContentEncodingError, UnknownContentTypeError
from axiom_client.ingest.encoder import EncodedEventStream
from axiom_client.ingest.models import (
    ContentEncoding,
    ContentType,
    Event,
    IngestOptions,
    IngestStatus,
)
from axiom_client.observability import (
    ClientEventLogger,
    set_ingest_status_on_span,
    set_query_result_on_span,
    traced,
)
from axiom_client.query import (
    QUERY_RESULT_FORMAT,
    AplQueryRequest,
    QueryResult,
)

if typ.TYPE_CHECKING:
    from axiom_client.client import AxiomClient, StreamBody

DATASETS_PATH = "/api/v1/datasets"

_HEADER_CONTENT_TYPE = "Content-Type"
_HEADER_CONTENT_ENCODING = "Content-Encoding"


class _AplQueryResponse(QueryResult, kw_only=True):
    """Query result plus server fields that are accepted and dropped."""

    request: typ.Any = None
    dataset_names: typ.Any = None
    fields_meta_map: typ.Any = None


async def _prepend[T](first: T, rest: cabc.AsyncIterator[T]) -> cabc.AsyncIterator[T]:
    yield first
    async for item in rest:
        yield item


def _time_attribute(value: dt.datetime | None) -> str:
    return value.isoformat() if value is not None else ""


class DatasetsService:
    """Operations on datasets, reached through ``AxiomClient.datasets``.

    Every method sends exactly one request, or none when there is nothing
    to send. Partial ingestion is not an error: the returned
    :class:`IngestStatus` lists the rejected events in ``failures``.
    """

    def __init__(self, client: AxiomClient) -> None:
        """Bind the service to the client that executes its requests."""
        self._client = client
        self._events = ClientEventLogger()

    def _ingest_path(self, dataset_id: str) -> str:
        return f"{DATASETS_PATH}/{urllib.parse.quote(dataset_id, safe='')}/ingest"

    async def ingest(
        self,
        dataset_id: str,
        reader: StreamBody,
        content_type: ContentType,
        content_encoding: ContentEncoding,
        options: IngestOptions | None = None,
    ) -> IngestStatus:
        """Ingest a payload the caller has already framed and encoded.

        Parameters
        ----------
        dataset_id
            Name of the target dataset.
        reader
            Payload as bytes, a binary file object or an async byte
            iterator. It is streamed as-is.
        content_type
            Framing of the payload; see
            :func:`~axiom_client.ingest.detect.detect_content_type`.
        content_encoding
            Compression already applied to the payload.
        options
            Timestamp and CSV options forwarded as query parameters.

        Returns
        -------
        IngestStatus
            Outcome reported by the server.

        Raises
        ------
        UnknownContentTypeError
            If ``content_type`` is not a :class:`ContentType`.
        UnknownContentEncodingError
            If ``content_encoding`` is not a :class:`ContentEncoding`.

        """
        if not isinstance(content_type, ContentType):
            raise UnknownContentTypeError(content_type)
        if not isinstance(content_encoding, ContentEncoding):
            raise UnknownContentEncodingError(content_encoding)

        with traced(
            "Datasets.Ingest",
            {
                "axiom.dataset_id": dataset_id,
                "axiom.param.content_type": content_type.media_type,
                "axiom.param.content_encoding": content_encoding.value,
            },
        ) as span:
            status = await self._send_ingest(
                dataset_id, reader, content_type, content_encoding, options
            )
            set_ingest_status_on_span(span, status)
            return status

    async def ingest_events(
        self,
        dataset_id: str,
        events: cabc.Sequence[Event],
        options: IngestOptions | None = None,
    ) -> IngestStatus:
        """Encode ``events`` as zstd-compressed NDJSON and ingest them.

        An empty sequence returns an empty status without a request.
        """
        with traced(
            "Datasets.IngestEvents",
            {"axiom.dataset_id": dataset_id, "axiom.events.to_ingest": len(events)},
        ) as span:
            if not events:
                return IngestStatus()
            status = await self._ingest_encoded(dataset_id, events, options)
            set_ingest_status_on_span(span, status)
            return status

    async def ingest_channel(
        self,
        dataset_id: str,
        events: cabc.AsyncIterable[Event],
        options: IngestOptions | None = None,
    ) -> IngestStatus:
        """Ingest events from ``events`` until it is exhausted.

        The whole stream goes out as one request, so the connection stays
        open for as long as the source produces events; bound long-lived
        sources (or cancel the call) on the caller side. A source that ends
        before yielding anything returns an empty status without a request.
        """
        with traced("Datasets.IngestChannel", {"axiom.dataset_id": dataset_id}) as span:
            iterator = aiter(events)
            try:
                first = await anext(iterator)
            except StopAsyncIteration:
                return IngestStatus()
            status = await self._ingest_encoded(
                dataset_id, _prepend(first, iterator), options
            )
            set_ingest_status_on_span(span, status)
            return status

    async def query(
        self,
        apl: str,
        *,
        start_time: dt.datetime | None = None,
        end_time: dt.datetime | None = None,
    ) -> QueryResult:
        """Run an APL query.

        Parameters
        ----------
        apl
            The query, for example ``"['logs'] | where level == 'error'"``.
        start_time, end_time
            Optional bounds; the query's own time filters apply otherwise.

        Returns
        -------
        QueryResult
            Matches and execution statistics. ``saved_query_id`` is taken
            from the ``X-Axiom-History-Query-Id`` response header.

        """
        with traced(
            "Datasets.Query",
            {
                "axiom.param.query": apl,
                "axiom.param.start_time": _time_attribute(start_time),
                "axiom.param.end_time": _time_attribute(end_time),
            },
        ) as span:
            request = self._client.new_request(
                "POST",
                f"{DATASETS_PATH}/_apl",
                AplQueryRequest(apl=apl, start_time=start_time, end_time=end_time),
                params={"format": QUERY_RESULT_FORMAT},
            )
            response = await self._client.do(request, result_type=_AplQueryResponse)
            raw = response.value or _AplQueryResponse()
            result = QueryResult(
                status=raw.status,
                matches=raw.matches,
                buckets=raw.buckets,
                saved_query_id=response.history_query_id or "",
            )
            set_query_result_on_span(span, result)
            return result

    async def _ingest_encoded(
        self,
        dataset_id: str,
        events: cabc.Iterable[Event] | cabc.AsyncIterable[Event],
        options: IngestOptions | None,
    ) -> IngestStatus:
        stream = EncodedEventStream(events, encoding=ContentEncoding.ZSTD)
        try:
            return await self._send_ingest(
                dataset_id, stream, ContentType.NDJSON, ContentEncoding.ZSTD, options
            )
        finally:
            await stream.aclose()

    async def _send_ingest(
        self,
        dataset_id: str,
        body: StreamBody,
        content_type: ContentType,
        content_encoding: ContentEncoding,
        options: IngestOptions | None,
    ) -> IngestStatus:
        headers = {_HEADER_CONTENT_TYPE: content_type.media_type}
        if content_encoding.header_value is not None:
            headers[_HEADER_CONTENT_ENCODING] = content_encoding.header_value

        params = options.to_params() if options is not None else {}
        request = self._client.new_request(
            "POST",
            self._ingest_path(dataset_id),
            body,
            params=params,
            headers=headers,
        )
        response = await self._client.do(request, result_type=IngestStatus)
        status = response.value or IngestStatus()
        self._events.log_ingest_completed(dataset_id=dataset_id, status=status)
        return status


__all__ = ["DATASETS_PATH", "DatasetsService"]
