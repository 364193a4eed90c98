"""Tracing and structured log events for client operations.

Spans are created through the OpenTelemetry API; without an SDK configured
they are no-ops. Span attributes and log events are best effort: nothing in
this module changes control flow, and errors are recorded on the span and
re-raised unchanged.
"""

from __future__ import annotations

import contextlib
import enum
import typing as typ

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from axiom_client.logging import get_logger, log_debug, log_info, log_warning

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from opentelemetry.util.types import AttributeValue

    from axiom_client.ingest.models import IngestStatus
    from axiom_client.query import QueryResult

TRACER_NAME = "axiom_client"

logger = get_logger(__name__)


class ClientEventType(enum.StrEnum):
    """Structured log event types emitted by the client."""

    REQUEST_RETRY = "http.request.retry"
    REQUEST_FAILED = "http.request.failed"
    INGEST_COMPLETED = "ingest.completed"
    INGEST_PARTIAL = "ingest.partial"
    BATCH_FLUSH_FAILED = "batch.flush.failed"


def get_tracer() -> trace.Tracer:
    """Return the tracer used for client spans."""
    return trace.get_tracer(TRACER_NAME)


def record_error(span: trace.Span, exc: BaseException) -> None:
    """Mark ``span`` as failed with ``exc`` if it is recording."""
    if span.is_recording():
        span.set_status(Status(StatusCode.ERROR, str(exc)))
        span.record_exception(exc)


@contextlib.contextmanager
def traced(
    name: str, attributes: cabc.Mapping[str, AttributeValue] | None = None
) -> cabc.Iterator[trace.Span]:
    """Run the block inside a client span named ``name``.

    Exceptions are recorded on the span and re-raised unchanged.
    """
    with get_tracer().start_as_current_span(
        name,
        attributes=attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            record_error(span, exc)
            raise


def set_ingest_status_on_span(span: trace.Span, status: IngestStatus) -> None:
    """Attach ingestion counters to ``span``."""
    span.set_attributes(
        {
            "axiom.events.ingested": status.ingested,
            "axiom.events.failed": status.failed,
            "axiom.events.processed_bytes": status.processed_bytes,
        }
    )


def set_query_result_on_span(span: trace.Span, result: QueryResult) -> None:
    """Attach query execution statistics to ``span``."""
    status = result.status
    span.set_attributes(
        {
            "axiom.result.matches": len(result.matches),
            "axiom.result.status.elapsed_time": status.elapsed_time,
            "axiom.result.status.blocks_examined": status.blocks_examined,
            "axiom.result.status.rows_examined": status.rows_examined,
            "axiom.result.status.rows_matched": status.rows_matched,
            "axiom.result.status.num_groups": status.num_groups,
            "axiom.result.status.is_partial": status.is_partial,
            "axiom.result.status.is_estimate": status.is_estimate,
        }
    )


class ClientEventLogger:
    """Emit structured client events via femtologging.

    Successful ingests log at INFO, partial ingests and retries at WARNING.
    """

    def log_retry(
        self,
        *,
        method: str,
        url: str,
        attempt: int,
        wait_s: float,
        reason: str,
    ) -> None:
        """Log a retry scheduled after a transport failure or 5xx."""
        log_warning(
            logger,
            "[%s] method=%s url=%s attempt=%d wait_s=%.3f reason=%s",
            ClientEventType.REQUEST_RETRY,
            method,
            url,
            attempt,
            wait_s,
            reason,
        )

    def log_request_failed(
        self, *, method: str, url: str, status_code: int | None, error: str
    ) -> None:
        """Log a request that ended with an error response."""
        log_debug(
            logger,
            "[%s] method=%s url=%s status_code=%s error=%s",
            ClientEventType.REQUEST_FAILED,
            method,
            url,
            status_code,
            error,
        )

    def log_ingest_completed(self, *, dataset_id: str, status: IngestStatus) -> None:
        """Log the outcome of one ingest call."""
        if status.failures:
            first = status.failures[0]
            log_warning(
                logger,
                "[%s] dataset=%s ingested=%d failed=%d first_error=%s",
                ClientEventType.INGEST_PARTIAL,
                dataset_id,
                status.ingested,
                status.failed,
                first.error,
            )
            return
        log_info(
            logger,
            "[%s] dataset=%s ingested=%d processed_bytes=%d",
            ClientEventType.INGEST_COMPLETED,
            dataset_id,
            status.ingested,
            status.processed_bytes,
        )


__all__ = [
    "TRACER_NAME",
    "ClientEventLogger",
    "ClientEventType",
    "get_tracer",
    "record_error",
    "set_ingest_status_on_span",
    "set_query_result_on_span",
    "traced",
]
