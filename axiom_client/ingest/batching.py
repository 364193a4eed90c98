"""Buffer events in memory and ingest them in batches.

This is the contract logging integrations build on: they hand every record
to :meth:`BatchingBuffer.add` and the buffer sends a batch once it is full
or once the flush interval has passed, whichever comes first.
"""

from __future__ import annotations

import asyncio
import collections.abc as cabc
import typing as typ

from axiom_client.ingest.models import Event, IngestOptions, IngestStatus
from axiom_client.logging import get_logger, log_error, log_exception
from axiom_client.observability import ClientEventType

DEFAULT_MAX_BATCH_SIZE = 1024
DEFAULT_FLUSH_INTERVAL_S = 1.0

logger = get_logger(__name__)

type FlushErrorHandler = cabc.Callable[[Exception], object]


class EventSink(typ.Protocol):
    """Anything that can ingest a batch of events, such as ``DatasetsService``."""

    async def ingest_events(
        self,
        dataset_id: str,
        events: cabc.Sequence[Event],
        options: IngestOptions | None = None,
    ) -> IngestStatus:
        """Ingest ``events`` into ``dataset_id``."""
        ...


class BatchingBuffer:
    """Collect events and flush them to a sink in batches.

    A flush that fails drops its batch: the error propagates from
    :meth:`flush`, :meth:`add` and :meth:`aclose`, and is logged (and
    passed to ``on_error``) when the periodic flush hits it.

    Parameters
    ----------
    sink
        Receiver of the batches.
    dataset_id
        Dataset every batch is ingested into.
    max_batch_size
        Number of pending events that triggers an immediate flush.
    flush_interval
        Seconds between periodic flushes.
    options
        Ingest options applied to every batch.
    on_error
        Called with the exception of a failed periodic flush. An exception
        raised by the callback is logged and the periodic flush carries on.

    Examples
    --------
    >>> async def ship(client, records):
    ...     async with BatchingBuffer(client.datasets, "logs") as buffer:
    ...         for record in records:
    ...             await buffer.add(record)

    """

    def __init__(  # noqa: PLR0913 - mirrors the ingest call plus batching knobs
        self,
        sink: EventSink,
        dataset_id: str,
        *,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL_S,
        options: IngestOptions | None = None,
        on_error: FlushErrorHandler | None = None,
    ) -> None:
        """Validate the batching parameters; the ticker starts on first use."""
        if max_batch_size < 1:
            msg = "max_batch_size must be at least 1"
            raise ValueError(msg)
        if flush_interval <= 0:
            msg = "flush_interval must be positive"
            raise ValueError(msg)
        self._sink = sink
        self._dataset_id = dataset_id
        self._max_batch_size = max_batch_size
        self._flush_interval = flush_interval
        self._options = options
        self._on_error = on_error
        self._pending: list[Event] = []
        self._lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._ticker: asyncio.Task[None] | None = None
        self._closed = False
        self.total = IngestStatus()

    @property
    def pending(self) -> int:
        """Number of events waiting for the next flush."""
        return len(self._pending)

    @property
    def closed(self) -> bool:
        """Whether :meth:`aclose` has been called."""
        return self._closed

    async def __aenter__(self) -> typ.Self:
        """Start the periodic flush and return the buffer."""
        self._ensure_ticker()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Flush what is left and stop the periodic flush."""
        await self.aclose()

    async def add(self, event: Event) -> IngestStatus | None:
        """Queue ``event``, flushing when the batch is full.

        Returns
        -------
        IngestStatus | None
            The status of the flush this call triggered, if any.

        Raises
        ------
        RuntimeError
            If the buffer has been closed.

        """
        if self._closed:
            msg = "cannot add events to a closed buffer"
            raise RuntimeError(msg)
        self._ensure_ticker()
        self._pending.append(event)
        if len(self._pending) >= self._max_batch_size:
            return await self.flush()
        return None

    async def flush(self) -> IngestStatus:
        """Send the pending events now and return the server's status."""
        async with self._lock:
            if not self._pending:
                return IngestStatus()
            batch, self._pending = self._pending, []
            status = await self._sink.ingest_events(
                self._dataset_id, batch, self._options
            )
            self.total = self.total.merge(status)
            return status

    async def aclose(self) -> IngestStatus:
        """Stop the periodic flush and send the remaining events.

        A flush already in progress is allowed to finish. Calling this more
        than once is harmless.
        """
        if self._closed:
            return IngestStatus()
        self._closed = True
        self._stopping.set()
        if self._ticker is not None:
            await asyncio.gather(self._ticker, return_exceptions=True)
            self._ticker = None
        return await self.flush()

    def _ensure_ticker(self) -> None:
        if self._ticker is None and not self._closed:
            self._ticker = asyncio.create_task(
                self._run_ticker(), name=f"axiom-batch-flush-{self._dataset_id}"
            )

    async def _run_ticker(self) -> None:
        while True:
            try:
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=self._flush_interval
                )
            except TimeoutError:
                await self._flush_in_background()
            else:
                return

    async def _flush_in_background(self) -> None:
        try:
            await self.flush()
        except Exception as exc:  # noqa: BLE001 - the ticker must keep running
            log_exception(
                logger,
                f"[{ClientEventType.BATCH_FLUSH_FAILED}] "
                f"dataset={self._dataset_id} error={exc}",
                exc,
            )
            self._report(exc)

    def _report(self, exc: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(exc)
        except Exception as callback_exc:  # noqa: BLE001 - keeps the ticker alive
            log_error(
                logger,
                "[%s] dataset=%s on_error callback failed: %s",
                ClientEventType.BATCH_FLUSH_FAILED,
                self._dataset_id,
                callback_exc,
                exc_info=callback_exc,
            )


__all__ = [
    "DEFAULT_FLUSH_INTERVAL_S",
    "DEFAULT_MAX_BATCH_SIZE",
    "BatchingBuffer",
    "EventSink",
    "FlushErrorHandler",
]
