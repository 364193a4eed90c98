"""Collect femtologging output for assertions in tests."""

from __future__ import annotations

import contextlib
import dataclasses
import threading
import time
import typing as typ

from femtologging import get_logger

if typ.TYPE_CHECKING:
    import collections.abc as cabc

# femtologging reports WARNING records as WARN.
WARNING_LEVELS = frozenset({"WARN", "WARNING"})


@dataclasses.dataclass(slots=True)
class CapturedRecord:
    """One record delivered by femtologging."""

    logger: str
    level: str
    message: str
    exc_info: object | None = None


class LogCollector:
    """Handler that stores records from the femtologging worker thread."""

    def __init__(self) -> None:
        """Start with no records."""
        self.records: list[CapturedRecord] = []
        self._changed = threading.Condition()

    def handle(self, logger: str, level: str, message: str) -> None:
        """Store a plain record."""
        self._store(CapturedRecord(str(logger), str(level), message))

    def handle_record(self, record: dict[str, object]) -> None:
        """Store a structured record, keeping its exception info."""
        self._store(
            CapturedRecord(
                logger=str(record.get("logger", "")),
                level=str(record.get("level", "")),
                message=str(record.get("message", "")),
                exc_info=record.get("exc_info"),
            )
        )

    def _store(self, record: CapturedRecord) -> None:
        with self._changed:
            self.records.append(record)
            self._changed.notify_all()

    def wait_for(self, count: int, timeout: float = 1.0) -> list[CapturedRecord]:
        """Block until ``count`` records arrived and return them."""
        deadline = time.monotonic() + timeout
        with self._changed:
            while len(self.records) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._changed.wait(timeout=remaining)
            records = list(self.records)
        assert len(records) >= count, f"expected {count} records, got {len(records)}"
        return records

    def settle(self, delay: float = 0.1) -> list[CapturedRecord]:
        """Give the worker thread ``delay`` seconds and return what arrived."""
        time.sleep(delay)
        with self._changed:
            return list(self.records)


@contextlib.contextmanager
def capture_logs(
    logger_name: str, *, level: str = "TRACE"
) -> cabc.Iterator[LogCollector]:
    """Attach a :class:`LogCollector` to ``logger_name`` for the block."""
    logger = get_logger(logger_name)
    previous_level = logger.level
    previous_propagate = logger.propagate
    logger.set_level(level)
    logger.set_propagate(False)
    collector = LogCollector()
    logger.add_handler(collector)
    try:
        yield collector
    finally:
        logger.remove_handler(collector)
        logger.set_level(previous_level)
        logger.set_propagate(previous_propagate)
