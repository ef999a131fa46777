"""
Log ingestion pipeline.

Components emit LogEntries into an in-memory buffer. Entries are grouped by
component into LogBatches and written to the BatchStore when:

- the buffer reaches ``flush_threshold`` entries,
- ``flush_interval`` elapses (background ticker),
- an ERROR or CRITICAL entry arrives (immediate, on the caller's thread,
  unless a failed write is still waiting out its backoff).

A failed write puts the entries back at the front of the buffer and schedules
a retry with exponential backoff. Past ``buffer_cap`` the oldest non-CRITICAL
entries are dropped and counted.
"""
import itertools
import logging
import threading
import time
from collections import OrderedDict, deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

from ..config import Settings
from ..errors import LogPersistenceError
from ..storage import KeyValueStore
from .backoff import ExponentialBackoff
from .batches import BatchStore
from .entries import LogBatch, LogEntry, LogLevel
from .scheduler import Ticker

logger = logging.getLogger(__name__)


class LogPipeline:
    """Buffered, batching writer for structured log entries."""

    def __init__(
        self,
        store: KeyValueStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings or Settings()
        self.clock = clock
        self.batches = BatchStore(store)

        self._buffer: Deque[LogEntry] = deque()
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._sequence = itertools.count()
        self._backoff = ExponentialBackoff(
            initial=self.settings.backoff_initial,
            max_delay=self.settings.backoff_max,
            factor=self.settings.backoff_factor,
            jitter=self.settings.backoff_jitter,
        )
        self._retry_at: Optional[float] = None
        self._ticker = Ticker(self.settings.flush_interval, self._on_tick, name="workmesh-log-flush")

        self.dropped = 0
        self.flush_failures = 0
        self.persisted = 0

    # -- emission ---------------------------------------------------------

    def emit(
        self,
        component: str,
        level: Any,
        operation: str,
        message: str = "",
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        duration_ms: Optional[float] = None,
        memory_mb: Optional[float] = None,
        cpu_percent: Optional[float] = None,
    ) -> LogEntry:
        entry = LogEntry(
            component=component,
            level=LogLevel.parse(level),
            operation=operation,
            message=message,
            context=context or {},
            correlation_id=correlation_id,
            timestamp=self.clock(),
            duration_ms=duration_ms,
            memory_mb=memory_mb,
            cpu_percent=cpu_percent,
        )
        self._mirror(entry)

        with self._lock:
            self._buffer.append(entry)
            self._enforce_cap()
            size = len(self._buffer)

        urgent = entry.level >= LogLevel.ERROR
        if not urgent and size < self.settings.flush_threshold:
            return entry
        if self._backing_off() or (not urgent and self._ticker.running):
            self._ticker.poke()
        else:
            self.flush()
        return entry

    def logger(self, component: str) -> 'ComponentLogger':
        return ComponentLogger(component, self)

    def _mirror(self, entry: LogEntry) -> None:
        std = logging.getLogger(f"workmesh.{entry.component}")
        if std.isEnabledFor(int(entry.level)):
            if entry.context:
                details = " ".join(f"{k}={v}" for k, v in entry.context.items())
                std.log(int(entry.level), "%s %s %s", entry.operation, entry.message, details)
            else:
                std.log(int(entry.level), "%s %s", entry.operation, entry.message)

    def _enforce_cap(self) -> None:
        while len(self._buffer) > self.settings.buffer_cap:
            for index, entry in enumerate(self._buffer):
                if entry.level != LogLevel.CRITICAL:
                    del self._buffer[index]
                    self.dropped += 1
                    break
            else:
                return

    # -- flushing ---------------------------------------------------------

    @property
    def buffered(self) -> int:
        with self._lock:
            return len(self._buffer)

    def pending_entries(self) -> List[LogEntry]:
        with self._lock:
            return list(self._buffer)

    @property
    def retry_pending(self) -> bool:
        return self._retry_at is not None

    def _backing_off(self) -> bool:
        retry_at = self._retry_at
        return retry_at is not None and retry_at > time.monotonic()

    def flush(self) -> int:
        """
        Write every buffered entry, one batch per component.

        Returns the number of entries persisted. Never raises for storage
        failures: unwritten entries go back to the buffer.
        """
        with self._flush_lock:
            with self._lock:
                pending = list(self._buffer)
                self._buffer.clear()
            if not pending:
                return 0

            groups: "OrderedDict[str, List[LogEntry]]" = OrderedDict()
            for entry in pending:
                groups.setdefault(entry.component, []).append(entry)

            flushed_at = self.clock()
            written = 0
            failed: List[LogEntry] = []
            last_error: Optional[LogPersistenceError] = None
            for component, entries in groups.items():
                batch = LogBatch.build(component, entries, flushed_at, next(self._sequence))
                try:
                    self._persist(batch)
                    written += len(entries)
                except LogPersistenceError as exc:
                    failed.extend(entries)
                    last_error = exc

            self.persisted += written
            if failed:
                failed_ids = {id(entry) for entry in failed}
                failed = [entry for entry in pending if id(entry) in failed_ids]
                with self._lock:
                    self._buffer.extendleft(reversed(failed))
                    self._enforce_cap()
                self._schedule_retry(last_error, len(failed))
            else:
                self._backoff.reset()
                self._retry_at = None
            return written

    def _persist(self, batch: LogBatch) -> None:
        try:
            self.batches.write(batch)
        except Exception as exc:
            raise LogPersistenceError(
                f"Failed to write batch {batch.key}: {exc}", pending=len(batch.entries)
            ) from exc

    def _schedule_retry(self, error: Optional[LogPersistenceError], count: int) -> None:
        self.flush_failures += 1
        delay = self._backoff.next_delay()
        if delay is None:
            delay = self.settings.backoff_max
        self._retry_at = time.monotonic() + delay
        logger.warning("%s; %d entries kept in buffer, retrying in %.2fs", error, count, delay)

    def _on_tick(self) -> Optional[float]:
        if self._retry_at is not None:
            remaining = self._retry_at - time.monotonic()
            if remaining > 0:
                return remaining
        self.flush()
        if self._retry_at is not None:
            return max(0.0, self._retry_at - time.monotonic())
        return None

    # -- lifecycle --------------------------------------------------------

    def start(self) -> None:
        self._ticker.start()

    def shutdown(self) -> int:
        """
        Stop the background flusher and drain the buffer.

        Returns the number of entries still buffered after the final attempts.
        """
        self._ticker.stop()
        for attempt in range(max(1, self.settings.drain_attempts)):
            self.flush()
            if not self.buffered:
                break
            if attempt + 1 < self.settings.drain_attempts and self._retry_at is not None:
                time.sleep(min(max(0.0, self._retry_at - time.monotonic()), self.settings.backoff_max))
        remaining = self.buffered
        if remaining:
            logger.error("Log pipeline stopped with %d unflushed entries", remaining)
        return remaining


class ComponentLogger:
    """Emits entries on behalf of one component. Works without a pipeline."""

    def __init__(self, component: str, pipeline: Optional[LogPipeline] = None):
        self.component = component
        self.pipeline = pipeline
        self._std = logging.getLogger(f"workmesh.{component}")

    def log(self, level: Any, operation: str, message: str = "",
            correlation_id: Optional[str] = None, perf: Optional[Dict[str, Any]] = None,
            **context: Any) -> Optional[LogEntry]:
        if self.pipeline is not None:
            return self.pipeline.emit(
                self.component, level, operation, message, context,
                correlation_id=correlation_id, **(perf or {}),
            )
        self._std.log(int(LogLevel.parse(level)), "%s %s %s", operation, message, context or "")
        return None

    def debug(self, operation: str, message: str = "", **kwargs: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.DEBUG, operation, message, **kwargs)

    def info(self, operation: str, message: str = "", **kwargs: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.INFO, operation, message, **kwargs)

    def warn(self, operation: str, message: str = "", **kwargs: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.WARN, operation, message, **kwargs)

    def error(self, operation: str, message: str = "", **kwargs: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.ERROR, operation, message, **kwargs)

    def critical(self, operation: str, message: str = "", **kwargs: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.CRITICAL, operation, message, **kwargs)
