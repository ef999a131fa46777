"""
Filtered, paginated queries and aggregates over log entries.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .batches import BatchStore
from .entries import LogEntry, LogLevel

COMPLETED_OPERATION = "work.completed"
FAILED_OPERATION = "work.failed"
# Emitted on first progress; duration_ms is the time since assignment.
RESPONSE_OPERATION = "work.started"


class LogFilter(BaseModel):
    """Typed query predicate. Unset fields match everything."""

    component: Optional[str] = None
    level: Optional[LogLevel] = None
    min_level: Optional[LogLevel] = None
    operation: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    text: Optional[str] = None
    correlation_id: Optional[str] = None
    page: int = Field(1, ge=1)
    page_size: int = Field(50, ge=1, le=1000)
    include_buffered: bool = True

    @field_validator("level", "min_level", mode="before")
    @classmethod
    def _parse_level(cls, value: Any) -> Any:
        if value is None:
            return None
        return LogLevel.parse(value)

    @model_validator(mode="after")
    def _check_range(self) -> 'LogFilter':
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self

    def matches(self, entry: LogEntry) -> bool:
        if self.component is not None and entry.component != self.component:
            return False
        if self.level is not None and entry.level != self.level:
            return False
        if self.min_level is not None and entry.level < self.min_level:
            return False
        if self.operation is not None and entry.operation != self.operation:
            return False
        if self.start is not None and entry.timestamp < self.start:
            return False
        if self.end is not None and entry.timestamp > self.end:
            return False
        if self.correlation_id is not None and entry.correlation_id != self.correlation_id:
            return False
        if self.text and not entry.matches_text(self.text):
            return False
        return True


@dataclass
class LogPage:
    entries: List[LogEntry]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


@dataclass
class LogAggregate:
    component: Optional[str]
    start: Optional[datetime]
    end: Optional[datetime]
    total: int
    errors: int
    completed: int
    failed: int
    avg_response_ms: Optional[float]

    @property
    def error_rate(self) -> float:
        return self.errors / self.total if self.total else 0.0

    @property
    def completion_rate(self) -> float:
        finished = self.completed + self.failed
        return self.completed / finished if finished else 0.0


class QueryEngine:
    """Answers LogFilter queries over stored batches and, optionally, the live buffer."""

    def __init__(self, batches: BatchStore, pipeline=None):
        self.batches = batches
        self.pipeline = pipeline

    def _entries(self, include_buffered: bool = True) -> Iterator[LogEntry]:
        # buffer first: a flush between the two reads moves entries into the store
        buffered = []
        if include_buffered and self.pipeline is not None:
            buffered = self.pipeline.pending_entries()
        seen = set()
        for batch in self.batches:
            for entry in batch.entries:
                if entry.entry_id not in seen:
                    seen.add(entry.entry_id)
                    yield entry
        for entry in buffered:
            if entry.entry_id not in seen:
                yield entry

    def query(self, log_filter: Optional[LogFilter] = None) -> LogPage:
        log_filter = log_filter or LogFilter()
        matched = [e for e in self._entries(log_filter.include_buffered) if log_filter.matches(e)]
        matched.sort(key=lambda e: (e.timestamp, e.entry_id), reverse=True)
        offset = (log_filter.page - 1) * log_filter.page_size
        return LogPage(
            entries=matched[offset:offset + log_filter.page_size],
            total=len(matched),
            page=log_filter.page,
            page_size=log_filter.page_size,
        )

    def aggregate(self, component: Optional[str] = None, start: Optional[datetime] = None,
                  end: Optional[datetime] = None) -> LogAggregate:
        log_filter = LogFilter(component=component, start=start, end=end)
        total = errors = completed = failed = 0
        durations: List[float] = []
        for entry in self._entries():
            if not log_filter.matches(entry):
                continue
            total += 1
            if entry.level >= LogLevel.ERROR:
                errors += 1
            if entry.operation == COMPLETED_OPERATION:
                completed += 1
            elif entry.operation == FAILED_OPERATION:
                failed += 1
            if entry.operation == RESPONSE_OPERATION and entry.duration_ms is not None:
                durations.append(entry.duration_ms)
        return LogAggregate(
            component=component,
            start=start,
            end=end,
            total=total,
            errors=errors,
            completed=completed,
            failed=failed,
            avg_response_ms=sum(durations) / len(durations) if durations else None,
        )

    def error_rate(self, component: Optional[str] = None, start: Optional[datetime] = None,
                   end: Optional[datetime] = None) -> float:
        return self.aggregate(component, start, end).error_rate

    def completion_rate(self, component: Optional[str] = None, start: Optional[datetime] = None,
                        end: Optional[datetime] = None) -> float:
        return self.aggregate(component, start, end).completion_rate

    def average_response_time(self, component: Optional[str] = None, start: Optional[datetime] = None,
                              end: Optional[datetime] = None) -> Optional[float]:
        return self.aggregate(component, start, end).avg_response_ms
