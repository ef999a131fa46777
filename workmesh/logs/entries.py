"""
Structured log records: LogEntry (immutable) and LogBatch (append-only once stored).
"""
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


class LogLevel(IntEnum):
    """Severity levels. Values line up with the standard logging module."""
    DEBUG = 10
    INFO = 20
    WARN = 30
    ERROR = 40
    CRITICAL = 50

    @classmethod
    def parse(cls, value: Any) -> 'LogLevel':
        if isinstance(value, LogLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        name = str(value).strip().upper()
        if name == "WARNING":
            name = "WARN"
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"Unknown log level: {value!r}") from None


def new_entry_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class LogEntry:
    """A single structured event emitted by a component."""
    component: str
    level: LogLevel
    operation: str
    message: str = ""
    context: Mapping[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    entry_id: str = field(default_factory=new_entry_id)
    duration_ms: Optional[float] = None
    memory_mb: Optional[float] = None
    cpu_percent: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "level", LogLevel.parse(self.level))
        object.__setattr__(self, "context", MappingProxyType(dict(self.context)))

    def matches_text(self, needle: str) -> bool:
        """Case-insensitive match over message, operation and context."""
        needle = needle.lower()
        if needle in self.message.lower() or needle in self.operation.lower():
            return True
        for key, value in self.context.items():
            if needle in str(key).lower() or needle in str(value).lower():
                return True
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "component": self.component,
            "level": self.level.name,
            "operation": self.operation,
            "message": self.message,
            "context": dict(self.context),
            "correlation_id": self.correlation_id,
            "duration_ms": self.duration_ms,
            "memory_mb": self.memory_mb,
            "cpu_percent": self.cpu_percent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LogEntry':
        return cls(
            entry_id=data["entry_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            component=data["component"],
            level=LogLevel.parse(data["level"]),
            operation=data["operation"],
            message=data.get("message", ""),
            context=data.get("context") or {},
            correlation_id=data.get("correlation_id"),
            duration_ms=data.get("duration_ms"),
            memory_mb=data.get("memory_mb"),
            cpu_percent=data.get("cpu_percent"),
        )


@dataclass(frozen=True)
class LogBatch:
    """Entries from one component flushed together."""
    component: str
    entries: Tuple[LogEntry, ...]
    flushed_at: datetime
    sequence: int = 0

    @classmethod
    def build(cls, component: str, entries: Iterable[LogEntry],
              flushed_at: Optional[datetime] = None, sequence: int = 0) -> 'LogBatch':
        entries = tuple(entries)
        if not entries:
            raise ValueError("A log batch needs at least one entry")
        return cls(
            component=component,
            entries=entries,
            flushed_at=flushed_at or datetime.now(),
            sequence=sequence,
        )

    @property
    def key(self) -> str:
        return f"{self.component}/{self.flushed_at.isoformat()}/{self.sequence:06d}"

    @property
    def window_start(self) -> datetime:
        return min(entry.timestamp for entry in self.entries)

    @property
    def window_end(self) -> datetime:
        return max(entry.timestamp for entry in self.entries)

    @property
    def max_level(self) -> LogLevel:
        return max(entry.level for entry in self.entries)

    @property
    def has_critical(self) -> bool:
        return any(entry.level == LogLevel.CRITICAL for entry in self.entries)

    @property
    def level_counts(self) -> Dict[str, int]:
        return dict(Counter(entry.level.name for entry in self.entries))

    @property
    def operation_counts(self) -> Dict[str, int]:
        return dict(Counter(entry.operation for entry in self.entries))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "flushed_at": self.flushed_at.isoformat(),
            "sequence": self.sequence,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "level_counts": self.level_counts,
            "operation_counts": self.operation_counts,
            "entries": [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LogBatch':
        return cls(
            component=data["component"],
            entries=tuple(LogEntry.from_dict(item) for item in data["entries"]),
            flushed_at=datetime.fromisoformat(data["flushed_at"]),
            sequence=data.get("sequence", 0),
        )
