"""
Retention sweeps over persisted log batches.

A batch is judged by the most severe entry it contains: it is deleted once
its newest entry is older than that level's retention window. Batches with
a CRITICAL entry are kept forever.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ..config import Settings
from .batches import BatchStore
from .entries import LogBatch, LogLevel
from .pipeline import ComponentLogger
from .scheduler import Ticker


@dataclass
class RetentionReport:
    scanned: int = 0
    deleted: List[str] = field(default_factory=list)
    protected: int = 0
    swept_at: Optional[datetime] = None

    @property
    def kept(self) -> int:
        return self.scanned - len(self.deleted)


class RetentionManager:
    """Deletes expired batches from a BatchStore."""

    def __init__(self, batches: BatchStore, settings: Optional[Settings] = None,
                 clock: Callable[[], datetime] = datetime.now, events=None):
        self.batches = batches
        self.settings = settings or Settings()
        self.clock = clock
        self.events = events or ComponentLogger("retention_manager")
        self.windows: Dict[LogLevel, timedelta] = {
            LogLevel[name]: timedelta(days=days)
            for name, days in self.settings.retention_days().items()
        }
        self._ticker = Ticker(self.settings.retention_interval, self._on_tick, name="workmesh-retention")

    def window_for(self, level: LogLevel) -> Optional[timedelta]:
        """Retention window for a level; None means keep forever."""
        if level >= LogLevel.CRITICAL:
            return None
        return self.windows[level]

    def is_expired(self, batch: LogBatch, now: datetime) -> bool:
        if batch.has_critical:
            return False
        window = self.window_for(batch.max_level)
        return window is not None and now - batch.window_end > window

    def sweep(self, now: Optional[datetime] = None) -> RetentionReport:
        now = now or self.clock()
        report = RetentionReport(swept_at=now)
        for batch in list(self.batches):
            report.scanned += 1
            if batch.has_critical:
                report.protected += 1
                continue
            if self.is_expired(batch, now) and self.batches.delete(batch.key):
                report.deleted.append(batch.key)

        self.events.info(
            "retention.sweep", "Retention sweep finished",
            scanned=report.scanned, deleted=len(report.deleted), protected=report.protected,
        )
        return report

    def _on_tick(self) -> None:
        self.sweep()

    def start(self) -> None:
        self._ticker.start()

    def stop(self) -> None:
        self._ticker.stop()
