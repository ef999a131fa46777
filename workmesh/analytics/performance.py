"""
Performance Analytics: rolling worker metrics from outcomes and heartbeats.

Every public recording method is best-effort. A failure here is logged and
swallowed so that assignment and queueing never wait on analytics.
"""
import functools
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, FrozenSet, Iterable, List, Optional, Tuple

from ..config import Settings
from ..logs import ComponentLogger

logger = logging.getLogger(__name__)


def best_effort(method):
    """Log and swallow any exception raised by an analytics method."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except Exception as exc:
            self.failures += 1
            logger.exception("Analytics %s failed", method.__name__)
            self.events.error("analytics.failed", str(exc), method=method.__name__)
            return None
    return wrapper


@dataclass(frozen=True)
class OutcomeRecord:
    worker_id: str
    item_id: str
    success: bool
    quality: float
    duration: float
    timestamp: datetime
    estimated_duration: Optional[float] = None
    collaborators: Tuple[str, ...] = ()
    domains: FrozenSet[str] = frozenset()

    @property
    def parties(self) -> Tuple[str, ...]:
        return (self.worker_id,) + self.collaborators


@dataclass(frozen=True)
class PerformanceSnapshot:
    """Metrics over one time range. Replaced, never updated."""
    worker_id: Optional[str]
    start: Optional[datetime]
    end: Optional[datetime]
    operation_counts: Dict[str, int]
    completed: int
    failed: int
    error_rate: float
    completion_rate: float
    avg_response_time: Optional[float]
    ema_completion_time: Optional[float] = None
    ema_quality_score: Optional[float] = None
    ema_response_time: Optional[float] = None
    ema_duration_ratio: Optional[float] = None
    generated_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class BottleneckReport:
    worker_id: str
    duration_ratio: float
    samples: int


@dataclass(frozen=True)
class PairingRecommendation:
    partner_id: str
    score: float
    success_rate: float
    relevance: float
    collaborations: int


@dataclass
class _WorkerStats:
    completed: int = 0
    failed: int = 0
    heartbeats: int = 0
    ratio_samples: int = 0
    collab_total: int = 0
    collab_succeeded: int = 0
    ema_completion_time: Optional[float] = None
    ema_quality_score: Optional[float] = None
    ema_response_time: Optional[float] = None
    ema_duration_ratio: Optional[float] = None


def _overlap(requested: FrozenSet[str], offered: Iterable[str]) -> float:
    if not requested:
        return 1.0
    return len(requested & set(offered)) / len(requested)


class PerformanceAnalytics:
    """Maintains per-worker EMAs, counters and derived reports."""

    def __init__(self, registry=None, settings: Optional[Settings] = None,
                 clock: Callable[[], datetime] = datetime.now, events=None):
        self.registry = registry
        self.settings = settings or Settings()
        self.clock = clock
        self.events = events or ComponentLogger("performance_analytics")
        self.alpha = self.settings.ema_alpha
        self.failures = 0

        limit = self.settings.outcome_history_limit
        self._stats: Dict[str, _WorkerStats] = {}
        self._outcomes: Deque[OutcomeRecord] = deque(maxlen=limit)
        self._responses: Deque[Tuple[str, float, datetime]] = deque(maxlen=limit)
        self._heartbeats: Deque[Tuple[str, datetime]] = deque(maxlen=limit)
        self._snapshots: Dict[str, PerformanceSnapshot] = {}
        self._lock = threading.RLock()

    def _ema(self, previous: Optional[float], value: float) -> float:
        if previous is None:
            return value
        return self.alpha * value + (1 - self.alpha) * previous

    def _worker(self, worker_id: str) -> _WorkerStats:
        return self._stats.setdefault(worker_id, _WorkerStats())

    # -- inputs -----------------------------------------------------------

    @best_effort
    def record_outcome(self, worker_id: str, item, outcome, duration: float,
                       timestamp: Optional[datetime] = None) -> OutcomeRecord:
        timestamp = timestamp or self.clock()
        if outcome.quality_score is not None:
            quality = outcome.quality_score
        else:
            quality = 1.0 if outcome.success else 0.0
        record = OutcomeRecord(
            worker_id=worker_id,
            item_id=item.item_id,
            success=outcome.success,
            quality=quality,
            duration=duration,
            timestamp=timestamp,
            estimated_duration=item.estimated_duration,
            collaborators=tuple(item.assignment.collaborators),
            domains=frozenset(item.requirements.domains),
        )
        with self._lock:
            self._outcomes.append(record)
            stats = self._worker(worker_id)
            if outcome.success:
                stats.completed += 1
            else:
                stats.failed += 1
            stats.ema_completion_time = self._ema(stats.ema_completion_time, duration)
            stats.ema_quality_score = self._ema(stats.ema_quality_score, quality)
            if item.estimated_duration:
                stats.ema_duration_ratio = self._ema(stats.ema_duration_ratio,
                                                     duration / item.estimated_duration)
                stats.ratio_samples += 1
            if record.collaborators:
                for party in record.parties:
                    party_stats = self._worker(party)
                    party_stats.collab_total += 1
                    party_stats.collab_succeeded += int(outcome.success)
            touched = record.parties
            for party in touched:
                self._snapshots[party] = self._build(party, None, None)

        for party in touched:
            self._push_profile(party)
        return record

    @best_effort
    def record_heartbeat(self, worker_id: str, timestamp: Optional[datetime] = None) -> None:
        with self._lock:
            self._worker(worker_id).heartbeats += 1
            self._heartbeats.append((worker_id, timestamp or self.clock()))

    @best_effort
    def record_response(self, worker_id: str, seconds: float, timestamp: Optional[datetime] = None) -> None:
        with self._lock:
            stats = self._worker(worker_id)
            stats.ema_response_time = self._ema(stats.ema_response_time, seconds)
            self._responses.append((worker_id, seconds, timestamp or self.clock()))
            self._snapshots[worker_id] = self._build(worker_id, None, None)

    def _push_profile(self, worker_id: str) -> None:
        """Copy the derived figures into the registry's performance profile."""
        if self.registry is None or worker_id not in self.registry:
            return
        with self._lock:
            stats = self._worker(worker_id)
            finished = stats.completed + stats.failed
            update = {}
            if finished:
                update["success_rate"] = stats.completed / finished
            if stats.ema_completion_time is not None:
                update["avg_completion_time"] = stats.ema_completion_time
            if stats.ema_quality_score is not None:
                update["quality_score"] = stats.ema_quality_score
            if stats.collab_total:
                update["collaboration_score"] = stats.collab_succeeded / stats.collab_total
        if update:
            self.registry.update(worker_id, performance=update)

    def forget(self, worker_id: str) -> None:
        with self._lock:
            self._stats.pop(worker_id, None)
            self._snapshots.pop(worker_id, None)

    # -- reports ----------------------------------------------------------

    def _build(self, worker_id: Optional[str], start: Optional[datetime],
               end: Optional[datetime]) -> PerformanceSnapshot:
        def in_window(ts: datetime) -> bool:
            return (start is None or ts >= start) and (end is None or ts <= end)

        def mine(owner: str) -> bool:
            return worker_id is None or owner == worker_id

        outcomes = [r for r in self._outcomes if mine(r.worker_id) and in_window(r.timestamp)]
        responses = [s for w, s, ts in self._responses if mine(w) and in_window(ts)]
        heartbeats = sum(1 for w, ts in self._heartbeats if mine(w) and in_window(ts))
        completed = sum(1 for r in outcomes if r.success)
        failed = len(outcomes) - completed
        finished = completed + failed

        if worker_id is not None:
            stats = [self._stats[worker_id]] if worker_id in self._stats else []
        else:
            stats = list(self._stats.values())

        def mean_of(name: str) -> Optional[float]:
            values = [getattr(s, name) for s in stats if getattr(s, name) is not None]
            return sum(values) / len(values) if values else None

        return PerformanceSnapshot(
            worker_id=worker_id,
            start=start,
            end=end,
            operation_counts={
                "completed": completed,
                "failed": failed,
                "responses": len(responses),
                "heartbeats": heartbeats,
            },
            completed=completed,
            failed=failed,
            error_rate=failed / finished if finished else 0.0,
            completion_rate=completed / finished if finished else 0.0,
            avg_response_time=sum(responses) / len(responses) if responses else None,
            ema_completion_time=mean_of("ema_completion_time"),
            ema_quality_score=mean_of("ema_quality_score"),
            ema_response_time=mean_of("ema_response_time"),
            ema_duration_ratio=mean_of("ema_duration_ratio"),
            generated_at=self.clock(),
        )

    def report(self, worker_id: Optional[str] = None,
               window: Optional[timedelta] = None) -> PerformanceSnapshot:
        """
        Snapshot over the outcomes inside ``window`` (ending now).

        Args:
            worker_id: one worker, or None to aggregate across all workers
            window: look-back period; None covers the retained history

        Returns:
            A new PerformanceSnapshot.
        """
        end = self.clock()
        start = end - window if window is not None else None
        with self._lock:
            return self._build(worker_id, start, end)

    def snapshot(self, worker_id: str) -> Optional[PerformanceSnapshot]:
        """Latest all-history snapshot for a worker, if any outcome was seen."""
        with self._lock:
            return self._snapshots.get(worker_id)

    def bottlenecks(self) -> List[BottleneckReport]:
        """Workers whose EMA actual/estimated duration ratio exceeds the threshold."""
        flagged = []
        with self._lock:
            for worker_id, stats in self._stats.items():
                ratio = stats.ema_duration_ratio
                if ratio is not None and ratio > self.settings.bottleneck_ratio:
                    flagged.append(BottleneckReport(worker_id, ratio, stats.ratio_samples))
        flagged.sort(key=lambda b: (-b.duration_ratio, b.worker_id))
        if flagged:
            self.events.warn("analytics.bottlenecks", f"{len(flagged)} slow workers",
                             workers=[b.worker_id for b in flagged])
        return flagged

    def recommend_pairings(self, worker_id: str,
                           domains: Iterable[str] = ()) -> List[PairingRecommendation]:
        """
        Past collaborators of ``worker_id`` ranked by success rate times the
        domain relevance of their shared work to ``domains``.
        """
        requested = frozenset(domains)
        shared: Dict[str, List[OutcomeRecord]] = {}
        with self._lock:
            for record in self._outcomes:
                if len(record.parties) < 2 or worker_id not in record.parties:
                    continue
                for partner in record.parties:
                    if partner != worker_id:
                        shared.setdefault(partner, []).append(record)

        recommendations = []
        for partner, records in shared.items():
            success_rate = sum(1 for r in records if r.success) / len(records)
            relevance = sum(_overlap(requested, r.domains) for r in records) / len(records)
            score = success_rate * relevance
            if score > 0:
                recommendations.append(PairingRecommendation(
                    partner_id=partner,
                    score=score,
                    success_rate=success_rate,
                    relevance=relevance,
                    collaborations=len(records),
                ))
        recommendations.sort(key=lambda p: (-p.score, -p.collaborations, p.partner_id))
        return recommendations
