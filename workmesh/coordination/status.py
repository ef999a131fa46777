"""
Status Tracker: live worker state.

Keeps each worker's active items and workload, applies heartbeats and
progress reports, and moves stale workers to ``unavailable``.

Worker status rules:
    available -> working       first active item
    working   -> overloaded    workload above the overload threshold
    *         -> unavailable   missed heartbeat or deregistration
    *         -> available     no active items and a fresh heartbeat

A worker lock is never held while a work item lock is taken.
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..config import Settings
from ..errors import (
    CapacityExceededError,
    InvalidTransitionError,
    NotFoundError,
    ReservationConflictError,
    WorkerTimeoutError,
)
from ..logs import ComponentLogger
from ..logs.query import COMPLETED_OPERATION, FAILED_OPERATION, RESPONSE_OPERATION
from .models import Outcome, WorkItem, WorkerProfile, WorkerStatus, WorkStatus
from .queue import WorkQueue
from .registry import WorkerRegistry

PRIMARY = "primary"
COLLABORATOR = "collaborator"

# listener(worker_id, old_status, new_status)
StatusListener = Callable[[str, WorkerStatus, WorkerStatus], None]

_EPSILON = 1e-9


@dataclass
class ActiveTask:
    item_id: str
    cost: float
    role: str = PRIMARY
    assigned_at: datetime = field(default_factory=datetime.now)
    first_progress_at: Optional[datetime] = None


@dataclass
class WorkerState:
    """Read-only view of one worker's live state."""
    worker_id: str
    status: WorkerStatus
    utilization: float
    active_tasks: List[str]
    last_heartbeat: Optional[datetime]


class StatusTracker:
    """Tracks workload and liveness for registered workers."""

    def __init__(self, registry: WorkerRegistry, queue: WorkQueue, settings: Optional[Settings] = None,
                 events=None, analytics=None, clock: Callable[[], datetime] = datetime.now):
        self.registry = registry
        self.queue = queue
        self.settings = settings or Settings()
        self.events = events or ComponentLogger("status_tracker")
        self.analytics = analytics
        self.clock = clock
        self.timeout = timedelta(seconds=self.settings.liveness_timeout)
        self._active: Dict[str, Dict[str, ActiveTask]] = {}
        self._active_guard = threading.Lock()
        self._listeners: List[StatusListener] = []

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def _tasks(self, worker_id: str) -> Dict[str, ActiveTask]:
        with self._active_guard:
            return self._active.setdefault(worker_id, {})

    # -- status bookkeeping -----------------------------------------------

    def is_fresh(self, profile: WorkerProfile, now: Optional[datetime] = None) -> bool:
        if profile.last_heartbeat is None:
            return False
        return (now or self.clock()) - profile.last_heartbeat <= self.timeout

    def _next_status(self, profile: WorkerProfile, now: datetime) -> WorkerStatus:
        if not self.is_fresh(profile, now):
            return profile.status
        if not self._tasks(profile.worker_id):
            return WorkerStatus.AVAILABLE
        if profile.workload > self.settings.overload_threshold:
            return WorkerStatus.OVERLOADED
        return WorkerStatus.WORKING

    def _apply(self, profile: WorkerProfile, now: datetime,
               status: Optional[WorkerStatus] = None) -> Optional[Tuple[WorkerStatus, WorkerStatus]]:
        """Recompute status and persist. Call with the worker lock held."""
        old = profile.status
        new = status or self._next_status(profile, now)
        self.registry.update(profile.worker_id, status=new, workload=profile.workload,
                             last_heartbeat=profile.last_heartbeat)
        return (old, new) if old != new else None

    def _fire(self, worker_id: str, change: Optional[Tuple[WorkerStatus, WorkerStatus]]) -> None:
        if change is None:
            return
        old, new = change
        self.events.info("worker.status", f"{old.value} -> {new.value}", worker_id=worker_id,
                         old=old.value, new=new.value)
        for listener in self._listeners:
            listener(worker_id, old, new)

    def track(self, worker_id: str) -> None:
        """Start tracking a freshly registered worker; registration counts as a heartbeat."""
        with self.registry.locks.hold(worker_id):
            profile = self.registry.get(worker_id)
            profile.last_heartbeat = self.clock()
            profile.workload = 0.0
            self._tasks(worker_id).clear()
            self._apply(profile, profile.last_heartbeat, WorkerStatus.AVAILABLE)

    def forget(self, worker_id: str) -> None:
        with self._active_guard:
            self._active.pop(worker_id, None)

    def state(self, worker_id: str) -> WorkerState:
        with self.registry.locks.hold(worker_id):
            profile = self.registry.get(worker_id)
            return WorkerState(
                worker_id=worker_id,
                status=profile.status,
                utilization=profile.workload,
                active_tasks=sorted(self._tasks(worker_id)),
                last_heartbeat=profile.last_heartbeat,
            )

    def active_tasks(self, worker_id: str) -> List[str]:
        return sorted(self._tasks(worker_id))

    # -- capacity ---------------------------------------------------------

    @staticmethod
    def _load(tasks: Dict[str, ActiveTask]) -> float:
        return min(1.0, sum(task.cost for task in tasks.values()))

    def reserve(self, worker_id: str, item_id: str, cost: float, role: str = PRIMARY) -> float:
        """
        Atomically check capacity and bind an item's cost to a worker.

        Returns the new workload.

        Raises:
            CapacityExceededError: the worker is not accepting work or is full
            ReservationConflictError: the item is already bound to the worker
        """
        with self.registry.locks.hold(worker_id):
            profile = self.registry.get(worker_id)
            now = self.clock()
            tasks = self._tasks(worker_id)
            if item_id in tasks:
                raise ReservationConflictError(worker_id, item_id)
            accepting = profile.status in (WorkerStatus.AVAILABLE, WorkerStatus.WORKING)
            if not accepting or not self.is_fresh(profile, now) \
                    or profile.workload + cost > 1.0 + _EPSILON:
                raise CapacityExceededError(worker_id, profile.workload, cost)
            tasks[item_id] = ActiveTask(item_id=item_id, cost=cost, role=role, assigned_at=now)
            profile.workload = self._load(tasks)
            change = self._apply(profile, now)
        self._fire(worker_id, change)
        return profile.workload

    def release(self, worker_id: str, item_id: str) -> bool:
        """Remove an item's cost from a worker. False if it was not bound."""
        if worker_id not in self.registry:
            return False
        with self.registry.locks.hold(worker_id):
            profile = self.registry.get(worker_id)
            tasks = self._tasks(worker_id)
            task = tasks.pop(item_id, None)
            if task is None:
                return False
            profile.workload = self._load(tasks)
            change = self._apply(profile, self.clock())
        self._fire(worker_id, change)
        return True

    # -- worker reports ---------------------------------------------------

    def heartbeat(self, worker_id: str) -> WorkerStatus:
        with self.registry.locks.hold(worker_id):
            profile = self.registry.get(worker_id)
            now = self.clock()
            profile.last_heartbeat = now
            change = self._apply(profile, now)
            status = profile.status
        self._fire(worker_id, change)
        self.events.debug("worker.heartbeat", worker_id=worker_id)
        if self.analytics is not None:
            self.analytics.record_heartbeat(worker_id, now)
        return status

    def _touch(self, worker_id: str) -> None:
        with self.registry.locks.hold(worker_id):
            profile = self.registry.get(worker_id)
            profile.last_heartbeat = self.clock()
            change = self._apply(profile, profile.last_heartbeat)
        self._fire(worker_id, change)

    def _bound_item(self, worker_id: str, item_id: str) -> WorkItem:
        if worker_id not in self.registry:
            raise NotFoundError("worker", worker_id)
        item = self.queue.get(item_id)
        if item.assignment.worker_id != worker_id:
            raise InvalidTransitionError(item_id, item.status.value, "reported",
                                         f"not bound to {worker_id}")
        return item

    def report_progress(self, worker_id: str, item_id: str, progress: float) -> WorkItem:
        item = self._bound_item(worker_id, item_id)
        item = self.queue.mark_in_progress(item_id, worker_id, progress)
        self._touch(worker_id)

        response_time = None
        with self.registry.locks.hold(worker_id):
            task = self._tasks(worker_id).get(item_id)
            if task is not None and task.first_progress_at is None:
                task.first_progress_at = self.clock()
                response_time = (task.first_progress_at - task.assigned_at).total_seconds()
        if response_time is not None:
            self.events.info(RESPONSE_OPERATION, f"{worker_id} started {item_id}",
                             correlation_id=item.correlation_id,
                             perf={"duration_ms": response_time * 1000},
                             worker_id=worker_id, item_id=item_id)
            if self.analytics is not None:
                self.analytics.record_response(worker_id, response_time, self.clock())
        else:
            self.events.debug("work.progress", f"{progress:.0%}", correlation_id=item.correlation_id,
                              worker_id=worker_id, item_id=item_id, progress=item.assignment.progress)
        return item

    def report_blocked(self, worker_id: str, item_id: str, reason: str) -> WorkItem:
        self._bound_item(worker_id, item_id)
        item = self.queue.mark_blocked(item_id, worker_id, reason)
        self._touch(worker_id)
        self.events.warn("work.blocked", reason, correlation_id=item.correlation_id,
                         worker_id=worker_id, item_id=item_id)
        return item

    def mark_completed(self, worker_id: str, item_id: str, outcome: Outcome) -> WorkItem:
        """Record a worker's outcome for an item and free its capacity."""
        item = self._bound_item(worker_id, item_id)
        if not item.status.active:
            raise InvalidTransitionError(item_id, item.status.value, "completed")
        now = self.clock()
        started = item.assignment.started_at or item.assignment.assigned_at or now
        duration = outcome.duration if outcome.duration is not None else (now - started).total_seconds()
        collaborators = list(item.assignment.collaborators)

        if outcome.success:
            self.queue.mark_completed(item_id, worker_id)
            operation = COMPLETED_OPERATION
        else:
            self.queue.mark_failed(item_id, outcome.detail or "worker_reported_failure", worker_id)
            operation = FAILED_OPERATION

        for bound in [worker_id] + collaborators:
            self.release(bound, item_id)
        self._touch(worker_id)

        self.events.log(
            "INFO" if outcome.success else "WARN", operation, outcome.detail,
            correlation_id=item.correlation_id, worker_id=worker_id, item_id=item_id,
            duration_s=round(duration, 3), collaborators=collaborators,
        )
        if self.analytics is not None:
            self.analytics.record_outcome(worker_id, item, outcome, duration, now)
        return item

    # -- liveness ---------------------------------------------------------

    def _take_offline(self, worker_id: str, now: datetime) -> Tuple[List[str], Optional[Tuple]]:
        profile = self.registry.get(worker_id)
        tasks = self._tasks(worker_id)
        items = sorted(tasks)
        tasks.clear()
        profile.workload = 0.0
        change = self._apply(profile, now, WorkerStatus.UNAVAILABLE)
        return items, change

    def _requeue_all(self, worker_id: str, items: List[str], reason: str) -> List[str]:
        requeued = []
        for item_id in items:
            try:
                if self.queue.get(item_id).status.active:
                    self.queue.requeue(item_id, reason, worker_id)
                    requeued.append(item_id)
            except (InvalidTransitionError, NotFoundError):
                continue
        return requeued

    def check_liveness(self, now: Optional[datetime] = None) -> List[str]:
        """
        Mark workers with stale heartbeats unavailable and requeue their
        active items with reason ``worker_timeout``. Returns the timed-out ids.
        """
        now = now or self.clock()
        timed_out = []
        for profile in self.registry.list():
            worker_id = profile.worker_id
            try:
                with self.registry.locks.hold(worker_id):
                    if profile.status == WorkerStatus.UNAVAILABLE or self.is_fresh(profile, now):
                        continue
                    age = (now - profile.last_heartbeat).total_seconds() if profile.last_heartbeat else float("inf")
                    items, change = self._take_offline(worker_id, now)
            except NotFoundError:
                continue
            error = WorkerTimeoutError(worker_id, age)
            self._fire(worker_id, change)
            requeued = self._requeue_all(worker_id, items, "worker_timeout")
            self.events.warn("worker.timeout", str(error), worker_id=worker_id, requeued=requeued)
            timed_out.append(worker_id)
        return timed_out

    def mark_unavailable(self, worker_id: str, reason: str = "worker_deregistered") -> List[str]:
        """Take a worker offline on request and requeue its items."""
        with self.registry.locks.hold(worker_id):
            items, change = self._take_offline(worker_id, self.clock())
        self._fire(worker_id, change)
        return self._requeue_all(worker_id, items, reason)
