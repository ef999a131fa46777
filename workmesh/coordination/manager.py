"""
Central coordination manager.

Wires the registry, queue, status tracker, assignment engine, analytics and
log pipeline together behind one in-process API. Every component shares the
same key-value store, settings and clock.
"""
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..analytics import BottleneckReport, PairingRecommendation, PerformanceAnalytics, PerformanceSnapshot
from ..config import Settings
from ..errors import NotFoundError
from ..logs import (
    LogAggregate,
    LogBatch,
    LogEntry,
    LogFilter,
    LogPage,
    LogPipeline,
    QueryEngine,
    RetentionManager,
    RetentionReport,
    Ticker,
    export_batch,
    import_batch,
    measure,
)
from ..storage import InMemoryStore, JsonFileStore, KeyValueStore
from .assignment import AssignmentEngine, AssignmentResult
from .models import Outcome, Requirements, WorkerProfile, WorkerStatus, WorkItem, WorkStatus
from .notifications import Notification, NotificationHub
from .queue import WorkQueue
from .registry import WorkerRegistry
from .status import StatusTracker, WorkerState


class CoordinationManager:
    """
    Single coordination authority for a pool of workers.

    Public operations that can free capacity or unblock work end with an
    assignment pass when ``auto_assign`` is on. Passes never run inside a
    component callback.
    """

    def __init__(self, settings: Optional[Settings] = None, store: Optional[KeyValueStore] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.settings = settings or Settings()
        if store is None:
            if self.settings.data_dir:
                store = JsonFileStore(self.settings.data_dir, self.settings.file_lock_timeout)
            else:
                store = InMemoryStore()
        self.store = store
        self.clock = clock

        self.pipeline = LogPipeline(self.store, self.settings, clock)
        self.events = self.pipeline.logger("coordination_manager")
        self.registry = WorkerRegistry(self.store, self.settings, self.pipeline.logger("worker_registry"))
        self.queue = WorkQueue(self.store, self.pipeline.logger("work_queue"), clock)
        self.analytics = PerformanceAnalytics(self.registry, self.settings, clock,
                                              self.pipeline.logger("performance_analytics"))
        self.status = StatusTracker(self.registry, self.queue, self.settings,
                                    self.pipeline.logger("status_tracker"), self.analytics, clock)
        self.hub = NotificationHub()
        self.engine = AssignmentEngine(self.registry, self.queue, self.status, self.hub, self.settings,
                                       self.pipeline.logger("assignment_engine"))
        self.retention = RetentionManager(self.pipeline.batches, self.settings, clock,
                                          self.pipeline.logger("retention_manager"))
        self.logs = QueryEngine(self.pipeline.batches, self.pipeline)

        self._capacity_changed = threading.Event()
        self.status.add_listener(self._on_status_change)
        self._liveness = Ticker(self.settings.liveness_check_interval, self._on_liveness_tick,
                                name="workmesh-liveness")

    # -- assignment passes ------------------------------------------------

    def _on_status_change(self, worker_id: str, old: WorkerStatus, new: WorkerStatus) -> None:
        if new == WorkerStatus.AVAILABLE or (new == WorkerStatus.WORKING and old == WorkerStatus.OVERLOADED):
            self._capacity_changed.set()

    def _after(self, force: bool = False) -> List[AssignmentResult]:
        """Run a pass if something changed and auto-assign is on."""
        if not self.settings.auto_assign:
            return []
        if not (force or self._capacity_changed.is_set()):
            return []
        self._capacity_changed.clear()
        return self.assign_pending()

    def assign_pending(self) -> List[AssignmentResult]:
        """One assignment pass over every ready item."""
        with measure() as m:
            results = self.engine.assign_ready()
        assigned = sum(1 for r in results if r.assigned)
        self.events.debug("assignment.pass", f"{assigned}/{len(results)} assigned",
                          perf=m.as_fields(), evaluated=len(results), assigned=assigned)
        return results

    # -- workers ----------------------------------------------------------

    def register_worker(self, profile: WorkerProfile) -> str:
        """
        Add a worker. Registration counts as its first heartbeat.

        Raises:
            DuplicateWorkerError: the id is already registered
        """
        worker_id = self.registry.register(profile)
        self.status.track(worker_id)
        self._after(force=True)
        return worker_id

    def deregister_worker(self, worker_id: str) -> WorkerProfile:
        """Remove a worker; its active items go back to the queue."""
        if worker_id not in self.registry:
            raise NotFoundError("worker", worker_id)
        self.status.mark_unavailable(worker_id, "worker_deregistered")
        profile = self.registry.deregister(worker_id)
        self.status.forget(worker_id)
        self.analytics.forget(worker_id)
        self.hub.close(worker_id)
        self._after(force=True)
        return profile

    def get_worker(self, worker_id: str) -> WorkerProfile:
        return self.registry.snapshot(worker_id)

    def worker_state(self, worker_id: str) -> WorkerState:
        return self.status.state(worker_id)

    def list_workers(self) -> List[WorkerProfile]:
        return [self.registry.snapshot(p.worker_id) for p in self.registry.list()]

    def query_candidates(self, requirements: Requirements) -> List[WorkerProfile]:
        """Workers at or above the fit threshold, best first."""
        return [c.worker for c in self.registry.find_candidates(requirements)]

    def heartbeat(self, worker_id: str) -> WorkerStatus:
        status = self.status.heartbeat(worker_id)
        self._after()
        return status

    def poll_notification(self, worker_id: str, timeout: Optional[float] = None) -> Optional[Notification]:
        if worker_id not in self.registry:
            raise NotFoundError("worker", worker_id)
        return self.hub.poll(worker_id, timeout)

    def check_liveness(self, now: Optional[datetime] = None) -> List[str]:
        timed_out = self.status.check_liveness(now)
        if timed_out:
            self._after(force=True)
        return timed_out

    def _on_liveness_tick(self) -> None:
        self.check_liveness()

    # -- work items -------------------------------------------------------

    def submit_work(self, item: WorkItem) -> str:
        """
        Queue an item and try to assign it.

        Raises:
            DuplicateWorkItemError: the id is already queued
            DependencyCycleError: the item's prerequisites form a cycle
        """
        item_id = self.queue.submit(item)
        self._after(force=True)
        return item_id

    def get_work(self, item_id: str) -> WorkItem:
        return self.queue.get(item_id)

    def list_work(self, status: Optional[WorkStatus] = None) -> List[WorkItem]:
        return self.queue.list(status)

    def report_progress(self, worker_id: str, item_id: str, progress: float) -> WorkItem:
        return self.status.report_progress(worker_id, item_id, progress)

    def report_blocked(self, worker_id: str, item_id: str, reason: str) -> WorkItem:
        return self.status.report_blocked(worker_id, item_id, reason)

    def report_outcome(self, worker_id: str, item_id: str, outcome: Outcome) -> WorkItem:
        item = self.status.mark_completed(worker_id, item_id, outcome)
        self._after(force=True)
        return item

    def cancel_work(self, item_id: str) -> WorkItem:
        item = self.queue.cancel(item_id)
        self._after(force=True)
        return item

    def requeue_work(self, item_id: str, reason: str = "manual_requeue") -> WorkItem:
        item = self.queue.requeue(item_id, reason)
        self._after(force=True)
        return item

    def archive_work(self, item_id: str) -> WorkItem:
        return self.queue.archive(item_id)

    # -- analytics --------------------------------------------------------

    def get_performance_report(self, worker_id: Optional[str] = None,
                               window: Optional[timedelta] = None) -> PerformanceSnapshot:
        if worker_id is not None and worker_id not in self.registry:
            raise NotFoundError("worker", worker_id)
        return self.analytics.report(worker_id, window)

    def bottlenecks(self) -> List[BottleneckReport]:
        return self.analytics.bottlenecks()

    def recommend_pairings(self, worker_id: str, domains: Iterable[str] = ()) -> List[PairingRecommendation]:
        return self.analytics.recommend_pairings(worker_id, domains)

    # -- logs -------------------------------------------------------------

    def log(self, component: str, level: Any, operation: str, context: Optional[Dict[str, Any]] = None,
            message: str = "", correlation_id: Optional[str] = None) -> LogEntry:
        return self.pipeline.emit(component, level, operation, message, context,
                                  correlation_id=correlation_id)

    def query_logs(self, log_filter: Optional[LogFilter] = None, **criteria: Any) -> LogPage:
        """Query with a LogFilter, or build one from keyword criteria."""
        if log_filter is None:
            log_filter = LogFilter(**criteria)
        return self.logs.query(log_filter)

    def log_aggregates(self, component: Optional[str] = None, start: Optional[datetime] = None,
                       end: Optional[datetime] = None) -> LogAggregate:
        return self.logs.aggregate(component, start, end)

    def flush_logs(self) -> int:
        return self.pipeline.flush()

    def run_retention(self, now: Optional[datetime] = None) -> RetentionReport:
        return self.retention.sweep(now)

    def export_batch(self, key: str, fmt: str = "json") -> str:
        batch = self.pipeline.batches.read(key)
        if batch is None:
            raise NotFoundError("log batch", key)
        return export_batch(batch, fmt)

    def import_batch(self, text: str) -> LogBatch:
        """Store a batch exported elsewhere. Existing keys are rejected."""
        batch = import_batch(text)
        self.pipeline.batches.write(batch)
        return batch

    # -- lifecycle --------------------------------------------------------

    def restore(self) -> Dict[str, int]:
        """
        Reload workers and work items from the store.

        Reservations do not survive a restart, so items that were active go
        back to pending and every worker starts with zero workload.
        """
        counts = {
            "workers": self.registry.restore(),
            "work_items": self.queue.restore(),
        }
        for profile in self.registry.list():
            self.registry.update(profile.worker_id, workload=0.0)
        requeued = 0
        for item in self.queue.list():
            if item.status.active:
                self.queue.requeue(item.item_id, "coordinator_restart")
                requeued += 1
        counts["requeued"] = requeued
        self._after(force=True)
        return counts

    def start(self) -> None:
        """Start the background flush, liveness and retention tickers."""
        self.pipeline.start()
        self._liveness.start()
        self.retention.start()
        self.events.info("manager.start", "Coordination started")

    def shutdown(self) -> int:
        """
        Stop every ticker and drain the log buffer.

        Returns the number of log entries that could not be persisted.
        """
        self._liveness.stop()
        self.retention.stop()
        self.events.info("manager.shutdown", "Coordination stopping")
        return self.pipeline.shutdown()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False
