"""
Work Queue: pending work items and dependency gating.

An item is ready when it is pending and every prerequisite item is
completed. Items stay in the queue through every status until archived.
"""
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Set

from ..errors import DependencyCycleError, DuplicateWorkItemError, InvalidTransitionError, NotFoundError
from ..logs import ComponentLogger
from ..storage import InMemoryStore, KeyValueStore
from .locks import LockTable
from .models import Assignment, WorkItem, WorkStatus

WORK_NAMESPACE = "work_items"

CANCELLED = "cancelled"
REQUEUED = "requeued"

# listener(event, item, released_worker_ids), called with the item lock held
ReleaseListener = Callable[[str, WorkItem, List[str]], None]


class WorkQueue:
    """
    Holds every submitted WorkItem. Mutations lock the single item involved.
    """

    def __init__(self, store: Optional[KeyValueStore] = None, events=None,
                 clock: Callable[[], datetime] = datetime.now):
        self.store = store or InMemoryStore()
        self.events = events or ComponentLogger("work_queue")
        self.clock = clock
        self.locks = LockTable()
        self._items: Dict[str, WorkItem] = {}
        self._dependents: Dict[str, Set[str]] = {}
        self._archived_completed: Set[str] = set()
        self._archived_failed: Set[str] = set()
        self._guard = threading.RLock()
        self._release_handler: Optional[ReleaseListener] = None
        self._listeners: List[ReleaseListener] = []

    def set_release_handler(self, handler: ReleaseListener) -> None:
        """
        Frees the reservations of workers bound to a cancelled or requeued
        item. Runs under the item lock before any listener, so the item is
        never pending while its old workers still hold its cost.
        """
        self._release_handler = handler

    def add_listener(self, listener: ReleaseListener) -> None:
        """Called under the item lock after an active item is cancelled or requeued."""
        self._listeners.append(listener)

    # -- records ----------------------------------------------------------

    def _persist(self, item: WorkItem) -> None:
        self.store.put(WORK_NAMESPACE, item.item_id, item.to_dict())

    def restore(self) -> int:
        loaded = 0
        with self._guard:
            for key, record in self.store.items(WORK_NAMESPACE):
                if key in self._items:
                    continue
                item = WorkItem.from_dict(record)
                self._items[key] = item
                for dep in item.prerequisite_ids:
                    self._dependents.setdefault(dep, set()).add(key)
                loaded += 1
        return loaded

    def get(self, item_id: str) -> WorkItem:
        with self._guard:
            item = self._items.get(item_id)
        if item is None:
            raise NotFoundError("work item", item_id)
        return item

    def __contains__(self, item_id: str) -> bool:
        with self._guard:
            return item_id in self._items

    def list(self, status: Optional[WorkStatus] = None) -> List[WorkItem]:
        with self._guard:
            items = list(self._items.values())
        if status is not None:
            items = [item for item in items if item.status == status]
        return items

    def dependents(self, item_id: str) -> List[str]:
        with self._guard:
            return sorted(self._dependents.get(item_id, ()))

    # -- submission -------------------------------------------------------

    def submit(self, item: WorkItem) -> str:
        """
        Queue a new item.

        Raises:
            DuplicateWorkItemError: the id is already queued
            DependencyCycleError: the prerequisites loop back to the item
        """
        with self._guard:
            if item.item_id in self._items:
                raise DuplicateWorkItemError(item.item_id)
            cycle = self._find_cycle(item)
            if cycle:
                self.events.error("work.submit_rejected", f"Cycle: {' -> '.join(cycle)}",
                                  correlation_id=item.correlation_id, item_id=item.item_id)
                raise DependencyCycleError(cycle)

            now = self.clock()
            item.assignment = Assignment()
            item.submitted_at = now
            item.record("submitted", timestamp=now)
            self._items[item.item_id] = item
            for dep in item.prerequisite_ids:
                self._dependents.setdefault(dep, set()).add(item.item_id)
            failed_dep = self._failed_prerequisite(item)
            if failed_dep:
                self._finish_failed(item, f"dependency_failed:{failed_dep}")
            else:
                blocker = self._blocker(item)
                item.status_reason = f"blocked_on:{blocker}" if blocker else None
                self._persist(item)

        self.events.info("work.submit", item.title, correlation_id=item.correlation_id,
                         item_id=item.item_id, priority=item.priority,
                         depends_on=item.prerequisite_ids)
        if failed_dep:
            self.events.warn("work.dependency_failed", f"{item.item_id} failed with {failed_dep}",
                             correlation_id=item.correlation_id, item_id=item.item_id)
            self._cascade_failure(item.item_id)
        return item.item_id

    def _find_cycle(self, new_item: WorkItem) -> Optional[List[str]]:
        """DFS from the new item with recursion-stack marking."""
        def edges(node: str) -> Sequence[str]:
            if node == new_item.item_id:
                return new_item.prerequisite_ids
            existing = self._items.get(node)
            return existing.prerequisite_ids if existing else ()

        on_stack: List[str] = []
        stack_set: Set[str] = set()
        done: Set[str] = set()

        def visit(node: str) -> Optional[List[str]]:
            on_stack.append(node)
            stack_set.add(node)
            for nxt in edges(node):
                if nxt in stack_set:
                    return on_stack[on_stack.index(nxt):] + [nxt]
                if nxt not in done:
                    cycle = visit(nxt)
                    if cycle:
                        return cycle
            on_stack.pop()
            stack_set.discard(node)
            done.add(node)
            return None

        return visit(new_item.item_id)

    # -- readiness --------------------------------------------------------

    def _failed_prerequisite(self, item: WorkItem) -> Optional[str]:
        for dep in item.prerequisite_ids:
            prerequisite = self._items.get(dep)
            if prerequisite is None:
                if dep in self._archived_failed:
                    return dep
            elif prerequisite.status == WorkStatus.FAILED:
                return dep
        return None

    def _blocker(self, item: WorkItem) -> Optional[str]:
        for dep in item.prerequisite_ids:
            prerequisite = self._items.get(dep)
            if prerequisite is None:
                if dep in self._archived_completed:
                    continue
                return dep
            if prerequisite.status != WorkStatus.COMPLETED:
                return dep
        return None

    def blocker(self, item_id: str) -> Optional[str]:
        """First prerequisite that is not completed, or None."""
        with self._guard:
            return self._blocker(self.get(item_id))

    def is_ready(self, item_id: str) -> bool:
        item = self.get(item_id)
        return item.status == WorkStatus.PENDING and self.blocker(item_id) is None

    def dequeue_ready(self) -> List[WorkItem]:
        """
        Pending items whose prerequisites are all completed, highest priority
        first. Items stay pending until the assignment engine binds them.
        Blocked items get their ``blocked_on:<id>`` reason refreshed.
        """
        ready = []
        with self._guard:
            for item in self._items.values():
                if item.status != WorkStatus.PENDING:
                    continue
                blocker = self._blocker(item)
                if blocker:
                    item.status_reason = f"blocked_on:{blocker}"
                    continue
                if item.status_reason and item.status_reason.startswith("blocked_on:"):
                    item.status_reason = None
                ready.append(item)
        ready.sort(key=lambda i: (-i.priority, i.submitted_at, i.item_id))
        return ready

    # -- transitions ------------------------------------------------------

    def mark_assigned(self, item_id: str, worker_id: str, collaborators: Sequence[str] = (),
                      fit_score: Optional[float] = None) -> WorkItem:
        with self.locks.hold(item_id):
            item = self.get(item_id)
            if item.status != WorkStatus.PENDING:
                raise InvalidTransitionError(item_id, item.status.value, WorkStatus.ASSIGNED.value)
            blocker = self.blocker(item_id)
            if blocker:
                raise InvalidTransitionError(item_id, item.status.value, WorkStatus.ASSIGNED.value,
                                             f"blocked_on:{blocker}")
            now = self.clock()
            item.assignment = Assignment(
                status=WorkStatus.ASSIGNED,
                worker_id=worker_id,
                collaborators=list(collaborators),
                assigned_at=now,
                fit_score=fit_score,
            )
            item.attempts += 1
            item.status_reason = None
            item.preferred_candidates = []
            item.record("assigned", worker_id=worker_id, timestamp=now)
            self._persist(item)
            return item

    def mark_waiting(self, item_id: str, reason: str, preferred: Sequence[str] = ()) -> WorkItem:
        """Keep a ready item pending with the candidates it is waiting for."""
        with self.locks.hold(item_id):
            item = self.get(item_id)
            if item.status != WorkStatus.PENDING:
                raise InvalidTransitionError(item_id, item.status.value, WorkStatus.PENDING.value)
            item.status_reason = reason
            item.preferred_candidates = list(preferred)
            self._persist(item)
            return item

    def _bound_check(self, item: WorkItem, worker_id: Optional[str], target: WorkStatus) -> None:
        if not item.status.active:
            raise InvalidTransitionError(item.item_id, item.status.value, target.value)
        if worker_id is not None and item.assignment.worker_id != worker_id:
            raise InvalidTransitionError(item.item_id, item.status.value, target.value,
                                         f"bound to {item.assignment.worker_id}, not {worker_id}")

    def mark_in_progress(self, item_id: str, worker_id: str, progress: float) -> WorkItem:
        with self.locks.hold(item_id):
            item = self.get(item_id)
            self._bound_check(item, worker_id, WorkStatus.IN_PROGRESS)
            now = self.clock()
            previous = item.status
            item.assignment.status = WorkStatus.IN_PROGRESS
            item.assignment.progress = min(1.0, max(0.0, float(progress)))
            if item.assignment.started_at is None:
                item.assignment.started_at = now
                item.record("started", worker_id=worker_id, timestamp=now)
            elif previous == WorkStatus.BLOCKED:
                item.status_reason = None
                item.record("resumed", worker_id=worker_id, timestamp=now)
            self._persist(item)
            return item

    def mark_blocked(self, item_id: str, worker_id: str, reason: str) -> WorkItem:
        with self.locks.hold(item_id):
            item = self.get(item_id)
            self._bound_check(item, worker_id, WorkStatus.BLOCKED)
            item.assignment.status = WorkStatus.BLOCKED
            item.status_reason = reason
            item.record("blocked", worker_id=worker_id, reason=reason, timestamp=self.clock())
            self._persist(item)
            return item

    def mark_completed(self, item_id: str, worker_id: Optional[str] = None) -> List[str]:
        """Complete an active item. Returns dependents that became ready."""
        with self.locks.hold(item_id):
            item = self.get(item_id)
            self._bound_check(item, worker_id, WorkStatus.COMPLETED)
            now = self.clock()
            item.assignment.status = WorkStatus.COMPLETED
            item.assignment.progress = 1.0
            item.assignment.finished_at = now
            item.status_reason = None
            item.record("completed", worker_id=item.assignment.worker_id, timestamp=now)
            self._persist(item)

        unblocked = [dep for dep in self.dependents(item_id) if self.is_ready(dep)]
        for dep in unblocked:
            self.events.info("work.unblocked", f"{dep} ready after {item_id}",
                             correlation_id=self.get(dep).correlation_id, item_id=dep)
        return unblocked

    def mark_failed(self, item_id: str, reason: str, worker_id: Optional[str] = None) -> WorkItem:
        """Fail an item and every pending item that depends on it."""
        with self.locks.hold(item_id):
            item = self.get(item_id)
            if item.status.terminal:
                raise InvalidTransitionError(item_id, item.status.value, WorkStatus.FAILED.value)
            if worker_id is not None:
                self._bound_check(item, worker_id, WorkStatus.FAILED)
            self._finish_failed(item, reason)
        self._cascade_failure(item_id)
        return item

    def _finish_failed(self, item: WorkItem, reason: str) -> None:
        now = self.clock()
        item.assignment.status = WorkStatus.FAILED
        item.assignment.finished_at = now
        item.status_reason = reason
        item.record("failed", worker_id=item.assignment.worker_id, reason=reason, timestamp=now)
        self._persist(item)

    def _cascade_failure(self, item_id: str) -> None:
        for dep_id in self.dependents(item_id):
            with self.locks.hold(dep_id):
                dependent = self.get(dep_id)
                if dependent.status != WorkStatus.PENDING:
                    continue
                self._finish_failed(dependent, f"dependency_failed:{item_id}")
            self.events.warn("work.dependency_failed", f"{dep_id} failed with {item_id}",
                             correlation_id=dependent.correlation_id, item_id=dep_id)
            self._cascade_failure(dep_id)

    def requeue(self, item_id: str, reason: str, worker_id: Optional[str] = None) -> WorkItem:
        """
        Return an active item to pending, releasing its workers.

        With ``worker_id`` the item is only requeued while that worker is
        still bound to it, as primary or collaborator.
        """
        with self.locks.hold(item_id):
            item = self.get(item_id)
            if not item.status.active:
                raise InvalidTransitionError(item_id, item.status.value, WorkStatus.PENDING.value)
            released = [item.assignment.worker_id] + list(item.assignment.collaborators)
            if worker_id is not None and worker_id not in released:
                raise InvalidTransitionError(item_id, item.status.value, WorkStatus.PENDING.value,
                                             f"not bound to {worker_id}")
            item.assignment = Assignment()
            item.status_reason = reason
            item.record("requeued", worker_id=released[0], reason=reason, timestamp=self.clock())
            self._persist(item)
            self._release(REQUEUED, item, released)

        self.events.warn("work.requeue", reason, correlation_id=item.correlation_id,
                         item_id=item_id, released=released)
        return item

    def cancel(self, item_id: str) -> WorkItem:
        """Fail an item with reason ``cancelled``; bound workers are told to stop."""
        with self.locks.hold(item_id):
            item = self.get(item_id)
            if item.status.terminal:
                raise InvalidTransitionError(item_id, item.status.value, WorkStatus.FAILED.value)
            released = []
            if item.status.active:
                released = [item.assignment.worker_id] + list(item.assignment.collaborators)
            self._finish_failed(item, CANCELLED)
            if released:
                self._release(CANCELLED, item, released)

        self.events.info("work.cancel", f"Cancelled {item_id}", correlation_id=item.correlation_id,
                         item_id=item_id, released=released)
        self._cascade_failure(item_id)
        return item

    def archive(self, item_id: str) -> WorkItem:
        with self.locks.hold(item_id):
            item = self.get(item_id)
            if not item.status.terminal:
                raise InvalidTransitionError(item_id, item.status.value, "archived")
            with self._guard:
                del self._items[item_id]
                if item.status == WorkStatus.COMPLETED:
                    self._archived_completed.add(item_id)
                else:
                    self._archived_failed.add(item_id)
                for dep in item.prerequisite_ids:
                    self._dependents.get(dep, set()).discard(item_id)
            self.store.delete(WORK_NAMESPACE, item_id)
        self.locks.discard(item_id)
        return item

    def _release(self, event: str, item: WorkItem, released: List[str]) -> None:
        if self._release_handler is not None:
            self._release_handler(event, item, released)
        for listener in self._listeners:
            listener(event, item, released)
