"""
Assignment Engine: binds ready work items to workers.

For each ready item the registry's ranked candidates are tried in order; the
first one whose capacity check passes under its worker lock is bound.
Collaborators are drawn the same way against their own requirement subset.
An item that cannot be bound stays pending with its preferred candidates
attached and is retried on the next pass.
"""
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config import Settings
from ..errors import CapacityExceededError, InvalidTransitionError, NoCandidateAvailableError
from ..logs import ComponentLogger
from .models import Requirements, WorkItem, WorkStatus
from .notifications import ASSIGNMENT, CANCEL, REQUEUE, NotificationHub
from .queue import CANCELLED, WorkQueue
from .registry import WorkerRegistry
from .status import COLLABORATOR, PRIMARY, StatusTracker

AWAITING_COLLABORATOR = "awaiting_collaborator"
NO_CANDIDATE = "no_candidate"


@dataclass
class AssignmentResult:
    item_id: str
    assigned: bool
    worker_id: Optional[str] = None
    fit_score: Optional[float] = None
    collaborators: List[str] = field(default_factory=list)
    preferred_candidates: List[str] = field(default_factory=list)
    reason: Optional[str] = None


class AssignmentEngine:
    """Matches ready items to workers with capacity."""

    def __init__(self, registry: WorkerRegistry, queue: WorkQueue, status: StatusTracker,
                 hub: Optional[NotificationHub] = None, settings: Optional[Settings] = None,
                 events=None):
        self.registry = registry
        self.queue = queue
        self.status = status
        self.hub = hub or NotificationHub()
        self.settings = settings or Settings()
        self.events = events or ComponentLogger("assignment_engine")
        self.collaborator_share = self.settings.collaborator_cost_share

        self._pass_lock = threading.Lock()
        self._rerun = threading.Event()
        queue.set_release_handler(self.on_item_released)

    # -- single item ------------------------------------------------------

    def _bind_primary(self, item: WorkItem, exclude=()):
        """Reserve the best candidate with capacity. Returns (candidate, ranked ids)."""
        candidates = self.registry.find_candidates(item.requirements, exclude=exclude)
        for candidate in candidates:
            try:
                self.status.reserve(candidate.worker_id, item.item_id, item.cost, PRIMARY)
            except CapacityExceededError:
                continue
            return candidate, [c.worker_id for c in candidates]
        raise NoCandidateAvailableError(item.item_id, [c.worker_id for c in candidates])

    def _bind_collaborator(self, item: WorkItem, requirements: Requirements, exclude: List[str]) -> str:
        cost = item.cost * self.collaborator_share
        for candidate in self.registry.find_candidates(requirements, exclude=exclude):
            try:
                self.status.reserve(candidate.worker_id, item.item_id, cost, COLLABORATOR)
            except CapacityExceededError:
                continue
            return candidate.worker_id
        raise NoCandidateAvailableError(item.item_id)

    def _rollback(self, item_id: str, worker_ids: List[str]) -> None:
        for worker_id in worker_ids:
            self.status.release(worker_id, item_id)

    def try_assign(self, item: WorkItem) -> AssignmentResult:
        """
        Attempt to bind one item.

        Args:
            item: a queued work item

        Returns:
            AssignmentResult; ``assigned`` is False when the item stays pending.
        """
        item_id = item.item_id
        with self.queue.locks.hold(item_id):
            item = self.queue.get(item_id)
            if item.status != WorkStatus.PENDING:
                return AssignmentResult(item_id, False, reason=f"status:{item.status.value}")
            blocker = self.queue.blocker(item_id)
            if blocker:
                return AssignmentResult(item_id, False, reason=f"blocked_on:{blocker}")

            try:
                candidate, ranked = self._bind_primary(item)
            except NoCandidateAvailableError as exc:
                self.queue.mark_waiting(item_id, NO_CANDIDATE, exc.preferred)
                self.events.warn("work.unassigned", str(exc), correlation_id=item.correlation_id,
                                 item_id=item_id, preferred=exc.preferred)
                return AssignmentResult(item_id, False, preferred_candidates=exc.preferred,
                                        reason=NO_CANDIDATE)

            bound = [candidate.worker_id]
            collaborators: List[str] = []
            try:
                for requirements in item.collaboration_requirements:
                    collaborators.append(self._bind_collaborator(item, requirements, exclude=list(bound)))
                    bound.append(collaborators[-1])
            except NoCandidateAvailableError:
                self._rollback(item_id, bound)
                self.queue.mark_waiting(item_id, AWAITING_COLLABORATOR, ranked)
                self.events.warn("work.unassigned", "Collaborator unavailable",
                                 correlation_id=item.correlation_id, item_id=item_id,
                                 primary=candidate.worker_id)
                return AssignmentResult(item_id, False, preferred_candidates=ranked,
                                        reason=AWAITING_COLLABORATOR)

            try:
                self.queue.mark_assigned(item_id, candidate.worker_id, collaborators, candidate.score)
            except InvalidTransitionError as exc:
                self._rollback(item_id, bound)
                return AssignmentResult(item_id, False, reason=str(exc))

            self.hub.notify(candidate.worker_id, ASSIGNMENT, item_id, role=PRIMARY,
                            collaborators=collaborators, fit_score=candidate.score)
            for collaborator in collaborators:
                self.hub.notify(collaborator, ASSIGNMENT, item_id, role=COLLABORATOR,
                                primary=candidate.worker_id)

        self.events.info("work.assigned", f"{item_id} -> {candidate.worker_id}",
                         correlation_id=item.correlation_id, item_id=item_id,
                         worker_id=candidate.worker_id, fit_score=round(candidate.score, 4),
                         collaborators=collaborators)
        return AssignmentResult(item_id, True, worker_id=candidate.worker_id,
                                fit_score=candidate.score, collaborators=collaborators)

    # -- passes -----------------------------------------------------------

    def assign_ready(self) -> List[AssignmentResult]:
        """
        One evaluation pass over every ready item, highest priority first.

        Only one pass runs at a time; a request arriving mid-pass makes the
        running pass go round again instead of starting a second one.
        """
        results: Dict[str, AssignmentResult] = {}
        while True:
            if not self._pass_lock.acquire(blocking=False):
                self._rerun.set()
                break
            try:
                self._rerun.clear()
                for item in self.queue.dequeue_ready():
                    results[item.item_id] = self.try_assign(item)
            finally:
                self._pass_lock.release()
            if not self._rerun.is_set():
                break
        return list(results.values())

    # -- releases ---------------------------------------------------------

    def on_item_released(self, event: str, item: WorkItem, worker_ids: List[str]) -> None:
        """
        Free reservations held for a cancelled or requeued item and tell the
        workers. Runs under the item lock, so a later assignment notice for the
        same item always follows this one.
        """
        kind = CANCEL if event == CANCELLED else REQUEUE
        for worker_id in worker_ids:
            if worker_id is None:
                continue
            self.status.release(worker_id, item.item_id)
            self.hub.notify(worker_id, kind, item.item_id, reason=item.status_reason)
