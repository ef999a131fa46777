"""
Error taxonomy for the coordination service.

Structural errors (duplicate ids, dependency cycles) are raised to the caller.
Scheduling errors (no candidate, capacity, timeout) are raised inside the
engine and absorbed into item or worker state.
"""
from typing import List, Optional


class CoordinationError(Exception):
    """Base class for every error raised by workmesh."""


class DuplicateWorkerError(CoordinationError):
    """Raised when registering a worker id that already exists."""

    def __init__(self, worker_id: str):
        super().__init__(f"Worker already registered: {worker_id}")
        self.worker_id = worker_id


class DuplicateWorkItemError(CoordinationError):
    """Raised when submitting a work item id that already exists."""

    def __init__(self, item_id: str):
        super().__init__(f"Work item already submitted: {item_id}")
        self.item_id = item_id


class NotFoundError(CoordinationError, KeyError):
    """Raised when a worker or work item id is unknown."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key

    def __str__(self) -> str:
        return self.args[0]


class DependencyCycleError(CoordinationError):
    """Raised when a submitted item's dependencies form a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class InvalidTransitionError(CoordinationError):
    """Raised on an illegal work item status transition."""

    def __init__(self, item_id: str, current: str, target: str, detail: str = ""):
        message = f"Cannot move {item_id} from {current} to {target}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.item_id = item_id
        self.current = current
        self.target = target


class NoCandidateAvailableError(CoordinationError):
    """No registered worker fits, or every fitting worker is busy."""

    def __init__(self, item_id: str, preferred: Optional[List[str]] = None):
        self.item_id = item_id
        self.preferred = list(preferred or [])
        if self.preferred:
            detail = f"preferred candidates busy: {', '.join(self.preferred)}"
        else:
            detail = "no worker meets the fit threshold"
        super().__init__(f"No candidate available for {item_id} ({detail})")


class CapacityExceededError(CoordinationError):
    """A worker cannot absorb the extra workload of an item."""

    def __init__(self, worker_id: str, workload: float, cost: float):
        super().__init__(
            f"Worker {worker_id} at workload {workload:.2f} cannot take cost {cost:.2f}"
        )
        self.worker_id = worker_id
        self.workload = workload
        self.cost = cost


class ReservationConflictError(CoordinationError):
    """An item already holds capacity on the worker it is being bound to."""

    def __init__(self, worker_id: str, item_id: str):
        super().__init__(f"Worker {worker_id} already holds a reservation for {item_id}")
        self.worker_id = worker_id
        self.item_id = item_id


class WorkerTimeoutError(CoordinationError):
    """A worker missed its liveness deadline."""

    def __init__(self, worker_id: str, age_seconds: float):
        super().__init__(f"Worker {worker_id} heartbeat is {age_seconds:.1f}s old")
        self.worker_id = worker_id
        self.age_seconds = age_seconds


class LogPersistenceError(CoordinationError):
    """Writing a log batch to the store failed. Retried with backoff."""

    def __init__(self, message: str, pending: int = 0):
        super().__init__(message)
        self.pending = pending
