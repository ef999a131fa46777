"""
Worker Registry: capability profiles and fit scoring.
"""
import copy
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from ..config import Settings
from ..errors import DuplicateWorkerError, NotFoundError
from ..logs import ComponentLogger
from ..storage import InMemoryStore, KeyValueStore
from .locks import LockTable
from .models import PerformanceProfile, Requirements, WorkerProfile, WorkerStatus

WORKER_NAMESPACE = "workers"

# Fields a caller may change through update(). Live state belongs to the
# status tracker, which goes through the same method.
UPDATABLE_FIELDS = {
    "display_name", "capabilities", "performance", "status", "workload", "last_heartbeat",
}


@dataclass
class Candidate:
    """A worker that meets the fit threshold, with its score breakdown."""
    worker: WorkerProfile
    score: float
    factors: Dict[str, float]

    @property
    def worker_id(self) -> str:
        return self.worker.worker_id


def _overlap(required: Iterable[str], offered: Iterable[str]) -> float:
    required = set(required)
    if not required:
        return 1.0
    return len(required & set(offered)) / len(required)


def score_factors(worker: WorkerProfile, requirements: Requirements) -> Dict[str, float]:
    """The four fit factors, each in [0, 1]."""
    caps = worker.capabilities
    if caps.expertise >= requirements.complexity:
        complexity = 1.0
    else:
        complexity = int(caps.expertise) / int(requirements.complexity)
    return {
        "domain": _overlap(requirements.domains, caps.domains),
        "expertise": 1.0 if caps.expertise >= requirements.expertise else 0.5,
        "specialization": _overlap(requirements.specializations, caps.specializations),
        "complexity": complexity,
    }


def fit_score(factors: Dict[str, float], weights: Dict[str, float]) -> float:
    """Weighted sum normalised by the weight total, clamped to [0, 1]."""
    total_weight = sum(weights.get(name, 0.0) for name in factors)
    if total_weight <= 0:
        return 0.0
    raw = sum(factors[name] * weights.get(name, 0.0) for name in factors) / total_weight
    return min(1.0, max(0.0, raw))


class WorkerRegistry:
    """
    Owns every WorkerProfile. Each profile has its own lock; mutations are
    written through to the key-value store.
    """

    def __init__(self, store: Optional[KeyValueStore] = None, settings: Optional[Settings] = None,
                 events=None):
        self.store = store or InMemoryStore()
        self.settings = settings or Settings()
        self.events = events or ComponentLogger("worker_registry")
        self.weights = self.settings.fit_weights()
        self.min_score = self.settings.min_fit_score
        self.locks = LockTable()
        self._profiles: Dict[str, WorkerProfile] = {}
        self._guard = threading.Lock()

    # -- records ----------------------------------------------------------

    def _persist(self, profile: WorkerProfile) -> None:
        self.store.put(WORKER_NAMESPACE, profile.worker_id, profile.to_dict())

    def restore(self) -> int:
        """Load profiles from the store. Returns how many were loaded."""
        loaded = 0
        for key, record in self.store.items(WORKER_NAMESPACE):
            with self._guard:
                if key not in self._profiles:
                    self._profiles[key] = WorkerProfile.from_dict(record)
                    loaded += 1
        return loaded

    def register(self, profile: WorkerProfile) -> str:
        with self._guard:
            if profile.worker_id in self._profiles:
                raise DuplicateWorkerError(profile.worker_id)
            self._profiles[profile.worker_id] = profile
        with self.locks.hold(profile.worker_id):
            self._persist(profile)
        self.events.info("worker.register", f"Registered {profile.worker_id}",
                         worker_id=profile.worker_id,
                         domains=sorted(profile.capabilities.domains),
                         expertise=profile.capabilities.expertise.name.lower())
        return profile.worker_id

    def update(self, worker_id: str, **partial: Any) -> WorkerProfile:
        unknown = set(partial) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        with self.locks.hold(worker_id):
            profile = self.get(worker_id)
            for name, value in partial.items():
                if name == "status":
                    value = WorkerStatus(value)
                elif name == "performance" and isinstance(value, dict):
                    value = PerformanceProfile.from_dict({**profile.performance.to_dict(), **value})
                setattr(profile, name, value)
            self._persist(profile)
            return profile

    def deregister(self, worker_id: str) -> WorkerProfile:
        with self.locks.hold(worker_id):
            with self._guard:
                profile = self._profiles.pop(worker_id, None)
            if profile is None:
                raise NotFoundError("worker", worker_id)
            self.store.delete(WORKER_NAMESPACE, worker_id)
        self.locks.discard(worker_id)
        self.events.info("worker.deregister", f"Deregistered {worker_id}", worker_id=worker_id)
        return profile

    def get(self, worker_id: str) -> WorkerProfile:
        with self._guard:
            profile = self._profiles.get(worker_id)
        if profile is None:
            raise NotFoundError("worker", worker_id)
        return profile

    def snapshot(self, worker_id: str) -> WorkerProfile:
        """A detached copy safe to hand to callers."""
        with self.locks.hold(worker_id):
            return copy.deepcopy(self.get(worker_id))

    def __contains__(self, worker_id: str) -> bool:
        with self._guard:
            return worker_id in self._profiles

    def list(self) -> List[WorkerProfile]:
        with self._guard:
            return list(self._profiles.values())

    # -- matching ---------------------------------------------------------

    def score(self, worker: WorkerProfile, requirements: Requirements) -> Candidate:
        factors = score_factors(worker, requirements)
        return Candidate(worker=worker, score=fit_score(factors, self.weights), factors=factors)

    def find_candidates(self, requirements: Requirements, exclude: Iterable[str] = (),
                        min_score: Optional[float] = None) -> List[Candidate]:
        """
        Workers scoring at least the threshold, best first.

        Ties go to the higher success rate, then the lower workload.
        """
        threshold = self.min_score if min_score is None else min_score
        excluded = set(exclude)
        candidates = []
        for worker in self.list():
            if worker.worker_id in excluded:
                continue
            candidate = self.score(worker, requirements)
            if candidate.score >= threshold:
                candidates.append(candidate)
        candidates.sort(key=lambda c: (-c.score, -c.worker.performance.success_rate,
                                       c.worker.workload, c.worker_id))
        return candidates

