"""
Typed records for workers, work items and their requirements.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, FrozenSet, List, Optional


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class ExpertiseLevel(IntEnum):
    NOVICE = 1
    INTERMEDIATE = 2
    ADVANCED = 3
    EXPERT = 4

    @classmethod
    def parse(cls, value: Any) -> 'ExpertiseLevel':
        if isinstance(value, ExpertiseLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls[str(value).strip().upper()]


class Complexity(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: Any) -> 'Complexity':
        if isinstance(value, Complexity):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls[str(value).strip().upper()]


# Default share of a worker's capacity an item of each complexity consumes.
COMPLEXITY_COST = {
    Complexity.LOW: 0.1,
    Complexity.MEDIUM: 0.25,
    Complexity.HIGH: 0.4,
    Complexity.CRITICAL: 0.6,
}


class WorkerStatus(str, Enum):
    AVAILABLE = "available"
    WORKING = "working"
    OVERLOADED = "overloaded"
    UNAVAILABLE = "unavailable"


class WorkStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (WorkStatus.COMPLETED, WorkStatus.FAILED)

    @property
    def active(self) -> bool:
        return self in (WorkStatus.ASSIGNED, WorkStatus.IN_PROGRESS, WorkStatus.BLOCKED)


@dataclass
class Capabilities:
    domains: FrozenSet[str] = frozenset()
    expertise: ExpertiseLevel = ExpertiseLevel.INTERMEDIATE
    specializations: FrozenSet[str] = frozenset()

    def __post_init__(self):
        self.domains = frozenset(self.domains)
        self.specializations = frozenset(self.specializations)
        self.expertise = ExpertiseLevel.parse(self.expertise)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domains": sorted(self.domains),
            "expertise": self.expertise.name.lower(),
            "specializations": sorted(self.specializations),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Capabilities':
        return cls(
            domains=frozenset(data.get("domains", ())),
            expertise=ExpertiseLevel.parse(data.get("expertise", "intermediate")),
            specializations=frozenset(data.get("specializations", ())),
        )


@dataclass
class PerformanceProfile:
    success_rate: float = 1.0
    avg_completion_time: float = 0.0  # seconds
    quality_score: float = 1.0
    collaboration_score: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_rate": self.success_rate,
            "avg_completion_time": self.avg_completion_time,
            "quality_score": self.quality_score,
            "collaboration_score": self.collaboration_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PerformanceProfile':
        return cls(**{k: data[k] for k in ("success_rate", "avg_completion_time",
                                            "quality_score", "collaboration_score") if k in data})


@dataclass
class WorkerProfile:
    """A registered worker: what it can do, how well, and what it is doing now."""
    worker_id: str
    display_name: str = ""
    capabilities: Capabilities = field(default_factory=Capabilities)
    performance: PerformanceProfile = field(default_factory=PerformanceProfile)
    status: WorkerStatus = WorkerStatus.AVAILABLE
    workload: float = 0.0
    last_heartbeat: Optional[datetime] = None
    registered_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not self.display_name:
            self.display_name = self.worker_id
        self.status = WorkerStatus(self.status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "display_name": self.display_name,
            "capabilities": self.capabilities.to_dict(),
            "performance": self.performance.to_dict(),
            "status": self.status.value,
            "workload": self.workload,
            "last_heartbeat": _ts(self.last_heartbeat),
            "registered_at": _ts(self.registered_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkerProfile':
        return cls(
            worker_id=data["worker_id"],
            display_name=data.get("display_name", ""),
            capabilities=Capabilities.from_dict(data.get("capabilities", {})),
            performance=PerformanceProfile.from_dict(data.get("performance", {})),
            status=WorkerStatus(data.get("status", "available")),
            workload=data.get("workload", 0.0),
            last_heartbeat=_parse_ts(data.get("last_heartbeat")),
            registered_at=_parse_ts(data.get("registered_at")) or datetime.now(),
        )


@dataclass
class Requirements:
    """What a worker must offer to take an item."""
    domains: FrozenSet[str] = frozenset()
    expertise: ExpertiseLevel = ExpertiseLevel.NOVICE
    specializations: FrozenSet[str] = frozenset()
    complexity: Complexity = Complexity.MEDIUM

    def __post_init__(self):
        self.domains = frozenset(self.domains)
        self.specializations = frozenset(self.specializations)
        self.expertise = ExpertiseLevel.parse(self.expertise)
        self.complexity = Complexity.parse(self.complexity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domains": sorted(self.domains),
            "expertise": self.expertise.name.lower(),
            "specializations": sorted(self.specializations),
            "complexity": self.complexity.name.lower(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Requirements':
        return cls(
            domains=frozenset(data.get("domains", ())),
            expertise=ExpertiseLevel.parse(data.get("expertise", "novice")),
            specializations=frozenset(data.get("specializations", ())),
            complexity=Complexity.parse(data.get("complexity", "medium")),
        )


@dataclass
class Dependency:
    """
    Either a prerequisite work item (``work_item_id``) or a collaborator that
    must be bound alongside the primary worker (``collaboration``).
    """
    work_item_id: Optional[str] = None
    collaboration: Optional[Requirements] = None

    def __post_init__(self):
        if (self.work_item_id is None) == (self.collaboration is None):
            raise ValueError("A dependency is either a work item id or a collaboration requirement")

    @classmethod
    def on(cls, work_item_id: str) -> 'Dependency':
        return cls(work_item_id=work_item_id)

    @classmethod
    def collaborator(cls, requirements: Requirements) -> 'Dependency':
        return cls(collaboration=requirements)

    def to_dict(self) -> Dict[str, Any]:
        if self.work_item_id is not None:
            return {"work_item_id": self.work_item_id}
        return {"collaboration": self.collaboration.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Dependency':
        if data.get("work_item_id") is not None:
            return cls(work_item_id=data["work_item_id"])
        return cls(collaboration=Requirements.from_dict(data["collaboration"]))


@dataclass
class HistoryEvent:
    event: str
    timestamp: datetime = field(default_factory=datetime.now)
    worker_id: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "timestamp": _ts(self.timestamp),
            "worker_id": self.worker_id,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryEvent':
        return cls(
            event=data["event"],
            timestamp=_parse_ts(data["timestamp"]),
            worker_id=data.get("worker_id"),
            reason=data.get("reason"),
        )


@dataclass
class Assignment:
    status: WorkStatus = WorkStatus.PENDING
    worker_id: Optional[str] = None
    collaborators: List[str] = field(default_factory=list)
    progress: float = 0.0
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    fit_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "worker_id": self.worker_id,
            "collaborators": list(self.collaborators),
            "progress": self.progress,
            "assigned_at": _ts(self.assigned_at),
            "started_at": _ts(self.started_at),
            "finished_at": _ts(self.finished_at),
            "fit_score": self.fit_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Assignment':
        return cls(
            status=WorkStatus(data.get("status", "pending")),
            worker_id=data.get("worker_id"),
            collaborators=list(data.get("collaborators", [])),
            progress=data.get("progress", 0.0),
            assigned_at=_parse_ts(data.get("assigned_at")),
            started_at=_parse_ts(data.get("started_at")),
            finished_at=_parse_ts(data.get("finished_at")),
            fit_score=data.get("fit_score"),
        )


@dataclass
class WorkItem:
    """A unit of schedulable work."""
    item_id: str
    title: str = ""
    priority: int = 0
    requirements: Requirements = field(default_factory=Requirements)
    dependencies: List[Dependency] = field(default_factory=list)
    estimated_cost: Optional[float] = None
    estimated_duration: Optional[float] = None  # seconds
    correlation_id: Optional[str] = None
    assignment: Assignment = field(default_factory=Assignment)
    status_reason: Optional[str] = None
    attempts: int = 0
    preferred_candidates: List[str] = field(default_factory=list)
    history: List[HistoryEvent] = field(default_factory=list)
    submitted_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not self.title:
            self.title = self.item_id
        if self.correlation_id is None:
            self.correlation_id = self.item_id

    @property
    def status(self) -> WorkStatus:
        return self.assignment.status

    @property
    def complexity(self) -> Complexity:
        return self.requirements.complexity

    @property
    def cost(self) -> float:
        if self.estimated_cost is not None:
            return self.estimated_cost
        return COMPLEXITY_COST[self.requirements.complexity]

    @property
    def prerequisite_ids(self) -> List[str]:
        return [d.work_item_id for d in self.dependencies if d.work_item_id is not None]

    @property
    def collaboration_requirements(self) -> List[Requirements]:
        return [d.collaboration for d in self.dependencies if d.collaboration is not None]

    def record(self, event: str, worker_id: Optional[str] = None, reason: Optional[str] = None,
               timestamp: Optional[datetime] = None) -> HistoryEvent:
        entry = HistoryEvent(event=event, timestamp=timestamp or datetime.now(),
                             worker_id=worker_id, reason=reason)
        self.history.append(entry)
        return entry

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "title": self.title,
            "priority": self.priority,
            "requirements": self.requirements.to_dict(),
            "dependencies": [d.to_dict() for d in self.dependencies],
            "estimated_cost": self.estimated_cost,
            "estimated_duration": self.estimated_duration,
            "correlation_id": self.correlation_id,
            "assignment": self.assignment.to_dict(),
            "status_reason": self.status_reason,
            "attempts": self.attempts,
            "preferred_candidates": list(self.preferred_candidates),
            "history": [h.to_dict() for h in self.history],
            "submitted_at": _ts(self.submitted_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkItem':
        return cls(
            item_id=data["item_id"],
            title=data.get("title", ""),
            priority=data.get("priority", 0),
            requirements=Requirements.from_dict(data.get("requirements", {})),
            dependencies=[Dependency.from_dict(d) for d in data.get("dependencies", [])],
            estimated_cost=data.get("estimated_cost"),
            estimated_duration=data.get("estimated_duration"),
            correlation_id=data.get("correlation_id"),
            assignment=Assignment.from_dict(data.get("assignment", {})),
            status_reason=data.get("status_reason"),
            attempts=data.get("attempts", 0),
            preferred_candidates=list(data.get("preferred_candidates", [])),
            history=[HistoryEvent.from_dict(h) for h in data.get("history", [])],
            submitted_at=_parse_ts(data.get("submitted_at")) or datetime.now(),
        )


@dataclass
class Outcome:
    """Result reported by a worker for an item."""
    success: bool = True
    quality_score: Optional[float] = None
    duration: Optional[float] = None  # seconds; computed from timestamps if omitted
    detail: str = ""

    @classmethod
    def completed(cls, quality_score: Optional[float] = None, duration: Optional[float] = None,
                  detail: str = "") -> 'Outcome':
        return cls(True, quality_score, duration, detail)

    @classmethod
    def failed(cls, detail: str = "", duration: Optional[float] = None) -> 'Outcome':
        return cls(False, None, duration, detail)
