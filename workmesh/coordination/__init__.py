"""
Coordination infrastructure: workers, work items and assignment.
"""
from .models import (
    Capabilities,
    Complexity,
    Dependency,
    ExpertiseLevel,
    Outcome,
    PerformanceProfile,
    Requirements,
    WorkItem,
    WorkStatus,
    WorkerProfile,
    WorkerStatus,
)
from .registry import WorkerRegistry, Candidate
from .queue import WorkQueue
from .status import StatusTracker, WorkerState
from .notifications import Notification, NotificationHub
from .assignment import AssignmentEngine, AssignmentResult
from .manager import CoordinationManager

__all__ = [
    'Capabilities',
    'Complexity',
    'Dependency',
    'ExpertiseLevel',
    'Outcome',
    'PerformanceProfile',
    'Requirements',
    'WorkItem',
    'WorkStatus',
    'WorkerProfile',
    'WorkerStatus',
    'WorkerRegistry',
    'Candidate',
    'WorkQueue',
    'StatusTracker',
    'WorkerState',
    'Notification',
    'NotificationHub',
    'AssignmentEngine',
    'AssignmentResult',
    'CoordinationManager',
]
