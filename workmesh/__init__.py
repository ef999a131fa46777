"""
workmesh - Task coordination service for pools of specialised workers.
"""

__version__ = "0.1.0"
__author__ = "VJAWSM"

from .config import Settings
from .coordination import CoordinationManager, WorkerProfile, WorkItem, Requirements, Outcome
from .workers import BaseWorker, FunctionWorker

__all__ = [
    'Settings',
    'CoordinationManager',
    'WorkerProfile',
    'WorkItem',
    'Requirements',
    'Outcome',
    'BaseWorker',
    'FunctionWorker',
]
