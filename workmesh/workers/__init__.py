"""
Worker implementations that pull work from a coordination manager.
"""
from .base import BaseWorker
from .function import FunctionWorker

__all__ = [
    'BaseWorker',
    'FunctionWorker',
]
