"""
Record storage for workmesh.
"""
from .base import KeyValueStore, InMemoryStore
from .files import JsonFileStore
from .file_lock import FileLock, file_lock

__all__ = [
    'KeyValueStore',
    'InMemoryStore',
    'JsonFileStore',
    'FileLock',
    'file_lock',
]
