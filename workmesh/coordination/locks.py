"""
Per-entity locking for registry and queue records.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Optional


class LockTable:
    """
    One re-entrant lock per key (worker id or work item id).

    Locking a single record avoids a global lock on the registry or queue.
    The table itself is guarded by a short internal lock.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Default maximum wait for a record lock, None waits forever
        """
        self.timeout = timeout
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    def discard(self, key: str) -> None:
        with self._guard:
            self._locks.pop(key, None)

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None):
        """
        Usage:
            with locks.hold(worker_id):
                # exclusive access to that worker's record
        """
        lock = self.get(key)
        wait = self.timeout if timeout is None else timeout
        acquired = lock.acquire(timeout=-1 if wait is None else wait)
        if not acquired:
            raise TimeoutError(f"Could not acquire lock for {key}")
        try:
            yield lock
        finally:
            lock.release()
