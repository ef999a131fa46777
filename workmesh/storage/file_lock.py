"""
File locking for the JSON file store.

Guards each namespace directory so several coordinator processes can share
one data directory without interleaving writes.
"""
import fcntl
import time
from contextlib import contextmanager


class FileLock:
    """
    Exclusive advisory lock on ``<path>.lock`` using fcntl.flock.
    """

    def __init__(self, path: str, timeout: float = 10.0, poll_interval: float = 0.05):
        """
        Args:
            path: Path whose companion ``.lock`` file is locked
            timeout: Maximum time to wait for the lock (seconds)
            poll_interval: Delay between non-blocking attempts
        """
        self.path = path
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.lock_file_path = f"{path}.lock"
        self._fd = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self, blocking: bool = True) -> bool:
        """
        Acquire the lock.

        Returns:
            True if the lock was acquired, False on timeout or contention
        """
        if self._fd is not None:
            return True

        fd = open(self.lock_file_path, 'a')
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                self._fd = fd
                return True
            except BlockingIOError:
                if not blocking or time.monotonic() >= deadline:
                    fd.close()
                    return False
                time.sleep(self.poll_interval)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            self._fd.close()
            self._fd = None

    def __enter__(self):
        if not self.acquire():
            raise TimeoutError(f"Could not acquire lock for {self.path}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


@contextmanager
def file_lock(path: str, timeout: float = 10.0):
    """
    Context manager form of FileLock.

    Usage:
        with file_lock('/data/workers'):
            ...
    """
    lock = FileLock(path, timeout)
    with lock:
        yield lock
