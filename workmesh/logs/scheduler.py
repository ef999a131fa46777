"""
Background ticker used for log flushing, liveness sweeps and retention.
"""
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Ticker:
    """
    Runs ``callback`` on a daemon thread every ``interval`` seconds.

    The callback may return a number of seconds to wait before the next run;
    returning None keeps the regular interval. ``poke()`` wakes the thread
    early. ``stop()`` is idempotent and joins the thread.
    """

    def __init__(self, interval: float, callback: Callable[[], Optional[float]], name: str = "ticker"):
        if interval <= 0:
            raise ValueError("Ticker interval must be positive")
        self.interval = interval
        self.callback = callback
        self.name = name
        self._wake = threading.Event()
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def poke(self) -> None:
        self._wake.set()

    def stop(self, timeout: float = 5.0) -> None:
        self._stopping.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        delay = self.interval
        while not self._stopping.is_set():
            self._wake.wait(delay)
            self._wake.clear()
            if self._stopping.is_set():
                break
            try:
                next_delay = self.callback()
            except Exception:
                logger.exception("%s callback failed", self.name)
                next_delay = None
            delay = self.interval if next_delay is None else max(0.0, next_delay)
