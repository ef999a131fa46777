"""
Process performance sampling for the optional LogEntry fields.
"""
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional

import psutil


_process = psutil.Process()


@dataclass
class Measurement:
    duration_ms: Optional[float] = None
    memory_mb: Optional[float] = None
    cpu_percent: Optional[float] = None

    def as_fields(self) -> Dict[str, Optional[float]]:
        return {
            "duration_ms": self.duration_ms,
            "memory_mb": self.memory_mb,
            "cpu_percent": self.cpu_percent,
        }


def sample_process() -> Measurement:
    """Current RSS (MB) and CPU percent since the previous sample."""
    with _process.oneshot():
        memory = _process.memory_info().rss / (1024 * 1024)
        cpu = _process.cpu_percent(interval=None)
    return Measurement(memory_mb=round(memory, 2), cpu_percent=cpu)


@contextmanager
def measure():
    """
    Time a block and sample process usage when it ends.

    Usage:
        with measure() as m:
            engine.assign_ready()
        pipeline.emit(..., **m.as_fields())
    """
    result = Measurement()
    start = time.perf_counter()
    try:
        yield result
    finally:
        sample = sample_process()
        result.duration_ms = round((time.perf_counter() - start) * 1000, 3)
        result.memory_mb = sample.memory_mb
        result.cpu_percent = sample.cpu_percent
