"""
Exponential backoff for log persistence retries.
"""
import random
from typing import Optional


class ExponentialBackoff:
    """
    Delay sequence initial, initial*factor, ... capped at ``max_delay``.
    Jitter adds 0-25% of the base delay. ``max_attempts=0`` means unlimited.
    """

    def __init__(self, initial: float = 1.0, max_delay: float = 30.0, factor: float = 2.0,
                 max_attempts: int = 0, jitter: bool = True):
        self.initial = initial
        self.max_delay = max_delay
        self.factor = factor
        self.max_attempts = max_attempts
        self.jitter = jitter
        self.attempt = 0

    def reset(self) -> None:
        self.attempt = 0

    def should_retry(self) -> bool:
        return self.max_attempts == 0 or self.attempt < self.max_attempts

    def next_delay(self) -> Optional[float]:
        """Advance and return the next delay in seconds, or None when exhausted."""
        if not self.should_retry():
            return None
        self.attempt += 1
        base = min(self.initial * (self.factor ** (self.attempt - 1)), self.max_delay)
        if self.jitter:
            base += random.uniform(0, base / 4)
        return base
