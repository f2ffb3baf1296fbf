"""Attempt budget and backoff for scrape retries."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RetryBudget:
    """Bounded attempts with a delay that grows with the attempt number.

    The wait after attempt ``n`` (1-based) is ``backoff_base * n``.
    """

    max_attempts: int = 3
    backoff_base: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.attempts = 0

    def start_attempt(self) -> int:
        """Record the start of an attempt and return its 1-based number."""
        self.attempts += 1
        return self.attempts

    def should_retry(self) -> bool:
        return self.attempts < self.max_attempts

    def get_backoff_delay(self) -> float:
        """Delay to wait after the current attempt before the next one."""
        return self.backoff_base * self.attempts
