"""Per-queue daily quota and credential rotation state."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

LOGGER = logging.getLogger(__name__)


class QuotaStatus(str, Enum):
    """Quota lifecycle of a queue."""

    OPEN = "open"  # Consuming under the first credential of the cycle
    ROTATED = "rotated"  # Consuming under a later credential
    EXHAUSTED = "exhausted"  # Every credential used up, waiting for reset


def next_reset_time(anchor: datetime) -> datetime:
    """Same wall-clock time, one calendar day later."""
    return anchor + timedelta(days=1)


@dataclass
class QuotaState:
    """Counters owned by exactly one consumption loop.

    Parameters
    ----------
    daily_limit : int
        Maximum items per credential between two resets
    credentials : list[str]
        Rotating credential set, consumed in order
    """

    daily_limit: int
    credentials: List[str]
    consumed: int = 0
    credential_index: int = 0
    status: QuotaStatus = QuotaStatus.OPEN
    next_reset: Optional[datetime] = None

    @property
    def active_credential(self) -> str:
        return self.credentials[self.credential_index]

    @property
    def remaining(self) -> int:
        return max(self.daily_limit - self.consumed, 0)

    @property
    def is_exhausted(self) -> bool:
        return self.status == QuotaStatus.EXHAUSTED

    def can_consume(self, count: int) -> bool:
        """Whether ``count`` more items fit in the current window."""
        return not self.is_exhausted and self.consumed + count <= self.daily_limit

    def record(self, count: int) -> None:
        self.consumed += count

    def arm(self, now: datetime) -> bool:
        """Schedule the first reset on first consumption of a cycle.

        Returns True if a reset was scheduled by this call.
        """
        if self.next_reset is not None:
            return False
        self.next_reset = next_reset_time(now)
        LOGGER.info(
            "Quota reset scheduled at %s (in %.1f minutes)",
            self.next_reset.isoformat(timespec="seconds"),
            (self.next_reset - now).total_seconds() / 60,
        )
        return True

    def reset_due(self, now: datetime) -> bool:
        return self.next_reset is not None and now >= self.next_reset

    def apply_scheduled_reset(self, now: datetime) -> None:
        """Start a new day on the first credential and re-arm the reset."""
        self.reset()
        self.credential_index = 0
        self.status = QuotaStatus.OPEN
        while self.next_reset is not None and self.next_reset <= now:
            self.next_reset = next_reset_time(self.next_reset)
        LOGGER.info(
            "Daily counter has been reset, next reset at %s",
            self.next_reset.isoformat(timespec="seconds") if self.next_reset else "-",
        )

    def reset(self) -> None:
        self.consumed = 0
        if self.status == QuotaStatus.EXHAUSTED:
            self.status = QuotaStatus.OPEN

    def rotate(self) -> QuotaStatus:
        """Move to the next credential.

        Wrapping around to the first credential exhausts the queue until the
        scheduled reset; otherwise the counter restarts for the new credential.
        """
        self.credential_index = (self.credential_index + 1) % len(self.credentials)
        if self.credential_index == 0:
            self.status = QuotaStatus.EXHAUSTED
        else:
            self.status = QuotaStatus.ROTATED
            self.consumed = 0
        LOGGER.info(
            "Switched to credential #%d (%s)",
            self.credential_index,
            self.status.value,
        )
        return self.status
