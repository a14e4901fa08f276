"""Consecutive failure tracking for login-protected data sources.

A FailureTracker counts failed fetch attempts and refuses new attempts
for a growing window once a threshold is reached, so a broken login does
not lock the account. State is process-local; a restart clears it.

Usage:
    tracker = FailureTracker()
    decision = tracker.check()
    if not decision.allowed:
        return decision.message
    try:
        fetch()
    except Exception:
        tracker.record_failure()
    else:
        tracker.record_success()
"""

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class BackoffState(Enum):
    READY = "ready"
    BACKING_OFF = "backing_off"


@dataclass(frozen=True)
class BackoffDecision:
    """Result of asking the tracker whether an attempt may be made."""
    allowed: bool
    wait_minutes: int = 0
    message: str = ""


class FailureTracker:
    """Tracks consecutive failures and guards against account lockout.

    The backoff window is ``min(failure_count * unit_delay, max_delay)`` and is
    only enforced once ``failure_count`` reaches ``threshold``.
    """

    def __init__(
        self,
        unit_delay: float = 5 * 60,
        max_delay: float = 60 * 60,
        threshold: int = 3,
        max_failures: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.unit_delay = unit_delay
        self.max_delay = max_delay
        self.threshold = threshold
        self.max_failures = max_failures
        self._clock = clock
        self._failure_count = 0
        self._last_failure: Optional[float] = None

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def backoff_seconds(self) -> float:
        return min(self._failure_count * self.unit_delay, self.max_delay)

    def _elapsed(self) -> float:
        if self._last_failure is None:
            return math.inf
        return self._clock() - self._last_failure

    @property
    def state(self) -> BackoffState:
        if self._failure_count > 0 and self._elapsed() < self.backoff_seconds:
            return BackoffState.BACKING_OFF
        return BackoffState.READY

    def record_failure(self) -> None:
        self._failure_count = min(self._failure_count + 1, self.max_failures)
        self._last_failure = self._clock()
        logger.debug("Recorded failure %d (backoff %.0fs)", self._failure_count, self.backoff_seconds)

    def record_success(self) -> None:
        if self._failure_count:
            logger.info("Fetch succeeded, clearing %d recorded failure(s)", self._failure_count)
        self._failure_count = 0
        self._last_failure = None

    def check(self) -> BackoffDecision:
        """Decide whether an external attempt may be made now."""
        if self._failure_count < self.threshold or self.state is BackoffState.READY:
            return BackoffDecision(allowed=True)

        remaining = self.backoff_seconds - self._elapsed()
        wait_minutes = math.ceil(remaining / 60)
        message = (
            f"Too many recent failures. Waiting {wait_minutes} minutes "
            "to prevent account lockout."
        )
        return BackoffDecision(allowed=False, wait_minutes=wait_minutes, message=message)
