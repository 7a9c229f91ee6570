"""Backoff policy for failed scheduled executions.

Design Pattern: Strategy Pattern
BackoffPolicy encapsulates how long a failed task stays ineligible before
the scheduler reconsiders it, without the dispatch loop knowing the math.

Delays grow exponentially with consecutive failures and are capped at
max_delay_ms.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, cast


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Configuration for scheduler retry behavior.

    Examples:
        # Predefined policy
        policy = BackoffPolicy.STANDARD

        # Custom policy
        policy = BackoffPolicy(
            max_retries=5,
            base_delay_ms=1000,
            max_delay_ms=30000,
        )
    """

    max_retries: int
    """Number of consecutive failures that still earn a retry.

    With max_retries = 3, failures 1..3 put the task into backoff and the
    4th consecutive failure removes it from the schedule.
    """

    base_delay_ms: int
    """Delay after the first failure, in milliseconds."""

    max_delay_ms: int
    """Upper bound on any single delay, in milliseconds."""

    multiplier: float = 2.0
    """Growth factor between consecutive delays."""

    if TYPE_CHECKING:
        NONE: BackoffPolicy
        STANDARD: BackoffPolicy
    else:
        NONE = cast("BackoffPolicy", None)
        STANDARD = cast("BackoffPolicy", None)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("backoff delays must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {self.multiplier}")

    def delay_for_retry(self, retry_count: int) -> int | None:
        """
        Calculate the backoff delay after a failure.

        Args:
            retry_count: Consecutive failures so far, including this one (1-indexed)

        Returns:
            Delay in milliseconds, or None once retries are exhausted.

        Example:
            policy = BackoffPolicy(max_retries=3, base_delay_ms=1000, max_delay_ms=10000)
            policy.delay_for_retry(1)  # 1000
            policy.delay_for_retry(3)  # 4000
            policy.delay_for_retry(4)  # None
        """
        if retry_count < 1:
            raise ValueError(f"retry_count is 1-indexed, got {retry_count}")
        if retry_count > self.max_retries:
            return None

        # attempt k waits base * multiplier^(k-1); growth stops at the cap
        delay_ms: float = self.base_delay_ms
        for _ in range(retry_count - 1):
            if delay_ms == 0 or delay_ms >= self.max_delay_ms:
                break
            delay_ms *= self.multiplier
        return int(min(delay_ms, self.max_delay_ms))

    def backoff_until(self, retry_count: int, now: datetime) -> datetime | None:
        """Return the instant the task becomes eligible again, or None if exhausted."""
        delay_ms = self.delay_for_retry(retry_count)
        if delay_ms is None:
            return None
        return now + timedelta(milliseconds=delay_ms)

    def is_exhausted(self, retry_count: int) -> bool:
        """True when ``retry_count`` failures exceed the retry budget."""
        return retry_count > self.max_retries


BackoffPolicy.NONE = BackoffPolicy(max_retries=0, base_delay_ms=0, max_delay_ms=0)

BackoffPolicy.STANDARD = BackoffPolicy(
    max_retries=3,
    base_delay_ms=1000,  # 1 second
    max_delay_ms=300000,  # 5 minutes
)
