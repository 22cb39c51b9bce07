"""Retry policy for failed deliveries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of consulting the policy after a failed delivery."""

    retry: bool
    delay: timedelta = timedelta(0)


class SteppedBackoffPolicy:
    """Retry with a delay that grows by one step per retry.

    The ``n``-th retry waits ``n * base_delay`` (5, 10, 15 minutes with the
    default 5 minute step), optionally capped by ``max_delay``.
    """

    def __init__(
        self,
        *,
        base_delay: float = 300.0,
        max_delay: float | None = None,
    ) -> None:
        """Configure retry behavior.

        Args:
            base_delay: Step in seconds; the first retry waits this long.
            max_delay: Optional cap on the delay in seconds.
        """
        if base_delay < 0 or (max_delay is not None and max_delay < 0):
            raise ValueError("base_delay and max_delay must be >= 0")
        if max_delay is not None and base_delay > max_delay:
            raise ValueError("base_delay must be <= max_delay")
        self.base_delay = base_delay
        self.max_delay = max_delay

    def should_retry(self, retry_count: int, max_retries: int) -> bool:
        """Return True if a failure at ``retry_count`` may still be retried."""
        return 0 <= retry_count < max_retries

    def delay_for_retry(self, retry_count: int) -> timedelta:
        """Return the delay before the given 1-based retry."""
        if retry_count < 1:
            return timedelta(0)
        delay = retry_count * self.base_delay
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return timedelta(seconds=delay)

    def decide(self, retry_count: int, max_retries: int) -> RetryDecision:
        """Decide what follows a failure observed at ``retry_count`` retries."""
        if not self.should_retry(retry_count, max_retries):
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, delay=self.delay_for_retry(retry_count + 1))
