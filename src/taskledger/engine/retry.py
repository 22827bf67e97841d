"""Retry policy for failed executions."""

from dataclasses import dataclass
from datetime import timedelta

from taskledger.config import settings


@dataclass(frozen=True)
class RetryDecision:
    """What to do after a failed attempt."""

    retry: bool
    attempt: int
    delay: timedelta = timedelta(0)

    @property
    def delay_ms(self) -> int:
        return int(self.delay.total_seconds() * 1000)


@dataclass(frozen=True)
class RetryPolicy:
    """Linear backoff with a cap.

    Attempt ``n`` (1-based retry number) waits ``min(n * base, cap)``.
    """

    base_delay_seconds: int = 30
    max_delay_seconds: int = 300

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
        )

    def delay_for(self, attempt: int) -> timedelta:
        seconds = min(max(attempt, 0) * self.base_delay_seconds, self.max_delay_seconds)
        return timedelta(seconds=seconds)

    def decide(self, retry_count: int, max_retries: int, retryable: bool = True) -> RetryDecision:
        """Decide whether a failed entry is re-scheduled or failed for good."""
        if not retryable or retry_count >= max_retries:
            return RetryDecision(retry=False, attempt=retry_count)

        attempt = retry_count + 1
        return RetryDecision(retry=True, attempt=attempt, delay=self.delay_for(attempt))
