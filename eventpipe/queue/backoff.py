"""
Retry and backoff policy.

Maps an attempt count to the next action for a failed job: retry after a
delay, or give up. Deterministic unless jitter is configured.
"""

import random
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from eventpipe.constants import (
    DEFAULT_BACKOFF_DELAY_MS,
    DEFAULT_BACKOFF_KIND,
    DEFAULT_MAX_ATTEMPTS,
    BackoffKind,
)


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of consulting the policy after a failed attempt."""

    retry: bool
    delay_ms: int = 0

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000


class RetryPolicy(BaseModel):
    """
    Retry configuration attached to every job on enqueue.

    ``next_delay_ms(k)`` is the wait before attempt ``k + 1``:
    ``base_delay_ms * 2 ** (k - 1)`` for exponential backoff,
    ``base_delay_ms`` for fixed backoff.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    base_delay_ms: int = Field(default=DEFAULT_BACKOFF_DELAY_MS, ge=0)
    kind: BackoffKind = DEFAULT_BACKOFF_KIND
    jitter: float = Field(default=0.0, ge=0.0, le=1.0)

    def next_delay_ms(self, attempt: int) -> int:
        """
        Delay after a failed attempt, before jitter.

        Args:
            attempt: The attempt number that just failed (1-based).

        Returns:
            Delay in milliseconds.
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")

        if self.kind == BackoffKind.FIXED:
            return self.base_delay_ms
        return self.base_delay_ms * 2 ** (attempt - 1)

    def decide(self, attempt: int) -> RetryDecision:
        """
        Decide what happens to a job whose attempt ``attempt`` failed.

        Args:
            attempt: The attempt number that just failed (1-based).

        Returns:
            RetryDecision with ``retry=False`` once attempts are exhausted.
        """
        if attempt >= self.max_attempts:
            return RetryDecision(retry=False)

        delay = self.next_delay_ms(attempt)
        if self.jitter and delay:
            spread = delay * self.jitter
            delay = max(0, round(delay + random.uniform(-spread, spread)))

        return RetryDecision(retry=True, delay_ms=delay)
