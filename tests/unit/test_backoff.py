"""
Unit tests for the retry policy.
"""

import pytest

from eventpipe.constants import BackoffKind
from eventpipe.queue.backoff import RetryDecision, RetryPolicy


class TestRetryPolicy:
    """Tests for backoff delays and retry decisions."""

    def test_defaults(self):
        policy = RetryPolicy()

        assert policy.max_attempts == 3
        assert policy.base_delay_ms == 1000
        assert policy.kind == BackoffKind.EXPONENTIAL
        assert policy.jitter == 0

    def test_exponential_delays(self):
        """Delays double from the base."""
        policy = RetryPolicy(max_attempts=5, base_delay_ms=1000)

        assert [policy.next_delay_ms(k) for k in (1, 2, 3, 4)] == [1000, 2000, 4000, 8000]

    def test_fixed_delays(self):
        policy = RetryPolicy(max_attempts=5, base_delay_ms=250, kind=BackoffKind.FIXED)

        assert [policy.next_delay_ms(k) for k in (1, 2, 3)] == [250, 250, 250]

    def test_attempt_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy().next_delay_ms(0)

    def test_decide_retries_until_max_attempts(self):
        """With max_attempts=3 only attempts 1 and 2 are retried."""
        policy = RetryPolicy(max_attempts=3, base_delay_ms=1000)

        assert policy.decide(1) == RetryDecision(retry=True, delay_ms=1000)
        assert policy.decide(2) == RetryDecision(retry=True, delay_ms=2000)
        assert policy.decide(3) == RetryDecision(retry=False)
        assert policy.decide(4).retry is False

    def test_single_attempt_never_retries(self):
        assert RetryPolicy(max_attempts=1).decide(1).retry is False

    def test_zero_base_delay(self):
        decision = RetryPolicy(base_delay_ms=0).decide(1)

        assert decision.retry is True
        assert decision.delay_ms == 0

    def test_jitter_stays_within_spread(self):
        policy = RetryPolicy(max_attempts=3, base_delay_ms=1000, jitter=0.2)

        for _ in range(50):
            delay = policy.decide(2).delay_ms
            assert 1600 <= delay <= 2400

    def test_delay_seconds(self):
        assert RetryDecision(retry=True, delay_ms=1500).delay_seconds == 1.5

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"base_delay_ms": -1}, {"jitter": 1.5}],
    )
    def test_invalid_policy(self, kwargs: dict):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)
