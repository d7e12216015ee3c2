"""
Tests for the retry policy.
"""

import pytest

from converge.core.reliability.retry import NO_RETRY, RetryPolicy


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.max_attempts == 4

    def test_no_retry(self):
        assert NO_RETRY.max_attempts == 1

    @pytest.mark.parametrize("attempt,expected", [(1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0)])
    def test_exponential_without_jitter(self, attempt, expected):
        assert RetryPolicy(base_delay=1.0, jitter=0).delay_for(attempt) == expected

    def test_capped(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0)
        assert policy.delay_for(10) == 5.0

    def test_jitter_bounds(self):
        policy = RetryPolicy(base_delay=2.0, jitter=0.5)
        for _ in range(50):
            assert 2.0 <= policy.delay_for(1) <= 3.0

    def test_wait_sleeps(self):
        slept = []
        policy = RetryPolicy(base_delay=0.5, jitter=0, sleep=slept.append)
        assert policy.wait(2, "downloaded-file:x") == 1.0
        assert slept == [1.0]
