"""Tests for the retry policy and stuck detection"""

import pytest
from pydantic import ValidationError

from planrunner.executor.soft_failure import PlanRetryState
from planrunner.scheduler.stuck import AttemptDecision, RetryPolicy


class TestRetryPolicy:
    def test_first_attempt_runs(self):
        """A plan with no failures runs"""
        policy = RetryPolicy(max_retries=1)

        assert policy.decide(None, "1: [PENDING] a") == AttemptDecision.RUN
        assert policy.decide(PlanRetryState(), "") == AttemptDecision.RUN

    def test_unchanged_progress_with_retries_left(self):
        """Unchanged progress is retried while retries remain"""
        policy = RetryPolicy(max_retries=3)
        retry = PlanRetryState(attempts=2, start_progress="1: [PENDING] a")

        assert policy.decide(retry, "1: [PENDING] a") == AttemptDecision.RUN

    def test_unchanged_progress_exhausted_is_stuck(self):
        """Unchanged progress with no retries left is stuck"""
        policy = RetryPolicy(max_retries=2)
        retry = PlanRetryState(attempts=2, start_progress="1: [PENDING] a")

        assert policy.decide(retry, "1: [PENDING] a") == AttemptDecision.ABORT_STUCK

    def test_changed_progress_resumes_even_when_exhausted(self):
        """Changed progress resumes even past the cap"""
        policy = RetryPolicy(max_retries=1)
        retry = PlanRetryState(attempts=5, start_progress="1: [PENDING] a")

        assert policy.decide(retry, "1: [COMPLETE] a") == AttemptDecision.RESUME

    def test_can_retry(self):
        policy = RetryPolicy(max_retries=2)

        assert policy.can_retry(PlanRetryState(attempts=1))
        assert not policy.can_retry(PlanRetryState(attempts=2))

    @pytest.mark.parametrize("configured,iterations,expected", [(0, 20, 20), (3, 20, 3), (0, 0, 1)])
    def test_for_budget(self, configured, iterations, expected):
        """A cap of 0 falls back to the iteration budget"""
        assert RetryPolicy.for_budget(configured, iterations).max_retries == expected

    def test_rejects_nonpositive_cap(self):
        """The resolved cap must be positive"""
        with pytest.raises(ValidationError):
            RetryPolicy(max_retries=0)
