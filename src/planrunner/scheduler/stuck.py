"""
Retry policy and stuck-loop detection.

Before a plan is attempted again, its progress record is compared with the
snapshot taken when the previous attempt started:

- unchanged, retries exhausted -> abort (stuck)
- unchanged, retries left      -> run again
- changed                      -> resume (the agent bailed out but saved progress)

All decisions are deterministic and depend only on the retry state.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..executor.soft_failure import PlanRetryState


class AttemptDecision(str, Enum):
    """What to do before attempting a plan."""

    RUN = "run"  # First attempt, or a plain retry
    RESUME = "resume"  # Progress changed since the last attempt
    ABORT_STUCK = "abort_stuck"  # No progress and no retries left


class RetryPolicy(BaseModel):
    """Per-plan soft-failure budget."""

    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(..., ge=1)

    @classmethod
    def for_budget(cls, max_retries: int, max_iterations: int) -> "RetryPolicy":
        """A cap of 0 means "use the iteration budget"."""
        return cls(max_retries=max_retries or max(max_iterations, 1))

    def decide(self, retry: Optional[PlanRetryState], current_progress: str) -> AttemptDecision:
        """
        Args:
            retry: Retry state for the plan, None if it has not failed yet
            current_progress: The plan's progress record right now

        Returns:
            The action to take before the next attempt
        """
        if retry is None or retry.attempts == 0:
            return AttemptDecision.RUN
        if current_progress != retry.start_progress:
            return AttemptDecision.RESUME
        if retry.attempts >= self.max_retries:
            return AttemptDecision.ABORT_STUCK
        return AttemptDecision.RUN

    def can_retry(self, retry: PlanRetryState) -> bool:
        return retry.attempts < self.max_retries
