"""Scheduling loop and synthesized-plan bundling."""

from .loop import LoopController, LoopOutcome, LoopReport, LoopState
from .special_plans import (
    DECISIONS_PLAN_NUMBER,
    MANUAL_PLAN_NUMBER,
    VERIFICATION_PLAN_NUMBER,
    PlanBundler,
)
from .stuck import AttemptDecision, RetryPolicy

__all__ = [
    "AttemptDecision",
    "DECISIONS_PLAN_NUMBER",
    "LoopController",
    "LoopOutcome",
    "LoopReport",
    "LoopState",
    "MANUAL_PLAN_NUMBER",
    "PlanBundler",
    "RetryPolicy",
    "VERIFICATION_PLAN_NUMBER",
]
