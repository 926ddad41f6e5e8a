"""Outcome classification, blocker review, recovery advice and retry triage."""

from .analysis import AnalysisResult, PostRunAnalyzer
from .blocker import BlockerDecision, BlockerVerifier, parse_blocker_decision
from .observations import decode_observations, read_observations
from .outcome import FailureType, OutcomeClassifier, RunResult
from .plan_executor import PlanExecutor
from .recovery import (
    ExecutionContext,
    RecoveryAction,
    RecoveryActionKind,
    RecoveryAdvisor,
    parse_recovery_decision,
)
from .soft_failure import PlanRetryState, TriageDecision, build_retry_guidance, triage_soft_failure

__all__ = [
    "AnalysisResult",
    "BlockerDecision",
    "BlockerVerifier",
    "ExecutionContext",
    "FailureType",
    "OutcomeClassifier",
    "PlanExecutor",
    "PlanRetryState",
    "PostRunAnalyzer",
    "RecoveryAction",
    "RecoveryActionKind",
    "RecoveryAdvisor",
    "RunResult",
    "TriageDecision",
    "build_retry_guidance",
    "decode_observations",
    "parse_blocker_decision",
    "parse_recovery_decision",
    "read_observations",
    "triage_soft_failure",
]
