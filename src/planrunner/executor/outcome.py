"""Outcome classification for a single execution attempt.

Evaluated strictly in this order once the stream has ended:

1. failure sentinel   -> hard (BLOCKED goes through the blocker verifier first)
2. PLAN_COMPLETE      -> success if the summary record exists, else soft
3. BAILOUT            -> soft; resumable if the progress record changed
4. token threshold    -> soft
5. idle timeout       -> soft
6. no signal at all   -> soft, possibly already done
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ..agent.client import AgentRunResult
from ..agent.stream_parser import Signal, SignalKind
from ..ledger.schemas import Plan
from ..ledger.store import PlanLedger

logger = logging.getLogger(__name__)


class FailureType(str, Enum):
    NONE = "none"
    HARD = "hard"
    SOFT = "soft"


@dataclass
class RunResult:
    """Verdict for one execution attempt. Never persisted directly."""

    success: bool
    failure_type: FailureType = FailureType.NONE
    duration_sec: float = 0.0
    error: Optional[str] = None
    last_output: str = ""
    signal: Optional[Signal] = None
    resumable: bool = False
    retry_guidance: Optional[str] = None
    advice: Optional[str] = None

    @classmethod
    def succeeded(cls, duration_sec: float = 0.0, last_output: str = "", signal=None) -> "RunResult":
        return cls(True, FailureType.NONE, duration_sec, None, last_output, signal)

    @classmethod
    def hard(cls, error: str, duration_sec: float = 0.0, last_output: str = "", signal=None) -> "RunResult":
        return cls(False, FailureType.HARD, duration_sec, error, last_output, signal)

    @classmethod
    def soft(
        cls,
        error: str,
        duration_sec: float = 0.0,
        last_output: str = "",
        signal=None,
        resumable: bool = False,
        retry_guidance: Optional[str] = None,
    ) -> "RunResult":
        return cls(
            False, FailureType.SOFT, duration_sec, error, last_output, signal, resumable, retry_guidance
        )

    @property
    def is_hard(self) -> bool:
        return self.failure_type == FailureType.HARD

    @property
    def is_soft(self) -> bool:
        return self.failure_type == FailureType.SOFT


class OutcomeClassifier:
    """Turns parser state into a RunResult.

    Args:
        ledger: Used to check for the summary record and the progress record
        blocker_verifier: Second-opinion check for BLOCKED signals. Without
            one, every blocker is taken as valid.
        token_threshold: Cumulative token count above which a silent exit is
            read as a token-limit bailout
    """

    def __init__(self, ledger: PlanLedger, blocker_verifier=None, token_threshold: int = 120_000):
        self.ledger = ledger
        self.blocker_verifier = blocker_verifier
        self.token_threshold = token_threshold

    def classify(
        self,
        run: AgentRunResult,
        plan: Plan,
        plan_path: Path,
        progress_before: str,
    ) -> RunResult:
        state = run.state
        duration = run.duration_sec
        last_output = state.last_output

        failure = state.failure
        if failure is not None:
            return self._classify_failure(failure, run, plan, plan_path)

        if state.plan_complete:
            if self.ledger.summary_exists(plan_path):
                logger.info(f"[Outcome] Plan {plan.identity} complete")
                return RunResult.succeeded(duration, last_output, state.terminal)
            logger.warning(f"[Outcome] Plan {plan.identity} signaled complete but summary missing")
            return RunResult.soft(
                "signaled complete but summary missing", duration, last_output, state.terminal
            )

        bailout = state.bailout
        if bailout is not None:
            progress_after = self.ledger.progress_text(plan_path)
            if progress_after != progress_before:
                logger.info(f"[Outcome] Bailout with progress preserved: {bailout.detail}")
                return RunResult.soft(
                    f"bailout with progress preserved: {bailout.detail}",
                    duration,
                    last_output,
                    bailout,
                    resumable=True,
                )
            logger.warning(
                f"[Outcome] Bailout without a progress update on {plan.identity}; "
                "progress may be lost"
            )
            return RunResult.soft(
                f"bailout without progress update (progress may be lost): {bailout.detail}",
                duration,
                last_output,
                bailout,
            )

        total = state.usage.total_tokens
        if total > self.token_threshold:
            logger.warning(f"[Outcome] Token limit bailout ({total} > {self.token_threshold})")
            return RunResult.soft(f"token limit bailout ({total} tokens)", duration, last_output)

        if run.timed_out:
            logger.warning(f"[Outcome] Agent went idle on {plan.identity} and was cancelled")
            return RunResult.soft("agent idle timeout", duration, last_output)

        logger.warning(f"[Outcome] Agent exited without completion signal on {plan.identity}")
        return RunResult.soft("exited without completion signal", duration, last_output)

    def _classify_failure(
        self, failure: Signal, run: AgentRunResult, plan: Plan, plan_path: Path
    ) -> RunResult:
        last_output = run.state.last_output
        if failure.kind == SignalKind.BLOCKED and self.blocker_verifier is not None:
            decision = self.blocker_verifier.verify(
                plan, plan_path, failure, run.state.captured_text()
            )
            if not decision.valid:
                return RunResult.soft(
                    f"blocker rejected on review: {failure.detail}",
                    run.duration_sec,
                    last_output,
                    failure,
                    retry_guidance=(
                        "A reviewer checked your BLOCKED claim and found a way forward:\n"
                        f"{decision.reason}"
                    ),
                )
            reason = f"blocked: {failure.detail}"
            if decision.reason and decision.reason != failure.detail:
                reason += f" (verified: {decision.reason})"
            return RunResult.hard(reason, run.duration_sec, last_output, failure)

        logger.error(f"[Outcome] Plan {plan.identity} reported {failure}")
        reason = failure.kind.value.lower()
        if failure.detail:
            reason += f": {failure.detail}"
        return RunResult.hard(
            reason,
            run.duration_sec,
            last_output,
            failure,
        )
