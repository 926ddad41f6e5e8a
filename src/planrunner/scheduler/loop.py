"""Scheduling loop: walks the roadmap plan by plan until done, aborted, or out of budget.

Each iteration:

1. find the first incomplete plan (phase order, then plan-number order)
2. on entering a new phase, bundle the synthesized plans and re-select
3. stuck check against the plan's retry state
4. execute, then run post-execution analysis (always, even after a hard failure)
5. success -> next plan; hard failure -> abort; soft failure -> triage and retry

Retry state lives in an explicit ``LoopState`` owned by the caller, keyed by
plan identity. Nothing is kept in module or class globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ..exceptions import (
    HardFailureError,
    LedgerError,
    PlanPreviouslyFailedError,
    RecordValidationError,
    RetryExhaustedError,
    StuckPlanError,
)
from ..executor.analysis import PostRunAnalyzer
from ..executor.outcome import RunResult
from ..executor.plan_executor import PlanExecutor
from ..executor.soft_failure import PlanRetryState, TriageDecision, triage_soft_failure
from ..ledger.schemas import Phase, Plan, Status
from ..ledger.self_heal import SelfHealer
from ..ledger.store import PlanLedger
from ..logging_config import correlation_id_var
from .special_plans import PlanBundler
from .stuck import AttemptDecision, RetryPolicy

logger = logging.getLogger(__name__)


class LoopOutcome(str, Enum):
    COMPLETE = "complete"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass
class LoopState:
    """Transient state for one loop run. Reset on restart."""

    retries: dict[str, PlanRetryState] = field(default_factory=dict)
    current_phase: Optional[int] = None
    iterations: int = 0
    completed: list[str] = field(default_factory=list)


@dataclass
class LoopReport:
    outcome: LoopOutcome
    iterations: int
    completed: list[str]
    state: LoopState

    @property
    def finished(self) -> bool:
        return self.outcome == LoopOutcome.COMPLETE


class LoopController:
    def __init__(
        self,
        ledger: PlanLedger,
        executor: PlanExecutor,
        bundler: PlanBundler,
        analyzer: Optional[PostRunAnalyzer] = None,
        healer: Optional[SelfHealer] = None,
        max_retries: int = 0,
    ):
        self.ledger = ledger
        self.executor = executor
        self.bundler = bundler
        self.analyzer = analyzer
        self.healer = healer
        self.max_retries = max_retries

    def run(
        self,
        max_iterations: int,
        skip_analysis: bool = False,
        state: Optional[LoopState] = None,
    ) -> LoopReport:
        """Drive plans to completion.

        Returns:
            LoopReport when every plan is complete or the budget is used up

        Raises:
            HardFailureError: A plan reported a verified hard failure
            RetryExhaustedError: A plan kept failing softly past the cap
            StuckPlanError: A plan made no progress and has no retries left
            HumanInterventionRequired: A manual plan could not be completed
            PlanPreviouslyFailedError: The next plan was already marked failed
        """
        state = state or LoopState()
        policy = RetryPolicy.for_budget(self.max_retries, max_iterations)
        logger.info(
            f"[Loop] Starting: up to {max_iterations} iteration(s), "
            f"{policy.max_retries} retr{'y' if policy.max_retries == 1 else 'ies'} per plan"
        )

        for iteration in range(1, max_iterations + 1):
            selected = self._next_plan()
            if selected is None:
                return self._finish(LoopOutcome.COMPLETE, state)
            phase, plan_path, plan = selected

            if phase.number != state.current_phase:
                state.current_phase = phase.number
                self._enter_phase(phase)
                selected = self._next_plan()
                if selected is None:
                    return self._finish(LoopOutcome.COMPLETE, state)
                phase, plan_path, plan = selected

            state.iterations = iteration
            if plan.status == Status.FAILED:
                raise PlanPreviouslyFailedError(plan.identity)

            retry = state.retries.get(plan.identity)
            progress = self.ledger.progress_text(plan_path)
            decision = policy.decide(retry, progress)
            if decision == AttemptDecision.ABORT_STUCK:
                logger.error(f"[Loop] Plan {plan.identity} is stuck; aborting")
                raise StuckPlanError(plan.identity, retry.attempts)
            if decision == AttemptDecision.RESUME:
                logger.info(f"[Loop] Resuming {plan.identity} (progress updated since last attempt)")
            elif retry is not None and retry.attempts:
                logger.info(
                    f"[Loop] Attempt {retry.attempts + 1}/{policy.max_retries} for {plan.identity}"
                )

            logger.info(f"[Loop] Iteration {iteration}/{max_iterations}: {plan.identity} - {plan.objective}")
            token = correlation_id_var.set(plan.identity)
            try:
                self._attempt(phase, plan_path, plan, progress, state, policy, skip_analysis)
            except RecordValidationError as e:
                self._heal(e)
            finally:
                correlation_id_var.reset(token)

        logger.warning(
            f"[Loop] Iteration budget ({max_iterations}) exhausted; run again to resume"
        )
        return self._finish(LoopOutcome.BUDGET_EXHAUSTED, state)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _attempt(
        self,
        phase: Phase,
        plan_path: Path,
        plan: Plan,
        start_progress: str,
        state: LoopState,
        policy: RetryPolicy,
        skip_analysis: bool,
    ) -> None:
        retry = state.retries.get(plan.identity)
        result = self.executor.execute(phase, plan_path, plan, retry)

        if self.analyzer is not None:
            analysis = self.analyzer.analyze(plan_path, skip=skip_analysis)
            if analysis.error:
                logger.warning(f"[Loop] Post-analysis failed: {analysis.error}")

        if result.success:
            logger.info(f"[Loop] Plan {plan.identity} complete ({result.duration_sec:.0f}s)")
            self._plan_done(phase, plan, state)
            return

        if result.is_hard:
            try:
                self.ledger.fail_plan(plan_path)
                self.ledger.sync_phase_status(phase.number)
            except LedgerError as e:
                # The hard failure still aborts the loop under this plan's name
                logger.error(f"[Loop] Could not record failure of {plan.identity}: {e}")
            reason = result.error or "hard failure"
            if result.advice:
                reason += f" [{result.advice}]"
            raise HardFailureError(plan.identity, reason)

        self._handle_soft_failure(phase, plan_path, plan, result, start_progress, state, policy)

    def _handle_soft_failure(
        self,
        phase: Phase,
        plan_path: Path,
        plan: Plan,
        result: RunResult,
        start_progress: str,
        state: LoopState,
        policy: RetryPolicy,
    ) -> None:
        retry = state.retries.setdefault(plan.identity, PlanRetryState())
        if not policy.can_retry(retry):
            logger.error(f"[Loop] Plan {plan.identity} exhausted {policy.max_retries} retries")
            raise RetryExhaustedError(plan.identity, policy.max_retries)

        triage = triage_soft_failure(self.ledger, plan_path, result)
        if triage.decision == TriageDecision.MARK_COMPLETE:
            logger.info(f"[Loop] Treating {plan.identity} as complete: {triage.reason}")
            self.ledger.complete_plan(plan_path)
            self._plan_done(phase, plan, state)
            return

        retry.attempts += 1
        retry.start_progress = start_progress
        retry.last_progress = self.ledger.progress_text(plan_path)
        retry.last_output = result.last_output
        retry.guidance = "\n\n".join(g for g in (triage.guidance, result.retry_guidance) if g)
        logger.info(f"[Loop] Will retry {plan.identity} ({result.error}): {triage.reason}")

    def _plan_done(self, phase: Phase, plan: Plan, state: LoopState) -> None:
        state.completed.append(plan.identity)
        state.retries.pop(plan.identity, None)
        try:
            for number in self.bundler.ensure_end_of_phase_plans(phase):
                logger.info(f"[Loop] Phase {phase.number}: bundled plan {number}")
        except LedgerError as e:
            logger.warning(f"[Loop] Could not bundle end-of-phase plans: {e}")
        self.ledger.sync_phase_status(phase.number)

    def _enter_phase(self, phase: Phase) -> None:
        logger.info(f"[Loop] Entering phase {phase.number}: {phase.name}")
        try:
            for number in self.bundler.on_phase_start(phase):
                logger.info(f"[Loop] Phase {phase.number}: bundled plan {number}")
        except LedgerError as e:
            logger.warning(f"[Loop] Phase start bundling failed: {e}")
        self.ledger.update_state(phase.number)
        self.ledger.sync_phase_status(phase.number)

    def _next_plan(self) -> Optional[tuple[Phase, Path, Plan]]:
        while True:
            try:
                return self.ledger.find_next_plan()
            except RecordValidationError as e:
                self._heal(e)

    def _heal(self, error: RecordValidationError) -> None:
        if self.healer is None or error.path is None:
            raise error
        logger.warning(f"[Loop] {error}; starting self-heal")
        self.healer.heal_if_needed(error)

    def _finish(self, outcome: LoopOutcome, state: LoopState) -> LoopReport:
        if outcome == LoopOutcome.COMPLETE:
            logger.info(f"[Loop] All plans complete ({len(state.completed)} this run)")
        return LoopReport(outcome, state.iterations, list(state.completed), state)
