"""Executes one plan: prompt, agent session, outcome classification."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

from ..agent.client import AgentInvocation
from ..agent.stream_parser import StreamState
from ..exceptions import ExecutionStartError, HumanInterventionRequired, StreamParseError
from ..ledger.schemas import Phase, Plan, Status
from ..ledger.store import PlanLedger, summary_path_for
from ..prompts import execution_prompt, manual_plan_prompt
from .outcome import OutcomeClassifier, RunResult
from .recovery import RecoveryAdvisor, build_execution_context
from .soft_failure import PlanRetryState, build_retry_guidance

logger = logging.getLogger(__name__)


class PlanExecutor:
    """Runs the agent against a single plan and returns a RunResult.

    Process-level failures (the agent could not start, or its stream could not
    be read) become soft failures carrying recovery advice. A verified hard
    failure also gets advice attached so the operator sees it.
    """

    def __init__(
        self,
        ledger: PlanLedger,
        agent,
        classifier: OutcomeClassifier,
        model: str,
        tools: list[str],
        workdir: Path,
        recovery_advisor: Optional[RecoveryAdvisor] = None,
        interactive_manual_plans: bool = True,
    ):
        self.ledger = ledger
        self.agent = agent
        self.classifier = classifier
        self.model = model
        self.tools = tools
        self.workdir = workdir
        self.recovery_advisor = recovery_advisor
        self.interactive_manual_plans = interactive_manual_plans

    def context_files(self, plan_path: Path) -> list[Path]:
        return [plan_path, self.ledger.project_path, self.ledger.state_path]

    def execute(
        self,
        phase: Phase,
        plan_path: Path,
        plan: Plan,
        retry: Optional[PlanRetryState] = None,
    ) -> RunResult:
        if plan.is_manual_plan:
            return self.execute_manual(phase, plan_path, plan)

        self.ledger.mark_in_progress(plan_path)
        progress_before = self.ledger.progress_text(plan_path)

        retry_guidance = None
        if retry is not None and retry.attempts > 0:
            retry_guidance = build_retry_guidance(retry, retry.guidance)

        invocation = AgentInvocation(
            prompt=execution_prompt(
                plan.objective, plan_path, summary_path_for(plan_path), retry_guidance
            ),
            model=self.model,
            workdir=self.workdir,
            allowed_tools=list(self.tools),
            context_files=self.context_files(plan_path),
            label=f"plan {plan.identity}",
        )

        started = time.monotonic()
        try:
            run = self.agent.run(invocation, cancel_on_terminal=True)
        except ExecutionStartError as e:
            logger.error(f"[Executor] Agent failed to start for {plan.identity}: {e}")
            return self._process_failure(f"execution failed to start: {e}", None, started)
        except StreamParseError as e:
            logger.error(f"[Executor] Stream parse failure ({e.kind.value}) on {plan.identity}: {e}")
            return self._process_failure(f"stream parse failure: {e}", e.state, started)

        result = self.classifier.classify(run, plan, plan_path, progress_before)
        if result.success:
            self.ledger.complete_plan(plan_path)
        elif result.is_hard:
            advice = self._advise(result.error or "hard failure", run.state)
            if advice is not None:
                result.advice = advice.render()
        return result

    def execute_manual(self, phase: Phase, plan_path: Path, plan: Plan) -> RunResult:
        """Manual plans need a person: run them as an interactive agent session.

        Raises:
            HumanInterventionRequired: Interactive sessions are disabled, or the
                session ended without the summary record being written
        """
        pending = [t.name for t in plan.tasks if t.status != Status.COMPLETE]
        if not self.interactive_manual_plans:
            logger.warning(f"[Executor] Plan {plan.identity} is manual; interactive sessions disabled")
            raise HumanInterventionRequired(plan.identity, pending)

        self.ledger.mark_in_progress(plan_path)
        invocation = AgentInvocation(
            prompt=manual_plan_prompt(plan.objective, plan_path, summary_path_for(plan_path)),
            model=self.model,
            workdir=self.workdir,
            allowed_tools=list(self.tools),
            context_files=self.context_files(plan_path),
            label=f"manual plan {plan.identity}",
        )
        started = time.monotonic()
        try:
            exit_code = self.agent.run_interactive(invocation)
        except ExecutionStartError as e:
            raise HumanInterventionRequired(plan.identity, pending) from e

        duration = time.monotonic() - started
        if not self.ledger.summary_exists(plan_path):
            logger.warning(
                f"[Executor] Manual plan {plan.identity} ended (exit {exit_code}) without a summary"
            )
            raise HumanInterventionRequired(plan.identity, pending)

        self.ledger.complete_plan(plan_path)
        return RunResult.succeeded(duration, f"manual session exit code {exit_code}")

    def _advise(self, error: str, state: Optional[StreamState]):
        if self.recovery_advisor is None:
            return None
        context = build_execution_context(error, state, self.workdir)
        return self.recovery_advisor.advise(context)

    def _process_failure(self, error: str, state: Optional[StreamState], started: float) -> RunResult:
        duration = time.monotonic() - started
        advice = self._advise(error, state)
        if advice is not None:
            last_output = advice.render()
        else:
            last_output = state.last_output if state is not None else ""
        return RunResult.soft(
            error,
            duration,
            last_output,
            retry_guidance=advice.guidance if advice is not None else None,
        )
