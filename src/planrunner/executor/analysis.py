"""Post-execution analysis pass.

Runs after every execution attempt, including hard failures. Collects the
observations the agent recorded in the plan and summary files and, when some
exist and later plans are still open, asks the agent to adjust those plans.
The stream is read to completion: no sentinel cancels an analysis session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..agent.client import AgentInvocation
from ..exceptions import AgentError, LedgerError
from ..ledger.schemas import Status
from ..ledger.store import PlanLedger, summary_path_for
from ..prompts import analysis_prompt
from .observations import describe, read_observations

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    observations_found: int = 0
    rejected: int = 0
    upcoming_plans: int = 0
    ran_agent: bool = False
    error: Optional[str] = None


class PostRunAnalyzer:
    def __init__(self, ledger: PlanLedger, agent, model: str, tools: list[str], workdir: Path):
        self.ledger = ledger
        self.agent = agent
        self.model = model
        self.tools = tools
        self.workdir = workdir

    def collect(self, plan_path: Path) -> tuple[list, int]:
        """Accepted observations from the plan and its summary, plus the rejected count."""
        decoded = read_observations(plan_path)
        accepted = list(decoded.accepted)
        rejected = len(decoded.rejected)

        summary_path = summary_path_for(plan_path)
        if summary_path.exists():
            from_summary = read_observations(summary_path)
            rejected += len(from_summary.rejected)
            seen = {(o.type, o.title) for o in accepted}
            accepted += [o for o in from_summary.accepted if (o.type, o.title) not in seen]
        return accepted, rejected

    def upcoming_plans(self, plan_path: Path) -> list[Path]:
        """Incomplete plans other than ``plan_path``, in roadmap order."""
        roadmap = self.ledger.load_roadmap()
        upcoming = []
        for phase in sorted(roadmap.phases, key=lambda p: p.number):
            for path, plan in self.ledger.load_all_plans(phase):
                if path != plan_path and plan.status != Status.COMPLETE:
                    upcoming.append(path)
        return upcoming

    def analyze(self, plan_path: Path, skip: bool = False) -> AnalysisResult:
        result = AnalysisResult()
        if skip:
            return result

        observations, result.rejected = self.collect(plan_path)
        result.observations_found = len(observations)
        if not observations:
            return result

        try:
            upcoming = self.upcoming_plans(plan_path)
        except LedgerError as e:
            result.error = str(e)
            logger.warning(f"[Analysis] Cannot list upcoming plans: {e}")
            return result
        result.upcoming_plans = len(upcoming)
        if not upcoming:
            logger.info(f"[Analysis] {len(observations)} observation(s), no open plans to update")
            return result

        invocation = AgentInvocation(
            prompt=analysis_prompt([describe(o) for o in observations], upcoming),
            model=self.model,
            workdir=self.workdir,
            allowed_tools=list(self.tools),
            context_files=[plan_path],
            label="analysis",
        )
        try:
            self.agent.run(invocation, cancel_on_terminal=False)
            result.ran_agent = True
        except AgentError as e:
            result.error = str(e)
            logger.warning(f"[Analysis] Analysis session failed: {e}")
            return result

        logger.info(
            f"[Analysis] {len(observations)} observation(s) analyzed against "
            f"{len(upcoming)} open plan(s)"
        )
        return result
