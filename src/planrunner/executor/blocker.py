"""Second-opinion check for BLOCKED signals.

A blocker claim is not accepted at face value. A fresh agent session limited to
search tools looks through earlier records and the codebase for a workaround
and answers with ``###BLOCKER_VALID:<reason>###`` or
``###BLOCKER_INVALID:<guidance>###``. Anything else (no answer, both answers,
a failed session) is treated as VALID so a real blocker cannot cause an
endless retry loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..agent.client import AgentInvocation
from ..agent.stream_parser import Signal, sentinel_pattern
from ..exceptions import AgentError
from ..ledger.schemas import Plan
from ..prompts import blocker_verification_prompt

logger = logging.getLogger(__name__)

VALID_TOKEN = "BLOCKER_VALID"
INVALID_TOKEN = "BLOCKER_INVALID"
DECISION_RE = sentinel_pattern([VALID_TOKEN, INVALID_TOKEN])


@dataclass(frozen=True)
class BlockerDecision:
    valid: bool
    reason: str
    defaulted: bool = False


def parse_blocker_decision(text: str) -> Optional[BlockerDecision]:
    """Return the verifier's decision, or None if it is missing or contradictory."""
    decisions = [
        BlockerDecision(valid=m.group(1) == VALID_TOKEN, reason=(m.group(2) or "").strip())
        for m in DECISION_RE.finditer(text or "")
    ]
    if not decisions:
        return None
    if len({d.valid for d in decisions}) > 1:
        logger.warning("[Blocker] Verifier emitted both VALID and INVALID decisions")
        return None
    return decisions[0]


class BlockerVerifier:
    def __init__(self, agent, model: str, tools: list[str], workdir: Path, planning_dir: Path):
        self.agent = agent
        self.model = model
        self.tools = tools
        self.workdir = workdir
        self.planning_dir = planning_dir

    def verify(self, plan: Plan, plan_path: Path, signal: Signal, captured_output: str) -> BlockerDecision:
        logger.info(f"[Blocker] Verifying blocker for plan {plan.identity}: {signal.detail}")
        invocation = AgentInvocation(
            prompt=blocker_verification_prompt(
                plan.objective, plan_path, signal.detail, captured_output, self.planning_dir
            ),
            model=self.model,
            workdir=self.workdir,
            allowed_tools=list(self.tools),
            label="blocker-verification",
        )
        try:
            run = self.agent.run(invocation, cancel_on_terminal=False)
        except AgentError as e:
            logger.warning(f"[Blocker] Verification session failed ({e}); treating blocker as valid")
            return BlockerDecision(valid=True, reason=signal.detail, defaulted=True)

        decision = parse_blocker_decision(run.state.captured_text() + "\n" + run.state.last_output)
        if decision is None:
            logger.warning("[Blocker] No clear decision from verifier; treating blocker as valid")
            return BlockerDecision(valid=True, reason=signal.detail, defaulted=True)

        logger.info(
            f"[Blocker] Verifier says {'VALID' if decision.valid else 'INVALID'}: {decision.reason}"
        )
        return decision
