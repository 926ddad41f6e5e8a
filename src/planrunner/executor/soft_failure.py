"""Soft-failure triage and progressive retry guidance."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ..ledger.store import PlanLedger
from .outcome import RunResult

logger = logging.getLogger(__name__)

# Phrases the agent uses when it stops at a task that needs a person.
HUMAN_ACTION_MARKERS = (
    re.compile(r"MANUAL CHECKPOINT"),
    re.compile(r"MANUAL TASK"),
    re.compile(r"\bmanual\b"),
)

FINALIZE_GUIDANCE = (
    "All auto tasks appear complete. Write the summary record and signal ###PLAN_COMPLETE###."
)
SKIP_MANUAL_GUIDANCE = (
    "Skip manual tasks (they are bundled into the end-of-phase plan). "
    "Continue with auto tasks only."
)
DEFAULT_GUIDANCE = (
    "The previous attempt exited unexpectedly. Log progress in the plan file before each "
    "action, diagnose what went wrong, and proceed carefully."
)


class TriageDecision(str, Enum):
    MARK_COMPLETE = "mark_complete"
    RETRY_WITH_GUIDANCE = "retry_with_guidance"


@dataclass(frozen=True)
class TriageResult:
    decision: TriageDecision
    reason: str
    guidance: str = ""


@dataclass
class PlanRetryState:
    """Per-plan retry bookkeeping. Lives only for one loop run."""

    attempts: int = 0
    # Progress record when the last attempt started; compared by the stuck check
    start_progress: str = ""
    # Progress record when the last attempt ended; shown in retry guidance
    last_progress: str = ""
    last_output: str = ""
    guidance: str = ""


def contains_human_action_marker(text: str) -> bool:
    return any(marker.search(text or "") for marker in HUMAN_ACTION_MARKERS)


def triage_soft_failure(ledger: PlanLedger, plan_path: Path, result: RunResult) -> TriageResult:
    """Decide how to handle a soft failure. First matching rule wins."""
    if ledger.summary_exists(plan_path):
        return TriageResult(
            TriageDecision.MARK_COMPLETE, "summary record exists, plan appears complete"
        )

    if ledger.all_tasks_complete(plan_path):
        return TriageResult(
            TriageDecision.RETRY_WITH_GUIDANCE,
            "tasks complete but summary record missing",
            FINALIZE_GUIDANCE,
        )

    if contains_human_action_marker(result.last_output):
        return TriageResult(
            TriageDecision.RETRY_WITH_GUIDANCE,
            "hit a manual task; it will be skipped on retry",
            SKIP_MANUAL_GUIDANCE,
        )

    return TriageResult(
        TriageDecision.RETRY_WITH_GUIDANCE,
        "unexpected exit; retrying with progress logging",
        DEFAULT_GUIDANCE,
    )


def build_retry_guidance(retry: PlanRetryState, guidance: Optional[str] = None) -> str:
    """Progressive guidance appended to the execution prompt on a retry."""
    parts = [
        f"### RETRY ATTEMPT {retry.attempts + 1}",
        "",
        f"This plan has been attempted {retry.attempts} time(s) previously.",
        "",
        "CRITICAL: log progress BEFORE each action. Set a task's status to",
        '"in_progress" in the plan file before starting it, then to "complete"',
        "once its verify command passes. This preserves state if execution is interrupted.",
    ]
    if guidance:
        parts += ["", "Guidance for this attempt:", guidance]
    parts += [
        "",
        "Previous attempt info:",
        "Last progress state:",
        retry.last_progress or "(none recorded)",
        "",
        "Last output before exit:",
        retry.last_output or "(none captured)",
        "",
        "Analyze what went wrong and proceed carefully.",
    ]
    return "\n".join(parts)
