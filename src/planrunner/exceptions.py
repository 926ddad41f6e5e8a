"""Custom exceptions for planrunner."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .ledger.validation import ValidationReport


class PlanRunnerError(Exception):
    """Base exception for all planrunner errors."""

    pass


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class LedgerError(PlanRunnerError):
    """Base exception for plan ledger errors."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class RecordValidationError(LedgerError):
    """A record failed schema validation.

    This is the only ledger failure that the self-heal loop will try to
    repair: it always carries a field-addressable report.
    """

    def __init__(self, report: "ValidationReport", path: Optional[Path] = None):
        """
        Initialize validation error.

        Args:
            report: Structured field errors for the record
            path: File the record was read from (or was about to be written to)
        """
        location = f" in {path}" if path else ""
        super().__init__(
            f"{report.kind} record failed validation{location}: {len(report.errors)} error(s)",
            path=path,
        )
        self.report = report


class LedgerIOError(LedgerError):
    """Opaque read/write/decode failure. Never auto-repaired."""

    pass


class StatusRegressionError(LedgerError):
    """Raised when a plan status would move backwards."""

    pass


class SelfHealExhaustedError(LedgerError):
    """Raised when the repair cap is reached while a record is still invalid."""

    def __init__(self, path: Path, attempts: int, report: "ValidationReport"):
        super().__init__(
            f"Record {path} still invalid after {attempts} repair attempt(s)", path=path
        )
        self.attempts = attempts
        self.report = report


# ---------------------------------------------------------------------------
# Agent process / stream
# ---------------------------------------------------------------------------


class AgentError(PlanRunnerError):
    """Base exception for agent invocation errors."""

    pass


class ExecutionStartError(AgentError):
    """The agent subprocess could not be launched."""

    def __init__(self, message: str, binary: Optional[str] = None):
        super().__init__(message)
        self.binary = binary


class ParseFailureKind(str, Enum):
    """Why reading the agent's output stream failed."""

    OVERSIZED_LINE = "oversized_line"
    READ_ERROR = "read_error"


class StreamParseError(AgentError):
    """Reading the signal stream failed.

    Kept distinct from execution errors so protocol problems can be
    diagnosed separately. ``state`` holds whatever the parser had
    collected before the failure.
    """

    def __init__(self, kind: ParseFailureKind, message: str, state: Any = None):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.state = state


# ---------------------------------------------------------------------------
# Loop termination
# ---------------------------------------------------------------------------


class LoopAbortError(PlanRunnerError):
    """Base exception for errors that terminate the scheduling loop.

    Always names the offending plan.
    """

    def __init__(self, message: str, plan_id: str):
        super().__init__(message)
        self.plan_id = plan_id


class HardFailureError(LoopAbortError):
    """The agent reported a verified hard failure."""

    def __init__(self, plan_id: str, reason: str):
        super().__init__(f"plan {plan_id} failed: {reason}", plan_id)
        self.reason = reason


class RetryExhaustedError(LoopAbortError):
    """Soft failures on a plan exceeded the retry cap."""

    def __init__(self, plan_id: str, max_retries: int, message: Optional[str] = None):
        super().__init__(
            message or f"exceeded max retries ({max_retries}) for plan {plan_id}", plan_id
        )
        self.max_retries = max_retries


class StuckPlanError(RetryExhaustedError):
    """Retries are exhausted and the plan's progress record has not changed."""

    def __init__(self, plan_id: str, attempts: int):
        super().__init__(
            plan_id,
            attempts,
            message=(
                f"plan {plan_id} appears stuck: progress unchanged after {attempts} attempt(s)"
            ),
        )
        self.attempts = attempts


class HumanInterventionRequired(LoopAbortError):
    """A manual plan cannot be completed autonomously."""

    def __init__(self, plan_id: str, tasks: Optional[list[str]] = None):
        super().__init__(f"plan {plan_id} requires human action", plan_id)
        self.tasks = tasks or []


class PlanPreviouslyFailedError(LoopAbortError):
    """The next plan is already marked failed on disk."""

    def __init__(self, plan_id: str):
        super().__init__(
            f"plan {plan_id} is marked failed; reset it with `planrunner reset-plan` to retry",
            plan_id,
        )
