"""Strict schemas for every record persisted in the plan ledger.

All models forbid unknown fields so that a record written by the agent with a
typo'd or invented key fails validation instead of being silently dropped.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

PLAN_NUMBER_PATTERN = r"^\d+(\.\d+)?$"
# Phase directory name: zero-padded number, dash, slug ("01-setup")
PHASE_DIR_PATTERN = r"^\d+-[a-z0-9-]*$"


class Status(str, Enum):
    """Lifecycle status shared by phases, plans and tasks."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


# Forward-only ordering; complete and failed are both terminal.
STATUS_RANK = {
    Status.PENDING: 0,
    Status.IN_PROGRESS: 1,
    Status.COMPLETE: 2,
    Status.FAILED: 2,
}


class TaskType(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class Checkpoint(str, Enum):
    """Marks manual tasks that are bundled into end-of-phase or start-of-phase plans."""

    DECISION = "decision"
    HUMAN_VERIFY = "human_verify"


class RecordKind(str, Enum):
    ROADMAP = "roadmap"
    STATE = "state"
    PLAN = "plan"
    SUMMARY = "summary"


class _Record(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Observations
# ---------------------------------------------------------------------------


class _ObservationBase(_Record):
    title: str = Field(..., min_length=1)
    description: str = ""
    file: Optional[str] = None


class BlockerObservation(_ObservationBase):
    type: Literal["blocker"] = "blocker"


class FindingObservation(_ObservationBase):
    type: Literal["finding"] = "finding"


class CompletionObservation(_ObservationBase):
    type: Literal["completion"] = "completion"


Observation = Annotated[
    Union[BlockerObservation, FindingObservation, CompletionObservation],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Roadmap / state
# ---------------------------------------------------------------------------


class Phase(_Record):
    number: int = Field(..., gt=0)
    name: str = Field(..., min_length=1)
    goal: str = Field(..., min_length=1)
    status: Status = Status.PENDING
    plans: list[str] = Field(default_factory=list)

    @property
    def directory_name(self) -> str:
        return f"{self.number:02d}-{slugify(self.name)}"


class Roadmap(_Record):
    version: str = "1.0"
    project_name: Optional[str] = None
    phases: list[Phase] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _phase_numbers_unique(self) -> "Roadmap":
        seen: set[int] = set()
        for phase in self.phases:
            if phase.number in seen:
                raise ValueError(f"phase number {phase.number} is used more than once")
            seen.add(phase.number)
        return self

    def get_phase(self, number: int) -> Optional[Phase]:
        for phase in self.phases:
            if phase.number == number:
                return phase
        return None


class ProjectState(_Record):
    version: str = "1.0"
    current_phase: int = Field(0, ge=0)
    last_updated: datetime
    last_plan: Optional[str] = None


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class Task(_Record):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    type: TaskType = TaskType.AUTO
    files: list[str] = Field(default_factory=list)
    action: str = ""
    verify: Optional[str] = Field(default=None, validate_default=True)
    done: str = ""
    status: Status = Status.PENDING
    checkpoint: Optional[Checkpoint] = None
    completed_at: Optional[datetime] = None

    @field_validator("verify")
    @classmethod
    def _verify_required_for_auto(cls, value: Optional[str], info: ValidationInfo) -> Optional[str]:
        if info.data.get("type") == TaskType.AUTO and not (value or "").strip():
            raise ValueError("verify command is required for auto tasks")
        return value

    @field_validator("checkpoint")
    @classmethod
    def _checkpoint_only_on_manual(
        cls, value: Optional[Checkpoint], info: ValidationInfo
    ) -> Optional[Checkpoint]:
        if value is not None and info.data.get("type") != TaskType.MANUAL:
            raise ValueError("checkpoint may only be set on manual tasks")
        return value

    @property
    def is_manual(self) -> bool:
        return self.type == TaskType.MANUAL


class Plan(_Record):
    phase: str = Field(..., pattern=PHASE_DIR_PATTERN)
    plan_number: str = Field(..., pattern=PLAN_NUMBER_PATTERN)
    status: Status = Status.PENDING
    objective: str = Field(..., min_length=1)
    tasks: list[Task] = Field(..., min_length=1)
    verification: list[str] = Field(default_factory=list)
    validation: Optional[list[str]] = None
    observations: list[Observation] = Field(default_factory=list)
    created_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def identity(self) -> str:
        """Stable key used for retry bookkeeping and log correlation."""
        return f"{self.phase}/{self.plan_number}"

    @property
    def phase_number(self) -> int:
        return int(self.phase.split("-", 1)[0])

    @property
    def sort_key(self) -> tuple[int, ...]:
        return plan_number_key(self.plan_number)

    @property
    def is_manual_plan(self) -> bool:
        return all(task.is_manual for task in self.tasks)

    def pending_tasks(self) -> list[Task]:
        return [t for t in self.tasks if t.status in (Status.PENDING, Status.IN_PROGRESS)]


class Summary(_Record):
    phase: str = Field(..., pattern=PHASE_DIR_PATTERN)
    plan_number: str = Field(..., pattern=PLAN_NUMBER_PATTERN)
    completed_at: datetime
    tasks_completed: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)
    deferred_manual_tasks: list[str] = Field(default_factory=list)
    observations: list[Observation] = Field(default_factory=list)
    notes: Optional[str] = None


RECORD_MODELS: dict[RecordKind, type[BaseModel]] = {
    RecordKind.ROADMAP: Roadmap,
    RecordKind.STATE: ProjectState,
    RecordKind.PLAN: Plan,
    RecordKind.SUMMARY: Summary,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def slugify(name: str) -> str:
    """Directory-safe slug: "Critical Bug Fixes" -> "critical-bug-fixes"."""
    slug = name.lower().replace(" ", "-")
    return re.sub(r"[^a-z0-9-]", "", slug)


def plan_number_key(plan_number: str) -> tuple[int, ...]:
    """Numeric ordering key so that "5.10" sorts after "5.2" and "99.1" after "99"."""
    try:
        return tuple(int(part) for part in plan_number.split("."))
    except ValueError:
        return (10**9,)


def is_ordinary_plan_number(plan_number: str) -> bool:
    """Ordinary plans live strictly between the decisions band (00) and the manual band (99+)."""
    key = plan_number_key(plan_number)
    return 0 < key[0] < 99
