"""Plan ledger: strict schemas, atomic persistence, and self-healing validation."""

from .schemas import (
    Checkpoint,
    Phase,
    Plan,
    ProjectState,
    RecordKind,
    Roadmap,
    Status,
    Summary,
    Task,
    TaskType,
    slugify,
)
from .self_heal import SelfHealer
from .store import PlanLedger, summary_path_for
from .validation import FieldError, ValidationReport, describe_schema, validate_payload

__all__ = [
    "Checkpoint",
    "FieldError",
    "Phase",
    "Plan",
    "PlanLedger",
    "ProjectState",
    "RecordKind",
    "Roadmap",
    "SelfHealer",
    "Status",
    "Summary",
    "Task",
    "TaskType",
    "ValidationReport",
    "describe_schema",
    "slugify",
    "summary_path_for",
    "validate_payload",
]
