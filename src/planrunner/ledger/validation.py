"""Field-addressable validation reports for ledger records.

Converts a pydantic ``ValidationError`` into a list of ``FieldError`` entries
(path, expected shape, actual value, fix hint) and renders them as a repair
prompt for the self-heal agent.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .schemas import RECORD_MODELS, RecordKind

_MAX_ACTUAL_CHARS = 200


@dataclass
class FieldError:
    """A single schema violation."""

    field: str
    expected: str
    actual: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "field": self.field,
            "expected": self.expected,
            "actual": self.actual,
            "message": self.message,
        }


@dataclass
class ValidationReport:
    """All schema violations found in one record."""

    kind: str
    errors: list[FieldError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, field_path: str, expected: str, actual: str, message: str) -> None:
        self.errors.append(FieldError(field_path, expected, actual, message))

    def fields(self) -> list[str]:
        return [e.field for e in self.errors]

    def to_prompt(self) -> str:
        """Render the errors as a numbered list the repair agent can act on."""
        if not self.errors:
            return "No validation errors."

        lines = [f"The {self.kind} record has {len(self.errors)} validation error(s):", ""]
        for i, err in enumerate(self.errors, 1):
            lines.append(f"{i}. Field: {err.field}")
            lines.append(f"   Expected: {err.expected}")
            lines.append(f"   Found: {err.actual}")
            lines.append(f"   Fix: {err.message}")
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"


def format_location(kind: str, loc: tuple[Any, ...]) -> str:
    """``("tasks", 0, "verify")`` -> ``plan.tasks[0].verify``.

    Discriminator tags that pydantic inserts for tagged unions (e.g.
    ``observations.0.finding.title``) are dropped.
    """
    path = kind
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        elif part in ("blocker", "finding", "completion"):
            continue
        else:
            path += f".{part}"
    return path


def _render_actual(value: Any) -> str:
    if value is _MISSING:
        return "(missing)"
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    if len(text) > _MAX_ACTUAL_CHARS:
        text = text[:_MAX_ACTUAL_CHARS] + "..."
    return text


_MISSING = object()

PATTERN_EXAMPLES = {
    "phase": '"01-setup", the phase directory name',
}


def _expected_and_fix(error: dict[str, Any], field_path: str) -> tuple[str, str]:
    err_type = error.get("type", "")
    ctx = error.get("ctx") or {}
    msg = error.get("msg", "")
    leaf = field_path.rsplit(".", 1)[-1]

    if err_type == "missing":
        return "a value (required field)", f"Add the required field '{leaf}'"
    if err_type == "extra_forbidden":
        return "no such field", f"Remove the unrecognized field '{leaf}'"
    if err_type == "enum":
        return f"one of {ctx.get('expected', '')}", f"Set '{leaf}' to one of {ctx.get('expected', '')}"
    if err_type == "literal_error":
        return f"one of {ctx.get('expected', '')}", f"Set '{leaf}' to one of {ctx.get('expected', '')}"
    if err_type == "union_tag_invalid":
        return (
            f"type one of {ctx.get('expected_tags', '')}",
            f"Set 'type' to one of {ctx.get('expected_tags', '')}",
        )
    if err_type in ("too_short", "string_too_short"):
        minimum = ctx.get("min_length", 1)
        return f"at least {minimum} item(s)/character(s)", f"Provide a non-empty '{leaf}'"
    if err_type == "string_pattern_mismatch":
        example = PATTERN_EXAMPLES.get(leaf, '"01" or "5.1"')
        return f"a string matching {ctx.get('pattern', '')}", f"Reformat '{leaf}' (e.g. {example})"
    if err_type.startswith("datetime"):
        return "an ISO-8601 timestamp", f"Set '{leaf}' to a timestamp like 2024-01-31T12:00:00Z"
    if err_type in ("greater_than", "greater_than_equal"):
        bound = ctx.get("gt", ctx.get("ge"))
        return f"a number above {bound}", f"Use a valid number for '{leaf}'"
    if err_type == "value_error":
        # Custom validator messages ("verify command is required for auto tasks")
        reason = str(ctx.get("error", msg)).removeprefix("Value error, ")
        return reason, reason[:1].upper() + reason[1:]
    expected = msg or err_type
    return expected, f"Correct '{leaf}': {msg}"


def report_from_pydantic(kind: str, exc: PydanticValidationError) -> ValidationReport:
    """Translate a pydantic ValidationError into a ValidationReport."""
    report = ValidationReport(kind=kind)
    for error in exc.errors():
        field_path = format_location(kind, tuple(error.get("loc", ())))
        value = _MISSING if error.get("type") == "missing" else error.get("input")
        expected, fix = _expected_and_fix(error, field_path)
        report.add_error(field_path, expected, _render_actual(value), fix)
    return report


def validate_payload(kind: RecordKind, payload: Any) -> tuple[Optional[BaseModel], ValidationReport]:
    """Validate raw decoded JSON against the schema for ``kind``.

    Returns:
        Tuple of (model or None, report)
    """
    model_cls = RECORD_MODELS[kind]
    try:
        return model_cls.model_validate(payload), ValidationReport(kind=kind.value)
    except PydanticValidationError as exc:
        return None, report_from_pydantic(kind.value, exc)


def describe_schema(kind: RecordKind) -> str:
    """Human-readable field table for a record kind, used in repair prompts."""
    model_cls = RECORD_MODELS[kind]
    lines = [f"Schema for {kind.value} records (unknown fields are rejected):"]
    _describe_model(model_cls, lines, indent="  ", seen=set())
    return "\n".join(lines)


def _describe_model(model_cls: type[BaseModel], lines: list[str], indent: str, seen: set) -> None:
    if model_cls in seen:
        return
    seen.add(model_cls)
    nested: list[type[BaseModel]] = []
    for name, info in model_cls.model_fields.items():
        annotation = info.annotation
        required = "required" if info.is_required() else "optional"
        type_name = _type_name(annotation, nested)
        lines.append(f"{indent}- {name}: {type_name} ({required})")
    for sub in nested:
        lines.append(f"{indent}{sub.__name__}:")
        _describe_model(sub, lines, indent + "  ", seen)


def _type_name(annotation: Any, nested: list) -> str:
    origin = getattr(annotation, "__origin__", None)
    args = getattr(annotation, "__args__", ()) or ()
    if origin is list and args:
        return f"list of {_type_name(args[0], nested)}"
    if args:
        names = [_type_name(a, nested) for a in args if a is not type(None)]
        return " | ".join(names)
    if isinstance(annotation, type) and issubclass(annotation, Enum):
        return "one of " + "|".join(m.value for m in annotation)
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        if annotation not in nested:
            nested.append(annotation)
        return annotation.__name__
    return getattr(annotation, "__name__", str(annotation))
