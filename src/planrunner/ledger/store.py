"""Plan ledger: validated, atomically written JSON records under ``.planning/``.

Layout::

    .planning/roadmap.json
    .planning/state.json
    .planning/phases/NN-<slug>/NN-PP.json
    .planning/phases/NN-<slug>/NN-PP-summary.json

Every record is validated on load and again before save. Writes go to a
``.tmp`` sibling which is then renamed over the target, so an interrupted
write never corrupts the previous record.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel

from ..exceptions import LedgerIOError, RecordValidationError, StatusRegressionError
from .schemas import (
    STATUS_RANK,
    Phase,
    Plan,
    ProjectState,
    RecordKind,
    Roadmap,
    Status,
    Summary,
    TaskType,
    is_ordinary_plan_number,
    plan_number_key,
)
from .validation import validate_payload

logger = logging.getLogger(__name__)

SUMMARY_SUFFIX = "-summary.json"
TMP_SUFFIX = ".tmp"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def summary_path_for(plan_path: Path) -> Path:
    """``01-02.json`` -> ``01-02-summary.json``."""
    return plan_path.with_name(plan_path.name[: -len(".json")] + SUMMARY_SUFFIX)


def is_plan_file(path: Path) -> bool:
    return path.suffix == ".json" and not path.name.endswith(SUMMARY_SUFFIX)


class PlanLedger:
    """Owns every persisted roadmap, state, plan and summary record for a workspace."""

    def __init__(self, planning_dir: Union[str, Path]):
        self.planning_dir = Path(planning_dir)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def roadmap_path(self) -> Path:
        return self.planning_dir / "roadmap.json"

    @property
    def state_path(self) -> Path:
        return self.planning_dir / "state.json"

    @property
    def project_path(self) -> Path:
        return self.planning_dir / "project.json"

    @property
    def phases_dir(self) -> Path:
        return self.planning_dir / "phases"

    def phase_dir(self, phase: Phase) -> Path:
        return self.phases_dir / phase.directory_name

    def plan_path(self, phase: Phase, plan_number: str) -> Path:
        return self.phase_dir(phase) / f"{phase.number:02d}-{plan_number}.json"

    # ------------------------------------------------------------------
    # Generic record I/O
    # ------------------------------------------------------------------

    def load_record(self, path: Path, kind: RecordKind) -> BaseModel:
        """Load and validate a record.

        Raises:
            LedgerIOError: File unreadable or not JSON
            RecordValidationError: JSON decoded but does not match the schema
        """
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise LedgerIOError(f"Cannot read {kind.value} record {path}: {e}", path=path) from e
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise LedgerIOError(
                f"{kind.value} record {path} is not valid JSON: {e}", path=path
            ) from e

        record, report = validate_payload(kind, payload)
        if record is None:
            raise RecordValidationError(report, path=path)
        return record

    def save_record(self, path: Path, record: Union[BaseModel, dict[str, Any]], kind: RecordKind) -> BaseModel:
        """Validate then atomically write a record.

        The target is untouched if validation or the write fails.
        """
        payload = record.model_dump() if isinstance(record, BaseModel) else record
        validated, report = validate_payload(kind, payload)
        if validated is None:
            raise RecordValidationError(report, path=path)

        tmp_path = path.with_name(path.name + TMP_SUFFIX)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                validated.model_dump_json(indent=2, exclude_none=True) + "\n", encoding="utf-8"
            )
            tmp_path.replace(path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise LedgerIOError(f"Cannot write {kind.value} record {path}: {e}", path=path) from e

        logger.debug(f"[Ledger] Saved {kind.value} record {path}")
        return validated

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    def load_roadmap(self) -> Roadmap:
        return self.load_record(self.roadmap_path, RecordKind.ROADMAP)

    def save_roadmap(self, roadmap: Roadmap) -> Roadmap:
        return self.save_record(self.roadmap_path, roadmap, RecordKind.ROADMAP)

    def load_state(self) -> Optional[ProjectState]:
        if not self.state_path.exists():
            return None
        return self.load_record(self.state_path, RecordKind.STATE)

    def save_state(self, state: ProjectState) -> ProjectState:
        return self.save_record(self.state_path, state, RecordKind.STATE)

    def load_plan(self, path: Path) -> Plan:
        return self.load_record(path, RecordKind.PLAN)

    def save_plan(self, path: Path, plan: Plan) -> Plan:
        return self.save_record(path, plan, RecordKind.PLAN)

    def load_summary(self, plan_path: Path) -> Optional[Summary]:
        path = summary_path_for(plan_path)
        if not path.exists():
            return None
        return self.load_record(path, RecordKind.SUMMARY)

    def summary_exists(self, plan_path: Path) -> bool:
        return summary_path_for(plan_path).exists()

    # ------------------------------------------------------------------
    # Plan discovery
    # ------------------------------------------------------------------

    def list_plan_paths(self, phase: Phase) -> list[Path]:
        """Plan files in a phase directory, in plan-number order."""
        phase_dir = self.phase_dir(phase)
        if not phase_dir.is_dir():
            return []
        paths = [p for p in phase_dir.iterdir() if p.is_file() and is_plan_file(p)]
        return sorted(paths, key=lambda p: plan_number_key(_plan_number_from_path(p)))

    def load_all_plans(self, phase: Phase) -> list[tuple[Path, Plan]]:
        plans = [(path, self.load_plan(path)) for path in self.list_plan_paths(phase)]
        plans.sort(key=lambda item: item[1].sort_key)
        return plans

    def find_next_plan(self) -> Optional[tuple[Phase, Path, Plan]]:
        """First incomplete plan by phase number, then plan number.

        Returns None when every plan in the roadmap is complete.
        """
        roadmap = self.load_roadmap()
        for phase in sorted(roadmap.phases, key=lambda p: p.number):
            for path, plan in self.load_all_plans(phase):
                if plan.status != Status.COMPLETE:
                    return phase, path, plan
        return None

    def ordinary_plans_complete(self, phase: Phase) -> bool:
        ordinary = [
            plan for _, plan in self.load_all_plans(phase) if is_ordinary_plan_number(plan.plan_number)
        ]
        return bool(ordinary) and all(plan.status == Status.COMPLETE for plan in ordinary)

    # ------------------------------------------------------------------
    # Progress record
    # ------------------------------------------------------------------

    def progress_text(self, plan_path: Path) -> str:
        """Render the task-status listing for a plan.

        Reads the raw JSON so that a plan the agent left half-edited still
        yields a comparable snapshot. Returns "" when the file is unreadable.
        """
        try:
            data = json.loads(plan_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return ""
        tasks = data.get("tasks") if isinstance(data, dict) else None
        if not isinstance(tasks, list):
            return ""
        lines = []
        for task in tasks:
            if not isinstance(task, dict):
                continue
            status = str(task.get("status", Status.PENDING.value)).upper()
            lines.append(f"{task.get('id', '?')}: [{status}] {task.get('name', '')}")
        return "\n".join(lines)

    def all_tasks_complete(self, plan_path: Path) -> bool:
        """True when every auto task is complete and none is pending.

        Manual tasks are ignored; they are deferred to the bundled manual plan.
        """
        try:
            data = json.loads(plan_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return False
        tasks = data.get("tasks") if isinstance(data, dict) else None
        if not isinstance(tasks, list):
            return False
        auto = [
            t for t in tasks
            if isinstance(t, dict) and t.get("type", TaskType.AUTO.value) == TaskType.AUTO.value
        ]
        return bool(auto) and all(t.get("status") == Status.COMPLETE.value for t in auto)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def transition_plan(self, plan_path: Path, status: Status) -> Plan:
        """Move a plan forward in its lifecycle.

        Raises:
            StatusRegressionError: If the move would go backwards or leave a terminal state
        """
        plan = self.load_plan(plan_path)
        if plan.status == status:
            return plan
        current_rank = STATUS_RANK[plan.status]
        if STATUS_RANK[status] <= current_rank:
            raise StatusRegressionError(
                f"plan {plan.identity} cannot move from {plan.status.value} to {status.value}",
                path=plan_path,
            )
        plan.status = status
        if status == Status.COMPLETE:
            plan.completed_at = utcnow()
        return self.save_plan(plan_path, plan)

    def mark_in_progress(self, plan_path: Path) -> Plan:
        return self.transition_plan(plan_path, Status.IN_PROGRESS)

    def complete_plan(self, plan_path: Path) -> Plan:
        """Mark a plan complete and record it as the last plan in project state."""
        plan = self.load_plan(plan_path)
        if plan.status == Status.PENDING:
            self.transition_plan(plan_path, Status.IN_PROGRESS)
        plan = self.transition_plan(plan_path, Status.COMPLETE)
        self.update_state(plan.phase_number, plan.identity)
        logger.info(f"[Ledger] Plan {plan.identity} marked complete")
        return plan

    def fail_plan(self, plan_path: Path) -> Plan:
        plan = self.load_plan(plan_path)
        if plan.status == Status.PENDING:
            self.transition_plan(plan_path, Status.IN_PROGRESS)
        plan = self.transition_plan(plan_path, Status.FAILED)
        logger.warning(f"[Ledger] Plan {plan.identity} marked failed")
        return plan

    def reset_plan(self, plan_path: Path) -> Plan:
        """Operator override: put a failed or in-progress plan back to pending.

        This is the only path that moves a status backwards.
        """
        plan = self.load_plan(plan_path)
        previous = plan.status
        plan.status = Status.PENDING
        plan.completed_at = None
        plan = self.save_plan(plan_path, plan)
        logger.warning(f"[Ledger] Plan {plan.identity} reset from {previous.value} to pending")
        return plan

    def update_state(self, phase_number: int, plan_identity: Optional[str] = None) -> ProjectState:
        state = self.load_state()
        if state is None:
            state = ProjectState(current_phase=phase_number, last_updated=utcnow())
        state.current_phase = phase_number
        state.last_updated = utcnow()
        if plan_identity is not None:
            state.last_plan = plan_identity
        return self.save_state(state)

    # ------------------------------------------------------------------
    # Roadmap maintenance
    # ------------------------------------------------------------------

    def derive_phase_status(self, phase: Phase) -> Status:
        plans = [plan for _, plan in self.load_all_plans(phase)]
        if not plans:
            return phase.status
        statuses = {plan.status for plan in plans}
        if Status.FAILED in statuses:
            return Status.FAILED
        if statuses == {Status.COMPLETE}:
            return Status.COMPLETE
        if statuses != {Status.PENDING}:
            return Status.IN_PROGRESS
        return Status.PENDING

    def sync_phase_status(self, phase_number: int) -> Status:
        """Recompute a phase's status from its plans and persist it in the roadmap."""
        roadmap = self.load_roadmap()
        phase = roadmap.get_phase(phase_number)
        if phase is None:
            raise LedgerIOError(f"Phase {phase_number} not found in roadmap", path=self.roadmap_path)
        status = self.derive_phase_status(phase)
        if status != phase.status:
            logger.info(f"[Ledger] Phase {phase_number} status {phase.status.value} -> {status.value}")
            phase.status = status
            self.save_roadmap(roadmap)
        return status

    def register_plan(self, phase_number: int, plan_number: str) -> None:
        """Add a plan number to its phase's plan list in the roadmap (idempotent)."""
        roadmap = self.load_roadmap()
        phase = roadmap.get_phase(phase_number)
        if phase is None:
            raise LedgerIOError(f"Phase {phase_number} not found in roadmap", path=self.roadmap_path)
        if plan_number in phase.plans:
            return
        phase.plans = sorted([*phase.plans, plan_number], key=plan_number_key)
        self.save_roadmap(roadmap)


def _plan_number_from_path(path: Path) -> str:
    """``01-99.1.json`` -> ``99.1``."""
    stem = path.name[: -len(".json")]
    return stem.split("-", 1)[1] if "-" in stem else stem
