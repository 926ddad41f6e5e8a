"""Synthesized plans that bracket a phase.

- ``00``   decisions plan: decision checkpoints, runs before any ordinary plan
- ``99``   manual-tasks plan: manual tasks deferred out of ordinary plans
- ``99.1`` verification plan: human-verify checkpoints and findings that ask
  for human review

Creation is idempotent: a plan file that already exists is never rewritten.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..executor.observations import needs_human_review, read_observations, split_review_lines
from ..ledger.schemas import Checkpoint, Phase, Plan, Status, Task, TaskType, is_ordinary_plan_number
from ..ledger.store import PlanLedger, summary_path_for, utcnow

logger = logging.getLogger(__name__)

DECISIONS_PLAN_NUMBER = "00"
MANUAL_PLAN_NUMBER = "99"
VERIFICATION_PLAN_NUMBER = "99.1"


def extract_plan_name(objective: str, limit: int = 80) -> str:
    """First sentence of the objective, capped at ``limit`` characters."""
    name = objective.strip().split("\n", 1)[0]
    end = name.find(". ")
    if end != -1:
        name = name[:end]
    name = name.rstrip(".")
    if len(name) > limit:
        name = name[: limit - 3] + "..."
    return name


class PlanBundler:
    """Builds and registers the synthesized plans for a phase."""

    def __init__(self, ledger: PlanLedger):
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def on_phase_start(self, phase: Phase) -> list[str]:
        """Bundle decisions, plus end-of-phase plans when a resumed phase is already done."""
        created = []
        if self.ensure_decisions_plan(phase):
            created.append(DECISIONS_PLAN_NUMBER)
        created += self.ensure_end_of_phase_plans(phase)
        return created

    def ensure_end_of_phase_plans(self, phase: Phase) -> list[str]:
        if not self.ledger.ordinary_plans_complete(phase):
            return []
        created = []
        if self.ensure_manual_plan(phase):
            created.append(MANUAL_PLAN_NUMBER)
        if self.ensure_verification_plan(phase):
            created.append(VERIFICATION_PLAN_NUMBER)
        return created

    # ------------------------------------------------------------------
    # Individual plans
    # ------------------------------------------------------------------

    def ensure_decisions_plan(self, phase: Phase) -> bool:
        path = self.ledger.plan_path(phase, DECISIONS_PLAN_NUMBER)
        if path.exists():
            return False

        tasks = []
        for plan_path, plan in self._ordinary_plans(phase):
            for task in plan.tasks:
                if task.checkpoint == Checkpoint.DECISION and task.status != Status.COMPLETE:
                    tasks.append(
                        Task(
                            id=f"decision-{len(tasks) + 1}",
                            name=task.name,
                            type=TaskType.MANUAL,
                            files=list(task.files),
                            action=_with_origin(task.action, plan, task),
                            done="Decision made and recorded",
                            checkpoint=Checkpoint.DECISION,
                        )
                    )
        if not tasks:
            return False

        self._write(
            phase,
            path,
            DECISIONS_PLAN_NUMBER,
            objective=f"Resolve {len(tasks)} decision checkpoint(s) before phase {phase.number} work begins",
            tasks=tasks,
            verification=["Each decision is recorded in the summary notes"],
        )
        return True

    def ensure_manual_plan(self, phase: Phase) -> bool:
        path = self.ledger.plan_path(phase, MANUAL_PLAN_NUMBER)
        if path.exists():
            return False

        tasks = []
        for plan_path, plan in self._ordinary_plans(phase):
            # Plans made only of manual tasks run interactively in place.
            if plan.is_manual_plan:
                continue
            for task in plan.tasks:
                if task.is_manual and task.checkpoint is None and task.status != Status.COMPLETE:
                    tasks.append(
                        Task(
                            id=f"manual-{len(tasks) + 1}",
                            name=task.name,
                            type=TaskType.MANUAL,
                            files=list(task.files),
                            action=_with_origin(task.action, plan, task),
                            done=task.done or "Completed by a human and recorded",
                        )
                    )
        if not tasks:
            return False

        self._write(
            phase,
            path,
            MANUAL_PLAN_NUMBER,
            objective=f"Complete {len(tasks)} manual task(s) deferred from phase {phase.number}",
            tasks=tasks,
            verification=["Each manual task is confirmed in the summary"],
        )
        return True

    def ensure_verification_plan(self, phase: Phase) -> bool:
        path = self.ledger.plan_path(phase, VERIFICATION_PLAN_NUMBER)
        if path.exists():
            return False

        tasks = []
        for plan_path, plan in self._ordinary_plans(phase):
            for task in plan.tasks:
                if task.checkpoint == Checkpoint.HUMAN_VERIFY and task.status != Status.COMPLETE:
                    tasks.append(
                        Task(
                            id=f"verify-{len(tasks) + 1}",
                            name=task.name,
                            type=TaskType.MANUAL,
                            files=list(task.files),
                            action=_with_origin(task.action, plan, task),
                            done=task.done or "Verified by a human and recorded",
                            checkpoint=Checkpoint.HUMAN_VERIFY,
                        )
                    )

            if plan.status != Status.COMPLETE:
                continue
            for observation in self._observations(plan_path):
                if not needs_human_review(observation):
                    continue
                automated, needs_human = split_review_lines(observation.description)
                action_lines = [
                    f"From plan {plan.plan_number} ({extract_plan_name(plan.objective)}):",
                    observation.description,
                ]
                if automated:
                    action_lines.append("Already automated: " + "; ".join(automated))
                if needs_human:
                    action_lines.append("Check by hand: " + "; ".join(needs_human))
                tasks.append(
                    Task(
                        id=f"verify-{len(tasks) + 1}",
                        name=observation.title,
                        type=TaskType.MANUAL,
                        files=[observation.file] if observation.file else [],
                        action="\n".join(action_lines),
                        done="Verified by a human and recorded",
                        checkpoint=Checkpoint.HUMAN_VERIFY,
                    )
                )
        if not tasks:
            return False

        self._write(
            phase,
            path,
            VERIFICATION_PLAN_NUMBER,
            objective=f"Human verification of {len(tasks)} checkpoint(s) for phase {phase.number}",
            tasks=tasks,
            verification=["Each checkpoint is confirmed or has a follow-up recorded"],
        )
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ordinary_plans(self, phase: Phase) -> list[tuple[Path, Plan]]:
        return [
            (path, plan)
            for path, plan in self.ledger.load_all_plans(phase)
            if is_ordinary_plan_number(plan.plan_number)
        ]

    def _observations(self, plan_path: Path) -> list:
        found = list(read_observations(plan_path).accepted)
        summary_path = summary_path_for(plan_path)
        if summary_path.exists():
            titles = {o.title for o in found}
            found += [o for o in read_observations(summary_path).accepted if o.title not in titles]
        return found

    def _write(
        self,
        phase: Phase,
        path: Path,
        plan_number: str,
        objective: str,
        tasks: list[Task],
        verification: Optional[list[str]] = None,
    ) -> Plan:
        plan = Plan(
            phase=phase.directory_name,
            plan_number=plan_number,
            objective=objective,
            tasks=tasks,
            verification=verification or [],
            created_at=utcnow(),
        )
        saved = self.ledger.save_plan(path, plan)
        self.ledger.register_plan(phase.number, plan_number)
        logger.info(f"[Bundler] Created plan {saved.identity} with {len(tasks)} task(s)")
        return saved


def _with_origin(action: str, plan: Plan, task: Task) -> str:
    origin = f"(from plan {plan.plan_number}, task {task.id})"
    return f"{action}\n{origin}" if action else origin
