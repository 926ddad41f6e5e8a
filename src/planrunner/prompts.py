"""Prompt text handed to the agent.

The engine treats these as opaque payloads: nothing downstream parses them.
Only the sentinel instructions matter to the rest of the package.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

SENTINEL_INSTRUCTIONS = """\
When you finish, print exactly one of these markers on its own line:
  ###PLAN_COMPLETE###               all auto tasks done, summary written
  ###BAILOUT:<reason>###            stopping early; progress is saved in the plan file
  ###TASK_FAILED:<task id>###       a task cannot be completed
  ###BUILD_FAILED:<detail>###       the build is broken and you cannot fix it
  ###TEST_FAILED:<detail>###        tests fail and you cannot fix them
  ###PLAN_FAILED:<reason>###        the plan as written cannot be executed
  ###BLOCKED:<reason>###            an external dependency prevents progress
"""


def execution_prompt(
    objective: str,
    plan_path: Path,
    summary_path: Path,
    retry_guidance: Optional[str] = None,
) -> str:
    lines = [
        "You are executing one plan from the project roadmap.",
        f"Plan file: {plan_path}",
        f"Objective: {objective}",
        "",
        "Rules:",
        "- Work through the auto tasks in order. Run each task's verify command.",
        "- After each task, set its status to \"complete\" in the plan file before moving on.",
        "- Skip tasks with type \"manual\"; they are deferred to a later plan.",
        "- Record blockers, findings and completions in the plan's \"observations\" list",
        "  as objects with type (blocker|finding|completion), title, description, file.",
        f"- When every auto task is complete, write the summary record to {summary_path}",
        "  with fields phase, plan_number, completed_at, tasks_completed, files_modified,",
        "  deferred_manual_tasks, observations, notes.",
        "",
        SENTINEL_INSTRUCTIONS,
    ]
    if retry_guidance:
        lines += ["", retry_guidance]
    return "\n".join(lines)


def manual_plan_prompt(objective: str, plan_path: Path, summary_path: Path) -> str:
    return "\n".join(
        [
            "This plan contains tasks that need a human.",
            f"Plan file: {plan_path}",
            f"Objective: {objective}",
            "Walk the operator through each task, record the outcome in the plan file,",
            f"and write the summary record to {summary_path} once every task is settled.",
        ]
    )


def blocker_verification_prompt(
    objective: str,
    plan_path: Path,
    blocker_detail: str,
    captured_output: str,
    planning_dir: Path,
) -> str:
    return "\n".join(
        [
            "An agent executing a plan reported that it is BLOCKED.",
            f"Plan file: {plan_path}",
            f"Objective: {objective}",
            f"Blocker reason: {blocker_detail}",
            "",
            "Decide whether the blocker is legitimate. Search the codebase and the",
            f"records under {planning_dir} (earlier summaries, observations) for",
            "workarounds, existing implementations, or prior decisions that remove it.",
            "",
            "Recent agent output:",
            captured_output or "(none captured)",
            "",
            "Answer with exactly one marker:",
            "  ###BLOCKER_VALID:<why it cannot be worked around>###",
            "  ###BLOCKER_INVALID:<concrete guidance for the next attempt>###",
        ]
    )


def recovery_prompt(context_block: str) -> str:
    return "\n".join(
        [
            "An agent execution terminated abnormally. Diagnose the failure from the",
            "context below and recommend how the next attempt should proceed.",
            "",
            context_block,
            "",
            "Answer with exactly one marker:",
            "  ###RECOVERY:<action>:<guidance>###",
            "where <action> is one of: retry, fix-state, break-chunks, skip, manual.",
        ]
    )


def repair_prompt(path: Path, errors_block: str, schema_block: str) -> str:
    return "\n".join(
        [
            f"The JSON record at {path} failed schema validation.",
            "Edit only this file so that it validates. Do not touch any other file.",
            "Preserve existing content wherever it is already valid.",
            "",
            errors_block,
            "",
            schema_block,
        ]
    )


def analysis_prompt(observations: Iterable[str], upcoming_plans: Iterable[Path]) -> str:
    return "\n".join(
        [
            "Observations were recorded while executing the previous plan:",
            *[f"- {obs}" for obs in observations],
            "",
            "Review the upcoming plans below and update them if an observation",
            "changes what they need to do (new tasks, changed files, removed work).",
            "Keep each plan valid against its schema.",
            *[f"- {path}" for path in upcoming_plans],
        ]
    )
