"""Shared builders for planrunner tests.

``ScriptedAgent`` replaces the Claude CLI: every ``run`` call replays the next
canned list of stream-json lines through the real ``StreamParser``. A script
may also be a callable (receives the invocation, may touch files, returns the
lines) or an exception instance to raise.
"""

import json
from pathlib import Path

from planrunner.agent.client import AgentRunResult
from planrunner.agent.stream_parser import StreamParser

CREATED_AT = "2024-01-01T00:00:00Z"


def assistant_line(text=None, tool=None, usage=None):
    content = []
    if tool:
        content.append({"type": "tool_use", "name": tool, "input": {}})
    if text is not None:
        content.append({"type": "text", "text": text})
    message = {"content": content}
    if usage:
        message["usage"] = usage
    return json.dumps({"type": "assistant", "message": message})


def result_line(text):
    return json.dumps({"type": "result", "result": text})


class ScriptedAgent:
    """Stand-in for ClaudeAgent driven by canned output."""

    def __init__(self, scripts=None, timed_out=False):
        self.scripts = list(scripts or [])
        self.timed_out = timed_out
        self.invocations = []
        self.interactive_invocations = []
        self.interactive_exit_code = 0
        self.on_interactive = None

    def queue(self, *scripts):
        self.scripts.extend(scripts)
        return self

    def run(self, invocation, cancel_on_terminal=True):
        self.invocations.append((invocation, cancel_on_terminal))
        script = self.scripts.pop(0) if self.scripts else []
        if isinstance(script, Exception):
            raise script
        if callable(script):
            script = script(invocation)

        cancelled = []
        parser = StreamParser(on_terminate=cancelled.append if cancel_on_terminal else None)
        state = parser.parse(script)
        return AgentRunResult(
            state=state,
            duration_sec=0.01,
            returncode=0,
            timed_out=self.timed_out,
            cancelled=bool(cancelled),
        )

    def run_interactive(self, invocation):
        self.interactive_invocations.append(invocation)
        if self.on_interactive is not None:
            self.on_interactive(invocation)
        return self.interactive_exit_code

    def labels(self):
        return [inv.label for inv, _ in self.invocations]


def write_json(path, payload):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def write_roadmap(planning_dir, phases, project_name="demo"):
    planning_dir = Path(planning_dir)
    return write_json(
        planning_dir / "roadmap.json",
        {"version": "1.0", "project_name": project_name, "phases": phases},
    )


def make_task(task_id="1", name=None, type="auto", status="pending", verify="pytest -q", **extra):
    task = {
        "id": task_id,
        "name": name or f"Task {task_id}",
        "type": type,
        "files": [],
        "action": f"Do task {task_id}",
        "done": "It works",
        "status": status,
    }
    if verify is not None:
        task["verify"] = verify
    task.update(extra)
    return task


def make_plan(plan_number="01", phase="01-setup", tasks=None, status="pending", objective=None, **extra):
    plan = {
        "phase": phase,
        "plan_number": plan_number,
        "status": status,
        "objective": objective or f"Carry out plan {plan_number}. Keep it small.",
        "tasks": tasks if tasks is not None else [make_task("1")],
        "verification": ["pytest -q"],
        "created_at": CREATED_AT,
    }
    plan.update(extra)
    return plan


def write_plan(planning_dir, plan, phase_dir="01-setup"):
    """Write a raw plan dict (unvalidated) to its canonical location."""
    phase_number = phase_dir.split("-", 1)[0]
    path = Path(planning_dir) / "phases" / phase_dir / f"{phase_number}-{plan['plan_number']}.json"
    return write_json(path, plan)


def write_summary(plan_path, plan_number="01", phase="01-setup", **extra):
    plan_path = Path(plan_path)
    summary = {
        "phase": phase,
        "plan_number": plan_number,
        "completed_at": CREATED_AT,
        "tasks_completed": ["1"],
        "files_modified": [],
    }
    summary.update(extra)
    return write_json(plan_path.with_name(plan_path.stem + "-summary.json"), summary)


def set_task_status(plan_path, task_id, status):
    """Simulate the agent updating a task's status in the plan file."""
    plan_path = Path(plan_path)
    data = json.loads(plan_path.read_text(encoding="utf-8"))
    for task in data["tasks"]:
        if task["id"] == task_id:
            task["status"] = status
    plan_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
