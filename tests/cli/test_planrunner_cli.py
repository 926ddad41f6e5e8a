"""Tests for the planrunner command-line interface"""

import json
import logging

import pytest
from click.testing import CliRunner

from planrunner import cli as cli_module
from planrunner.cli import cli
from planrunner.ledger.schemas import Status
from planrunner.logging_config import LOGGER_NAME
from planrunner.runner import build_runner
from tests.helpers import (
    ScriptedAgent,
    make_plan,
    make_task,
    result_line,
    write_plan,
    write_summary,
)


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logging.getLogger(LOGGER_NAME).handlers.clear()


@pytest.fixture
def scripted(monkeypatch):
    """Make every command build its runner around a scripted agent."""
    agent = ScriptedAgent()

    def fake_build_runner(settings, workspace):
        return build_runner(settings, workspace, agent=agent)

    monkeypatch.setattr(cli_module, "build_runner", fake_build_runner)
    return agent


class TestStatusCommand:
    def test_lists_plans_and_next(self, runner, workspace, ledger):
        """Status shows every plan and the next one to run"""
        write_plan(ledger.planning_dir, make_plan("01", status="complete", objective="Scaffold the repo"))
        write_plan(ledger.planning_dir, make_plan("02", objective="Add the parser"))

        result = runner.invoke(cli, ["status", "--workspace", str(workspace)])

        assert result.exit_code == 0, result.output
        assert "Scaffold the repo" in result.output
        assert "Add the parser" in result.output
        assert "Next: 01-setup/02" in result.output

    def test_all_complete(self, runner, workspace, ledger):
        """Status reports a finished roadmap"""
        write_plan(ledger.planning_dir, make_plan("01", status="complete"))

        result = runner.invoke(cli, ["status", "-w", str(workspace)])

        assert result.exit_code == 0
        assert "All plans complete." in result.output

    def test_invalid_plan_shown(self, runner, workspace, ledger):
        """An invalid plan is flagged in the table instead of crashing status"""
        write_plan(ledger.planning_dir, make_plan("01", tasks=[]))

        result = runner.invoke(cli, ["status", "-w", str(workspace)])

        assert result.exit_code == 0
        assert "invalid" in result.output

    def test_missing_roadmap(self, runner, tmp_path):
        """Status fails without a roadmap"""
        result = runner.invoke(cli, ["status", "-w", str(tmp_path)])

        assert result.exit_code == 1


class TestValidateCommand:
    def test_valid_plan(self, runner, workspace, ledger):
        """A valid plan prints OK"""
        path = write_plan(ledger.planning_dir, make_plan("01"))

        result = runner.invoke(cli, ["validate", str(path), "-w", str(workspace)])

        assert result.exit_code == 0
        assert "OK: plan 01-setup/01 (1 task(s))" in result.output

    def test_invalid_plan_reports_fields(self, runner, workspace, ledger):
        """An invalid plan exits 1 and names the field"""
        path = write_plan(ledger.planning_dir, make_plan("01", tasks=[make_task("1", verify=None)]))

        result = runner.invoke(cli, ["validate", str(path), "-w", str(workspace)])

        assert result.exit_code == 1
        assert "plan.tasks[0].verify" in result.output

    def test_heal_repairs_plan(self, runner, workspace, ledger, scripted):
        """--heal runs a repair session and re-validates"""
        path = write_plan(ledger.planning_dir, make_plan("01", tasks=[make_task("1", verify=None)]))

        def repair(invocation):
            data = json.loads(path.read_text(encoding="utf-8"))
            data["tasks"][0]["verify"] = "pytest"
            path.write_text(json.dumps(data), encoding="utf-8")
            return []

        scripted.queue(repair)

        result = runner.invoke(cli, ["validate", str(path), "-w", str(workspace), "--heal"])

        assert result.exit_code == 0, result.output
        assert "OK: plan 01-setup/01" in result.output
        assert scripted.labels() == ["repair"]

    def test_heal_cap(self, runner, workspace, ledger, scripted):
        """--max-retries bounds the repair attempts"""
        path = write_plan(ledger.planning_dir, make_plan("01", tasks=[make_task("1", verify=None)]))

        result = runner.invoke(
            cli, ["validate", str(path), "-w", str(workspace), "--heal", "--max-retries", "2"]
        )

        assert result.exit_code == 1
        assert "still invalid after 2 repair attempt(s)" in result.output
        assert len(scripted.invocations) == 2


class TestResetPlanCommand:
    def test_reset_failed_plan(self, runner, workspace, ledger):
        """A failed plan and its phase go back to pending"""
        path = write_plan(ledger.planning_dir, make_plan("01", status="failed"))
        ledger.sync_phase_status(1)

        result = runner.invoke(cli, ["reset-plan", "1", "01", "-w", str(workspace)])

        assert result.exit_code == 0, result.output
        assert ledger.load_plan(path).status == Status.PENDING
        assert ledger.load_roadmap().get_phase(1).status == Status.PENDING

    def test_unknown_plan(self, runner, workspace):
        """Resetting a missing plan file fails"""
        result = runner.invoke(cli, ["reset-plan", "1", "07", "-w", str(workspace)])

        assert result.exit_code == 1
        assert "no plan file" in result.output

    def test_unknown_phase(self, runner, workspace):
        result = runner.invoke(cli, ["reset-plan", "9", "01", "-w", str(workspace)])

        assert result.exit_code == 1


class TestRunCommand:
    def test_runs_to_completion(self, runner, workspace, ledger, scripted):
        """Run completes the roadmap and writes a run log"""
        path = write_plan(ledger.planning_dir, make_plan("01"))

        def complete(invocation):
            write_summary(path)
            return [result_line("###PLAN_COMPLETE###")]

        scripted.queue(complete)

        result = runner.invoke(cli, ["run", "-w", str(workspace), "-n", "3"])

        assert result.exit_code == 0, result.output
        assert "All plans complete (1 completed this run)." in result.output
        assert list((workspace / ".planning" / "logs").glob("run-*.log"))

    def test_hard_failure_exits_nonzero(self, runner, workspace, ledger, scripted):
        """A hard failure exits 1 naming the plan"""
        write_plan(ledger.planning_dir, make_plan("01"))
        scripted.queue([result_line("###PLAN_FAILED:objective contradicts roadmap###")])

        result = runner.invoke(cli, ["run", "-w", str(workspace), "-n", "3"])

        assert result.exit_code == 1
        assert "Stopped on plan 01-setup/01" in result.output

    def test_budget_message(self, runner, workspace, ledger, scripted):
        """Running out of iterations tells the user to run again"""
        first = write_plan(ledger.planning_dir, make_plan("01"))
        write_plan(ledger.planning_dir, make_plan("02"))

        def complete(invocation):
            write_summary(first)
            return [result_line("###PLAN_COMPLETE###")]

        scripted.queue(complete)

        result = runner.invoke(cli, ["run", "-w", str(workspace), "--iterations", "1"])

        assert result.exit_code == 0
        assert "run again to resume" in result.output
