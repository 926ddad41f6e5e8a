"""planrunner command-line interface.

Commands:
    planrunner run          execute plans until the roadmap is done
    planrunner status       show phases, plans and the next plan
    planrunner validate     check (and optionally repair) one plan file
    planrunner reset-plan   put a failed plan back to pending
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .config import load_settings
from .exceptions import (
    LedgerError,
    LoopAbortError,
    PlanRunnerError,
    RecordValidationError,
    SelfHealExhaustedError,
)
from .ledger.schemas import RecordKind, Status
from .ledger.store import PlanLedger
from .logging_config import configure_logging
from .runner import build_runner

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    Status.PENDING: "dim",
    Status.IN_PROGRESS: "yellow",
    Status.COMPLETE: "green",
    Status.FAILED: "red",
}

workspace_option = click.option(
    "--workspace",
    "-w",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Workspace the agent works in",
)


@click.group()
@click.version_option(package_name="planrunner", prog_name="planrunner")
def cli() -> None:
    """planrunner - drive a coding agent through a roadmap of plans.

    Run `planrunner <command> --help` for command-specific help.
    """
    pass


@cli.command(name="run")
@workspace_option
@click.option("--iterations", "-n", type=int, default=None, help="Maximum plans to attempt")
@click.option("--max-retries", type=int, default=None, help="Soft-failure retries per plan (0 = iteration budget)")
@click.option("--skip-analysis", is_flag=True, default=False, help="Skip post-execution analysis")
@click.option("--model", default=None, help="Model for execution sessions")
@click.option("--json-logs", is_flag=True, default=False, help="Emit structured JSON logs")
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
def run_command(
    workspace: Path,
    iterations: Optional[int],
    max_retries: Optional[int],
    skip_analysis: bool,
    model: Optional[str],
    json_logs: bool,
    log_level: Optional[str],
) -> None:
    """Execute plans until the roadmap is complete or the budget runs out."""
    settings = load_settings(
        workspace, max_iterations=iterations, max_retries=max_retries, model=model
    )
    configure_logging(
        run_id=f"run-{uuid.uuid4().hex[:8]}",
        workspace=workspace,
        log_level=log_level,
        structured=json_logs,
        planning_dir=settings.planning_dir,
    )

    runner = build_runner(settings, workspace)
    try:
        report = runner.controller.run(
            settings.max_iterations, skip_analysis=skip_analysis or settings.skip_analysis
        )
    except LoopAbortError as e:
        click.echo(f"Stopped on plan {e.plan_id}: {e}", err=True)
        raise SystemExit(1)
    except PlanRunnerError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if report.finished:
        click.echo(f"All plans complete ({len(report.completed)} completed this run).")
    else:
        click.echo(
            f"Iteration budget reached after {report.iterations} iteration(s); "
            "run again to resume."
        )


@cli.command(name="status")
@workspace_option
def status_command(workspace: Path) -> None:
    """Show phases, plan statuses and the next plan to run."""
    settings = load_settings(workspace)
    ledger = PlanLedger(settings.planning_path(workspace))
    console = Console()

    try:
        roadmap = ledger.load_roadmap()
    except LedgerError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    table = Table(title=roadmap.project_name or "Roadmap")
    table.add_column("Phase", justify="right")
    table.add_column("Plan")
    table.add_column("Status")
    table.add_column("Objective")

    for phase in sorted(roadmap.phases, key=lambda p: p.number):
        table.add_row(
            str(phase.number),
            f"[bold]{phase.name}[/bold]",
            _styled(phase.status),
            phase.goal,
        )
        try:
            plans = ledger.load_all_plans(phase)
        except RecordValidationError as e:
            table.add_row("", "?", "[red]invalid[/red]", str(e))
            continue
        for _, plan in plans:
            table.add_row("", plan.plan_number, _styled(plan.status), plan.objective)

    console.print(table)

    try:
        upcoming = ledger.find_next_plan()
    except LedgerError as e:
        console.print(f"[red]Cannot determine next plan:[/red] {e}")
        return
    if upcoming is None:
        console.print("[green]All plans complete.[/green]")
    else:
        _, _, plan = upcoming
        console.print(f"Next: [bold]{plan.identity}[/bold] ({plan.status.value})")


@cli.command(name="validate")
@click.argument("plan_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@workspace_option
@click.option("--heal/--no-heal", default=False, help="Ask the agent to repair an invalid plan")
@click.option("--max-retries", type=int, default=None, help="Repair attempts (0 = unbounded)")
def validate_command(plan_path: Path, workspace: Path, heal: bool, max_retries: Optional[int]) -> None:
    """Validate a plan file against the plan schema."""
    settings = load_settings(workspace, heal_max_retries=max_retries)
    ledger = PlanLedger(settings.planning_path(workspace))

    try:
        plan = ledger.load_plan(plan_path)
    except RecordValidationError as e:
        click.echo(e.report.to_prompt(), err=True)
        if not heal:
            raise SystemExit(1)
        configure_logging(workspace=workspace, log_to_file=False, planning_dir=settings.planning_dir)
        runner = build_runner(settings, workspace)
        try:
            plan = runner.healer.validate_and_heal(plan_path, RecordKind.PLAN)
        except SelfHealExhaustedError as exhausted:
            click.echo(f"Error: {exhausted}", err=True)
            raise SystemExit(1)
        except PlanRunnerError as err:
            click.echo(f"Error: {err}", err=True)
            raise SystemExit(1)
    except LedgerError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"OK: plan {plan.identity} ({len(plan.tasks)} task(s))")


@cli.command(name="reset-plan")
@click.argument("phase_number", type=int)
@click.argument("plan_number")
@workspace_option
def reset_plan_command(phase_number: int, plan_number: str, workspace: Path) -> None:
    """Reset a failed plan to pending so the loop will run it again."""
    settings = load_settings(workspace)
    ledger = PlanLedger(settings.planning_path(workspace))
    try:
        roadmap = ledger.load_roadmap()
        phase = roadmap.get_phase(phase_number)
        if phase is None:
            click.echo(f"Error: phase {phase_number} not in roadmap", err=True)
            raise SystemExit(1)
        path = ledger.plan_path(phase, plan_number)
        if not path.exists():
            click.echo(f"Error: no plan file at {path}", err=True)
            raise SystemExit(1)
        plan = ledger.reset_plan(path)
        ledger.sync_phase_status(phase_number)
    except LedgerError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Plan {plan.identity} reset to pending.")


def _styled(status: Status) -> str:
    style = STATUS_STYLES.get(status, "")
    return f"[{style}]{status.value}[/{style}]" if style else status.value


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
