"""Wires settings into a ready-to-run loop controller."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .agent.client import ClaudeAgent
from .config import RunnerSettings
from .executor.analysis import PostRunAnalyzer
from .executor.blocker import BlockerVerifier
from .executor.outcome import OutcomeClassifier
from .executor.plan_executor import PlanExecutor
from .executor.recovery import RecoveryAdvisor
from .ledger.self_heal import SelfHealer
from .ledger.store import PlanLedger
from .scheduler.loop import LoopController
from .scheduler.special_plans import PlanBundler


@dataclass
class Runner:
    settings: RunnerSettings
    workspace: Path
    ledger: PlanLedger
    agent: ClaudeAgent
    healer: SelfHealer
    controller: LoopController


def build_runner(settings: RunnerSettings, workspace: Path, agent=None) -> Runner:
    """Assemble every component for ``workspace``.

    Args:
        settings: Loaded settings
        workspace: Directory the agent works in
        agent: Override the agent (tests pass a scripted fake)
    """
    workspace = Path(workspace).resolve()
    planning_dir = settings.planning_path(workspace)
    ledger = PlanLedger(planning_dir)
    agent = agent or ClaudeAgent(
        binary=settings.agent_binary,
        idle_timeout_sec=settings.idle_timeout_sec,
        capture_lines=settings.capture_lines,
        max_line_bytes=settings.max_line_bytes,
    )

    healer = SelfHealer(
        ledger,
        agent,
        model=settings.model,
        tools=settings.repair_tools,
        workdir=workspace,
        max_retries=settings.heal_max_retries,
    )
    verifier = BlockerVerifier(
        agent,
        model=settings.blocker_model,
        tools=settings.advisory_tools,
        workdir=workspace,
        planning_dir=planning_dir,
    )
    advisor = RecoveryAdvisor(agent, model=settings.model, tools=settings.advisory_tools, workdir=workspace)
    classifier = OutcomeClassifier(ledger, verifier, token_threshold=settings.token_threshold)
    executor = PlanExecutor(
        ledger,
        agent,
        classifier,
        model=settings.model,
        tools=settings.allowed_tools,
        workdir=workspace,
        recovery_advisor=advisor,
        interactive_manual_plans=settings.interactive_manual_plans,
    )
    analyzer = PostRunAnalyzer(
        ledger, agent, model=settings.model, tools=settings.analysis_tools, workdir=workspace
    )
    controller = LoopController(
        ledger,
        executor,
        PlanBundler(ledger),
        analyzer=analyzer,
        healer=healer,
        max_retries=settings.max_retries,
    )
    return Runner(settings, workspace, ledger, agent, healer, controller)
