"""Pytest configuration and fixtures for planrunner tests"""

import sys
from pathlib import Path

import pytest

# Ensure src directory is in Python path before any imports
project_root = Path(__file__).resolve().parent.parent
src_path = project_root / "src"

for path in (project_root, src_path):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from planrunner.ledger.store import PlanLedger  # noqa: E402
from tests.helpers import ScriptedAgent, write_roadmap  # noqa: E402


@pytest.fixture
def workspace(tmp_path):
    """A workspace with a one-phase roadmap and no plans yet"""
    ws = tmp_path / "project"
    ws.mkdir()
    write_roadmap(ws / ".planning", [{"number": 1, "name": "Setup", "goal": "Project skeleton"}])
    return ws


@pytest.fixture
def ledger(workspace):
    """Ledger rooted at the workspace's .planning directory"""
    return PlanLedger(workspace / ".planning")


@pytest.fixture
def agent():
    """Scripted agent with no canned sessions"""
    return ScriptedAgent()
