"""Runner settings.

Values come from (highest priority first): explicit overrides, the workspace
config file ``.planrunner/config.yaml``, ``PLANRUNNER_*`` environment
variables, a ``.env`` file, and the defaults below.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_RELATIVE_PATH = Path(".planrunner") / "config.yaml"

DEFAULT_ALLOWED_TOOLS = [
    "Read",
    "Write",
    "Edit",
    "Bash",
    "Glob",
    "Grep",
    "Task",
    "TodoWrite",
    "WebFetch",
    "WebSearch",
]


class RunnerSettings(BaseSettings):
    """Settings for one workspace."""

    model_config = SettingsConfigDict(
        env_prefix="PLANRUNNER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Agent
    agent_binary: str = "claude"
    model: str = "sonnet"
    blocker_model: str = "opus"
    allowed_tools: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))
    analysis_tools: list[str] = Field(
        default_factory=lambda: ["Read", "Write", "Edit", "Glob", "Grep", "Bash"]
    )
    advisory_tools: list[str] = Field(default_factory=lambda: ["Read", "Glob", "Grep"])
    repair_tools: list[str] = Field(default_factory=lambda: ["Read", "Edit"])

    # Ledger
    planning_dir: str = ".planning"

    # Loop budgets (0 means "use the iteration budget" / "unbounded")
    max_iterations: int = Field(10, ge=1)
    max_retries: int = Field(0, ge=0)
    heal_max_retries: int = Field(0, ge=0)

    # Stream / process
    token_threshold: int = Field(120_000, ge=1)
    inactivity_timeout_minutes: float = Field(60, ge=0)
    capture_lines: int = Field(200, ge=1)
    max_line_bytes: Optional[int] = Field(None, ge=1)

    # Behaviour
    interactive_manual_plans: bool = True
    skip_analysis: bool = False

    @property
    def idle_timeout_sec(self) -> Optional[float]:
        if not self.inactivity_timeout_minutes:
            return None
        return self.inactivity_timeout_minutes * 60

    def planning_path(self, workspace: Path) -> Path:
        path = Path(self.planning_dir)
        return path if path.is_absolute() else workspace / path


def read_config_file(workspace: Path) -> dict[str, Any]:
    """Load ``.planrunner/config.yaml``, falling back to {} when missing or malformed."""
    config_path = workspace / CONFIG_RELATIVE_PATH
    if not config_path.exists():
        return {}

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading {config_path}: {e}, using defaults")
        return {}

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(f"{config_path} does not contain a mapping, using defaults")
        return {}

    known = set(RunnerSettings.model_fields)
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown keys in {config_path}: {', '.join(unknown)}")
    return {k: v for k, v in data.items() if k in known}


def load_settings(workspace: Path, **overrides: Any) -> RunnerSettings:
    """Build settings for ``workspace``.

    ``overrides`` with a value of None are ignored so CLI options that were not
    given do not mask the config file.
    """
    values = read_config_file(Path(workspace))
    values.update({k: v for k, v in overrides.items() if v is not None})
    return RunnerSettings(**values)
