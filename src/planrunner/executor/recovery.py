"""Recovery advice for executions that terminated abnormally.

When the agent could not be started, its stream could not be parsed, or it
reported a verified hard failure, an ``ExecutionContext`` is assembled and a
read-only advisory session is asked for one ``###RECOVERY:<action>:<guidance>###``
decision. The advice is never applied automatically; it is carried into the
next attempt's prompt as guidance and surfaced to the operator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..agent.client import AgentInvocation
from ..agent.stream_parser import StreamState, sentinel_pattern
from ..exceptions import AgentError
from ..prompts import recovery_prompt

logger = logging.getLogger(__name__)

MAX_LOG_CHARS = 10_000
MAX_CONVERSATION_CHARS = 50_000
TRUNCATION_MARKER = "...[truncated]...\n"

RECOVERY_RE = sentinel_pattern(["RECOVERY"])


class RecoveryActionKind(str, Enum):
    RETRY = "retry"
    FIX_STATE = "fix-state"
    BREAK_CHUNKS = "break-chunks"
    SKIP = "skip"
    MANUAL = "manual"


@dataclass(frozen=True)
class RecoveryAction:
    action: RecoveryActionKind
    guidance: str

    def render(self) -> str:
        return f"Recovery: {self.action.value} | {self.guidance}"


@dataclass
class ExecutionContext:
    """Diagnostic bundle built only when an execution terminates abnormally."""

    error: str
    captured_logs: str = ""
    last_tool: Optional[str] = None
    failure_signal: Optional[str] = None
    conversation_log: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error,
            "captured_logs": self.captured_logs,
            "last_tool": self.last_tool,
            "failure_signal": self.failure_signal,
            "conversation_log": self.conversation_log,
        }

    def to_prompt_block(self) -> str:
        parts = [
            f"Error: {self.error}",
            f"Failure signal: {self.failure_signal or 'none'}",
            f"Last tool invoked: {self.last_tool or 'unknown'}",
            "",
            "Captured output:",
            truncate_tail(self.captured_logs, MAX_LOG_CHARS) or "(none)",
        ]
        if self.conversation_log:
            parts += ["", "Agent conversation log:", self.conversation_log]
        return "\n".join(parts)


def truncate_tail(text: str, limit: int) -> str:
    """Keep the last ``limit`` characters, marking the cut."""
    if len(text) <= limit:
        return text
    return TRUNCATION_MARKER + text[-limit:]


def load_conversation_log(workdir: Path, home: Optional[Path] = None) -> str:
    """Newest conversation log the agent kept for this workspace, or "".

    Looks in ``~/.claude/projects/<workspace name>/conversations/``.
    """
    home = home or Path.home()
    conversations = home / ".claude" / "projects" / Path(workdir).resolve().name / "conversations"
    if not conversations.is_dir():
        return ""
    try:
        files = [p for p in conversations.iterdir() if p.is_file()]
        if not files:
            return ""
        newest = max(files, key=lambda p: p.stat().st_mtime)
        content = newest.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"[Recovery] Cannot read conversation logs in {conversations}: {e}")
        return ""
    return truncate_tail(content, MAX_CONVERSATION_CHARS)


def build_execution_context(
    error: str,
    state: Optional[StreamState],
    workdir: Path,
    home: Optional[Path] = None,
) -> ExecutionContext:
    context = ExecutionContext(error=error, conversation_log=load_conversation_log(workdir, home))
    if state is not None:
        context.captured_logs = state.captured_text()
        context.last_tool = state.last_tool
        if state.terminal is not None:
            context.failure_signal = str(state.terminal)
    return context


def parse_recovery_decision(text: str) -> Optional[RecoveryAction]:
    """Extract the first well-formed ``###RECOVERY:<action>:<guidance>###`` decision."""
    for match in RECOVERY_RE.finditer(text or ""):
        payload = match.group(2) or ""
        action, sep, guidance = payload.partition(":")
        if not sep:
            continue
        try:
            kind = RecoveryActionKind(action.strip().lower())
        except ValueError:
            logger.warning(f"[Recovery] Ignoring unknown recovery action '{action}'")
            continue
        return RecoveryAction(kind, guidance.strip())
    return None


class RecoveryAdvisor:
    """Asks a read-only agent session how to recover from an abnormal termination."""

    def __init__(self, agent, model: str, tools: list[str], workdir: Path):
        self.agent = agent
        self.model = model
        self.tools = tools
        self.workdir = workdir

    def advise(self, context: ExecutionContext) -> Optional[RecoveryAction]:
        invocation = AgentInvocation(
            prompt=recovery_prompt(context.to_prompt_block()),
            model=self.model,
            workdir=self.workdir,
            allowed_tools=list(self.tools),
            label="recovery",
        )
        try:
            run = self.agent.run(invocation, cancel_on_terminal=False)
        except AgentError as e:
            logger.warning(f"[Recovery] Advisory session failed: {e}")
            return None

        text = run.state.captured_text() + "\n" + run.state.last_output
        action = parse_recovery_decision(text)
        if action is None:
            logger.warning("[Recovery] Advisory session gave no recovery decision")
        else:
            logger.info(f"[Recovery] Advice: {action.render()}")
        return action
