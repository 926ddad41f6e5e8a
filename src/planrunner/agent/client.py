"""Invocation of the external coding agent (Claude CLI)."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..exceptions import ExecutionStartError
from .process import AgentProcess
from .stream_parser import StreamParser, StreamState

logger = logging.getLogger(__name__)

FALLBACK_BINARY_LOCATIONS = (
    "~/.claude/local/claude",
    "/usr/local/bin/claude",
    "/opt/homebrew/bin/claude",
)


@dataclass
class AgentInvocation:
    """Everything needed to start one agent session."""

    prompt: str
    model: str
    workdir: Path
    allowed_tools: list[str] = field(default_factory=list)
    context_files: list[Path] = field(default_factory=list)
    label: str = "execute"


@dataclass
class AgentRunResult:
    """Outcome of one streamed agent session."""

    state: StreamState
    duration_sec: float
    returncode: Optional[int] = None
    timed_out: bool = False
    cancelled: bool = False
    stderr: str = ""


class ClaudeAgent:
    """Launches the Claude CLI and feeds its stream-json output through a StreamParser."""

    def __init__(
        self,
        binary: str = "claude",
        idle_timeout_sec: Optional[float] = None,
        capture_lines: int = 200,
        max_line_bytes: Optional[int] = None,
    ):
        self.binary = binary
        self.idle_timeout_sec = idle_timeout_sec
        self.capture_lines = capture_lines
        self.max_line_bytes = max_line_bytes
        self._resolved: Optional[str] = None

    def resolve_binary(self) -> str:
        """Find the agent executable on PATH or in its usual install locations.

        Raises:
            ExecutionStartError: If it cannot be found anywhere
        """
        if self._resolved:
            return self._resolved

        found = shutil.which(self.binary)
        if found is None:
            for candidate in FALLBACK_BINARY_LOCATIONS:
                path = Path(candidate).expanduser()
                if path.is_file() and os.access(path, os.X_OK):
                    found = str(path)
                    break
        if found is None:
            raise ExecutionStartError(
                f"agent binary '{self.binary}' not found on PATH or in "
                f"{', '.join(FALLBACK_BINARY_LOCATIONS)}",
                binary=self.binary,
            )
        self._resolved = found
        return found

    def build_args(self, invocation: AgentInvocation, interactive: bool = False) -> list[str]:
        args = [self.resolve_binary()]
        if invocation.model:
            args += ["--model", invocation.model]
        if not interactive and invocation.prompt:
            args += ["-p", invocation.prompt]
        if invocation.allowed_tools:
            args += ["--allowedTools", ",".join(invocation.allowed_tools)]
        if not interactive:
            args += ["--output-format", "stream-json", "--verbose"]
        args += [str(p) for p in invocation.context_files if Path(p).exists()]
        if interactive and invocation.prompt:
            args.append(invocation.prompt)
        return args

    def run(self, invocation: AgentInvocation, cancel_on_terminal: bool = True) -> AgentRunResult:
        """Run the agent non-interactively and parse its output stream.

        Args:
            invocation: What to run and where
            cancel_on_terminal: Terminate the subprocess as soon as a failure or
                bailout sentinel is seen. Analysis runs pass False so the
                stream is read to completion.

        Raises:
            ExecutionStartError: The subprocess could not be launched
            StreamParseError: Reading or decoding the stream failed
        """
        args = self.build_args(invocation)
        logger.info(
            f"[Agent] Starting {invocation.label} session (model={invocation.model}, "
            f"tools={','.join(invocation.allowed_tools) or 'default'})"
        )

        started = time.monotonic()
        with AgentProcess(args, cwd=invocation.workdir, idle_timeout_sec=self.idle_timeout_sec) as proc:
            parser = StreamParser(
                on_terminate=(lambda _signal: proc.cancel()) if cancel_on_terminal else None,
                capture_lines=self.capture_lines,
                max_line_bytes=self.max_line_bytes,
            )
            state = parser.parse(proc.lines())
        duration = time.monotonic() - started

        result = AgentRunResult(
            state=state,
            duration_sec=duration,
            returncode=proc.returncode,
            timed_out=proc.timed_out,
            cancelled=proc.cancelled,
            stderr=proc.stderr_text,
        )
        logger.info(
            f"[Agent] {invocation.label} session ended after {duration:.1f}s "
            f"(signal={state.terminal or 'none'}, tokens={state.usage.total_tokens}, "
            f"timed_out={proc.timed_out})"
        )
        return result

    def run_interactive(self, invocation: AgentInvocation) -> int:
        """Hand the terminal to the agent for a human-in-the-loop session.

        Returns:
            The agent's exit code
        """
        args = self.build_args(invocation, interactive=True)
        logger.info(f"[Agent] Starting interactive {invocation.label} session")
        try:
            completed = subprocess.run(args, cwd=str(invocation.workdir))
        except OSError as e:
            raise ExecutionStartError(f"failed to start agent: {e}", binary=args[0]) from e
        return completed.returncode
