"""Signal stream parser for the agent's newline-delimited JSON output.

Each line is one event record:

    {"type": "assistant", "message": {"content": [{"type": "text", "text": "..."},
                                                  {"type": "tool_use", "name": "Edit"}],
                                      "usage": {"input_tokens": 10, "output_tokens": 5}}}
    {"type": "result", "result": "..."}

Text fragments from either record shape are scanned for sentinel tokens of the
form ``###TOKEN[:detail]###``. The detail runs up to the closing ``###`` and may
contain colons.
"""

from __future__ import annotations

import json
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional

from ..exceptions import ParseFailureKind, StreamParseError

logger = logging.getLogger(__name__)


class SignalKind(str, Enum):
    """Machine-actionable sentinel tokens emitted by the agent."""

    PLAN_COMPLETE = "PLAN_COMPLETE"
    BAILOUT = "BAILOUT"
    PLAN_FAILED = "PLAN_FAILED"
    TASK_FAILED = "TASK_FAILED"
    BUILD_FAILED = "BUILD_FAILED"
    TEST_FAILED = "TEST_FAILED"
    BLOCKED = "BLOCKED"


FAILURE_KINDS = frozenset(
    {
        SignalKind.PLAN_FAILED,
        SignalKind.TASK_FAILED,
        SignalKind.BUILD_FAILED,
        SignalKind.TEST_FAILED,
        SignalKind.BLOCKED,
    }
)
# Checked before failure kinds within one fragment.
PRIORITY_KINDS = (SignalKind.PLAN_COMPLETE, SignalKind.BAILOUT)


def sentinel_pattern(tokens: Iterable[str]) -> re.Pattern:
    """Compile a ``###TOKEN[:detail]###`` matcher for the given token names.

    The detail may span lines; it runs up to the first closing ``###``.
    """
    alternation = "|".join(re.escape(t) for t in tokens)
    return re.compile(rf"###({alternation})(?::(.*?))?###", re.DOTALL)


SENTINEL_RE = sentinel_pattern(kind.value for kind in SignalKind)


@dataclass(frozen=True)
class Signal:
    kind: SignalKind
    detail: str = ""

    @property
    def is_failure(self) -> bool:
        return self.kind in FAILURE_KINDS

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.detail}" if self.detail else self.kind.value


@dataclass
class TokenUsage:
    """Cumulative token counters from assistant event payloads."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, usage: dict) -> None:
        self.input_tokens += _as_int(usage.get("input_tokens"))
        self.output_tokens += _as_int(usage.get("output_tokens"))
        self.cache_read_tokens += _as_int(usage.get("cache_read_input_tokens"))


@dataclass
class StreamState:
    """Everything the parser learned from one execution's output."""

    terminal: Optional[Signal] = None
    signals: list[Signal] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    captured: deque = field(default_factory=lambda: deque(maxlen=200))
    last_tool: Optional[str] = None
    last_text: str = ""
    result_text: Optional[str] = None
    lines_read: int = 0
    malformed_lines: int = 0
    cancel_requested: bool = False

    @property
    def failure(self) -> Optional[Signal]:
        if self.terminal is not None and self.terminal.is_failure:
            return self.terminal
        return None

    @property
    def plan_complete(self) -> bool:
        return self.terminal is not None and self.terminal.kind == SignalKind.PLAN_COMPLETE

    @property
    def bailout(self) -> Optional[Signal]:
        if self.terminal is not None and self.terminal.kind == SignalKind.BAILOUT:
            return self.terminal
        return None

    @property
    def last_output(self) -> str:
        """Final result string if the agent produced one, else the last text fragment."""
        return self.result_text if self.result_text is not None else self.last_text

    def captured_text(self) -> str:
        return "\n".join(self.captured)


def find_signal(text: str) -> Optional[Signal]:
    """Pick the signal a single text fragment carries.

    PLAN_COMPLETE and BAILOUT take precedence over failure sentinels in the
    same fragment; otherwise the first match wins.
    """
    matches = [
        Signal(SignalKind(m.group(1)), m.group(2) or "") for m in SENTINEL_RE.finditer(text)
    ]
    if not matches:
        return None
    for kind in PRIORITY_KINDS:
        for signal in matches:
            if signal.kind == kind:
                return signal
    return matches[0]


class StreamParser:
    """Incremental parser; feed it one line at a time or a whole iterable.

    Args:
        on_terminate: Called once when a failure or bailout sentinel becomes
            the terminal signal. Omit it to read the stream to completion.
        capture_lines: Size of the ring buffer of recent text kept for diagnostics
        max_line_bytes: Optional hard limit on a single line. ``None`` accepts
            lines of any length.
    """

    def __init__(
        self,
        on_terminate: Optional[Callable[[Signal], None]] = None,
        capture_lines: int = 200,
        max_line_bytes: Optional[int] = None,
    ):
        self.on_terminate = on_terminate
        self.max_line_bytes = max_line_bytes
        self.state = StreamState(captured=deque(maxlen=capture_lines))

    def parse(self, lines: Iterable[str]) -> StreamState:
        """Consume every line (or stop early once cancellation was requested)."""
        try:
            for line in lines:
                self.feed_line(line)
                if self.state.cancel_requested:
                    break
        except StreamParseError as e:
            if e.state is None:
                e.state = self.state
            raise
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise StreamParseError(ParseFailureKind.READ_ERROR, str(e), state=self.state) from e
        return self.state

    def feed_line(self, line: str) -> None:
        self.state.lines_read += 1
        if self.max_line_bytes is not None and len(line.encode("utf-8", "replace")) > self.max_line_bytes:
            raise StreamParseError(
                ParseFailureKind.OVERSIZED_LINE,
                f"line {self.state.lines_read} exceeds {self.max_line_bytes} bytes",
                state=self.state,
            )

        line = line.strip()
        if not line:
            return
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            self.state.malformed_lines += 1
            logger.debug(f"[StreamParser] Skipping malformed line {self.state.lines_read}")
            return
        if not isinstance(event, dict):
            self.state.malformed_lines += 1
            return

        event_type = event.get("type")
        if event_type == "assistant":
            self._handle_assistant(event.get("message"))
        elif event_type == "result":
            result = event.get("result")
            if isinstance(result, str):
                self.state.result_text = result
                self._handle_text(result)

    def _handle_assistant(self, message) -> None:
        if not isinstance(message, dict):
            return
        usage = message.get("usage")
        if isinstance(usage, dict):
            self.state.usage.add(usage)

        content = message.get("content")
        if not isinstance(content, list):
            return
        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "tool_use":
                name = block.get("name")
                if isinstance(name, str):
                    self.state.last_tool = name
                    self.state.captured.append(f"[tool] {name}")
            elif block_type == "text":
                text = block.get("text")
                if isinstance(text, str):
                    self.state.last_text = text
                    self._handle_text(text)

    def _handle_text(self, text: str) -> None:
        for chunk in text.splitlines():
            if chunk.strip():
                self.state.captured.append(chunk)

        signal = find_signal(text)
        if signal is None:
            return
        self.state.signals.append(signal)
        if self.state.terminal is not None:
            return

        self.state.terminal = signal
        logger.info(f"[StreamParser] Detected signal {signal}")
        if signal.kind != SignalKind.PLAN_COMPLETE and self.on_terminate is not None:
            self.state.cancel_requested = True
            self.on_terminate(signal)


def _as_int(value) -> int:
    return value if isinstance(value, int) else 0
