"""Agent execution engine: subprocess scope, invocation, and signal stream parsing."""

from .client import AgentInvocation, AgentRunResult, ClaudeAgent
from .process import AgentProcess
from .stream_parser import (
    FAILURE_KINDS,
    Signal,
    SignalKind,
    StreamParser,
    StreamState,
    TokenUsage,
    sentinel_pattern,
)

__all__ = [
    "AgentInvocation",
    "AgentProcess",
    "AgentRunResult",
    "ClaudeAgent",
    "FAILURE_KINDS",
    "Signal",
    "SignalKind",
    "StreamParser",
    "StreamState",
    "TokenUsage",
    "sentinel_pattern",
]
