"""Tests for the Claude CLI invocation wrapper"""

import json
import os
import stat
import sys
from pathlib import Path

import pytest

from planrunner.agent.client import AgentInvocation, ClaudeAgent
from planrunner.agent.stream_parser import SignalKind
from planrunner.exceptions import ExecutionStartError


def fake_agent_binary(tmp_path, records, linger_sec=0):
    """Write an executable that prints the given stream-json records."""
    lines = "\n".join(json.dumps(r) for r in records)
    script = tmp_path / "fake-claude"
    script.write_text(
        f"#!{sys.executable}\n"
        "import sys, time\n"
        f"sys.stdout.write({lines!r} + '\\n')\n"
        "sys.stdout.flush()\n"
        f"time.sleep({linger_sec})\n",
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


class TestBuildArgs:
    """Command-line construction"""

    def test_non_interactive_args(self, tmp_path):
        """Streaming sessions use -p and stream-json output"""
        binary = fake_agent_binary(tmp_path, [])
        context = tmp_path / "01-01.json"
        context.write_text("{}", encoding="utf-8")
        agent = ClaudeAgent(binary=str(binary))
        invocation = AgentInvocation(
            prompt="Execute the plan",
            model="sonnet",
            workdir=tmp_path,
            allowed_tools=["Read", "Edit"],
            context_files=[context, tmp_path / "missing.json"],
        )

        args = agent.build_args(invocation)

        assert args == [
            str(binary),
            "--model",
            "sonnet",
            "-p",
            "Execute the plan",
            "--allowedTools",
            "Read,Edit",
            "--output-format",
            "stream-json",
            "--verbose",
            str(context),
        ]

    def test_interactive_args_put_prompt_last(self, tmp_path):
        """Interactive sessions take the prompt positionally and no stream flags"""
        binary = fake_agent_binary(tmp_path, [])
        agent = ClaudeAgent(binary=str(binary))

        args = agent.build_args(
            AgentInvocation(prompt="Walk me through it", model="opus", workdir=tmp_path),
            interactive=True,
        )

        assert "-p" not in args
        assert "--output-format" not in args
        assert args[-1] == "Walk me through it"


class TestResolveBinary:
    """Locating the agent executable"""

    def test_unknown_binary_raises(self, monkeypatch, tmp_path):
        """Nothing on PATH and no fallback location is a start error"""
        monkeypatch.setattr("planrunner.agent.client.FALLBACK_BINARY_LOCATIONS", ())
        monkeypatch.setenv("PATH", str(tmp_path))
        agent = ClaudeAgent(binary="definitely-not-installed-agent")

        with pytest.raises(ExecutionStartError):
            agent.resolve_binary()

    def test_fallback_location_used(self, monkeypatch, tmp_path):
        """A binary missing from PATH is found in a known install location"""
        binary = fake_agent_binary(tmp_path, [])
        monkeypatch.setenv("PATH", str(tmp_path / "empty"))
        monkeypatch.setattr("planrunner.agent.client.FALLBACK_BINARY_LOCATIONS", (str(binary),))

        agent = ClaudeAgent(binary="claude")

        assert agent.resolve_binary() == str(binary)


@pytest.mark.skipif(os.name == "nt", reason="shebang scripts are POSIX only")
class TestRun:
    """End-to-end streaming through a fake agent executable"""

    def test_run_parses_stream(self, tmp_path):
        """Signals and usage from the subprocess reach the run result"""
        binary = fake_agent_binary(
            tmp_path,
            [
                {"type": "system", "subtype": "init"},
                {
                    "type": "assistant",
                    "message": {
                        "content": [{"type": "text", "text": "all done"}],
                        "usage": {"input_tokens": 10, "output_tokens": 4},
                    },
                },
                {"type": "result", "result": "###PLAN_COMPLETE###"},
            ],
        )
        agent = ClaudeAgent(binary=str(binary), idle_timeout_sec=30)

        result = agent.run(AgentInvocation(prompt="go", model="sonnet", workdir=tmp_path))

        assert result.state.plan_complete is True
        assert result.state.usage.total_tokens == 14
        assert result.cancelled is False
        assert result.returncode == 0

    def test_failure_signal_cancels_session(self, tmp_path):
        """A failure sentinel terminates a lingering subprocess"""
        binary = fake_agent_binary(
            tmp_path,
            [{"type": "result", "result": "###BUILD_FAILED:compiler crashed###"}],
            linger_sec=60,
        )
        agent = ClaudeAgent(binary=str(binary), idle_timeout_sec=120)

        result = agent.run(AgentInvocation(prompt="go", model="sonnet", workdir=tmp_path))

        assert result.state.failure.kind == SignalKind.BUILD_FAILED
        assert result.cancelled is True
        assert result.duration_sec < 30

    def test_analysis_run_reads_to_completion(self, tmp_path):
        """Without cancel-on-terminal the whole stream is consumed"""
        binary = fake_agent_binary(
            tmp_path,
            [
                {"type": "result", "result": "###BLOCKED:ignored here###"},
                {"type": "result", "result": "final word"},
            ],
        )
        agent = ClaudeAgent(binary=str(binary), idle_timeout_sec=30)

        result = agent.run(
            AgentInvocation(prompt="analyse", model="sonnet", workdir=Path(tmp_path)),
            cancel_on_terminal=False,
        )

        assert result.cancelled is False
        assert result.state.result_text == "final word"
