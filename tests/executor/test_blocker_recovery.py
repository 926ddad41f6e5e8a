"""Tests for blocker decisions and recovery advice"""

import os
import time

import pytest

from planrunner.agent.stream_parser import StreamParser
from planrunner.exceptions import StreamParseError, ParseFailureKind
from planrunner.executor.blocker import parse_blocker_decision
from planrunner.executor.recovery import (
    MAX_LOG_CHARS,
    TRUNCATION_MARKER,
    ExecutionContext,
    RecoveryAction,
    RecoveryActionKind,
    RecoveryAdvisor,
    build_execution_context,
    load_conversation_log,
    parse_recovery_decision,
    truncate_tail,
)
from tests.helpers import assistant_line, result_line


class TestBlockerDecisionParsing:
    def test_valid(self):
        """A VALID decision carries its reason"""
        decision = parse_blocker_decision("###BLOCKER_VALID:vendor sandbox is down###")

        assert decision.valid is True
        assert decision.reason == "vendor sandbox is down"

    def test_invalid_keeps_colons(self):
        """The INVALID guidance keeps embedded colons"""
        decision = parse_blocker_decision("###BLOCKER_INVALID:see docs: section 4: retries###")

        assert decision.valid is False
        assert decision.reason == "see docs: section 4: retries"

    def test_multiline_reason(self):
        """The reason may run over several lines"""
        decision = parse_blocker_decision("###BLOCKER_INVALID:mock the client\nsee tests/fakes.py###")

        assert decision.valid is False
        assert decision.reason == "mock the client\nsee tests/fakes.py"

    def test_repeated_same_decision(self):
        """Repeating the same decision is not a contradiction"""
        decision = parse_blocker_decision("###BLOCKER_VALID:x###\n###BLOCKER_VALID:x###")

        assert decision.valid is True

    @pytest.mark.parametrize(
        "text",
        ["", "no marker here", "###BLOCKER_VALID:a### ###BLOCKER_INVALID:b###"],
    )
    def test_missing_or_contradictory(self, text):
        """No decision, or both decisions, yields None"""
        assert parse_blocker_decision(text) is None


class TestRecoveryDecisionParsing:
    def test_parses_action_and_guidance(self):
        """Action and guidance split on the first colon only"""
        action = parse_recovery_decision(
            "thinking...\n###RECOVERY:break-chunks:split task 3 into: schema, then migration###"
        )

        assert action == RecoveryAction(
            RecoveryActionKind.BREAK_CHUNKS, "split task 3 into: schema, then migration"
        )
        assert action.render() == (
            "Recovery: break-chunks | split task 3 into: schema, then migration"
        )

    def test_multiline_guidance(self):
        """Guidance spanning lines is kept whole"""
        action = parse_recovery_decision("###RECOVERY:fix-state:reset task 2\nthen rerun the build###")

        assert action == RecoveryAction(RecoveryActionKind.FIX_STATE, "reset task 2\nthen rerun the build")

    def test_unknown_action_skipped(self):
        """Unknown actions are skipped in favour of a later valid one"""
        action = parse_recovery_decision(
            "###RECOVERY:panic:run away### ###RECOVERY:fix-state:reset task 2 status###"
        )

        assert action.action == RecoveryActionKind.FIX_STATE

    @pytest.mark.parametrize("text", ["", "###RECOVERY:retry###", "###RECOVERY###"])
    def test_malformed(self, text):
        """A recovery marker without guidance is ignored"""
        assert parse_recovery_decision(text) is None


class TestExecutionContext:
    def test_truncate_tail(self):
        assert truncate_tail("abc", 5) == "abc"
        assert truncate_tail("abcdef", 3) == TRUNCATION_MARKER + "def"

    def test_prompt_block_truncates_logs(self):
        """Long captured logs are cut to their tail in the prompt"""
        context = ExecutionContext(error="boom", captured_logs="x" * (MAX_LOG_CHARS + 500))

        block = context.to_prompt_block()

        assert TRUNCATION_MARKER in block
        assert "Error: boom" in block
        assert "Last tool invoked: unknown" in block

    def test_built_from_stream_state(self, tmp_path):
        """Context picks up the failure signal and recent output"""
        state = StreamParser().parse(
            [assistant_line("compiling", tool="Bash"), result_line("###BUILD_FAILED:linker###")]
        )

        context = build_execution_context("build failed", state, tmp_path, home=tmp_path / "home")

        assert context.last_tool == "Bash"
        assert context.failure_signal == "BUILD_FAILED:linker"
        assert "compiling" in context.captured_logs
        assert context.conversation_log == ""
        assert context.to_dict()["error"] == "build failed"

    def test_built_without_state(self, tmp_path):
        """Start failures produce a context with no logs"""
        context = build_execution_context("could not start", None, tmp_path, home=tmp_path)

        assert context.captured_logs == ""
        assert context.failure_signal is None


class TestConversationLog:
    def test_newest_log_used(self, tmp_path):
        """The most recently modified conversation log is loaded"""
        workdir = tmp_path / "myproj"
        workdir.mkdir()
        conversations = tmp_path / "home" / ".claude" / "projects" / "myproj" / "conversations"
        conversations.mkdir(parents=True)
        old = conversations / "a.jsonl"
        new = conversations / "b.jsonl"
        old.write_text("old session", encoding="utf-8")
        new.write_text("new session", encoding="utf-8")
        past = time.time() - 100
        os.utime(old, (past, past))

        assert load_conversation_log(workdir, home=tmp_path / "home") == "new session"

    def test_missing_directory(self, tmp_path):
        """No conversation directory gives empty text"""
        assert load_conversation_log(tmp_path, home=tmp_path / "nowhere") == ""


class TestRecoveryAdvisor:
    def make_advisor(self, agent, workspace):
        return RecoveryAdvisor(agent, model="sonnet", tools=["Read", "Grep"], workdir=workspace)

    def test_advice_returned(self, agent, workspace):
        """The advisor returns the parsed recovery action"""
        agent.queue([result_line("###RECOVERY:retry:the binary path was transient###")])

        action = self.make_advisor(agent, workspace).advise(ExecutionContext(error="spawn failed"))

        assert action.action == RecoveryActionKind.RETRY
        invocation, cancel_on_terminal = agent.invocations[0]
        assert invocation.label == "recovery"
        assert "spawn failed" in invocation.prompt
        assert cancel_on_terminal is False

    def test_session_failure_gives_no_advice(self, agent, workspace):
        """A failed advisory session gives no advice rather than raising"""
        agent.queue(StreamParseError(ParseFailureKind.READ_ERROR, "pipe closed"))

        assert self.make_advisor(agent, workspace).advise(ExecutionContext(error="x")) is None

    def test_no_decision(self, agent, workspace):
        """A session without a recovery marker gives no advice"""
        agent.queue([result_line("I am not sure")])

        assert self.make_advisor(agent, workspace).advise(ExecutionContext(error="x")) is None
