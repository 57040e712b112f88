"""Tests for stages.agent: resolver, retry policy, invoker."""

import os
import threading

import pytest

from conftest import FAILING_AGENT, WRITE_LICENSE_AGENT, make_settings, write_script
from core.errors import ProcessSpawnFailed
from core.state import ProcessResult, WorkingCopy
from stages.agent import AgentInvoker, AgentResolver, RetryPolicy


def _result(exit_code=0, timed_out=False, cancelled=False):
    return ProcessResult(command=["agent"], exit_code=exit_code, stdout="", stderr="",
                         timed_out=timed_out, cancelled=cancelled)


# ---------------------------------------------------------------------------
# AgentResolver
# ---------------------------------------------------------------------------

class TestResolver:
    def test_override_path(self, tmp_path):
        agent = write_script(tmp_path / "my-agent", "print('hi')\n")
        assert AgentResolver(candidates=[], override=agent).resolve() == agent

    def test_override_on_path(self, tmp_path, monkeypatch):
        write_script(tmp_path / "my-agent", "print('hi')\n")
        monkeypatch.setenv("PATH", str(tmp_path))
        assert AgentResolver(override="my-agent").resolve() == str(tmp_path / "my-agent")

    def test_missing_override_raises(self, tmp_path):
        with pytest.raises(ProcessSpawnFailed, match="not executable") as info:
            AgentResolver(override=str(tmp_path / "nope")).resolve()
        assert info.value.stage == "agent"

    def test_first_available_candidate_wins(self, tmp_path):
        second = write_script(tmp_path / "second", "")
        third = write_script(tmp_path / "third", "")
        resolver = AgentResolver(candidates=[str(tmp_path / "first"), second, third])
        assert resolver.resolve() == second

    def test_no_candidate(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PATH", str(tmp_path))
        with pytest.raises(ProcessSpawnFailed, match="Tried: claude-code, nothing-here"):
            AgentResolver(candidates=["claude-code", "nothing-here"]).resolve()

    def test_result_is_cached_until_reset(self, tmp_path):
        path = tmp_path / "agent"
        agent = write_script(path, "")
        resolver = AgentResolver(candidates=[agent])
        assert resolver.resolve() == agent
        path.unlink()
        assert resolver.resolve() == agent
        resolver.reset()
        with pytest.raises(ProcessSpawnFailed):
            resolver.resolve()

    def test_non_executable_candidate_skipped(self, tmp_path):
        plain = tmp_path / "plain"
        plain.write_text("x")
        with pytest.raises(ProcessSpawnFailed):
            AgentResolver(candidates=[str(plain)]).resolve()


# ---------------------------------------------------------------------------
# RetryPolicy
# ---------------------------------------------------------------------------

class TestRetryPolicy:
    def test_single_attempt_never_retries(self):
        assert not RetryPolicy().should_retry(1, _result(exit_code=1))

    def test_retries_failures_up_to_limit(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.should_retry(1, _result(exit_code=1))
        assert policy.should_retry(2, _result(exit_code=1))
        assert not policy.should_retry(3, _result(exit_code=1))

    def test_success_timeout_and_cancel_not_retried(self):
        policy = RetryPolicy(max_attempts=3)
        assert not policy.should_retry(1, _result())
        assert not policy.should_retry(1, _result(exit_code=-15, timed_out=True))
        assert not policy.should_retry(1, _result(exit_code=-15, cancelled=True))

    def test_linear_backoff(self):
        policy = RetryPolicy(max_attempts=3, backoff=2)
        assert policy.delay(1) == 2
        assert policy.delay(2) == 4

    @pytest.mark.parametrize("attempts", [0, 6])
    def test_bounds(self, attempts):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=attempts)


# ---------------------------------------------------------------------------
# AgentInvoker
# ---------------------------------------------------------------------------

class TestInvoker:
    def _invoker(self, tmp_path, body, **overrides):
        agent = write_script(tmp_path / "agent", body)
        settings = make_settings(tmp_path, agent_command=agent, **overrides)
        return AgentInvoker(settings, sleep=lambda s: None)

    def test_build_command_appends_instruction_last(self, tmp_path):
        invoker = self._invoker(tmp_path, "", agent_args=["--print"])
        command = invoker.build_command("do it; rm -rf /")
        assert command[1:] == ["--print", "do it; rm -rf /"]

    def test_success_in_working_copy(self, tmp_path):
        invoker = self._invoker(tmp_path, WRITE_LICENSE_AGENT)
        work = tmp_path / "work"
        work.mkdir()
        result = invoker.run("add a LICENSE file", WorkingCopy(path=str(work)))
        assert result.success
        assert result.stage == "agent"
        assert "agent done" in result.output
        assert (work / "LICENSE").exists()
        assert (work / "INSTRUCTION.txt").read_text() == "add a LICENSE file"
        assert result.details["exitCode"] == 0
        assert result.details["attempts"] == 1
        assert result.details["command"] == "agent"

    def test_failure(self, tmp_path):
        invoker = self._invoker(tmp_path, FAILING_AGENT)
        result = invoker.run("x", WorkingCopy(path=str(tmp_path)))
        assert result.success is False
        assert result.error_kind == "AgentFailed"
        assert result.error == "agent exited with code 1"
        assert "cannot do that" in result.output

    def test_timeout(self, tmp_path):
        invoker = self._invoker(tmp_path, "import time\ntime.sleep(30)\n")
        result = invoker.run("x", WorkingCopy(path=str(tmp_path)), timeout=1)
        assert result.success is False
        assert result.timed_out is True
        assert result.error_kind == "AgentTimedOut"
        assert result.details["attempts"] == 1

    def test_retries_then_succeeds(self, tmp_path):
        counter = tmp_path / "count"
        body = (
            "import pathlib, sys\n"
            f"p = pathlib.Path({str(counter)!r})\n"
            "n = int(p.read_text()) + 1 if p.exists() else 1\n"
            "p.write_text(str(n))\n"
            "sys.exit(0 if n >= 2 else 1)\n"
        )
        invoker = self._invoker(tmp_path, body, agent_max_attempts=3)
        result = invoker.run("x", WorkingCopy(path=str(tmp_path)))
        assert result.success
        assert result.details["attempts"] == 2
        assert "attempt 1 (exit 1)" in result.output

    def test_cancel_stops_agent(self, tmp_path):
        invoker = self._invoker(tmp_path, "import time\ntime.sleep(30)\n")
        cancel = threading.Event()
        timer = threading.Timer(0.5, cancel.set)
        timer.start()
        try:
            result = invoker.run("x", WorkingCopy(path=str(tmp_path)), cancel_event=cancel)
        finally:
            timer.cancel()
        assert result.success is False
        assert result.error == "agent cancelled"

    def test_api_key_passed_only_to_agent(self, tmp_path, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        body = "import os\nprint(os.environ.get('ANTHROPIC_API_KEY'))\n"
        invoker = self._invoker(tmp_path, body, anthropic_api_key="sk-test")
        result = invoker.run("x", WorkingCopy(path=str(tmp_path)))
        assert "sk-test" in result.output
        assert "ANTHROPIC_API_KEY" not in os.environ

    def test_empty_instruction_rejected(self, tmp_path):
        invoker = self._invoker(tmp_path, "")
        with pytest.raises(ValueError):
            invoker.run("  ", WorkingCopy(path=str(tmp_path)))

    def test_missing_agent_raises(self, tmp_path):
        settings = make_settings(tmp_path, agent_command=str(tmp_path / "missing"))
        with pytest.raises(ProcessSpawnFailed):
            AgentInvoker(settings).run("x", WorkingCopy(path=str(tmp_path)))
