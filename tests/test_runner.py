"""Tests for core.runner."""

import os
import subprocess
import sys
import threading
import time

import pytest

from core.errors import ProcessSpawnFailed
from core.runner import ProcessRegistry, build_env, run_process


def _py(code):
    return [sys.executable, "-c", code]


def _pid_alive(pid):
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    # A zombie still answers kill(0); check /proc where available
    stat = f"/proc/{pid}/stat"
    if os.path.exists(stat):
        with open(stat) as f:
            return f.read().split()[2] != "Z"
    return True


def test_captures_stdout_and_stderr(tmp_path):
    result = run_process(_py("import sys; print('out'); print('err', file=sys.stderr)"), cwd=tmp_path)
    assert result.exit_code == 0
    assert result.ok
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"
    assert result.timed_out is False


def test_runs_in_working_directory(tmp_path):
    result = run_process(_py("import os; print(os.getcwd())"), cwd=tmp_path)
    assert os.path.realpath(result.stdout.strip()) == os.path.realpath(tmp_path)


def test_nonzero_exit(tmp_path):
    result = run_process(_py("import sys; sys.exit(3)"), cwd=tmp_path)
    assert result.exit_code == 3
    assert not result.ok


def test_argument_is_not_shell_interpreted(tmp_path):
    hostile = '"; touch pwned; echo "$(whoami)'
    result = run_process(_py("import sys; print(sys.argv[1])") + [hostile], cwd=tmp_path)
    assert result.stdout.rstrip("\n") == hostile
    assert not (tmp_path / "pwned").exists()


def test_timeout_kills_process(tmp_path):
    pid_file = tmp_path / "pid"
    code = (
        "import os, time; "
        f"open({str(pid_file)!r}, 'w').write(str(os.getpid())); "
        "print('started', flush=True); time.sleep(30)"
    )
    start = time.monotonic()
    result = run_process(_py(code), cwd=tmp_path, timeout=1, grace=1)
    assert time.monotonic() - start < 10
    assert result.timed_out is True
    assert not result.ok
    assert "started" in result.stdout
    assert "timed out" in result.stderr.lower()
    assert not _pid_alive(int(pid_file.read_text()))


def test_timeout_force_kills_when_sigterm_ignored(tmp_path):
    code = (
        "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
        "print('ready', flush=True); time.sleep(30)"
    )
    start = time.monotonic()
    result = run_process(_py(code), cwd=tmp_path, timeout=1, grace=0.5)
    assert time.monotonic() - start < 10
    assert result.timed_out is True
    assert result.exit_code is not None
    assert result.exit_code < 0


def test_cancel_event_terminates(tmp_path):
    cancel = threading.Event()
    timer = threading.Timer(0.5, cancel.set)
    timer.start()
    try:
        result = run_process(_py("import time; time.sleep(30)"), cwd=tmp_path,
                             timeout=20, cancel_event=cancel, grace=1)
    finally:
        timer.cancel()
    assert result.cancelled is True
    assert result.timed_out is False
    assert not result.ok


def test_missing_executable_raises(tmp_path):
    with pytest.raises(ProcessSpawnFailed, match="not found"):
        run_process(["nonexistent_cmd_xyz"], cwd=tmp_path)


def test_non_executable_file_raises(tmp_path):
    script = tmp_path / "script.sh"
    script.write_text("#!/bin/sh\necho hi\n")
    script.chmod(0o644)
    with pytest.raises(ProcessSpawnFailed):
        run_process([str(script)], cwd=tmp_path)


def test_invalid_cwd():
    with pytest.raises(ValueError, match="does not exist"):
        run_process(_py("pass"), cwd="/nonexistent/path")


def test_empty_command(tmp_path):
    with pytest.raises(ValueError, match="non-empty list"):
        run_process([], cwd=tmp_path)


def test_string_command_rejected(tmp_path):
    with pytest.raises(ValueError, match="non-empty list"):
        run_process("echo hi", cwd=tmp_path)


def test_build_env_strips_secrets_and_applies_overrides():
    base = {"PATH": "/bin", "ANTHROPIC_API_KEY": "k", "GITHUB_TOKEN": "t", "WEBHOOK_SECRET": "w"}
    env = build_env({"EXTRA": "1", "PATH": None}, base=base)
    assert env == {"EXTRA": "1"}
    assert base["ANTHROPIC_API_KEY"] == "k"


def test_override_reaches_child_without_touching_os_environ(tmp_path):
    result = run_process(_py("import os; print(os.environ.get('AGENT_TEST_VAR'))"),
                         cwd=tmp_path, env_overrides={"AGENT_TEST_VAR": "hello"})
    assert result.stdout.strip() == "hello"
    assert "AGENT_TEST_VAR" not in os.environ


def test_secret_not_inherited(tmp_path, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "should-not-leak")
    result = run_process(_py("import os; print(os.environ.get('ANTHROPIC_API_KEY'))"), cwd=tmp_path)
    assert result.stdout.strip() == "None"


def test_registry_terminate_all(tmp_path):
    registry = ProcessRegistry()
    proc = subprocess.Popen(_py("import time; time.sleep(30)"), cwd=tmp_path, start_new_session=True)
    registry.add(proc)
    try:
        assert registry.terminate_all(grace=1) == 1
        assert proc.poll() is not None
        assert registry.active() == []
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


def test_output_keeps_bounded_tail(tmp_path):
    code = "for i in range(5000): print(f'line {i:05d}')"
    result = run_process(_py(code), cwd=tmp_path, capture_limit=1000)
    assert result.ok
    assert result.stdout.startswith("[... ")
    assert "characters dropped" in result.stdout
    assert result.stdout.rstrip().endswith("line 04999")
    assert "line 00000" not in result.stdout
    assert len(result.stdout) < 1100


def test_long_line_without_newline_is_bounded(tmp_path):
    code = "import sys; sys.stdout.write('x' * 100000 + 'END')"
    result = run_process(_py(code), cwd=tmp_path, capture_limit=500)
    body = result.stdout.split("\n", 1)[1]
    assert body.endswith("END")
    assert len(body) == 500


def test_small_output_untouched(tmp_path):
    result = run_process(_py("print('hello')"), cwd=tmp_path, capture_limit=1000)
    assert result.stdout == "hello\n"
