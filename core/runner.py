"""Subprocess runner with explicit environment, timeout and cancellation."""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from collections import deque

from config.defaults import DEFAULTS
from core.errors import ProcessSpawnFailed
from core.state import ProcessResult
from utils.logger import get_logger

log = get_logger(__name__)

_POLL_INTERVAL = 0.1
_READ_CHUNK = 8192


class ProcessRegistry:
    """Tracks live child processes so shutdown can kill whatever is in flight."""

    def __init__(self):
        self._procs = set()
        self._lock = threading.Lock()

    def add(self, proc):
        with self._lock:
            self._procs.add(proc)

    def discard(self, proc):
        with self._lock:
            self._procs.discard(proc)

    def active(self):
        with self._lock:
            return [p for p in self._procs if p.poll() is None]

    def terminate_all(self, grace=None):
        """Terminate every tracked process group. Returns the number signalled."""
        procs = self.active()
        for proc in procs:
            log.warning("Terminating in-flight process pid=%s", proc.pid)
            _terminate_process_group(proc, grace=DEFAULTS["kill_grace"] if grace is None else grace)
        return len(procs)


registry = ProcessRegistry()


def build_env(overrides=None, base=None):
    """Return a fresh child environment.

    Starts from *base* (os.environ by default), drops the service's own
    secrets, then applies *overrides*. Override values of None remove the key.
    """
    source = os.environ if base is None else base
    env = {k: v for k, v in source.items() if k not in DEFAULTS["secret_env_vars"]}
    for key, value in (overrides or {}).items():
        if value is None:
            env.pop(key, None)
        else:
            env[key] = str(value)
    return env


def _signal_group(proc, sig):
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        try:
            proc.send_signal(sig)
        except ProcessLookupError:
            pass


def _terminate_process_group(proc, grace):
    """SIGTERM the process group, then SIGKILL if it outlives *grace* seconds."""
    if proc.poll() is not None:
        return
    _signal_group(proc, signal.SIGTERM)
    try:
        proc.wait(timeout=grace)
        return
    except subprocess.TimeoutExpired:
        pass
    log.warning("Process pid=%s ignored SIGTERM for %ss, killing", proc.pid, grace)
    _signal_group(proc, signal.SIGKILL)
    proc.wait()


class _Tail:
    """Keeps the last *limit* characters of a stream, line by line."""

    def __init__(self, limit):
        self.limit = limit
        self.lines = deque()
        self.size = 0
        self.dropped = 0

    def append(self, line):
        self.lines.append(line)
        self.size += len(line)
        while self.size > self.limit:
            if len(self.lines) == 1:
                cut = self.size - self.limit
                self.lines[0] = self.lines[0][cut:]
                self.size -= cut
                self.dropped += cut
                break
            old = self.lines.popleft()
            self.size -= len(old)
            self.dropped += len(old)

    def text(self):
        body = "".join(self.lines)
        if self.dropped:
            return f"[... {self.dropped} characters dropped ...]\n{body}"
        return body


def _pump(stream, tail):
    try:
        for line in iter(lambda: stream.readline(_READ_CHUNK), ""):
            tail.append(line)
    finally:
        stream.close()


def run_process(command, cwd, env_overrides=None, timeout=None, cancel_event=None, grace=None,
                capture_limit=None):
    """Run a command and capture its output.

    Args:
        command: Argument vector, e.g. ["git", "status"]. Never run through a shell.
        cwd: Working directory (must exist).
        env_overrides: Extra environment variables for this child only.
        timeout: Seconds before the process group is terminated (None = no limit).
        cancel_event: threading.Event; when set the process group is terminated.
        grace: Seconds between SIGTERM and SIGKILL (default from config).
        capture_limit: Characters kept per stream; older output is dropped
            (default from config).

    Returns:
        ProcessResult. timed_out / cancelled are set when the run was cut short.

    Raises:
        ValueError: If command is not a non-empty list of strings or cwd is invalid.
        ProcessSpawnFailed: If the executable cannot be started.
    """
    if not command or not isinstance(command, list) or not all(isinstance(c, str) for c in command):
        raise ValueError("Command must be a non-empty list of strings")

    cwd = os.path.realpath(cwd)
    if not os.path.isdir(cwd):
        raise ValueError(f"Working directory does not exist: {cwd}")

    if capture_limit is None:
        capture_limit = DEFAULTS["capture_limit"]
    if grace is None:
        grace = DEFAULTS["kill_grace"]

    try:
        proc = subprocess.Popen(
            command,
            cwd=cwd,
            env=build_env(env_overrides),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=True,
        )
    except FileNotFoundError:
        raise ProcessSpawnFailed(f"Command not found: {command[0]}") from None
    except PermissionError:
        raise ProcessSpawnFailed(f"Permission denied: {command[0]}") from None
    except OSError as exc:
        raise ProcessSpawnFailed(f"Could not start {command[0]}: {exc}") from exc

    registry.add(proc)
    out_tail, err_tail = _Tail(capture_limit), _Tail(capture_limit)
    readers = [
        threading.Thread(target=_pump, args=(proc.stdout, out_tail), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, err_tail), daemon=True),
    ]
    for reader in readers:
        reader.start()

    started = time.monotonic()
    deadline = started + timeout if timeout is not None else None
    timed_out = cancelled = False
    try:
        while True:
            try:
                proc.wait(timeout=_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                log.warning("Cancelling %s (pid=%s)", command[0], proc.pid)
                _terminate_process_group(proc, grace)
                break
            if deadline is not None and time.monotonic() >= deadline:
                timed_out = True
                log.warning("%s timed out after %ss (pid=%s)", command[0], timeout, proc.pid)
                _terminate_process_group(proc, grace)
                break
    finally:
        if proc.poll() is None:
            _terminate_process_group(proc, grace)
        registry.discard(proc)

    for reader in readers:
        reader.join(timeout=grace)

    stderr = err_tail.text()
    if timed_out:
        stderr += f"\nCommand timed out after {timeout}s"
    elif cancelled:
        stderr += "\nCommand cancelled"

    return ProcessResult(
        command=list(command),
        exit_code=proc.returncode,
        stdout=out_tail.text(),
        stderr=stderr,
        timed_out=timed_out,
        cancelled=cancelled,
        duration=time.monotonic() - started,
    )
