"""Agent invoker: hands the instruction to the external coding agent."""

from __future__ import annotations

import os
import shutil
import threading
import time
from dataclasses import dataclass

from config.defaults import DEFAULTS
from core.errors import AgentFailed, AgentTimedOut, ProcessSpawnFailed
from core.runner import run_process
from core.state import StageResult
from utils.logger import get_logger

log = get_logger(__name__)


def _is_executable_file(path):
    return os.path.isfile(path) and os.access(path, os.X_OK)


class AgentResolver:
    """Finds the agent executable once and caches it.

    An explicit override (name on PATH or a path) wins. Otherwise the ordered
    candidates are tried: bare names through PATH, absolute paths directly.
    """

    def __init__(self, candidates=None, override=None):
        self.candidates = list(DEFAULTS["agent_candidates"] if candidates is None else candidates)
        self.override = override
        self._resolved = None
        self._lock = threading.Lock()

    @staticmethod
    def _probe(candidate):
        if os.sep in candidate:
            path = os.path.expanduser(candidate)
            return path if _is_executable_file(path) else None
        return shutil.which(candidate)

    def resolve(self) -> str:
        """Return the agent command path.

        Raises:
            ProcessSpawnFailed: If no candidate is installed.
        """
        with self._lock:
            if self._resolved:
                return self._resolved

            if self.override:
                hit = self._probe(self.override)
                if not hit:
                    raise ProcessSpawnFailed(
                        f"Configured agent command is not executable: {self.override}",
                        stage="agent",
                    )
            else:
                hit = next((h for h in map(self._probe, self.candidates) if h), None)
                if not hit:
                    raise ProcessSpawnFailed(
                        "Coding agent not found. Tried: " + ", ".join(self.candidates),
                        stage="agent",
                    )

            log.info("Using coding agent at %s", hit)
            self._resolved = hit
            return hit

    def reset(self):
        with self._lock:
            self._resolved = None


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries for non-zero agent exits. Timeouts are never retried."""

    max_attempts: int = 1
    backoff: float = 0.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_attempts > DEFAULTS["hard_max_attempts"]:
            raise ValueError(f"max_attempts cannot exceed {DEFAULTS['hard_max_attempts']}")

    def should_retry(self, attempt, result):
        if result.ok or result.timed_out or result.cancelled:
            return False
        return attempt < self.max_attempts

    def delay(self, attempt):
        return self.backoff * attempt


class AgentInvoker:
    """Runs ``<agent> [args...] <instruction>`` inside the working copy.

    The instruction is one argv element; nothing goes through a shell.
    Success is exit code 0. ProcessSpawnFailed propagates to the caller.
    """

    name = "agent"

    def __init__(self, settings, resolver=None, retry_policy=None, sleep=time.sleep):
        self.settings = settings
        self.resolver = resolver or AgentResolver(override=settings.agent_command)
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.agent_max_attempts,
            backoff=settings.agent_retry_backoff,
        )
        self._sleep = sleep

    def build_command(self, instruction):
        return [self.resolver.resolve(), *self.settings.agent_args, instruction]

    def _env(self):
        env = {}
        if self.settings.anthropic_api_key:
            env["ANTHROPIC_API_KEY"] = self.settings.anthropic_api_key
        return env

    def run(self, instruction, working_copy, timeout=None, cancel_event=None):
        if not instruction or not instruction.strip():
            raise ValueError("Instruction must be non-empty")
        if timeout is None:
            timeout = self.settings.agent_timeout

        command = self.build_command(instruction)
        attempt = 0
        transcripts = []
        while True:
            attempt += 1
            log.info("Running agent %s in %s (attempt %d/%d, timeout %ss)",
                     os.path.basename(command[0]), working_copy.path, attempt,
                     self.retry_policy.max_attempts, timeout)
            result = run_process(
                command,
                cwd=working_copy.path,
                env_overrides=self._env(),
                timeout=timeout,
                cancel_event=cancel_event,
            )
            if self.retry_policy.max_attempts > 1:
                transcripts.append(f"--- attempt {attempt} (exit {result.exit_code}) ---")
            if result.output:
                transcripts.append(result.output)

            if not self.retry_policy.should_retry(attempt, result):
                break
            delay = self.retry_policy.delay(attempt)
            log.warning("Agent exited %s, retrying in %ss", result.exit_code, delay)
            if cancel_event is not None and cancel_event.wait(delay):
                break
            if cancel_event is None and delay:
                self._sleep(delay)

        if result.ok:
            error_kind = error = None
        elif result.timed_out:
            error_kind = AgentTimedOut.kind
            error = f"agent timed out after {timeout}s"
        else:
            error_kind = AgentFailed.kind
            error = "agent cancelled" if result.cancelled else f"agent exited with code {result.exit_code}"

        return StageResult(
            stage=self.name,
            success=result.ok,
            output="\n".join(transcripts),
            error=error,
            error_kind=error_kind,
            timed_out=result.timed_out,
            details={
                "command": os.path.basename(command[0]),
                "exitCode": result.exit_code,
                "attempts": attempt,
                "duration": round(result.duration, 3),
            },
        )
