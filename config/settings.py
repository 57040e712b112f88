"""Runtime settings read from the environment."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field

from config.defaults import DEFAULTS


def _int_env(environ, key, default):
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def _float_env(environ, key, default):
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    port: int = DEFAULTS["port"]
    host: str = DEFAULTS["host"]
    webhook_secret: str | None = None
    anthropic_api_key: str | None = None
    github_token: str | None = None
    projects_root: str = DEFAULTS["projects_root"]
    agent_command: str | None = None
    agent_args: list[str] = field(default_factory=lambda: list(DEFAULTS["agent_args"]))
    agent_timeout: float = DEFAULTS["agent_timeout"]
    agent_max_attempts: int = DEFAULTS["agent_max_attempts"]
    agent_retry_backoff: float = DEFAULTS["agent_retry_backoff"]
    git_timeout: float = DEFAULTS["git_timeout"]
    pr_timeout: float = DEFAULTS["pr_timeout"]
    shutdown_grace: float = DEFAULTS["shutdown_grace"]
    git_command: str = DEFAULTS["git_command"]
    pr_command: str = DEFAULTS["pr_command"]

    def secrets(self) -> list[str]:
        """Configured secret values, for redaction."""
        return [s for s in (self.webhook_secret, self.anthropic_api_key, self.github_token) if s]


def load_settings(environ=None) -> Settings:
    """Build Settings from environment variables (os.environ by default).

    Raises:
        ValueError: If a numeric variable cannot be parsed.
    """
    env = os.environ if environ is None else environ

    agent_args_raw = env.get("AGENT_ARGS")
    agent_args = shlex.split(agent_args_raw) if agent_args_raw is not None else list(DEFAULTS["agent_args"])

    attempts = _int_env(env, "AGENT_MAX_ATTEMPTS", DEFAULTS["agent_max_attempts"])
    attempts = max(1, min(attempts, DEFAULTS["hard_max_attempts"]))

    return Settings(
        port=_int_env(env, "PORT", DEFAULTS["port"]),
        host=env.get("HOST") or DEFAULTS["host"],
        webhook_secret=env.get("WEBHOOK_SECRET") or None,
        anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
        github_token=env.get("GITHUB_TOKEN") or env.get("GH_TOKEN") or None,
        projects_root=env.get("PROJECTS_ROOT") or DEFAULTS["projects_root"],
        agent_command=env.get("AGENT_COMMAND") or None,
        agent_args=agent_args,
        agent_timeout=_float_env(env, "AGENT_TIMEOUT", DEFAULTS["agent_timeout"]),
        agent_max_attempts=attempts,
        agent_retry_backoff=_float_env(env, "AGENT_RETRY_BACKOFF", DEFAULTS["agent_retry_backoff"]),
        git_timeout=_float_env(env, "GIT_TIMEOUT", DEFAULTS["git_timeout"]),
        pr_timeout=_float_env(env, "PR_TIMEOUT", DEFAULTS["pr_timeout"]),
        shutdown_grace=_float_env(env, "SHUTDOWN_GRACE", DEFAULTS["shutdown_grace"]),
        git_command=env.get("GIT_COMMAND") or DEFAULTS["git_command"],
        pr_command=env.get("PR_COMMAND") or DEFAULTS["pr_command"],
    )
