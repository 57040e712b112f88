"""Collaborator availability report for the status endpoint and CLI."""

import os
import tempfile

from core.errors import ProcessSpawnFailed
from core.runner import run_process
from utils.logger import get_logger

log = get_logger(__name__)

_PROBE_TIMEOUT = 10


def parse_gh_auth_status(text):
    """Summarise ``gh auth status`` output.

    Expected lines (gh 2.x, printed on stderr or stdout depending on version):
        "Logged in to github.com account octocat (GITHUB_TOKEN)"
        "Logged in to github.com as octocat (oauth_token)"
        "Missing required token scopes: 'read:org'"
        "You are not logged into any GitHub hosts."
    """
    text = text or ""
    lowered = text.lower()
    return {
        "logged_in": "logged in to" in lowered and "not logged into" not in lowered,
        "missing_scopes": "missing required token scopes" in lowered,
    }


def _probe_version(command):
    """Run ``<command> --version``; returns {status, version} or {status, error}."""
    try:
        result = run_process([command, "--version"], cwd=tempfile.gettempdir(), timeout=_PROBE_TIMEOUT)
    except ProcessSpawnFailed as exc:
        return {"status": "not_found", "error": str(exc)}
    if not result.ok:
        return {"status": "error", "error": result.stderr.strip() or f"exit {result.exit_code}"}
    lines = result.stdout.strip().splitlines()
    return {"status": "installed", "version": lines[0] if lines else ""}


def _projects_root_status(root):
    exists = os.path.isdir(root)
    writable = os.access(root if exists else os.path.dirname(root.rstrip(os.sep)) or os.sep, os.W_OK)
    return {"path": root, "exists": exists, "writable": writable}


def collect_status(settings, resolver):
    """Build the diagnostics document. Secrets are reported as booleans only."""
    agent = {"status": "not_found"}
    try:
        agent = {"status": "installed", "command": resolver.resolve()}
    except ProcessSpawnFailed as exc:
        agent["error"] = str(exc)

    git = _probe_version(settings.git_command)
    gh = _probe_version(settings.pr_command)
    if gh["status"] == "installed":
        try:
            auth = run_process(
                [settings.pr_command, "auth", "status"],
                cwd=tempfile.gettempdir(),
                env_overrides={"GH_TOKEN": settings.github_token},
                timeout=_PROBE_TIMEOUT,
            )
            gh["auth"] = parse_gh_auth_status(auth.stdout + "\n" + auth.stderr)
        except ProcessSpawnFailed as exc:
            log.warning("gh auth status failed: %s", exc)

    env = {
        "has_anthropic_key": bool(settings.anthropic_api_key),
        "has_github_token": bool(settings.github_token),
        "has_webhook_secret": bool(settings.webhook_secret),
    }
    pr_ready = gh["status"] == "installed" and env["has_github_token"]
    return {
        "agent": agent,
        "git": git,
        "github_cli": gh,
        "projects_root": _projects_root_status(settings.projects_root),
        "environment": env,
        "overall": {
            "agent_ready": agent["status"] == "installed",
            "git_ready": git["status"] == "installed",
            "pr_ready": pr_ready,
        },
    }
