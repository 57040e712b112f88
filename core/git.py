"""Narrow adapter over the git CLI.

All calls go through :meth:`GitRepo.run`, which uses the process runner with an
argument vector and ``GIT_TERMINAL_PROMPT=0`` so a missing credential fails
fast instead of hanging on a prompt. Repository state is queried with
plumbing commands and exit codes (``show-ref --verify``, ``diff --quiet``,
``rev-list --count``) rather than by matching human-readable output. The one
place that parses output, ``status --porcelain -z``, is isolated in
:func:`parse_porcelain_z`.
"""

from __future__ import annotations

import os
import re

from config.defaults import DEFAULTS
from core.runner import run_process
from utils.logger import get_logger

log = get_logger(__name__)

_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"}

_BRANCH_FORBIDDEN = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def validate_branch_name(name):
    """Raise ValueError unless *name* is a safe git branch name.

    Mirrors the rules of ``git check-ref-format --branch`` that matter here:
    no control characters or whitespace, none of ``~^:?*[\\``, no ``..`` or
    ``@{``, no leading ``-`` or ``/``, no trailing ``/``, ``.`` or ``.lock``.
    """
    if not isinstance(name, str) or not name:
        raise ValueError("Branch name must be a non-empty string")
    if _BRANCH_FORBIDDEN.search(name):
        raise ValueError(f"Branch name contains forbidden characters: {name!r}")
    if ".." in name or "@{" in name or "//" in name or name == "@":
        raise ValueError(f"Branch name contains a forbidden sequence: {name!r}")
    if name.startswith(("-", "/", ".")) or name.endswith(("/", ".", ".lock")):
        raise ValueError(f"Branch name has a forbidden prefix or suffix: {name!r}")
    if any(part.startswith(".") or part.endswith(".lock") for part in name.split("/")):
        raise ValueError(f"Branch name has a forbidden path component: {name!r}")
    return name


def parse_porcelain_z(output):
    """Parse ``git status --porcelain -z`` output into changed paths.

    Format: entries separated by NUL, each ``XY<space>path``. Renames and
    copies (X or Y of ``R``/``C``) are followed by one more NUL-terminated
    entry holding the original path, which is skipped.
    """
    paths = []
    entries = output.split("\0")
    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if len(entry) < 4:
            continue
        status, path = entry[:2], entry[3:]
        paths.append(path)
        if "R" in status or "C" in status:
            i += 1
    return paths


class GitRepo:
    """git operations scoped to one working copy."""

    def __init__(self, path, git_command=None, timeout=None, cancel_event=None,
                 remote=None):
        self.path = str(path)
        self.git_command = git_command or DEFAULTS["git_command"]
        self.timeout = DEFAULTS["git_timeout"] if timeout is None else timeout
        self.cancel_event = cancel_event
        self.remote = remote or DEFAULTS["remote_name"]

    def run(self, *args, timeout=None, cwd=None, env=None):
        """Run ``git <args>`` and return the ProcessResult (never raises on exit code)."""
        log.debug("git %s (cwd=%s)", " ".join(args), cwd or self.path)
        overrides = dict(_GIT_ENV)
        overrides.update(env or {})
        result = run_process(
            [self.git_command, *args],
            cwd=cwd or self.path,
            env_overrides=overrides,
            timeout=self.timeout if timeout is None else timeout,
            cancel_event=self.cancel_event,
        )
        if not result.ok:
            log.debug("git %s returned %s: %s", args[0], result.exit_code, result.stderr.strip())
        return result

    # -- facts --------------------------------------------------------------

    def is_repository(self):
        """True if the path is the top level of a git work tree."""
        result = self.run("rev-parse", "--show-toplevel")
        if not result.ok:
            return False
        top = result.stdout.strip()
        return bool(top) and os.path.realpath(top) == os.path.realpath(self.path)

    def has_remote(self):
        result = self.run("remote", "get-url", self.remote)
        return result.ok and bool(result.stdout.strip())

    def local_branch_exists(self, name):
        return self.run("show-ref", "--verify", "--quiet", f"refs/heads/{name}").ok

    def remote_branch_exists(self, name):
        return self.run("show-ref", "--verify", "--quiet", f"refs/remotes/{self.remote}/{name}").ok

    def current_branch(self):
        """Current branch name; works on unborn branches. '' when detached."""
        result = self.run("symbolic-ref", "--quiet", "--short", "HEAD")
        return result.stdout.strip() if result.ok else ""

    def has_commits(self, ref="HEAD"):
        return self.run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}").ok

    def commit_count(self, ref):
        result = self.run("rev-list", "--count", ref)
        if not result.ok:
            return 0
        try:
            return int(result.stdout.strip())
        except ValueError:
            return 0

    def has_staged_changes(self):
        """True if the index differs from HEAD (or anything is staged on an unborn branch)."""
        if not self.has_commits():
            result = self.run("ls-files", "--cached")
            return bool(result.stdout.strip())
        result = self.run("diff", "--cached", "--quiet")
        # 0 = clean, 1 = differences; anything else: let the commit surface the error
        return result.exit_code != 0

    def diff_is_empty(self, base, head):
        """True/False for ``base...head``; None if the comparison itself failed."""
        result = self.run("diff", "--quiet", f"{base}...{head}", "--")
        if result.exit_code == 0:
            return True
        if result.exit_code == 1:
            return False
        return None

    def changed_files(self):
        result = self.run("status", "--porcelain", "-z", "--untracked-files=all")
        return parse_porcelain_z(result.stdout) if result.ok else []

    def configure_identity(self, name=None, email=None):
        """Set the bot identity in this repository's local config."""
        results = [
            self.run("config", "user.name", name or DEFAULTS["bot_name"]),
            self.run("config", "user.email", email or DEFAULTS["bot_email"]),
        ]
        return all(r.ok for r in results)
