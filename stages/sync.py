"""Repository synchronizer: clone, refresh or initialise the working copy."""

import os

from core.errors import CloneFailed, SyncStale
from core.git import GitRepo
from core.state import StageResult, WorkingCopy
from utils.logger import get_logger

log = get_logger(__name__)

_MARKER_FILE = ".gitkeep"


class RepositorySynchronizer:
    """Makes sure a usable working copy exists at the target path.

    Missing path + URL -> clone (failure is fatal, raises CloneFailed).
    Existing repository -> fetch + fast-forward pull; failure keeps the stale copy.
    No URL -> a fresh local repository with one initial commit.
    """

    name = "sync"

    def __init__(self, settings):
        self.settings = settings

    def _repo(self, path, cancel_event):
        return GitRepo(path, git_command=self.settings.git_command,
                       timeout=self.settings.git_timeout, cancel_event=cancel_event)

    def run(self, request, path, cancel_event=None):
        """Returns (StageResult, WorkingCopy). Raises CloneFailed / ProcessSpawnFailed."""
        repo = self._repo(path, cancel_event)
        lines = []

        empty_target = not os.path.exists(path) or (os.path.isdir(path) and not os.listdir(path))
        if empty_target and request.repository_url:
            self._clone(repo, request.repository_url, path, lines)
            action = "cloned"
        elif os.path.isdir(path) and repo.is_repository():
            action = self._refresh(repo, request.base_branch, lines)
        else:
            self._initialise(repo, path, request.base_branch, lines)
            action = "initialised"

        if not repo.configure_identity():
            lines.append("warning: could not configure commit identity")

        working_copy = WorkingCopy(
            path=path,
            has_remote=repo.has_remote(),
            current_branch=repo.current_branch(),
        )
        stale = action == "stale"
        result = StageResult(
            stage=self.name,
            success=True,
            output="\n".join(lines),
            error_kind=SyncStale.kind if stale else None,
            error="pull failed, using existing working copy" if stale else None,
            details={"action": action, "hasRemote": working_copy.has_remote},
        )
        return result, working_copy

    def _clone(self, repo, url, path, lines):
        parent = os.path.dirname(path)
        os.makedirs(parent, exist_ok=True)
        log.info("Cloning repository into %s", path)
        result = repo.run("clone", "--", url, path, cwd=parent)
        lines.append(f"$ git clone <url> {path}")
        if result.output:
            lines.append(result.output)
        if not result.ok:
            raise CloneFailed(
                f"git clone failed (exit {result.exit_code})",
                stage=self.name,
                output="\n".join(lines),
            )

    def _refresh(self, repo, base_branch, lines):
        """Fetch and fast-forward the base branch. Returns 'updated', 'stale' or 'local'."""
        if not repo.has_remote():
            lines.append("no remote configured, using local repository")
            return "local"

        fetch = repo.run("fetch", repo.remote)
        lines.append(f"$ git fetch {repo.remote}")
        if fetch.output:
            lines.append(fetch.output)
        pull = None
        if fetch.ok and repo.remote_branch_exists(base_branch):
            if repo.current_branch() == base_branch:
                args = ("pull", "--ff-only", repo.remote, base_branch)
            elif repo.local_branch_exists(base_branch):
                # Fast-forward the local base ref without checking it out
                args = ("fetch", repo.remote, f"{base_branch}:{base_branch}")
            else:
                args = None
            if args:
                pull = repo.run(*args)
                lines.append("$ git " + " ".join(args))
                if pull.output:
                    lines.append(pull.output)

        if not fetch.ok or (pull is not None and not pull.ok):
            log.warning("Sync of %s failed, continuing with existing copy", repo.path)
            return "stale"
        return "updated"

    def _initialise(self, repo, path, base_branch, lines):
        log.info("Initialising empty repository at %s", path)
        os.makedirs(path, exist_ok=True)
        steps = [
            ("init",),
            ("symbolic-ref", "HEAD", f"refs/heads/{base_branch}"),
        ]
        for args in steps:
            result = repo.run(*args)
            lines.append("$ git " + " ".join(args))
            if not result.ok:
                raise CloneFailed(
                    f"git {args[0]} failed (exit {result.exit_code})",
                    stage=self.name,
                    output="\n".join(lines + [result.output]),
                )
        repo.configure_identity()

        marker = os.path.join(path, _MARKER_FILE)
        if not os.path.exists(marker):
            with open(marker, "w"):
                pass
        for args in (("add", _MARKER_FILE), ("commit", "-m", "chore: initial commit")):
            result = repo.run(*args)
            lines.append("$ git " + " ".join(args))
            if result.output:
                lines.append(result.output)
