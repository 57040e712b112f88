"""Pull request publisher: precondition checks, then the PR tool."""

import re

from core.errors import PULL_REQUEST_SKIPPED, PullRequestToolFailed
from core.git import GitRepo
from core.runner import run_process
from core.state import StageResult
from utils.logger import get_logger

log = get_logger(__name__)

_URL_RE = re.compile(r"https?://\S+")
_ALREADY_EXISTS_RE = re.compile(r"already exists", re.IGNORECASE)


class PullRequestPublisher:
    """Opens a pull request with the PR CLI (``gh`` by default).

    Preconditions are checked in order and the first unmet one becomes the
    skip reason; the tool is only invoked when all hold. A failing tool is
    reported, never retried.
    """

    name = "pullRequest"

    def __init__(self, settings):
        self.settings = settings

    def _skip(self, reason):
        log.info("Pull request skipped: %s", reason)
        return StageResult(
            stage=self.name,
            success=False,
            skipped=True,
            reason=reason,
            error_kind=PULL_REQUEST_SKIPPED,
        )

    def check_preconditions(self, repo, working_copy, base_branch, work_branch):
        """Return the skip reason, or None when a PR can be created."""
        if repo.commit_count(work_branch) == 0:
            return "no commits on branch"
        if not working_copy.has_remote:
            return "no remote configured"
        empty = repo.diff_is_empty(base_branch, work_branch)
        if empty is None:
            return f"cannot compare {base_branch}...{work_branch}"
        if empty:
            return "no diff"
        if not self.settings.github_token:
            return "no GitHub token configured"
        return None

    def _tool(self, args, cwd, cancel_event):
        return run_process(
            [self.settings.pr_command, *args],
            cwd=cwd,
            env_overrides={"GH_TOKEN": self.settings.github_token, "GH_PROMPT_DISABLED": "1"},
            timeout=self.settings.pr_timeout,
            cancel_event=cancel_event,
        )

    def run(self, working_copy, base_branch, work_branch, title, description, cancel_event=None):
        repo = GitRepo(working_copy.path, git_command=self.settings.git_command,
                       timeout=self.settings.git_timeout, cancel_event=cancel_event)
        reason = self.check_preconditions(repo, working_copy, base_branch, work_branch)
        if reason:
            return self._skip(reason)

        result = self._tool(
            ["pr", "create",
             "--title", title,
             "--body", description,
             "--head", work_branch,
             "--base", base_branch],
            working_copy.path, cancel_event,
        )
        if result.ok:
            url = self._extract_url(result.stdout)
            log.info("Pull request created: %s", url)
            return StageResult(stage=self.name, success=True, output=result.output,
                               details={"url": url, "existing": False})

        if _ALREADY_EXISTS_RE.search(result.stderr):
            existing = self._tool(["pr", "view", work_branch, "--json", "url", "--jq", ".url"],
                                  working_copy.path, cancel_event)
            if existing.ok and existing.stdout.strip():
                url = self._extract_url(existing.stdout)
                log.info("Pull request already open: %s", url)
                return StageResult(stage=self.name, success=True, output=result.output,
                                   details={"url": url, "existing": True})

        log.warning("PR tool exited %s", result.exit_code)
        return StageResult(
            stage=self.name,
            success=False,
            output=result.output,
            error=result.stderr.strip() or f"{self.settings.pr_command} exited with code {result.exit_code}",
            error_kind=PullRequestToolFailed.kind,
            timed_out=result.timed_out,
            details={"exitCode": result.exit_code},
        )

    @staticmethod
    def _extract_url(stdout):
        match = _URL_RE.search(stdout or "")
        return match.group(0) if match else (stdout or "").strip() or None
