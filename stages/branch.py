"""Branch manager: base branch reconciliation and work branch checkout."""

from core.errors import BranchSetupFailed
from core.git import GitRepo
from core.state import StageResult
from utils.logger import get_logger

log = get_logger(__name__)


class _StepLog:
    """Runs git sub-steps for one stage and folds their output together."""

    def __init__(self, repo):
        self.repo = repo
        self.lines = []
        self.failed = []

    def __call__(self, *args):
        result = self.repo.run(*args)
        self.lines.append("$ git " + " ".join(args))
        if result.output:
            self.lines.append(result.output)
        if not result.ok:
            self.failed.append(" ".join(args[:2]))
            log.warning("git %s failed in %s (exit %s)", " ".join(args), self.repo.path, result.exit_code)
        return result.ok

    @property
    def output(self):
        return "\n".join(self.lines)


class BranchManager:
    """Puts the working copy on *work_branch*, derived from *base_branch*.

    Every step tolerates the previous one failing. Only a path that is not a
    git repository raises; anything else ends in a recorded failure plus a
    fallback checkout from HEAD.
    """

    name = "branch"

    def __init__(self, settings):
        self.settings = settings

    def run(self, working_copy, base_branch, work_branch, cancel_event=None):
        repo = GitRepo(working_copy.path, git_command=self.settings.git_command,
                       timeout=self.settings.git_timeout, cancel_event=cancel_event)
        if not repo.is_repository():
            raise BranchSetupFailed(f"Not a git repository: {working_copy.path}", stage=self.name)

        step = _StepLog(repo)
        has_remote = repo.has_remote()

        if has_remote:
            step("fetch", repo.remote)

        self._resolve_base(repo, step, base_branch, has_remote)
        step("checkout", base_branch)

        if repo.local_branch_exists(work_branch):
            step("checkout", work_branch)
        else:
            step("checkout", "-b", work_branch, base_branch)

        if has_remote and repo.current_branch() == work_branch:
            step("push", "-u", repo.remote, work_branch)

        fallback = repo.current_branch() != work_branch
        if fallback:
            log.warning("Branch setup for %s incomplete, falling back to HEAD", work_branch)
            if repo.local_branch_exists(work_branch):
                step("checkout", work_branch)
            else:
                step("checkout", "-b", work_branch)

        current = repo.current_branch()
        working_copy.current_branch = current
        working_copy.has_remote = has_remote
        success = current == work_branch

        return StageResult(
            stage=self.name,
            success=success,
            output=step.output,
            error=None if success else f"could not check out {work_branch}",
            error_kind=BranchSetupFailed.kind if step.failed or not success else None,
            details={
                "baseBranch": base_branch,
                "workBranch": work_branch,
                "currentBranch": current,
                "fallback": fallback,
                "failedSteps": list(step.failed),
            },
        )

    def _resolve_base(self, repo, step, base_branch, has_remote):
        if repo.local_branch_exists(base_branch):
            return
        if has_remote and repo.remote_branch_exists(base_branch):
            step("checkout", "-b", base_branch, "--track", f"{repo.remote}/{base_branch}")
            return

        # Create the base branch from whatever HEAD currently holds.
        if repo.has_commits():
            step("branch", base_branch)
        else:
            step("symbolic-ref", "HEAD", f"refs/heads/{base_branch}")
            step("commit", "--allow-empty", "-m", "chore: initial commit")
        if has_remote:
            step("push", "-u", repo.remote, base_branch)
