"""Commit publisher: stage everything, commit, push when a remote exists."""

from core.errors import COMMIT_NOOP
from core.git import GitRepo
from core.state import StageResult
from utils.logger import get_logger

log = get_logger(__name__)


class CommitPublisher:
    name = "commit"

    def __init__(self, settings):
        self.settings = settings

    def run(self, working_copy, branch, message, cancel_event=None):
        repo = GitRepo(working_copy.path, git_command=self.settings.git_command,
                       timeout=self.settings.git_timeout, cancel_event=cancel_event)
        lines = []
        changed = repo.changed_files()

        add = repo.run("add", "-A")
        lines.append("$ git add -A")
        if not add.ok:
            return StageResult(
                stage=self.name, success=False, output="\n".join(lines + [add.output]),
                error=f"git add failed (exit {add.exit_code})",
                details={"committed": False},
            )

        if not repo.has_staged_changes():
            log.info("No changes to commit in %s", working_copy.path)
            return StageResult(
                stage=self.name,
                success=True,
                output="nothing to commit, working tree clean",
                error_kind=COMMIT_NOOP,
                details={"committed": False, "pushed": False, "changedFiles": []},
            )

        commit = repo.run("commit", "-m", message)
        lines.append("$ git commit -m <message>")
        if commit.output:
            lines.append(commit.output)
        if not commit.ok:
            return StageResult(
                stage=self.name, success=False, output="\n".join(lines),
                error=f"git commit failed (exit {commit.exit_code})",
                details={"committed": False, "changedFiles": changed},
            )

        sha = repo.run("rev-parse", "HEAD").stdout.strip()
        log.info("Committed %d file(s) on %s as %s", len(changed), branch, sha[:12])

        pushed = False
        if working_copy.has_remote:
            push = repo.run("push", "-u", repo.remote, branch)
            lines.append(f"$ git push -u {repo.remote} {branch}")
            if push.output:
                lines.append(push.output)
            pushed = push.ok
            if not pushed:
                log.warning("Push of %s failed, commit kept locally", branch)

        return StageResult(
            stage=self.name,
            success=True,
            output="\n".join(lines),
            details={
                "committed": True,
                "pushed": pushed,
                "sha": sha,
                "changedFiles": changed,
            },
        )
