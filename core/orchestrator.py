"""Main pipeline orchestrator: sync -> branch -> agent -> commit -> pull request."""

from core.errors import BranchSetupFailed, CloneFailed, PipelineError, ProcessSpawnFailed
from core.locks import PathLockRegistry
from core.state import PipelineResult, StageResult
from stages.agent import AgentInvoker
from stages.branch import BranchManager
from stages.commit import CommitPublisher
from stages.pull_request import PullRequestPublisher
from stages.sync import RepositorySynchronizer
from utils.logger import get_logger
from utils.project_paths import get_project_path
from utils.text import commit_message, pull_request_body, pull_request_title

log = get_logger(__name__)


class Orchestrator:
    """Runs the full pipeline for one request and aggregates every stage result.

    Stages run strictly in order. Fatal errors (clone failure, a working copy
    that is not a repository, an agent that cannot be started) stop the run;
    everything else is recorded and the run continues. Overall success is the
    agent stage's success.
    """

    def __init__(self, settings, locks=None, agent=None):
        self.settings = settings
        self.locks = locks or PathLockRegistry()
        self.sync = RepositorySynchronizer(settings)
        self.branch = BranchManager(settings)
        self.agent = agent or AgentInvoker(settings)
        self.commit = CommitPublisher(settings)
        self.pull_request = PullRequestPublisher(settings)

    def project_path(self, request):
        return get_project_path(self.settings.projects_root, request.project_name)

    def run(self, request, cancel_event=None) -> PipelineResult:
        """Run the pipeline; the per-path lock is held for the whole run.

        Raises:
            ValueError: If the instruction is empty or the project name is unusable.
        """
        if not request.instruction or not request.instruction.strip():
            raise ValueError("Instruction must be non-empty")

        path = self.project_path(request)
        result = PipelineResult(branch=request.work_branch, working_copy_path=path)

        if self.locks.is_locked(path):
            log.info("Waiting for working copy %s to be released", path)
        with self.locks.hold(path):
            log.info("Pipeline started for %s on %s", path, request.work_branch)
            try:
                self._run_stages(request, path, result, cancel_event)
            except (CloneFailed, BranchSetupFailed, ProcessSpawnFailed) as exc:
                log.error("Pipeline aborted at %s: %s", exc.stage, exc)
                result.aborted = exc.kind
                result.error = str(exc)
                result.stages.append(StageResult(
                    stage=exc.stage,
                    success=False,
                    output=exc.output,
                    error=str(exc),
                    error_kind=exc.kind,
                ))

        log.info("Pipeline finished for %s: success=%s", path, result.success)
        return result

    def _run_stages(self, request, path, result, cancel_event):
        sync_result, working_copy = self._fatal(
            "sync", self.sync.run, request, path, cancel_event=cancel_event,
        )
        result.stages.append(sync_result)

        if request.create_branch:
            result.stages.append(self._fatal(
                "branch", self.branch.run,
                working_copy, request.base_branch, request.work_branch, cancel_event=cancel_event,
            ))
            work_branch = request.work_branch
        else:
            # Work happens on whatever the working copy has checked out
            work_branch = working_copy.current_branch or request.base_branch
            result.branch = work_branch
            result.stages.append(StageResult.skip("branch", "not requested", success=True))

        agent_result = self._fatal(
            "agent", self.agent.run, request.instruction, working_copy, cancel_event=cancel_event,
        )
        result.stages.append(agent_result)

        if not agent_result.success:
            result.stages.append(StageResult.skip("commit", "agent failed"))
            result.stages.append(StageResult.skip("pullRequest", "agent failed"))
            return

        result.stages.append(self._guarded(
            "commit", self.commit.run,
            working_copy, work_branch, commit_message(request.instruction),
            cancel_event=cancel_event,
        ))

        if not request.create_pull_request:
            result.stages.append(StageResult.skip("pullRequest", "not requested"))
            return

        result.stages.append(self._guarded(
            "pullRequest", self.pull_request.run,
            working_copy,
            request.base_branch,
            work_branch,
            pull_request_title(request.instruction, request.pull_request_title),
            pull_request_body(request.instruction, request.pull_request_description),
            cancel_event=cancel_event,
        ))

    @staticmethod
    def _fatal(stage, func, *args, **kwargs):
        """Run a stage whose pipeline errors abort the run, tagging them with the stage."""
        try:
            return func(*args, **kwargs)
        except PipelineError as exc:
            if exc.stage is None:
                exc.stage = stage
            raise

    @staticmethod
    def _guarded(stage, func, *args, **kwargs):
        """Run a post-agent stage; its errors are recorded, never fatal to the run."""
        try:
            return func(*args, **kwargs)
        except PipelineError as exc:
            log.warning("%s stage failed: %s", stage, exc)
            return StageResult(stage=stage, success=False, output=exc.output,
                               error=str(exc), error_kind=exc.kind)
