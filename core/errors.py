"""Pipeline error taxonomy.

Only fatal conditions are raised. Recoverable ones (stale sync, branch setup
trouble, agent failure, PR tool failure) are recorded on the StageResult under
the same kind names so callers can tell them apart.
"""

# Outcome names that are not errors at all.
COMMIT_NOOP = "CommitNoop"
PULL_REQUEST_SKIPPED = "PullRequestSkipped"


class PipelineError(Exception):
    """Base for pipeline failures. Carries the stage name and captured output."""

    kind = "PipelineError"

    def __init__(self, message, stage=None, output=""):
        super().__init__(message)
        self.stage = stage
        self.output = output


class CloneFailed(PipelineError):
    kind = "CloneFailed"


class SyncStale(PipelineError):
    kind = "SyncStale"


class BranchSetupFailed(PipelineError):
    kind = "BranchSetupFailed"


class AgentFailed(PipelineError):
    kind = "AgentFailed"


class AgentTimedOut(AgentFailed):
    kind = "AgentTimedOut"


class PullRequestToolFailed(PipelineError):
    kind = "PullRequestToolFailed"


class ProcessSpawnFailed(PipelineError):
    """The executable could not be started (missing, not executable, ...)."""

    kind = "ProcessSpawnFailed"
