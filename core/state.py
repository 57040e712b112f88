"""Pipeline data models shared across all stages."""

from __future__ import annotations

from dataclasses import dataclass, field

from config.defaults import DEFAULTS

STAGES = ("sync", "branch", "agent", "commit", "pullRequest")

# JSON field name -> PipelineRequest attribute. Legacy names from the first
# webhook version are accepted as aliases.
_PAYLOAD_FIELDS = {
    "instruction": "instruction",
    "repositoryUrl": "repository_url",
    "repoUrl": "repository_url",
    "projectName": "project_name",
    "baseBranch": "base_branch",
    "workBranch": "work_branch",
    "branch": "work_branch",
    "createBranch": "create_branch",
    "createPullRequest": "create_pull_request",
    "createPR": "create_pull_request",
    "pullRequestTitle": "pull_request_title",
    "prTitle": "pull_request_title",
    "pullRequestDescription": "pull_request_description",
    "prDescription": "pull_request_description",
    "authSecret": "auth_secret",
    "webhook_secret": "auth_secret",
}

_FLAG_FIELDS = {"create_branch", "create_pull_request"}


def _as_flag(key, value):
    """Accept JSON booleans, 0/1 and the usual truthy/falsy strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"{key} must be a boolean")


@dataclass
class PipelineRequest:
    instruction: str
    repository_url: str | None = None
    project_name: str | None = None
    base_branch: str = DEFAULTS["base_branch"]
    work_branch: str = DEFAULTS["work_branch"]
    create_branch: bool = True
    create_pull_request: bool = False
    pull_request_title: str | None = None
    pull_request_description: str | None = None
    auth_secret: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> PipelineRequest:
        """Build a request from a JSON body. Unknown keys are ignored.

        Empty strings and nulls fall back to defaults. The instruction is
        stripped but otherwise kept verbatim.

        Raises:
            ValueError: If a text field is not a string or a flag is not boolean-like.
        """
        values = {}
        for key, attr in _PAYLOAD_FIELDS.items():
            if attr in values:
                continue  # canonical name wins over legacy alias
            value = payload.get(key)
            if value is None or value == "":
                continue
            if attr in _FLAG_FIELDS:
                value = _as_flag(key, value)
            elif not isinstance(value, str):
                raise ValueError(f"{key} must be a string")
            values[attr] = value

        instruction = values.pop("instruction", "")
        return cls(instruction=instruction.strip(), **values)


@dataclass
class WorkingCopy:
    path: str
    has_remote: bool = False
    current_branch: str = ""


@dataclass(frozen=True)
class ProcessResult:
    command: list[str]
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    cancelled: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled

    @property
    def output(self) -> str:
        """stdout and stderr joined, for folding into stage output."""
        parts = [p.strip() for p in (self.stdout, self.stderr) if p and p.strip()]
        return "\n".join(parts)


@dataclass(frozen=True)
class StageResult:
    stage: str
    success: bool
    output: str = ""
    error: str | None = None
    error_kind: str | None = None
    timed_out: bool = False
    skipped: bool = False
    reason: str | None = None
    details: dict = field(default_factory=dict)

    @classmethod
    def skip(cls, stage, reason, success=False):
        return cls(stage=stage, success=success, skipped=True, reason=reason)


@dataclass
class PipelineResult:
    stages: list[StageResult] = field(default_factory=list)
    branch: str = ""
    working_copy_path: str = ""
    aborted: str | None = None      # fatal error kind when the run stopped early
    error: str | None = None

    @property
    def success(self) -> bool:
        """True only if the agent stage ran and succeeded."""
        agent = self.stage("agent")
        return bool(agent and agent.success)

    def stage(self, name) -> StageResult | None:
        for result in self.stages:
            if result.stage == name:
                return result
        return None
