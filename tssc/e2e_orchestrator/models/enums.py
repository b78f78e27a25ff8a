"""Enumerations shared across providers and workflow steps."""

from enum import Enum


class GitType(str, Enum):
    """Supported git hosting providers."""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"


class CIType(str, Enum):
    """Supported CI systems."""

    TEKTON = "tekton"
    GITHUB_ACTIONS = "githubactions"
    GITLAB_CI = "gitlabci"
    JENKINS = "jenkins"
    AZURE = "azure"


class RegistryType(str, Enum):
    """Supported image registries."""

    QUAY = "quay"
    QUAY_IO = "quay.io"
    NEXUS = "nexus"
    ARTIFACTORY = "artifactory"


class EventType(str, Enum):
    """Uniform label for what triggered a pipeline."""

    PULL_REQUEST = "pull_request"
    PUSH = "push"
    COMMIT = "commit"
    BUILD = "build"


class PipelineStatus(str, Enum):
    """Normalized pipeline status."""

    SUCCESS = "success"
    FAILURE = "failure"
    RUNNING = "running"
    PENDING = "pending"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition can happen."""
        return self in TERMINAL_STATUSES

    def reaches(self, desired: "PipelineStatus") -> bool:
        """Whether this status is at least as far along as ``desired``.

        Ordering is ``pending < running < {success, failure, cancelled}``.
        """
        return _PROGRESS.get(self, -1) >= _PROGRESS.get(desired, 0)


TERMINAL_STATUSES = frozenset(
    {PipelineStatus.SUCCESS, PipelineStatus.FAILURE, PipelineStatus.CANCELLED}
)

_PROGRESS = {
    PipelineStatus.PENDING: 0,
    PipelineStatus.RUNNING: 1,
    PipelineStatus.SUCCESS: 2,
    PipelineStatus.FAILURE: 2,
    PipelineStatus.CANCELLED: 2,
}


class Environment(str, Enum):
    """GitOps deployment environments."""

    DEVELOPMENT = "development"
    STAGE = "stage"
    PROD = "prod"
