"""Normalized view of a CI run across backends."""

from datetime import datetime

from pydantic import BaseModel, Field

from tssc.e2e_orchestrator.models.enums import CIType, PipelineStatus


class Pipeline(BaseModel):
    """A single CI execution."""

    id: str = Field(..., description="Backend identifier of the run")
    ci_type: CIType = Field(..., description="CI system that owns the run")
    repository_name: str = Field(..., description="Repository the run belongs to")
    status: PipelineStatus = Field(default=PipelineStatus.UNKNOWN)
    name: str | None = Field(default=None, description="Display name of the run")
    build_number: int | None = Field(default=None, description="Build number")
    job_name: str | None = Field(default=None, description="Jenkins job name")
    url: str | None = Field(default=None, description="Link to the run")
    logs: str | None = Field(default=None, description="Assembled logs, if fetched")
    results: str | None = Field(default=None, description="Run results payload")
    start_time: datetime | None = Field(default=None)
    end_time: datetime | None = Field(default=None)
    sha: str | None = Field(default=None, description="Commit SHA that triggered the run")
    branch: str | None = Field(default=None, description="Branch that triggered the run")
    event_type: str | None = Field(default=None, description="Normalized event type")

    @property
    def display_name(self) -> str:
        """Name used in log output."""
        if self.ci_type == CIType.JENKINS and self.job_name:
            return f"{self.job_name} #{self.build_number}"
        return self.name or self.id

    def is_completed(self) -> bool:
        """Return True when the run reached a terminal status."""
        return self.status.is_terminal

    def is_successful(self) -> bool:
        """Return True when the run succeeded."""
        return self.status == PipelineStatus.SUCCESS

    def is_active(self) -> bool:
        """Return True while the run is pending or running."""
        return self.status in (PipelineStatus.PENDING, PipelineStatus.RUNNING)

    @classmethod
    def for_tekton(
        cls,
        name: str,
        repository_name: str,
        status: PipelineStatus,
        sha: str | None = None,
        results: str | None = None,
        url: str | None = None,
    ) -> "Pipeline":
        """Build a pipeline for a Tekton PipelineRun, keyed by run name."""
        return cls(
            id=name,
            ci_type=CIType.TEKTON,
            repository_name=repository_name,
            status=status,
            name=name,
            sha=sha,
            results=results,
            url=url,
        )

    @classmethod
    def for_jenkins(
        cls,
        job_name: str,
        build_number: int,
        repository_name: str,
        status: PipelineStatus,
        sha: str | None = None,
        url: str | None = None,
    ) -> "Pipeline":
        """Build a pipeline for a Jenkins build, keyed by job and build number."""
        return cls(
            id=f"{job_name}-{build_number}",
            ci_type=CIType.JENKINS,
            repository_name=repository_name,
            status=status,
            name=f"{job_name} #{build_number}",
            job_name=job_name,
            build_number=build_number,
            sha=sha,
            url=url,
        )

    @classmethod
    def for_gitlab(
        cls,
        pipeline_id: int,
        repository_name: str,
        status: PipelineStatus,
        sha: str | None = None,
        url: str | None = None,
    ) -> "Pipeline":
        """Build a pipeline for a GitLab CI pipeline."""
        return cls(
            id=str(pipeline_id),
            ci_type=CIType.GITLAB_CI,
            repository_name=repository_name,
            status=status,
            name=f"Pipeline #{pipeline_id}",
            sha=sha,
            url=url,
        )
