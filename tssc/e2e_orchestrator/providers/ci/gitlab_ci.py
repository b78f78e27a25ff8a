"""GitLab CI provider."""

import logging
from typing import Any

from tssc.e2e_orchestrator.config import Timeouts
from tssc.e2e_orchestrator.errors import TsscError
from tssc.e2e_orchestrator.http import HttpClient
from tssc.e2e_orchestrator.models.enums import CIType, EventType, PipelineStatus
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.provider_config import GitLabConfig
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.providers.ci.base import CIProvider, JobInfo, assemble_job_logs
from tssc.e2e_orchestrator.providers.git.gitlab import gitlab_http_client, project_path

logger = logging.getLogger(__name__)

GITLAB_CI_FILE = ".gitlab-ci.yml"

_STATUSES = {
    "success": PipelineStatus.SUCCESS,
    "failed": PipelineStatus.FAILURE,
    "skipped": PipelineStatus.FAILURE,
    "canceled": PipelineStatus.CANCELLED,
    "cancelled": PipelineStatus.CANCELLED,
    "running": PipelineStatus.RUNNING,
    "pending": PipelineStatus.PENDING,
    "created": PipelineStatus.PENDING,
    "waiting_for_resource": PipelineStatus.PENDING,
    "preparing": PipelineStatus.PENDING,
    "manual": PipelineStatus.PENDING,
    "scheduled": PipelineStatus.PENDING,
}
_SOURCES = {
    "merge_request_event": EventType.PULL_REQUEST.value,
    "push": EventType.PUSH.value,
}


def gitlab_pipeline_status(status: str | None) -> PipelineStatus:
    """Map a GitLab pipeline status to a status."""
    return _STATUSES.get((status or "").lower(), PipelineStatus.UNKNOWN)


class GitLabCI(CIProvider):
    """Pipelines of the component projects."""

    ci_type = CIType.GITLAB_CI

    def __init__(
        self,
        component_name: str,
        config: GitLabConfig,
        http: HttpClient | None = None,
        timeouts: Timeouts | None = None,
    ) -> None:
        """Initialize provider for projects of ``config.group``."""
        super().__init__(component_name, timeouts)
        self.group = config.group
        self.http = http or gitlab_http_client(config)

    def _project(self, repo: str) -> str:
        return project_path(self.group, repo)

    def _to_pipeline(self, data: dict[str, Any], repo: str) -> Pipeline:
        pipeline = Pipeline.for_gitlab(
            pipeline_id=int(data["id"]),
            repository_name=repo,
            status=gitlab_pipeline_status(data.get("status")),
            sha=data.get("sha"),
            url=data.get("web_url"),
        )
        source = data.get("source")
        pipeline.event_type = _SOURCES.get(source, source)
        pipeline.branch = data.get("ref")
        return pipeline

    async def _project_pipelines(
        self, repo: str, sha: str | None = None
    ) -> list[dict[str, Any]]:
        params = {"per_page": "100", "order_by": "id", "sort": "desc"}
        if sha:
            params["sha"] = sha
        data = await self.http.get_json(f"{self._project(repo)}/pipelines", params=params)
        return data if isinstance(data, list) else []

    async def get_pipeline(
        self,
        pull_request: PullRequest,
        desired_status: PipelineStatus = PipelineStatus.RUNNING,
        event_type: EventType | None = None,
    ) -> Pipeline | None:
        """Return the newest pipeline for the commit and event."""
        for data in await self._project_pipelines(pull_request.repository, pull_request.sha):
            pipeline = self._to_pipeline(data, pull_request.repository)
            if event_type is not None and pipeline.event_type != event_type.value:
                continue
            if pipeline.status.reaches(desired_status):
                logger.info(f"Found GitLab pipeline {pipeline.id} ({pipeline.status.value})")
                return pipeline
        logger.info(
            f"No GitLab pipeline yet for {pull_request.repository}@{pull_request.sha[:7]}"
        )
        return None

    async def check_pipeline_status(self, pipeline: Pipeline) -> PipelineStatus:
        """Return the status of a pipeline."""
        data = await self.http.get_json(
            f"{self._project(pipeline.repository_name)}/pipelines/{pipeline.id}"
        )
        if not isinstance(data, dict):
            return PipelineStatus.UNKNOWN
        return gitlab_pipeline_status(data.get("status"))

    async def list_pipelines(self) -> list[Pipeline]:
        """Return pipelines of both component projects."""
        pipelines: list[Pipeline] = []
        for repo in (self.source_repo_name, self.gitops_repo_name):
            pipelines.extend(
                self._to_pipeline(data, repo) for data in await self._project_pipelines(repo)
            )
        return pipelines

    async def get_pipeline_logs(self, pipeline: Pipeline) -> str:
        """Return the trace of every job of the pipeline."""
        project = self._project(pipeline.repository_name)
        data = await self.http.get_json(
            f"{project}/pipelines/{pipeline.id}/jobs", params={"per_page": "100"}
        )
        if not isinstance(data, list) or not data:
            raise TsscError(
                f"No jobs found in project {pipeline.repository_name} "
                f"for pipeline #{pipeline.id}"
            )
        jobs = [
            JobInfo(
                id=str(job["id"]),
                name=job.get("name", ""),
                steps=[(job.get("stage", ""), job.get("status", ""))],
            )
            for job in data
        ]

        async def _fetch(job: JobInfo) -> str:
            return await self.http.get_text(f"{project}/jobs/{job.id}/trace")

        return await assemble_job_logs(jobs, _fetch)

    async def cancel_pipeline(self, pipeline: Pipeline) -> None:
        """Cancel a pipeline."""
        await self.http.request(
            "POST",
            f"{self._project(pipeline.repository_name)}/pipelines/{pipeline.id}/cancel",
        )

    async def get_webhook_url(self) -> str:
        """GitLab CI is triggered natively and has no webhook."""
        raise TsscError("GitLab CI does not use a webhook")

    def get_ci_file_path_in_repo(self) -> str:
        """Return the pipeline definition path."""
        return GITLAB_CI_FILE
