"""GitHub Actions CI provider."""

import logging
from datetime import datetime
from typing import Any

from tssc.e2e_orchestrator.config import Timeouts
from tssc.e2e_orchestrator.errors import TsscError
from tssc.e2e_orchestrator.http import HttpClient
from tssc.e2e_orchestrator.models.enums import CIType, EventType, PipelineStatus
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.provider_config import GitHubConfig
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.providers.ci.base import CIProvider, JobInfo, assemble_job_logs
from tssc.e2e_orchestrator.providers.git.github import github_http_client

logger = logging.getLogger(__name__)

WORKFLOWS_DIR = ".github/workflows"
SOURCE_WORKFLOW_FILE = "build-and-update-gitops.yml"
GITOPS_WORKFLOW_FILE = "gitops-promotion.yml"

_CONCLUSIONS = {
    "success": PipelineStatus.SUCCESS,
    "neutral": PipelineStatus.SUCCESS,
    "failure": PipelineStatus.FAILURE,
    "timed_out": PipelineStatus.FAILURE,
    "action_required": PipelineStatus.FAILURE,
    "startup_failure": PipelineStatus.FAILURE,
    "cancelled": PipelineStatus.CANCELLED,
    "skipped": PipelineStatus.CANCELLED,
    "stale": PipelineStatus.CANCELLED,
}
_PENDING = frozenset({"queued", "waiting", "requested", "pending"})


def workflow_run_status(run: dict[str, Any]) -> PipelineStatus:
    """Map a workflow run's status and conclusion to a status."""
    status = (run.get("status") or "").lower()
    if status == "completed":
        return _CONCLUSIONS.get((run.get("conclusion") or "").lower(), PipelineStatus.UNKNOWN)
    if status == "in_progress":
        return PipelineStatus.RUNNING
    if status in _PENDING:
        return PipelineStatus.PENDING
    return PipelineStatus.UNKNOWN


def _created_at(run: dict[str, Any]) -> datetime:
    value = run.get("created_at")
    if not value:
        return datetime.min
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)


def latest_per_workflow(runs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Keep only the most recent run of each workflow."""
    latest: dict[Any, dict[str, Any]] = {}
    for run in runs:
        current = latest.get(run.get("workflow_id"))
        if current is None or _created_at(run) > _created_at(current):
            latest[run.get("workflow_id")] = run
    return list(latest.values())


class GitHubActionsCI(CIProvider):
    """Workflow runs of the component repositories."""

    ci_type = CIType.GITHUB_ACTIONS

    def __init__(
        self,
        component_name: str,
        config: GitHubConfig,
        http: HttpClient | None = None,
        timeouts: Timeouts | None = None,
    ) -> None:
        """Initialize provider for repositories owned by ``config.owner``."""
        super().__init__(component_name, timeouts)
        self.owner = config.owner
        self.http = http or github_http_client(config)

    def _runs_path(self, repo: str) -> str:
        return f"repos/{self.owner}/{repo}/actions/runs"

    def _to_pipeline(self, run: dict[str, Any], repo: str) -> Pipeline:
        return Pipeline(
            id=str(run["id"]),
            ci_type=self.ci_type,
            repository_name=repo,
            status=workflow_run_status(run),
            name=run.get("name") or run.get("display_title"),
            build_number=run.get("run_number"),
            url=run.get("html_url"),
            sha=run.get("head_sha"),
            branch=run.get("head_branch"),
            event_type=run.get("event"),
            start_time=run.get("run_started_at"),
            end_time=run.get("updated_at") if run.get("status") == "completed" else None,
        )

    async def list_workflow_runs(
        self, repo: str, head_sha: str | None = None, latest: bool = False
    ) -> list[dict[str, Any]]:
        """Return workflow runs of a repository, optionally for one commit."""
        params = {"per_page": "100"}
        if head_sha:
            params["head_sha"] = head_sha
        data = await self.http.get_json(self._runs_path(repo), params=params)
        runs = data.get("workflow_runs", []) if isinstance(data, dict) else []
        return latest_per_workflow(runs) if latest else list(runs)

    async def get_pipeline(
        self,
        pull_request: PullRequest,
        desired_status: PipelineStatus = PipelineStatus.RUNNING,
        event_type: EventType | None = None,
    ) -> Pipeline | None:
        """Return the newest workflow run for the commit and event."""
        runs = await self.list_workflow_runs(
            pull_request.repository, head_sha=pull_request.sha, latest=True
        )
        candidates = [
            self._to_pipeline(run, pull_request.repository)
            for run in sorted(runs, key=_created_at, reverse=True)
            if event_type is None or run.get("event") == event_type.value
        ]
        for pipeline in candidates:
            if pipeline.status.reaches(desired_status):
                logger.info(
                    f"Found workflow run {pipeline.id} ({pipeline.status.value}) "
                    f"for {pull_request.repository}"
                )
                return pipeline
        logger.info(
            f"No workflow run yet for {pull_request.repository}@{pull_request.sha[:7]}"
        )
        return None

    async def check_pipeline_status(self, pipeline: Pipeline) -> PipelineStatus:
        """Return the status of a workflow run."""
        run = await self.http.get_json(
            f"{self._runs_path(pipeline.repository_name)}/{pipeline.id}"
        )
        if not isinstance(run, dict):
            return PipelineStatus.UNKNOWN
        return workflow_run_status(run)

    async def list_pipelines(self) -> list[Pipeline]:
        """Return workflow runs of both component repositories."""
        pipelines: list[Pipeline] = []
        for repo in (self.source_repo_name, self.gitops_repo_name):
            runs = await self.list_workflow_runs(repo)
            pipelines.extend(self._to_pipeline(run, repo) for run in runs)
        return pipelines

    async def get_pipeline_logs(self, pipeline: Pipeline) -> str:
        """Return logs of every job of the run."""
        repo_path = f"repos/{self.owner}/{pipeline.repository_name}"
        data = await self.http.get_json(
            f"{self._runs_path(pipeline.repository_name)}/{pipeline.id}/jobs"
        )
        jobs = [
            JobInfo(
                id=str(job["id"]),
                name=job.get("name", ""),
                steps=[
                    (step.get("name", ""), step.get("conclusion") or step.get("status", ""))
                    for step in job.get("steps") or []
                ],
            )
            for job in (data.get("jobs", []) if isinstance(data, dict) else [])
        ]
        if not jobs:
            return f"No jobs found for workflow run {pipeline.id}"

        async def _fetch(job: JobInfo) -> str:
            return await self.http.get_text(f"{repo_path}/actions/jobs/{job.id}/logs")

        return await assemble_job_logs(jobs, _fetch)

    async def cancel_pipeline(self, pipeline: Pipeline) -> None:
        """Cancel a workflow run."""
        await self.http.request(
            "POST", f"{self._runs_path(pipeline.repository_name)}/{pipeline.id}/cancel"
        )

    async def get_webhook_url(self) -> str:
        """GitHub Actions is triggered natively and has no webhook."""
        raise TsscError("GitHub Actions does not use a webhook")

    def get_ci_file_path_in_repo(self) -> str:
        """Return the build workflow path of the source repository."""
        return f"{WORKFLOWS_DIR}/{SOURCE_WORKFLOW_FILE}"

    def get_gitops_ci_file_path_in_repo(self) -> str:
        """Return the promotion workflow path of the GitOps repository."""
        return f"{WORKFLOWS_DIR}/{GITOPS_WORKFLOW_FILE}"
