"""Azure Pipelines CI provider."""

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

import aiohttp

from tssc.e2e_orchestrator.config import Timeouts
from tssc.e2e_orchestrator.errors import NotFoundError, TsscError
from tssc.e2e_orchestrator.http import HttpClient
from tssc.e2e_orchestrator.models.enums import CIType, EventType, GitType, PipelineStatus
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.provider_config import AzureDevOpsConfig
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.providers.ci.base import CIProvider, JobInfo, assemble_job_logs

logger = logging.getLogger(__name__)

API_VERSION = "7.1"
PERMISSIONS_API_VERSION = "7.1-preview.1"
AZURE_PIPELINE_FILE = "azure-pipelines.yml"

_RESULTS = {
    "succeeded": PipelineStatus.SUCCESS,
    "failed": PipelineStatus.FAILURE,
    "partiallysucceeded": PipelineStatus.FAILURE,
    "canceled": PipelineStatus.CANCELLED,
}
_STATES = {
    "inprogress": PipelineStatus.RUNNING,
    "cancelling": PipelineStatus.RUNNING,
    "notstarted": PipelineStatus.PENDING,
    "postponed": PipelineStatus.PENDING,
}
_ENDPOINT_TYPES = {
    GitType.GITHUB: "github",
    GitType.GITLAB: "gitlab",
    GitType.BITBUCKET: "bitbucket",
}
_REPOSITORY_TYPES = {
    GitType.GITHUB: "gitHub",
    GitType.GITLAB: "gitLab",
    GitType.BITBUCKET: "bitbucket",
}


def azure_http_client(config: AzureDevOpsConfig) -> HttpClient:
    """Build an organization scoped client authenticating with a PAT."""
    return HttpClient(
        f"https://{config.host}/{config.organization}",
        "azure",
        auth=aiohttp.BasicAuth("", config.token),
    )


def azure_build_status(build: dict[str, Any]) -> PipelineStatus:
    """Map a build's status and result to a status."""
    state = str(build.get("status") or "").lower()
    if state == "completed":
        return _RESULTS.get(str(build.get("result") or "").lower(), PipelineStatus.UNKNOWN)
    return _STATES.get(state, PipelineStatus.UNKNOWN)


def build_source_sha(build: dict[str, Any]) -> str | None:
    """Return the commit a build ran for."""
    trigger_info = build.get("triggerInfo") or {}
    sha = trigger_info.get("ci.sourceSha") or build.get("sourceVersion")
    return str(sha).lower() if sha else None


class AzureCI(CIProvider):
    """Azure Pipelines named after the component repositories."""

    ci_type = CIType.AZURE

    def __init__(
        self,
        component_name: str,
        config: AzureDevOpsConfig,
        git_type: GitType = GitType.GITHUB,
        http: HttpClient | None = None,
        timeouts: Timeouts | None = None,
    ) -> None:
        """Initialize provider for the configured organization and project."""
        super().__init__(component_name, timeouts)
        self.config = config
        self.git_type = git_type
        self.http = http or azure_http_client(config)
        self._definition_ids: dict[str, int] = {}

    def _api(self, path: str) -> str:
        return f"{quote(self.config.project)}/_apis/{path}"

    async def _get(self, path: str, params: Mapping[str, str] | None = None) -> Any:
        return await self.http.get_json(
            self._api(path), params={**(params or {}), "api-version": API_VERSION}
        )

    async def _send(
        self,
        method: str,
        path: str,
        body: object,
        api_version: str = API_VERSION,
    ) -> Any:
        response = await self.http.request(
            method,
            self._api(path),
            params={"api-version": api_version},
            json_body=body,
        )
        return response.json()

    async def get_project_id(self) -> str:
        """Return the ID of the configured project."""
        data = await self.http.get_json(
            f"_apis/projects/{quote(self.config.project)}",
            params={"api-version": API_VERSION},
        )
        if not isinstance(data, dict) or "id" not in data:
            raise NotFoundError(f"Azure project {self.config.project} not found")
        return str(data["id"])

    async def _definition_id(self, pipeline_name: str) -> int | None:
        if pipeline_name not in self._definition_ids:
            data = await self._get("build/definitions", {"name": pipeline_name})
            values = data.get("value", []) if isinstance(data, dict) else []
            if not values:
                return None
            self._definition_ids[pipeline_name] = int(values[0]["id"])
        return self._definition_ids[pipeline_name]

    async def create_service_endpoint(
        self, name: str, git_type: GitType, url: str, token: str
    ) -> str:
        """Create a service connection to the git host, reusing one with ``name``."""
        existing = await self._get("serviceendpoint/endpoints", {"endpointNames": name})
        for endpoint in existing.get("value", []) if isinstance(existing, dict) else []:
            logger.info(f"Service endpoint {name} already exists")
            return str(endpoint["id"])

        project_id = await self.get_project_id()
        data = await self._send(
            "POST",
            "serviceendpoint/endpoints",
            {
                "name": name,
                "type": _ENDPOINT_TYPES[git_type],
                "url": url,
                "authorization": {
                    "scheme": "PersonalAccessToken",
                    "parameters": {"accessToken": token},
                },
                "isShared": False,
                "serviceEndpointProjectReferences": [
                    {
                        "projectReference": {
                            "id": project_id,
                            "name": self.config.project,
                        },
                        "name": name,
                    }
                ],
            },
        )
        if not isinstance(data, dict) or "id" not in data:
            raise TsscError(f"Failed to create service endpoint {name}")
        logger.info(f"Created service endpoint {name}")
        return str(data["id"])

    async def create_pipeline(
        self,
        pipeline_name: str,
        repository_full_name: str,
        endpoint_id: str,
        yaml_path: str = AZURE_PIPELINE_FILE,
    ) -> int:
        """Create a YAML pipeline for a repository, reusing one with the same name."""
        existing = await self._definition_id(pipeline_name)
        if existing is not None:
            logger.info(f"Azure pipeline {pipeline_name} already exists")
            return existing

        data = await self._send(
            "POST",
            "pipelines",
            {
                "name": pipeline_name,
                "folder": "\\",
                "configuration": {
                    "type": "yaml",
                    "path": f"/{yaml_path}",
                    "repository": {
                        "fullName": repository_full_name,
                        "type": _REPOSITORY_TYPES[self.git_type],
                        "connection": {"id": endpoint_id},
                    },
                },
            },
        )
        if not isinstance(data, dict) or "id" not in data:
            raise TsscError(f"Failed to create Azure pipeline {pipeline_name}")
        self._definition_ids[pipeline_name] = int(data["id"])
        logger.info(f"Created Azure pipeline {pipeline_name}")
        return int(data["id"])

    async def authorize_pipeline(
        self, resource_type: str, resource_id: str, pipeline_id: int
    ) -> None:
        """Allow a pipeline to use an endpoint, variable group or queue."""
        await self._send(
            "PATCH",
            f"pipelines/pipelinePermissions/{resource_type}/{resource_id}",
            {
                "resource": {"type": resource_type, "id": resource_id},
                "pipelines": [{"id": pipeline_id, "authorized": True}],
            },
            api_version=PERMISSIONS_API_VERSION,
        )

    async def set_variable_group(
        self,
        group_name: str,
        variables: Mapping[str, str],
        secrets: Mapping[str, str] | None = None,
    ) -> str:
        """Create or replace a variable group and return its ID.

        Args:
            group_name: Variable group name
            variables: Plain values
            secrets: Values stored as secret variables

        Returns:
            ID of the variable group

        """
        existing = await self._get("distributedtask/variablegroups", {"groupName": group_name})
        groups = existing.get("value", []) if isinstance(existing, dict) else []
        project_id = await self.get_project_id()
        values = {key: {"value": value, "isSecret": False} for key, value in variables.items()}
        values.update(
            {key: {"value": value, "isSecret": True} for key, value in (secrets or {}).items()}
        )
        body = {
            "name": group_name,
            "type": "Vsts",
            "variables": values,
            "variableGroupProjectReferences": [
                {
                    "projectReference": {"id": project_id, "name": self.config.project},
                    "name": group_name,
                }
            ],
        }
        if groups:
            group_id = str(groups[0]["id"])
            await self._send("PUT", f"distributedtask/variablegroups/{group_id}", body)
            logger.info(f"Updated variable group {group_name}")
            return group_id

        data = await self._send("POST", "distributedtask/variablegroups", body)
        if not isinstance(data, dict) or "id" not in data:
            raise TsscError(f"Failed to create variable group {group_name}")
        logger.info(f"Created variable group {group_name}")
        return str(data["id"])

    async def get_variable_group_id(self, group_name: str) -> str:
        """Return the ID of a variable group.

        Raises:
            NotFoundError: If the group does not exist

        """
        data = await self._get("distributedtask/variablegroups", {"groupName": group_name})
        groups = data.get("value", []) if isinstance(data, dict) else []
        if not groups:
            raise NotFoundError(f"Variable group {group_name} not found")
        return str(groups[0]["id"])

    async def get_queue_id(self, queue_name: str) -> str:
        """Return the ID of an agent queue of the project.

        Raises:
            NotFoundError: If the project has no queue with that name

        """
        data = await self._get("distributedtask/queues", {"queueNames": queue_name})
        queues = data.get("value", []) if isinstance(data, dict) else []
        if not queues:
            raise NotFoundError(f"Agent queue {queue_name} not found")
        return str(queues[0]["id"])

    def _to_pipeline(self, build: dict[str, Any], repo: str) -> Pipeline:
        reason = str(build.get("reason") or "")
        if reason == "pullRequest":
            event = EventType.PULL_REQUEST.value
        elif reason == "manual":
            event = EventType.BUILD.value
        else:
            event = EventType.PUSH.value
        branch = str(build.get("sourceBranch") or "").removeprefix("refs/heads/")
        return Pipeline(
            id=str(build["id"]),
            ci_type=self.ci_type,
            repository_name=repo,
            status=azure_build_status(build),
            name=f"{repo} {build.get('buildNumber', build['id'])}",
            url=(build.get("_links") or {}).get("web", {}).get("href"),
            sha=build_source_sha(build),
            branch=branch or None,
            event_type=event,
            start_time=build.get("startTime"),
            end_time=build.get("finishTime"),
        )

    async def _builds(self, repo: str) -> list[dict[str, Any]]:
        definition_id = await self._definition_id(repo)
        if definition_id is None:
            return []
        data = await self._get(
            "build/builds",
            {"definitions": str(definition_id), "queryOrder": "queueTimeDescending"},
        )
        return data.get("value", []) if isinstance(data, dict) else []

    async def get_pipeline(
        self,
        pull_request: PullRequest,
        desired_status: PipelineStatus = PipelineStatus.RUNNING,
        event_type: EventType | None = None,
    ) -> Pipeline | None:
        """Return the newest run whose ``ci.sourceSha`` is the commit."""
        sha = pull_request.sha.lower()
        for build in await self._builds(pull_request.repository):
            pipeline = self._to_pipeline(build, pull_request.repository)
            if pipeline.sha != sha:
                continue
            if pipeline.status.reaches(desired_status):
                logger.info(f"Found Azure run {pipeline.id} ({pipeline.status.value})")
                return pipeline
        logger.info(f"No Azure run yet for {pull_request.repository}@{sha[:7]}")
        return None

    async def check_pipeline_status(self, pipeline: Pipeline) -> PipelineStatus:
        """Return the status of a run."""
        build = await self._get(f"build/builds/{pipeline.id}")
        if not isinstance(build, dict):
            return PipelineStatus.UNKNOWN
        return azure_build_status(build)

    async def list_pipelines(self) -> list[Pipeline]:
        """Return runs of both component pipelines."""
        pipelines: list[Pipeline] = []
        for repo in (self.source_repo_name, self.gitops_repo_name):
            pipelines.extend(self._to_pipeline(b, repo) for b in await self._builds(repo))
        return pipelines

    async def get_pipeline_logs(self, pipeline: Pipeline) -> str:
        """Return the log of every task record of the run's timeline."""
        timeline = await self._get(f"build/builds/{pipeline.id}/timeline")
        records = timeline.get("records", []) if isinstance(timeline, dict) else []
        jobs = [
            JobInfo(
                id=str(record["log"]["id"]),
                name=record.get("name", ""),
                steps=[(record.get("type", ""), str(record.get("result") or record.get("state")))],
            )
            for record in records
            if record.get("log") and record.get("type") == "Task"
        ]
        if not jobs:
            return f"No logs found for Azure run {pipeline.id}"

        async def _fetch(job: JobInfo) -> str:
            return await self.http.get_text(
                self._api(f"build/builds/{pipeline.id}/logs/{job.id}"),
                params={"api-version": API_VERSION},
            )

        return await assemble_job_logs(jobs, _fetch)

    async def cancel_pipeline(self, pipeline: Pipeline) -> None:
        """Request cancellation of a run."""
        await self._send("PATCH", f"build/builds/{pipeline.id}", {"status": "cancelling"})

    async def get_webhook_url(self) -> str:
        """Azure Pipelines reach the git host through service connections."""
        raise TsscError("Azure Pipelines does not use a webhook")

    def get_ci_file_path_in_repo(self) -> str:
        """Return the pipeline definition path."""
        return AZURE_PIPELINE_FILE
