"""Tekton (pipelines-as-code) CI provider."""

import json
import logging
from typing import Any

from tssc.e2e_orchestrator.config import Timeouts
from tssc.e2e_orchestrator.models.enums import CIType, EventType, PipelineStatus
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.providers.ci.base import CIProvider, JobInfo, assemble_job_logs
from tssc.e2e_orchestrator.providers.kube import KubeClient

logger = logging.getLogger(__name__)

TEKTON_GROUP = "tekton.dev"
TEKTON_VERSION = "v1"
CI_NAMESPACE = "tssc-app-ci"

SHA_LABEL = "pipelinesascode.tekton.dev/sha"
EVENT_TYPE_LABEL = "pipelinesascode.tekton.dev/event-type"
REPOSITORY_LABEL = "pipelinesascode.tekton.dev/url-repository"
BRANCH_ANNOTATION = "pipelinesascode.tekton.dev/source-branch"
LOG_URL_ANNOTATION = "pipelinesascode.tekton.dev/log-url"

WEBHOOK_ROUTE = "pipelines-as-code-controller"
WEBHOOK_NAMESPACE = "openshift-pipelines"

_CANCELLED_REASONS = frozenset({"Cancelled", "PipelineRunCancelled", "StoppedRunFinally"})
_EVENT_TYPES = {
    "pull_request": EventType.PULL_REQUEST,
    "merge_request": EventType.PULL_REQUEST,
    "push": EventType.PUSH,
}


def tekton_status(run: dict[str, Any]) -> PipelineStatus:
    """Map the ``Succeeded`` condition of a PipelineRun to a status."""
    conditions = run.get("status", {}).get("conditions") or []
    condition = next((c for c in conditions if c.get("type") == "Succeeded"), None)
    if condition is None:
        if run.get("spec", {}).get("status") == "PipelineRunPending":
            return PipelineStatus.PENDING
        return PipelineStatus.UNKNOWN

    status = condition.get("status")
    reason = condition.get("reason", "")
    if status == "True":
        return PipelineStatus.SUCCESS
    if status == "False":
        if reason in _CANCELLED_REASONS:
            return PipelineStatus.CANCELLED
        return PipelineStatus.FAILURE
    if reason in ("Running", "Started"):
        return PipelineStatus.RUNNING
    if reason in ("Pending", "PipelineRunPending"):
        return PipelineStatus.PENDING
    return PipelineStatus.UNKNOWN


def tekton_event_type(run: dict[str, Any]) -> str | None:
    """Return the normalized event type of a PipelineRun."""
    label = run.get("metadata", {}).get("labels", {}).get(EVENT_TYPE_LABEL)
    if not label:
        return None
    event = _EVENT_TYPES.get(label.lower())
    return event.value if event else label.lower()


class TektonCI(CIProvider):
    """PipelineRuns created by pipelines-as-code in the CI namespace."""

    ci_type = CIType.TEKTON

    def __init__(
        self,
        component_name: str,
        kube: KubeClient,
        namespace: str = CI_NAMESPACE,
        timeouts: Timeouts | None = None,
    ) -> None:
        """Initialize provider reading PipelineRuns from ``namespace``."""
        super().__init__(component_name, timeouts)
        self.kube = kube
        self.namespace = namespace

    def _to_pipeline(self, run: dict[str, Any], repository: str) -> Pipeline:
        metadata = run.get("metadata", {})
        labels = metadata.get("labels", {})
        annotations = metadata.get("annotations", {})
        results = run.get("status", {}).get("results")
        pipeline = Pipeline.for_tekton(
            name=metadata.get("name", ""),
            repository_name=repository,
            status=tekton_status(run),
            sha=labels.get(SHA_LABEL),
            results=json.dumps(results) if results else None,
            url=annotations.get(LOG_URL_ANNOTATION),
        )
        pipeline.event_type = tekton_event_type(run)
        pipeline.branch = annotations.get(BRANCH_ANNOTATION)
        return pipeline

    async def _list_runs(self, label_selector: str) -> list[dict[str, Any]]:
        runs = await self.kube.list_custom_objects(
            TEKTON_GROUP, TEKTON_VERSION, self.namespace, "pipelineruns", label_selector
        )
        # Newest first
        return sorted(
            runs,
            key=lambda r: r.get("metadata", {}).get("creationTimestamp", ""),
            reverse=True,
        )

    async def get_pipeline(
        self,
        pull_request: PullRequest,
        desired_status: PipelineStatus = PipelineStatus.RUNNING,
        event_type: EventType | None = None,
    ) -> Pipeline | None:
        """Return the newest PipelineRun labelled with the commit and event."""
        selector = f"{SHA_LABEL}={pull_request.sha}"
        if event_type is not None:
            selector += f",{EVENT_TYPE_LABEL}={event_type.value}"

        for run in await self._list_runs(selector):
            pipeline = self._to_pipeline(run, pull_request.repository)
            if pipeline.status.reaches(desired_status):
                logger.info(f"Found PipelineRun {pipeline.name} ({pipeline.status.value})")
                return pipeline

        logger.info(
            f"No PipelineRun yet for {pull_request.repository}@{pull_request.sha[:7]} "
            f"with status {desired_status.value}"
        )
        return None

    async def check_pipeline_status(self, pipeline: Pipeline) -> PipelineStatus:
        """Return the status of the named PipelineRun."""
        run = await self.kube.get_custom_object(
            TEKTON_GROUP, TEKTON_VERSION, self.namespace, "pipelineruns", pipeline.id
        )
        if run is None:
            logger.warning(f"PipelineRun {pipeline.id} not found")
            return PipelineStatus.UNKNOWN
        return tekton_status(run)

    async def list_pipelines(self) -> list[Pipeline]:
        """Return PipelineRuns of both component repositories."""
        pipelines: list[Pipeline] = []
        for repo in (self.source_repo_name, self.gitops_repo_name):
            runs = await self._list_runs(f"{REPOSITORY_LABEL}={repo}")
            pipelines.extend(self._to_pipeline(run, repo) for run in runs)
        return pipelines

    async def _task_runs(self, pipeline: Pipeline) -> list[dict[str, Any]]:
        run = await self.kube.get_custom_object(
            TEKTON_GROUP, TEKTON_VERSION, self.namespace, "pipelineruns", pipeline.id
        )
        if run is None:
            return []
        refs = [
            ref
            for ref in run.get("status", {}).get("childReferences") or []
            if ref.get("kind") == "TaskRun"
        ]
        task_runs = []
        for ref in refs:
            task_run = await self.kube.get_custom_object(
                TEKTON_GROUP, TEKTON_VERSION, self.namespace, "taskruns", ref["name"]
            )
            if task_run is not None:
                task_runs.append(task_run)
        return task_runs

    async def get_pipeline_logs(self, pipeline: Pipeline) -> str:
        """Return the step container logs of every TaskRun."""
        task_runs = await self._task_runs(pipeline)
        if not task_runs:
            return f"No TaskRuns found for PipelineRun {pipeline.id}"

        by_name = {tr["metadata"]["name"]: tr for tr in task_runs}
        ordered = sorted(
            task_runs, key=lambda tr: tr.get("status", {}).get("startTime") or ""
        )
        jobs = []
        for task_run in ordered:
            labels = task_run.get("metadata", {}).get("labels", {})
            steps = [
                (
                    step.get("name", ""),
                    step.get("terminated", {}).get("reason")
                    or ("Running" if "running" in step else "Waiting"),
                )
                for step in task_run.get("status", {}).get("steps") or []
            ]
            jobs.append(
                JobInfo(
                    id=task_run["metadata"]["name"],
                    name=labels.get("tekton.dev/pipelineTask", task_run["metadata"]["name"]),
                    steps=steps,
                )
            )

        async def _fetch(job: JobInfo) -> str:
            status = by_name[job.id].get("status", {})
            pod = status.get("podName")
            if not pod:
                return ""
            logs = []
            for step in status.get("steps") or []:
                container = step.get("container") or f"step-{step.get('name')}"
                log = await self.kube.get_pod_container_log(pod, self.namespace, container)
                if log:
                    logs.append(log)
            return "\n".join(logs)

        # TaskRun names are not numeric, keep start time order
        return await assemble_job_logs(jobs, _fetch, sort=False)

    async def cancel_pipeline(self, pipeline: Pipeline) -> None:
        """Cancel a PipelineRun by setting its spec status."""
        await self.kube.patch_custom_object(
            TEKTON_GROUP,
            TEKTON_VERSION,
            self.namespace,
            "pipelineruns",
            pipeline.id,
            {"spec": {"status": "Cancelled"}},
        )

    async def get_webhook_url(self) -> str:
        """Return the pipelines-as-code controller route."""
        host = await self.kube.get_route_host(WEBHOOK_ROUTE, WEBHOOK_NAMESPACE)
        return f"https://{host}"

    def get_ci_file_path_in_repo(self) -> str:
        """Return the PipelineRun definitions directory."""
        return ".tekton"
