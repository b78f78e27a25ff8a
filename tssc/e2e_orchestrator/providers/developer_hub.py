"""Developer hub scaffolder client used to create components."""

import asyncio
import logging

from tssc.e2e_orchestrator.errors import OperationTimeoutError, TsscError
from tssc.e2e_orchestrator.http import HttpClient
from tssc.e2e_orchestrator.models.provider_config import DeveloperHubConfig

logger = logging.getLogger(__name__)

DEVELOPER_HUB_ROUTE = "backstage-developer-hub"
DEVELOPER_HUB_NAMESPACE = "rhtap-dh"
TERMINAL_TASK_STATUSES = frozenset({"completed", "failed", "cancelled"})


def build_scaffold_options(
    template: str,
    name: str,
    ci_type: str,
    namespace: str,
    image_name: str,
    image_org: str,
    image_registry: str,
    host_type: str,
    git_values: dict[str, str],
) -> dict[str, object]:
    """Build the scaffolder task request for a component.

    Args:
        template: Software template name
        name: Component (and source repository) name
        ci_type: CI system the template wires up
        namespace: Namespace the component deploys into
        image_name: Image repository name
        image_org: Image organization
        image_registry: Registry host
        host_type: Git host type label, e.g. GitHub
        git_values: Git provider specific values (owner, host, repo name)

    Returns:
        Request body for ``POST /api/scaffolder/v2/tasks``

    """
    values: dict[str, str] = {
        "branch": "main",
        "hostType": host_type,
        "imageName": image_name,
        "imageOrg": image_org,
        "imageRegistry": image_registry,
        "name": name,
        "namespace": namespace,
        "owner": "user:guest",
        "repoName": name,
        "ciType": ci_type,
    }
    values.update(git_values)
    return {"templateRef": f"template:default/{template}", "values": values}


class DeveloperHub:
    """Scaffolder v2 task API."""

    def __init__(self, config: DeveloperHubConfig) -> None:
        """Initialize client for the hub at ``config.url``."""
        self.config = config
        headers = {"Content-Type": "application/json"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        self._http = HttpClient(config.url, "developer-hub", headers=headers)

    async def create_component(self, options: dict[str, object]) -> str:
        """Start a scaffolder task and return its ID."""
        logger.info(f"Creating component with template {options.get('templateRef')}")
        body = await self._http.post_json("api/scaffolder/v2/tasks", options)
        task_id = body.get("id") if isinstance(body, dict) else None
        if not task_id:
            raise TsscError("Failed to create component: no task ID in response")
        return str(task_id)

    async def get_task(self, task_id: str) -> dict[str, object]:
        """Return a scaffolder task."""
        body = await self._http.get_json(f"api/scaffolder/v2/tasks/{task_id}")
        return body if isinstance(body, dict) else {}

    async def get_task_status(self, task_id: str) -> str:
        """Return ``open``, ``processing``, ``completed``, ``failed`` or ``cancelled``."""
        task = await self.get_task(task_id)
        return str(task.get("status", ""))

    async def get_task_logs(self, task_id: str) -> str:
        """Return the task event stream."""
        return await self._http.get_text(f"api/scaffolder/v2/tasks/{task_id}/eventstream")

    async def wait_until_component_is_completed(
        self, task_id: str, timeout: float = 600, poll_interval: float = 5
    ) -> str:
        """Poll the task until it reaches a terminal status.

        Returns:
            The terminal status

        Raises:
            OperationTimeoutError: If the task is still running at the deadline

        """
        loop = asyncio.get_event_loop()
        end_time = loop.time() + timeout

        while True:
            await asyncio.sleep(poll_interval)
            status = await self.get_task_status(task_id)
            logger.info(f"Component creation status: {status}")

            if status in TERMINAL_TASK_STATUSES:
                return status

            if loop.time() >= end_time:
                raise OperationTimeoutError(
                    f"Component task {task_id} did not complete within {timeout} seconds"
                )
