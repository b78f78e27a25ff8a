"""ArgoCD provider reading Application resources from the cluster."""

import asyncio
import logging
from typing import Any

from tssc.e2e_orchestrator.config import Timeouts
from tssc.e2e_orchestrator.errors import NotFoundError, SyncFailedError, TsscError
from tssc.e2e_orchestrator.models.enums import Environment
from tssc.e2e_orchestrator.providers.cd.base import CDProvider, SyncResult
from tssc.e2e_orchestrator.providers.kube import KubeClient
from tssc.e2e_orchestrator.retry import Ok, Result, Retry, RetryPolicy, Stop, retry

logger = logging.getLogger(__name__)

ARGOCD_GROUP = "argoproj.io"
ARGOCD_VERSION = "v1alpha1"
ARGOCD_PLURAL = "applications"
GITOPS_NAMESPACE = "tssc-gitops"

_FAILED_PHASES = frozenset({"Failed", "Error"})


class ApplicationState:
    """Sync, health and revision of an Application."""

    def __init__(self, application: dict[str, Any]) -> None:
        """Extract the relevant fields of an Application resource."""
        status = application.get("status") or {}
        sync = status.get("sync") or {}
        self.sync_status: str = sync.get("status") or "Unknown"
        self.revision: str = sync.get("revision") or ""
        self.health: str = (status.get("health") or {}).get("status") or "Unknown"
        operation = status.get("operationState") or {}
        self.phase: str = operation.get("phase") or ""
        self.operation_message: str = operation.get("message") or ""

    def failure(self) -> str | None:
        """Describe why the application can no longer reach the target, if so."""
        if self.sync_status == "SyncFailed":
            return "sync failed"
        if self.phase in _FAILED_PHASES:
            return f"operation {self.phase}: {self.operation_message}".rstrip(": ")
        if self.health == "Degraded":
            return "application is degraded"
        return None

    def pending(self, expected_sha: str) -> list[str]:
        """Conditions still unmet for ``expected_sha``."""
        conditions = []
        if self.sync_status != "Synced":
            conditions.append(f"sync {self.sync_status} (expected Synced)")
        if self.health != "Healthy":
            conditions.append(f"health {self.health} (expected Healthy)")
        if self.revision != expected_sha:
            conditions.append(f"revision {self.revision or '-'} (expected {expected_sha})")
        return conditions

    def __str__(self) -> str:
        """Render as ``sync/health@revision``."""
        return f"{self.sync_status}/{self.health}@{self.revision[:7] or '-'}"


class ArgoCD(CDProvider):
    """Applications named ``<component>-<environment>``."""

    def __init__(
        self,
        component_name: str,
        kube: KubeClient,
        namespace: str = GITOPS_NAMESPACE,
        timeouts: Timeouts | None = None,
    ) -> None:
        """Initialize provider for one component."""
        self.component_name = component_name
        self.kube = kube
        self.namespace = namespace
        self.timeouts = timeouts or Timeouts()

    def get_application_name(self, environment: Environment) -> str:
        """Return the Application name of an environment."""
        return f"{self.component_name}-{environment.value}"

    async def get_application(self, environment: Environment) -> dict[str, Any] | None:
        """Return the Application resource of an environment, or None."""
        return await self.kube.get_custom_object(
            ARGOCD_GROUP,
            ARGOCD_VERSION,
            self.namespace,
            ARGOCD_PLURAL,
            self.get_application_name(environment),
        )

    async def sync_application(self, environment: Environment) -> None:
        """Start a sync to the GitOps HEAD.

        Raises:
            NotFoundError: If the application does not exist

        """
        name = self.get_application_name(environment)
        if await self.get_application(environment) is None:
            raise NotFoundError(f"Application {name} not found")
        await self.kube.patch_custom_object(
            ARGOCD_GROUP,
            ARGOCD_VERSION,
            self.namespace,
            ARGOCD_PLURAL,
            name,
            {
                "operation": {
                    "initiatedBy": {"username": "tssc-e2e"},
                    "sync": {"revision": "HEAD"},
                }
            },
        )
        logger.info(f"Triggered sync of application {name}")

    async def wait_until_application_is_synced(
        self,
        environment: Environment,
        expected_sha: str,
        retries: int | None = None,
        interval: float | None = None,
    ) -> SyncResult:
        """Poll the application until it is Synced, Healthy and at ``expected_sha``.

        Sync failures, failed operations and degraded health end the wait
        early. The wait never raises; the outcome is in the result.

        Args:
            environment: Environment whose application is watched
            expected_sha: GitOps commit the application must run
            retries: Checks after the first one, defaults to the sync timeout
            interval: Seconds between checks

        Returns:
            Whether the application synced, its last sync status and a summary

        """
        retries = self.timeouts.sync_retries if retries is None else retries
        interval = self.timeouts.sync_interval if interval is None else interval
        name = self.get_application_name(environment)
        policy = RetryPolicy(
            max_retries=retries, min_timeout=interval, max_timeout=interval, factor=1
        )
        last: ApplicationState | None = None

        async def _check(attempt: int) -> Result[ApplicationState]:
            nonlocal last
            try:
                application = await self.get_application(environment)
            except TsscError as e:
                return Retry(e) if e.retryable else Stop(e)
            if application is None:
                return Retry(NotFoundError(f"Application {name} not found"))

            state = ApplicationState(application)
            last = state
            failure = state.failure()
            if failure is not None:
                return Stop(SyncFailedError(f"Application {name}: {failure}"))

            pending = state.pending(expected_sha)
            if not pending:
                return Ok(state)
            logger.info(
                f"Waiting for application {name} (check {attempt}), "
                f"pending: {', '.join(pending)}"
            )
            return Retry(SyncFailedError(f"Application {name} not synced yet"))

        start = asyncio.get_event_loop().time()
        try:
            state = await retry(_check, policy)
        except SyncFailedError as e:
            elapsed = asyncio.get_event_loop().time() - start
            status = last.sync_status if last else "Unknown"
            if last is not None and last.failure() is not None:
                message = f"{e}. State: {last}"
            else:
                message = (
                    f"{environment.value} application {name} did not sync to "
                    f"{expected_sha} after {elapsed:.0f} seconds. "
                    f"Final state: {last or 'Unknown'}"
                )
            logger.error(message)
            return SyncResult(synced=False, status=status, message=message)
        except TsscError as e:
            elapsed = asyncio.get_event_loop().time() - start
            message = f"Failed to read application {name} after {elapsed:.0f} seconds: {e}"
            logger.error(message)
            return SyncResult(synced=False, status="Unknown", message=message)

        message = (
            f"{environment.value} application successfully synced. "
            f"Health: {state.health}, Revision: {state.revision}"
        )
        logger.info(message)
        return SyncResult(synced=True, status=state.sync_status, message=message)
