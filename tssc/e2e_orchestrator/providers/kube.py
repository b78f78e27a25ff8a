"""Kubernetes access used by Tekton, ArgoCD and integration secret lookups."""

import base64
import logging
from collections.abc import Mapping
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio import config as k8s_config
from kubernetes_asyncio.client.exceptions import ApiException

from tssc.e2e_orchestrator.errors import NotFoundError, TsscError, error_from_status

logger = logging.getLogger(__name__)


def _api_error(e: ApiException, what: str) -> TsscError:
    return error_from_status(int(e.status or 0), f"{what} failed: {e.status} {e.reason}")


class KubeClient:
    """Thin async wrapper over the Kubernetes API."""

    def __init__(self, kubeconfig: str | None = None, in_cluster: bool = False) -> None:
        """Initialize client; configuration is loaded on first use.

        Args:
            kubeconfig: Path to a kubeconfig file, defaults to ``~/.kube/config``
            in_cluster: Use the service account mounted into the pod instead

        """
        self.kubeconfig = kubeconfig
        self.in_cluster = in_cluster
        self._configured = False

    async def _ensure_config(self) -> None:
        if self._configured:
            return
        if self.in_cluster:
            k8s_config.load_incluster_config()
        else:
            await k8s_config.load_kube_config(config_file=self.kubeconfig)
        self._configured = True

    async def get_secret(self, name: str, namespace: str) -> dict[str, str]:
        """Return the decoded data of a secret.

        Raises:
            NotFoundError: If the secret does not exist

        """
        await self._ensure_config()
        async with client.ApiClient() as api_client:
            v1 = client.CoreV1Api(api_client)
            try:
                secret = await v1.read_namespaced_secret(name, namespace)
            except ApiException as e:
                if e.status == 404:
                    raise NotFoundError(
                        f"Secret {name} not found in namespace {namespace}",
                        status_code=404,
                    ) from e
                raise _api_error(e, f"Reading secret {namespace}/{name}") from e

        data: Mapping[str, str] = secret.data or {}
        return {
            key: base64.b64decode(value).decode("utf-8") for key, value in data.items()
        }

    async def list_custom_objects(
        self,
        group: str,
        version: str,
        namespace: str,
        plural: str,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        """List namespaced custom resources, optionally filtered by labels."""
        await self._ensure_config()
        async with client.ApiClient() as api_client:
            api = client.CustomObjectsApi(api_client)
            kwargs = {"label_selector": label_selector} if label_selector else {}
            try:
                result = await api.list_namespaced_custom_object(
                    group, version, namespace, plural, **kwargs
                )
            except ApiException as e:
                raise _api_error(e, f"Listing {plural} in {namespace}") from e
        items = result.get("items", [])
        return items if isinstance(items, list) else []

    async def get_custom_object(
        self, group: str, version: str, namespace: str, plural: str, name: str
    ) -> dict[str, Any] | None:
        """Return a custom resource, or None when it does not exist."""
        await self._ensure_config()
        async with client.ApiClient() as api_client:
            api = client.CustomObjectsApi(api_client)
            try:
                result: dict[str, Any] = await api.get_namespaced_custom_object(
                    group, version, namespace, plural, name
                )
            except ApiException as e:
                if e.status == 404:
                    return None
                raise _api_error(e, f"Reading {plural} {namespace}/{name}") from e
        return result

    async def patch_custom_object(
        self,
        group: str,
        version: str,
        namespace: str,
        plural: str,
        name: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge-patch a custom resource."""
        await self._ensure_config()
        async with client.ApiClient() as api_client:
            api = client.CustomObjectsApi(api_client)
            try:
                result: dict[str, Any] = await api.patch_namespaced_custom_object(
                    group,
                    version,
                    namespace,
                    plural,
                    name,
                    body,
                    _content_type="application/merge-patch+json",
                )
            except ApiException as e:
                raise _api_error(e, f"Patching {plural} {namespace}/{name}") from e
        return result

    async def get_route_host(self, name: str, namespace: str) -> str:
        """Return the host of an OpenShift route.

        Raises:
            NotFoundError: If the route does not exist

        """
        route = await self.get_custom_object(
            "route.openshift.io", "v1", namespace, "routes", name
        )
        if route is None:
            raise NotFoundError(f"Route {name} not found in namespace {namespace}")
        return str(route.get("spec", {}).get("host", ""))

    async def get_pod_container_log(
        self, pod_name: str, namespace: str, container: str
    ) -> str:
        """Return the log of one container, empty when the pod is gone."""
        await self._ensure_config()
        async with client.ApiClient() as api_client:
            v1 = client.CoreV1Api(api_client)
            try:
                log: str = await v1.read_namespaced_pod_log(
                    pod_name, namespace, container=container
                )
            except ApiException as e:
                if e.status == 404:
                    logger.warning(f"Pod {namespace}/{pod_name} not found for logs")
                    return ""
                raise _api_error(e, f"Reading log of {pod_name}/{container}") from e
        return log or ""
