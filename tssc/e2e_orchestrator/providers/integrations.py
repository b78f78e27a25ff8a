"""Cluster integration secrets: provider credentials, signing keys, TAS, ACS and TPA."""

import base64
import logging
from abc import ABC, abstractmethod

from tssc.e2e_orchestrator.errors import NotFoundError
from tssc.e2e_orchestrator.models.provider_config import (
    AcsConfig,
    AzureDevOpsConfig,
    BitbucketConfig,
    GitHubConfig,
    GitLabConfig,
    JenkinsConfig,
    TasConfig,
    TpaConfig,
)
from tssc.e2e_orchestrator.providers.kube import KubeClient

logger = logging.getLogger(__name__)

INTEGRATION_NAMESPACE = "tssc"
SIGNING_SECRET = "signing-secrets"
SIGNING_NAMESPACE = "openshift-pipelines"
TAS_SECRET = "rhtap-tas-integration"
ACS_SECRET = "rhtap-acs-integration"
TPA_SECRET = "rhtap-trustification-integration"


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _require(secret: dict[str, str], key: str, secret_name: str) -> str:
    value = secret.get(key)
    if not value:
        raise NotFoundError(f"Key {key} not found in secret {secret_name}")
    return value


class CredentialStore(ABC):
    """Source of the cosign signing material, all values base64 encoded."""

    @abstractmethod
    async def get_cosign_public_key(self) -> str:
        """Return the base64 encoded cosign public key."""

    @abstractmethod
    async def get_encoded_cosign_private_key(self) -> str:
        """Return the base64 encoded cosign private key."""

    @abstractmethod
    async def get_encoded_cosign_private_key_password(self) -> str:
        """Return the base64 encoded cosign private key password."""


class KubeCredentialStore(CredentialStore):
    """Cosign material read from the pipelines signing secret."""

    def __init__(self, kube: KubeClient) -> None:
        """Initialize with a Kubernetes client."""
        self.kube = kube
        self._secret: dict[str, str] | None = None

    async def _signing_secret(self) -> dict[str, str]:
        if self._secret is None:
            self._secret = await self.kube.get_secret(SIGNING_SECRET, SIGNING_NAMESPACE)
        return self._secret

    async def get_cosign_public_key(self) -> str:
        """Return the base64 encoded cosign public key."""
        secret = await self._signing_secret()
        return _b64(_require(secret, "cosign.pub", SIGNING_SECRET))

    async def get_encoded_cosign_private_key(self) -> str:
        """Return the base64 encoded cosign private key."""
        secret = await self._signing_secret()
        return _b64(_require(secret, "cosign.key", SIGNING_SECRET))

    async def get_encoded_cosign_private_key_password(self) -> str:
        """Return the base64 encoded cosign private key password."""
        secret = await self._signing_secret()
        return _b64(_require(secret, "cosign.password", SIGNING_SECRET))


async def load_tas_config(kube: KubeClient) -> TasConfig:
    """Read TUF and Rekor endpoints from the TAS integration secret."""
    secret = await kube.get_secret(TAS_SECRET, INTEGRATION_NAMESPACE)
    return TasConfig(
        tuf_url=_require(secret, "tuf_url", TAS_SECRET),
        rekor_url=_require(secret, "rekor_url", TAS_SECRET),
    )


async def load_acs_config(kube: KubeClient) -> AcsConfig:
    """Read the ACS endpoint and token from the ACS integration secret."""
    secret = await kube.get_secret(ACS_SECRET, INTEGRATION_NAMESPACE)
    return AcsConfig(
        endpoint=_require(secret, "endpoint", ACS_SECRET),
        token=_require(secret, "token", ACS_SECRET),
    )


async def load_tpa_config(kube: KubeClient) -> TpaConfig:
    """Read SBOM store endpoints and OIDC client from the TPA integration secret."""
    secret = await kube.get_secret(TPA_SECRET, INTEGRATION_NAMESPACE)
    return TpaConfig(
        bombastic_api_url=_require(secret, "bombastic_api_url", TPA_SECRET),
        oidc_issuer_url=_require(secret, "oidc_issuer_url", TPA_SECRET),
        oidc_client_id=_require(secret, "oidc_client_id", TPA_SECRET),
        oidc_client_secret=_require(secret, "oidc_client_secret", TPA_SECRET),
        supported_cyclonedx_version=secret.get("supported_cyclonedx_version", ""),
    )


GITHUB_SECRET = "tssc-github-integration"
GITLAB_SECRET = "tssc-gitlab-integration"
BITBUCKET_SECRET = "tssc-bitbucket-integration"
JENKINS_SECRET = "tssc-jenkins-integration"
AZURE_SECRET = "tssc-azure-integration"


async def load_github_config(kube: KubeClient, owner: str) -> GitHubConfig:
    """Read the GitHub token and host from the GitHub integration secret."""
    secret = await kube.get_secret(GITHUB_SECRET, INTEGRATION_NAMESPACE)
    host = secret.get("host") or "github.com"
    base_url = "https://api.github.com" if host == "github.com" else f"https://{host}/api/v3"
    return GitHubConfig(
        token=_require(secret, "token", GITHUB_SECRET),
        owner=owner,
        host=host,
        base_url=base_url,
    )


async def load_gitlab_config(kube: KubeClient) -> GitLabConfig:
    """Read the GitLab token, group and host from the GitLab integration secret."""
    secret = await kube.get_secret(GITLAB_SECRET, INTEGRATION_NAMESPACE)
    host = secret.get("host") or "gitlab.com"
    return GitLabConfig(
        token=_require(secret, "token", GITLAB_SECRET),
        group=_require(secret, "group", GITLAB_SECRET),
        host=host,
        base_url=f"https://{host}/api/v4",
    )


async def load_bitbucket_config(
    kube: KubeClient, workspace: str, project: str
) -> BitbucketConfig:
    """Read the Bitbucket app password from the Bitbucket integration secret."""
    secret = await kube.get_secret(BITBUCKET_SECRET, INTEGRATION_NAMESPACE)
    return BitbucketConfig(
        username=_require(secret, "username", BITBUCKET_SECRET),
        app_password=_require(secret, "appPassword", BITBUCKET_SECRET),
        workspace=workspace,
        project=project,
        host=secret.get("host") or "bitbucket.org",
    )


async def load_jenkins_config(kube: KubeClient) -> JenkinsConfig:
    """Read the Jenkins URL and API token from the Jenkins integration secret."""
    secret = await kube.get_secret(JENKINS_SECRET, INTEGRATION_NAMESPACE)
    return JenkinsConfig(
        url=_require(secret, "baseUrl", JENKINS_SECRET),
        username=_require(secret, "username", JENKINS_SECRET),
        token=_require(secret, "token", JENKINS_SECRET),
    )


async def load_azure_config(kube: KubeClient, project: str) -> AzureDevOpsConfig:
    """Read the Azure DevOps organization and token from the Azure integration secret."""
    secret = await kube.get_secret(AZURE_SECRET, INTEGRATION_NAMESPACE)
    return AzureDevOpsConfig(
        token=_require(secret, "token", AZURE_SECRET),
        organization=_require(secret, "organization", AZURE_SECRET),
        project=project,
        host=secret.get("host") or "dev.azure.com",
    )
