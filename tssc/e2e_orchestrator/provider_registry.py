"""Explicit registry building and caching provider handles for components."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from pydantic import BaseModel

from tssc.e2e_orchestrator.config import HarnessSettings
from tssc.e2e_orchestrator.errors import (
    InvalidConfigError,
    NotFoundError,
    UnsupportedStrategyError,
)
from tssc.e2e_orchestrator.http import HttpClient
from tssc.e2e_orchestrator.models.enums import CIType, GitType
from tssc.e2e_orchestrator.models.provider_config import (
    AcsConfig,
    DeveloperHubConfig,
    TasConfig,
    TpaConfig,
)
from tssc.e2e_orchestrator.models.test_item import TestItem
from tssc.e2e_orchestrator.providers import integrations
from tssc.e2e_orchestrator.providers.cd.argocd import ArgoCD
from tssc.e2e_orchestrator.providers.cd.base import CDProvider
from tssc.e2e_orchestrator.providers.ci.azure import AzureCI, azure_http_client
from tssc.e2e_orchestrator.providers.ci.base import CIProvider
from tssc.e2e_orchestrator.providers.ci.github_actions import GitHubActionsCI
from tssc.e2e_orchestrator.providers.ci.gitlab_ci import GitLabCI
from tssc.e2e_orchestrator.providers.ci.jenkins import JenkinsCI, jenkins_http_client
from tssc.e2e_orchestrator.providers.ci.tekton import TektonCI
from tssc.e2e_orchestrator.providers.developer_hub import (
    DEVELOPER_HUB_NAMESPACE,
    DEVELOPER_HUB_ROUTE,
    DeveloperHub,
)
from tssc.e2e_orchestrator.providers.git.base import GitProvider
from tssc.e2e_orchestrator.providers.git.bitbucket import (
    BitbucketProvider,
    bitbucket_http_client,
)
from tssc.e2e_orchestrator.providers.git.github import GitHubProvider, github_http_client
from tssc.e2e_orchestrator.providers.git.gitlab import GitLabProvider, gitlab_http_client
from tssc.e2e_orchestrator.providers.integrations import CredentialStore, KubeCredentialStore
from tssc.e2e_orchestrator.providers.kube import KubeClient
from tssc.e2e_orchestrator.providers.registry import REGISTRY_CLASSES, RegistryProvider
from tssc.e2e_orchestrator.providers.tpa import SbomStore, TpaClient

logger = logging.getLogger(__name__)

ConfigT = TypeVar("ConfigT", bound=BaseModel)


@dataclass
class ComponentProviders:
    """Provider handles bound to one component."""

    git: GitProvider
    ci: CIProvider
    cd: CDProvider
    registry: RegistryProvider


@dataclass
class IntegrationSecrets:
    """Signing and policy integrations used by post-create commands."""

    tas: TasConfig | None = None
    acs: AcsConfig | None = None
    tpa: TpaConfig | None = None


class ProviderRegistry:
    """Builds provider handles and caches clients for the whole run.

    API clients are cached by ``(token, base_url)`` so every component talking
    to the same endpoint shares rate limit tracking. Caches assume the single
    event loop of a run.
    """

    def __init__(self, settings: HarnessSettings, kube: KubeClient | None = None) -> None:
        """Initialize registry with run settings and a cluster client."""
        self.settings = settings
        self.kube = kube or KubeClient()
        self._clients: dict[tuple[str, str], HttpClient] = {}
        self._configs: dict[str, BaseModel] = {}
        self._credentials: CredentialStore | None = None
        self._integrations: IntegrationSecrets | None = None
        self._sbom_store: SbomStore | None = None
        self._developer_hub: DeveloperHub | None = None

    def http_client(
        self, token: str, base_url: str, build: Callable[[], HttpClient]
    ) -> HttpClient:
        """Return the cached client for ``(token, base_url)``, building it once."""
        key = (token, base_url)
        if key not in self._clients:
            logger.debug(f"Creating API client for {base_url}")
            self._clients[key] = build()
        return self._clients[key]

    async def _config(
        self, name: str, load: Callable[[], Awaitable[ConfigT]]
    ) -> ConfigT:
        if name not in self._configs:
            self._configs[name] = await load()
        return self._configs[name]  # type: ignore[return-value]

    async def git_provider(self, item: TestItem) -> GitProvider:
        """Build the git provider of a test item."""
        if item.git_type == GitType.GITHUB:
            if not self.settings.github_organization:
                raise InvalidConfigError("Missing env var: GITHUB_ORGANIZATION is not set")
            github = await self._config(
                "github",
                lambda: integrations.load_github_config(
                    self.kube, self.settings.github_organization
                ),
            )
            http = self.http_client(
                github.token, github.base_url, lambda: github_http_client(github)
            )
            return GitHubProvider(item.name, item.template, github, http)

        if item.git_type == GitType.GITLAB:
            gitlab = await self._config(
                "gitlab", lambda: integrations.load_gitlab_config(self.kube)
            )
            http = self.http_client(
                gitlab.token, gitlab.base_url, lambda: gitlab_http_client(gitlab)
            )
            return GitLabProvider(item.name, item.template, gitlab, http)

        if item.git_type == GitType.BITBUCKET:
            if not self.settings.bitbucket_workspace:
                raise InvalidConfigError("Missing env var: BITBUCKET_WORKSPACE is not set")
            bitbucket = await self._config(
                "bitbucket",
                lambda: integrations.load_bitbucket_config(
                    self.kube,
                    self.settings.bitbucket_workspace,
                    self.settings.bitbucket_project,
                ),
            )
            http = self.http_client(
                bitbucket.app_password,
                bitbucket.base_url,
                lambda: bitbucket_http_client(bitbucket),
            )
            return BitbucketProvider(item.name, item.template, bitbucket, http)

        raise UnsupportedStrategyError(f"Unsupported git type: {item.git_type}")

    async def ci_provider(self, item: TestItem) -> CIProvider:
        """Build the CI provider of a test item."""
        timeouts = self.settings.timeouts
        if item.ci_type == CIType.TEKTON:
            return TektonCI(item.name, self.kube, timeouts=timeouts)

        if item.ci_type == CIType.GITHUB_ACTIONS:
            github = await self._config(
                "github",
                lambda: integrations.load_github_config(
                    self.kube, self.settings.github_organization
                ),
            )
            http = self.http_client(
                github.token, github.base_url, lambda: github_http_client(github)
            )
            return GitHubActionsCI(item.name, github, http, timeouts)

        if item.ci_type == CIType.GITLAB_CI:
            gitlab = await self._config(
                "gitlab", lambda: integrations.load_gitlab_config(self.kube)
            )
            http = self.http_client(
                gitlab.token, gitlab.base_url, lambda: gitlab_http_client(gitlab)
            )
            return GitLabCI(item.name, gitlab, http, timeouts)

        if item.ci_type == CIType.JENKINS:
            jenkins = await self._config(
                "jenkins", lambda: integrations.load_jenkins_config(self.kube)
            )
            http = self.http_client(
                jenkins.token, jenkins.url, lambda: jenkins_http_client(jenkins)
            )
            return JenkinsCI(item.name, jenkins, item.git_type, http, timeouts)

        if item.ci_type == CIType.AZURE:
            if not self.settings.azure_project:
                raise InvalidConfigError("Missing env var: AZURE_PROJECT is not set")
            azure = await self._config(
                "azure",
                lambda: integrations.load_azure_config(
                    self.kube, self.settings.azure_project
                ),
            )
            http = self.http_client(
                azure.token,
                f"{azure.host}/{azure.organization}",
                lambda: azure_http_client(azure),
            )
            return AzureCI(item.name, azure, item.git_type, http, timeouts)

        raise UnsupportedStrategyError(f"Unsupported CI type: {item.ci_type}")

    def cd_provider(self, item: TestItem) -> CDProvider:
        """Build the ArgoCD provider of a test item."""
        return ArgoCD(item.name, self.kube, timeouts=self.settings.timeouts)

    async def image_registry(self, item: TestItem) -> RegistryProvider:
        """Build and initialize the image registry of a test item."""
        registry_cls = REGISTRY_CLASSES.get(item.registry_type)
        if registry_cls is None:
            raise UnsupportedStrategyError(
                f"Unsupported registry type: {item.registry_type}"
            )
        registry = registry_cls(self.settings.image_registry_org, item.name)
        await registry.initialize(self.kube)
        return registry

    async def providers_for(self, item: TestItem) -> ComponentProviders:
        """Build every provider handle of a test item."""
        return ComponentProviders(
            git=await self.git_provider(item),
            ci=await self.ci_provider(item),
            cd=self.cd_provider(item),
            registry=await self.image_registry(item),
        )

    def credentials(self) -> CredentialStore:
        """Return the process wide signing credential store."""
        if self._credentials is None:
            self._credentials = KubeCredentialStore(self.kube)
        return self._credentials

    async def integration_secrets(self) -> IntegrationSecrets:
        """Return TAS, ACS and TPA settings; missing integrations stay None."""
        if self._integrations is None:
            secrets = IntegrationSecrets()
            for field, load in (
                ("tas", integrations.load_tas_config),
                ("acs", integrations.load_acs_config),
                ("tpa", integrations.load_tpa_config),
            ):
                try:
                    setattr(secrets, field, await load(self.kube))
                except NotFoundError as e:
                    logger.warning(f"Integration {field} is not configured: {e}")
            self._integrations = secrets
        return self._integrations

    async def sbom_store(self) -> SbomStore:
        """Return the SBOM store client.

        Raises:
            InvalidConfigError: If the TPA integration is not configured

        """
        if self._sbom_store is None:
            tpa = (await self.integration_secrets()).tpa
            if tpa is None:
                raise InvalidConfigError("TPA integration secret is not configured")
            self._sbom_store = TpaClient(tpa)
        return self._sbom_store

    async def developer_hub(self) -> DeveloperHub:
        """Return the developer hub client."""
        if self._developer_hub is None:
            url = self.settings.developer_hub_url
            if not url:
                host = await self.kube.get_route_host(
                    DEVELOPER_HUB_ROUTE, DEVELOPER_HUB_NAMESPACE
                )
                url = f"https://{host}"
            self._developer_hub = DeveloperHub(DeveloperHubConfig(url=url))
        return self._developer_hub
