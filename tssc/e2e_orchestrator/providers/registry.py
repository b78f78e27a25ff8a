"""Image registry providers backed by cluster integration secrets."""

import base64
import json
import logging
from abc import ABC, abstractmethod

from tssc.e2e_orchestrator.errors import InvalidConfigError, NotFoundError
from tssc.e2e_orchestrator.models.enums import RegistryType
from tssc.e2e_orchestrator.providers.kube import KubeClient

logger = logging.getLogger(__name__)

REGISTRY_SECRET_NAMESPACE = "tssc"


class RegistryProvider(ABC):
    """Image registry the component image is pushed to."""

    secret_name: str = ""

    def __init__(self, organization: str, image_name: str) -> None:
        """Initialize with the image organization and repository name."""
        self.organization = organization
        self.image_name = image_name
        self._secret: dict[str, str] = {}

    async def initialize(self, kube: KubeClient) -> None:
        """Load the integration secret holding credentials and URL."""
        self._secret = await kube.get_secret(self.secret_name, REGISTRY_SECRET_NAMESPACE)
        logger.info(
            f"Loaded {self.get_registry_type().value} registry integration "
            f"for {self.get_registry_host()}"
        )

    @abstractmethod
    def get_registry_type(self) -> RegistryType:
        """Return the registry variant."""

    @abstractmethod
    def get_url(self) -> str:
        """Return the registry URL."""

    def get_token(self) -> str | None:
        """Return an API token, when the registry uses one."""
        return None

    def get_docker_config(self) -> str:
        """Return the raw ``.dockerconfigjson`` document."""
        config = self._secret.get(".dockerconfigjson")
        if not config:
            raise NotFoundError(f"Secret {self.secret_name} has no .dockerconfigjson")
        return config

    def _auths(self) -> dict[str, dict[str, str]]:
        try:
            auths = json.loads(self.get_docker_config()).get("auths") or {}
        except (ValueError, AttributeError) as e:
            raise InvalidConfigError(
                f"Invalid docker config in secret {self.secret_name}: {e}"
            ) from e
        if not auths:
            raise InvalidConfigError("No registry hosts found in Docker config")
        return auths

    def get_registry_host(self) -> str:
        """Return the first registry host of the docker config."""
        return next(iter(self._auths()))

    def _credentials(self) -> tuple[str, str]:
        host = self.get_registry_host()
        auth = self._auths()[host].get("auth")
        if not auth:
            raise InvalidConfigError(f"Auth information not found for registry host: {host}")
        username, _, password = base64.b64decode(auth).decode("utf-8").partition(":")
        if not username or not password:
            raise InvalidConfigError(f"Malformed auth string for registry host: {host}")
        return username, password

    def get_image_registry_user(self) -> str:
        """Return the push user."""
        return self._credentials()[0]

    def get_image_registry_password(self) -> str:
        """Return the push password."""
        return self._credentials()[1]

    def get_image_repository(self) -> str:
        """Return ``host/org/image`` for the component image."""
        return f"{self.get_registry_host()}/{self.organization}/{self.image_name}"


class QuayRegistry(RegistryProvider):
    """In-cluster Quay registry."""

    secret_name = "tssc-quay-integration"

    def get_registry_type(self) -> RegistryType:
        """Return the registry variant."""
        return RegistryType.QUAY

    def get_url(self) -> str:
        """Return the registry URL."""
        return self._secret.get("url", "")

    def get_token(self) -> str | None:
        """Return the Quay API token."""
        return self._secret.get("token")


class QuayIoRegistry(QuayRegistry):
    """Hosted quay.io registry."""

    def get_registry_type(self) -> RegistryType:
        """Return the registry variant."""
        return RegistryType.QUAY_IO


class NexusRegistry(RegistryProvider):
    """Nexus repository manager."""

    secret_name = "tssc-nexus-integration"

    def get_registry_type(self) -> RegistryType:
        """Return the registry variant."""
        return RegistryType.NEXUS

    def get_url(self) -> str:
        """Return the registry URL."""
        return self._secret.get("endpoint") or self.get_registry_host()


class ArtifactoryRegistry(RegistryProvider):
    """JFrog Artifactory."""

    secret_name = "rhtap-artifactory-integration"

    def get_registry_type(self) -> RegistryType:
        """Return the registry variant."""
        return RegistryType.ARTIFACTORY

    def get_url(self) -> str:
        """Return the registry URL."""
        return self._secret.get("url") or self.get_registry_host()


REGISTRY_CLASSES: dict[RegistryType, type[RegistryProvider]] = {
    RegistryType.QUAY: QuayRegistry,
    RegistryType.QUAY_IO: QuayIoRegistry,
    RegistryType.NEXUS: NexusRegistry,
    RegistryType.ARTIFACTORY: ArtifactoryRegistry,
}
