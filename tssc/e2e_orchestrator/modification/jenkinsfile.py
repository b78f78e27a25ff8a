"""Jenkinsfile patches needed to run component pipelines on the test cluster."""

from tssc.e2e_orchestrator.modification.content import ContentModifications

JENKINSFILE_PATH = "Jenkinsfile"
JENKINS_AGENT_IMAGE = "quay.io/jkopriva/rhtap-jenkins-agent:0.2"

KUBERNETES_AGENT_BLOCK = (
    "agent {\n"
    "  kubernetes {\n"
    "    label 'jenkins-agent'\n"
    "    cloud 'openshift'\n"
    "    serviceAccount 'jenkins'\n"
    "    podRetention onFailure()\n"
    "    idleMinutes '5'\n"
    "    containerTemplate {\n"
    "     name 'jnlp'\n"
    f"     image '{JENKINS_AGENT_IMAGE}'\n"
    "     ttyEnabled true\n"
    "     args '${computer.jnlpmac} ${computer.name}'\n"
    "   }\n"
    "   }\n"
    "}"
)

TPA_CREDENTIALS = (
    "TRUSTIFICATION_BOMBASTIC_API_URL",
    "TRUSTIFICATION_OIDC_ISSUER_URL",
    "TRUSTIFICATION_OIDC_CLIENT_ID",
    "TRUSTIFICATION_OIDC_CLIENT_SECRET",
    "TRUSTIFICATION_SUPPORTED_CYCLONEDX_VERSION",
)


def _credential_line(name: str) -> str:
    return f"{name} = credentials('{name}')"


def _commented(line: str) -> str:
    return f"/* {line} */"


class JenkinsfileModifier:
    """Builder collecting Jenkinsfile patches.

    Example:
        JenkinsfileModifier().update_kubernetes_agent_config().enable_cosign_public_key()

    """

    def __init__(self, path: str = JENKINSFILE_PATH) -> None:
        """Initialize an empty builder targeting ``path``."""
        self.path = path
        self._container = ContentModifications()

    def _enable_credential(self, name: str) -> "JenkinsfileModifier":
        line = _credential_line(name)
        self._container.add(self.path, _commented(line), line)
        return self

    def update_kubernetes_agent_config(self) -> "JenkinsfileModifier":
        """Run the pipeline on the cluster's kubernetes agent."""
        self._container.add(self.path, "agent any", KUBERNETES_AGENT_BLOCK)
        return self

    def enable_registry_user(self) -> "JenkinsfileModifier":
        """Un-comment the registry user credential."""
        return self._enable_credential("IMAGE_REGISTRY_USER")

    def enable_registry_password(self) -> "JenkinsfileModifier":
        """Un-comment the registry password credential."""
        return self._enable_credential("IMAGE_REGISTRY_PASSWORD")

    def disable_quay_credentials(self) -> "JenkinsfileModifier":
        """Comment out the quay.io credential."""
        line = _credential_line("QUAY_IO_CREDS")
        self._container.add(self.path, line, _commented(line))
        return self

    def enable_cosign_public_key(self) -> "JenkinsfileModifier":
        """Un-comment the cosign public key credential."""
        return self._enable_credential("COSIGN_PUBLIC_KEY")

    def enable_tpa_variables(self) -> "JenkinsfileModifier":
        """Un-comment the SBOM store credentials."""
        for name in TPA_CREDENTIALS:
            self._enable_credential(name)
        return self

    def get_modifications(self) -> ContentModifications:
        """Return the collected patches."""
        return ContentModifications(self._container.get_modifications())

    def apply_modifications(self, content: str) -> str:
        """Apply the collected patches to a Jenkinsfile body."""
        return self._container.apply_to_content(self.path, content)
