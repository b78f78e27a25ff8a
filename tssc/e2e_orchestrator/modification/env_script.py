"""Patches for the ``rhtap/env.sh`` script sourced by component pipelines."""

from tssc.e2e_orchestrator.modification.content import ContentModifications

ENV_FILE_PATH = "rhtap/env.sh"
IMAGES_PARAMS_ANCHOR = "# gather images params"

DEFAULT_TUF_URL = "http://tuf.tssc-tas.svc"
DEFAULT_REKOR_URL = "http://rekor-server.tssc-tas.svc"
DEFAULT_ROX_ENDPOINT_LINE = (
    "# export ROX_CENTRAL_ENDPOINT=central-acs.apps.user.cluster.domain.com:443"
)


class RhtapEnvModifier:
    """Builder collecting env script patches."""

    def __init__(self, path: str = ENV_FILE_PATH) -> None:
        """Initialize an empty builder targeting ``path``."""
        self.path = path
        self._container = ContentModifications()

    def _export_after_anchor(self, name: str, value: str) -> "RhtapEnvModifier":
        self._container.add(
            self.path,
            IMAGES_PARAMS_ANCHOR,
            f'{IMAGES_PARAMS_ANCHOR}\nexport {name}="{value}"',
        )
        return self

    def disable_acs(self) -> "RhtapEnvModifier":
        """Turn off the ACS scan steps."""
        self._container.add(
            self.path, "export DISABLE_ACS=${DISABLE_ACS-false}", "export DISABLE_ACS=true"
        )
        return self

    def update_tuf_mirror_url(self, tuf_url: str) -> "RhtapEnvModifier":
        """Point the TUF mirror at the cluster's route."""
        self._container.add(self.path, DEFAULT_TUF_URL, tuf_url)
        return self

    def update_rekor_host(self, rekor_url: str) -> "RhtapEnvModifier":
        """Point the Rekor host at the cluster's route."""
        self._container.add(self.path, DEFAULT_REKOR_URL, rekor_url)
        return self

    def update_rox_central_endpoint(self, endpoint: str) -> "RhtapEnvModifier":
        """Export the ACS central endpoint."""
        self._container.add(
            self.path,
            DEFAULT_ROX_ENDPOINT_LINE,
            f'export ROX_CENTRAL_ENDPOINT="{endpoint}"',
        )
        return self

    def enable_cosign_public_key(self, public_key: str) -> "RhtapEnvModifier":
        """Export the cosign public key."""
        return self._export_after_anchor("COSIGN_PUBLIC_KEY", public_key)

    def enable_image_registry_user(self, username: str) -> "RhtapEnvModifier":
        """Export the registry user."""
        return self._export_after_anchor("IMAGE_REGISTRY_USER", username)

    def enable_custom_root_ca(self, ca_cert: str) -> "RhtapEnvModifier":
        """Export a custom root CA certificate."""
        return self._export_after_anchor("CUSTOM_ROOT_CA", ca_cert)

    def get_modifications(self) -> ContentModifications:
        """Return the collected patches."""
        return ContentModifications(self._container.get_modifications())

    def apply_modifications(self, content: str) -> str:
        """Apply the collected patches to an env script body."""
        return self._container.apply_to_content(self.path, content)
