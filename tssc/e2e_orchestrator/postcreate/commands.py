"""Commands run after a component is created to wire it to its CI system."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from tssc.e2e_orchestrator.errors import InvalidConfigError, UnsupportedStrategyError
from tssc.e2e_orchestrator.models.enums import CIType
from tssc.e2e_orchestrator.models.provider_config import AcsConfig, TasConfig, TpaConfig
from tssc.e2e_orchestrator.modification.content import ContentModifications
from tssc.e2e_orchestrator.modification.env_script import RhtapEnvModifier
from tssc.e2e_orchestrator.modification.jenkinsfile import JenkinsfileModifier
from tssc.e2e_orchestrator.modification.root_ca import (
    CUSTOM_ROOT_CA,
    supports_custom_root_ca,
    uncomment_custom_root_ca,
)
from tssc.e2e_orchestrator.modification.runner_image import runner_image_modification
from tssc.e2e_orchestrator.provider_registry import IntegrationSecrets
from tssc.e2e_orchestrator.providers.ci.azure import AZURE_PIPELINE_FILE, AzureCI
from tssc.e2e_orchestrator.providers.ci.base import CIProvider
from tssc.e2e_orchestrator.providers.ci.jenkins import DEFAULT_CREDENTIAL_ID, JenkinsCI
from tssc.e2e_orchestrator.providers.git.base import GitProvider
from tssc.e2e_orchestrator.providers.integrations import CredentialStore
from tssc.e2e_orchestrator.providers.registry import RegistryProvider

logger = logging.getLogger(__name__)

GITOPS_AUTH_USERNAME = "fakeUsername"
AZURE_DEFAULT_POOL_LINE = "name: Default"
AZURE_DEFAULT_GROUP_LINE = "- group: rhtap"
TPA_SECRET_VARIABLE = "TRUSTIFICATION_OIDC_CLIENT_SECRET"


@dataclass
class CommandContext:
    """Everything a post-create command may touch for one component."""

    component_name: str
    git: GitProvider
    ci: CIProvider
    registry: RegistryProvider
    credentials: CredentialStore
    integrations: IntegrationSecrets = field(default_factory=IntegrationSecrets)
    runner_image: str | None = None
    custom_root_ca: str | None = None

    def tas(self) -> TasConfig:
        """Return the TAS integration, which signing commands require."""
        if self.integrations.tas is None:
            raise InvalidConfigError("TAS integration secret is not configured")
        return self.integrations.tas

    def acs(self) -> AcsConfig:
        """Return the ACS integration."""
        if self.integrations.acs is None:
            raise InvalidConfigError("ACS integration secret is not configured")
        return self.integrations.acs

    def tpa(self) -> TpaConfig:
        """Return the TPA integration."""
        if self.integrations.tpa is None:
            raise InvalidConfigError("TPA integration secret is not configured")
        return self.integrations.tpa

    def jenkins(self) -> JenkinsCI:
        """Return the CI provider as Jenkins."""
        if not isinstance(self.ci, JenkinsCI):
            raise UnsupportedStrategyError(
                f"Jenkins command used with {self.ci.get_ci_type().value} CI"
            )
        return self.ci

    def azure(self) -> AzureCI:
        """Return the CI provider as Azure Pipelines."""
        if not isinstance(self.ci, AzureCI):
            raise UnsupportedStrategyError(
                f"Azure command used with {self.ci.get_ci_type().value} CI"
            )
        return self.ci


class PostCreateCommand(ABC):
    """A single idempotent setup step."""

    description: str = ""

    @property
    def name(self) -> str:
        """Command name used in logs and errors."""
        return type(self).__name__

    @abstractmethod
    async def execute(self, ctx: CommandContext) -> None:
        """Run the step for the component in ``ctx``."""


async def signing_values(ctx: CommandContext) -> dict[str, str]:
    """Cosign and registry values shared by most CI variable sets."""
    return {
        "COSIGN_PUBLIC_KEY": await ctx.credentials.get_cosign_public_key(),
        "COSIGN_SECRET_KEY": await ctx.credentials.get_encoded_cosign_private_key(),
        "COSIGN_SECRET_PASSWORD": (
            await ctx.credentials.get_encoded_cosign_private_key_password()
        ),
        "IMAGE_REGISTRY_USER": ctx.registry.get_image_registry_user(),
        "IMAGE_REGISTRY_PASSWORD": ctx.registry.get_image_registry_password(),
    }


def tpa_values(tpa: TpaConfig) -> dict[str, str]:
    """SBOM upload settings, keyed by the variable names pipelines read."""
    return {
        "TRUSTIFICATION_BOMBASTIC_API_URL": tpa.bombastic_api_url,
        "TRUSTIFICATION_OIDC_ISSUER_URL": tpa.oidc_issuer_url,
        "TRUSTIFICATION_OIDC_CLIENT_ID": tpa.oidc_client_id,
        "TRUSTIFICATION_OIDC_CLIENT_SECRET": tpa.oidc_client_secret,
        "TRUSTIFICATION_SUPPORTED_CYCLONEDX_VERSION": tpa.supported_cyclonedx_version,
    }


def public_tpa_values(tpa: TpaConfig) -> dict[str, str]:
    """SBOM upload settings without the OIDC client secret."""
    return {
        key: value
        for key, value in tpa_values(tpa).items()
        if key != TPA_SECRET_VARIABLE
    }


class CreateWebhook(PostCreateCommand):
    """Point both repositories at the CI system's webhook receiver."""

    description = "webhook creation"

    async def execute(self, ctx: CommandContext) -> None:
        """Register the CI webhook URL on the source and GitOps repositories."""
        url = await ctx.ci.get_webhook_url()
        await ctx.git.config_webhook_on_source_repo(url)
        await ctx.git.config_webhook_on_gitops_repo(url)
        logger.info(f"Configured webhook {url} on both repositories")


class AddGithubSecretsAndVariables(PostCreateCommand):
    """Actions variables and secrets used by the build and promotion workflows."""

    description = "GitHub secrets and variables"

    async def execute(self, ctx: CommandContext) -> None:
        """Set source and GitOps repository variables and secrets."""
        tas, acs, tpa = ctx.tas(), ctx.acs(), ctx.tpa()
        signing = await signing_values(ctx)
        registry_host = ctx.registry.get_registry_host()

        source_variables = {
            "IMAGE_REGISTRY": registry_host,
            "ROX_CENTRAL_ENDPOINT": acs.endpoint,
            "IMAGE_REGISTRY_USER": signing["IMAGE_REGISTRY_USER"],
            "REKOR_HOST": tas.rekor_url,
            "TUF_MIRROR": tas.tuf_url,
            "COSIGN_PUBLIC_KEY": signing["COSIGN_PUBLIC_KEY"],
        }
        source_secrets = {
            "ROX_API_TOKEN": acs.token,
            "GITOPS_AUTH_PASSWORD": ctx.git.get_token(),
            "IMAGE_REGISTRY_PASSWORD": signing["IMAGE_REGISTRY_PASSWORD"],
            "COSIGN_SECRET_PASSWORD": signing["COSIGN_SECRET_PASSWORD"],
            "COSIGN_SECRET_KEY": signing["COSIGN_SECRET_KEY"],
        }
        gitops_variables = {
            "IMAGE_REGISTRY": registry_host,
            "COSIGN_PUBLIC_KEY": signing["COSIGN_PUBLIC_KEY"],
            **public_tpa_values(tpa),
            "IMAGE_REGISTRY_USER": signing["IMAGE_REGISTRY_USER"],
            "REKOR_HOST": tas.rekor_url,
            "TUF_MIRROR": tas.tuf_url,
        }
        gitops_secrets = {
            TPA_SECRET_VARIABLE: tpa.oidc_client_secret,
            "IMAGE_REGISTRY_PASSWORD": signing["IMAGE_REGISTRY_PASSWORD"],
        }

        await ctx.git.set_variables_on_source_repo(source_variables)
        await ctx.git.set_secrets_on_source_repo(source_secrets)
        await ctx.git.set_variables_on_gitops_repo(gitops_variables)
        await ctx.git.set_secrets_on_gitops_repo(gitops_secrets)


class AddGitlabProjectVariables(PostCreateCommand):
    """GitLab CI project variables; sensitive values are stored masked."""

    description = "GitLab project variables"

    async def execute(self, ctx: CommandContext) -> None:
        """Set source and GitOps project variables."""
        tas, acs = ctx.tas(), ctx.acs()
        signing = await signing_values(ctx)

        await ctx.git.set_variables_on_source_repo(
            {
                "DISABLE_ACS": "false",
                "ROX_CENTRAL_ENDPOINT": acs.endpoint,
                "REKOR_HOST": tas.rekor_url,
                "TUF_MIRROR": tas.tuf_url,
                "COSIGN_PUBLIC_KEY": signing["COSIGN_PUBLIC_KEY"],
                "IMAGE_REGISTRY_USER": signing["IMAGE_REGISTRY_USER"],
            }
        )
        await ctx.git.set_secrets_on_source_repo(
            {
                "ROX_API_TOKEN": acs.token,
                "GITOPS_AUTH_PASSWORD": f"{GITOPS_AUTH_USERNAME}:{ctx.git.get_token()}",
                "COSIGN_SECRET_KEY": signing["COSIGN_SECRET_KEY"],
                "COSIGN_SECRET_PASSWORD": signing["COSIGN_SECRET_PASSWORD"],
                "IMAGE_REGISTRY_PASSWORD": signing["IMAGE_REGISTRY_PASSWORD"],
            }
        )
        await ctx.git.set_variables_on_gitops_repo(
            {
                "REKOR_HOST": tas.rekor_url,
                "TUF_MIRROR": tas.tuf_url,
                "COSIGN_PUBLIC_KEY": signing["COSIGN_PUBLIC_KEY"],
                "IMAGE_REGISTRY_USER": signing["IMAGE_REGISTRY_USER"],
            }
        )
        await ctx.git.set_secrets_on_gitops_repo(
            {"IMAGE_REGISTRY_PASSWORD": signing["IMAGE_REGISTRY_PASSWORD"]}
        )


class UpdateCIRunnerImage(PostCreateCommand):
    """Swap the CI runner image when ``CI_TEST_RUNNER_IMAGE`` is set."""

    description = "CI runner image update"

    async def execute(self, ctx: CommandContext) -> None:
        """Replace the runner image in the CI file of both repositories."""
        if not ctx.runner_image:
            logger.info("CI_TEST_RUNNER_IMAGE is not set, keeping the default runner image")
            return

        targets = (
            (ctx.git.get_source_repo_name(), ctx.ci.get_ci_file_path_in_repo()),
            (ctx.git.get_gitops_repo_name(), ctx.ci.get_gitops_ci_file_path_in_repo()),
        )
        owner = ctx.git.get_repo_owner()
        for repo, path in targets:
            content = await ctx.git.get_file_content_in_string(owner, repo, path)
            modifications = runner_image_modification(path, content, ctx.runner_image)
            await ctx.git.commit_changes_to_repo(
                owner,
                repo,
                modifications,
                f"Update CI Runner Image to {ctx.runner_image}",
            )
            logger.info(f"Updated runner image in {repo}/{path}")


class UncommentCustomRootCA(PostCreateCommand):
    """Let Jenkins and GitHub Actions pipelines trust a custom cluster root CA."""

    description = "custom root CA"

    async def execute(self, ctx: CommandContext) -> None:
        """Publish the CA to the CI system and enable the CI lines reading it.

        Skipped when no root CA is configured or the CI type has no such lines.
        On Jenkins the GitOps ``rhtap/env.sh`` exports the CA as well.
        """
        ca = ctx.custom_root_ca
        if not ca:
            logger.info("No custom root CA configured, skipping CUSTOM_ROOT_CA")
            return
        ci_type = ctx.ci.get_ci_type()
        if not supports_custom_root_ca(ci_type):
            logger.info(f"Skipping CUSTOM_ROOT_CA for CI type {ci_type.value}")
            return

        if ci_type == CIType.JENKINS:
            await ctx.jenkins().add_secret_text(CUSTOM_ROOT_CA, ca)
        else:
            await ctx.git.set_variables_on_source_repo({CUSTOM_ROOT_CA: ca})
            await ctx.git.set_variables_on_gitops_repo({CUSTOM_ROOT_CA: ca})

        owner = ctx.git.get_repo_owner()
        source = (ctx.git.get_source_repo_name(), ctx.ci.get_ci_file_path_in_repo())
        gitops = (
            ctx.git.get_gitops_repo_name(),
            ctx.ci.get_gitops_ci_file_path_in_repo(),
        )
        for repo, path in (source, gitops):
            content = await ctx.git.get_file_content_in_string(owner, repo, path)
            modifications = uncomment_custom_root_ca(ci_type, path, content)
            if repo == gitops[0] and ci_type == CIType.JENKINS:
                modifications.merge(
                    RhtapEnvModifier().enable_custom_root_ca(ca).get_modifications()
                )
            if modifications.is_empty():
                logger.info(f"CUSTOM_ROOT_CA absent or enabled in {repo}/{path}")
                continue
            await ctx.git.commit_changes_to_repo(
                owner,
                repo,
                modifications,
                "Uncomment CUSTOM_ROOT_CA in CI configuration",
            )
            logger.info(f"Uncommented CUSTOM_ROOT_CA in {repo}/{path}")


class CreateJenkinsFolder(PostCreateCommand):
    """Folder holding the component's jobs and credentials."""

    description = "Jenkins folder creation"

    async def execute(self, ctx: CommandContext) -> None:
        """Create the component folder."""
        await ctx.jenkins().create_folder()


class JenkinsfileAndEnvModification(PostCreateCommand):
    """Patch the Jenkinsfile (and, on GitOps, ``rhtap/env.sh``) for the test cluster."""

    description = "Jenkinsfile and env.sh modifications"

    def __init__(self, gitops: bool = False) -> None:
        """Target the GitOps repository when ``gitops`` is set, else the source one."""
        self.gitops = gitops

    @property
    def name(self) -> str:
        """Command name including the target repository."""
        target = "GitOps" if self.gitops else "Source"
        return f"{type(self).__name__}({target})"

    async def modifications(self, ctx: CommandContext) -> ContentModifications:
        """Build the patches for the targeted repository."""
        jenkinsfile = (
            JenkinsfileModifier()
            .update_kubernetes_agent_config()
            .enable_registry_password()
            .disable_quay_credentials()
        )
        if not self.gitops:
            return jenkinsfile.get_modifications()

        tas, acs = ctx.tas(), ctx.acs()
        env = (
            RhtapEnvModifier()
            .update_tuf_mirror_url(tas.tuf_url)
            .update_rekor_host(tas.rekor_url)
            .update_rox_central_endpoint(acs.endpoint)
            .enable_cosign_public_key(await ctx.credentials.get_cosign_public_key())
            .enable_image_registry_user(ctx.registry.get_image_registry_user())
        )
        return (
            ContentModifications()
            .merge(jenkinsfile.enable_tpa_variables().get_modifications())
            .merge(env.get_modifications())
        )

    async def execute(self, ctx: CommandContext) -> None:
        """Commit the patches to the targeted repository in one commit."""
        if self.gitops:
            repo, message = ctx.git.get_gitops_repo_name(), "Update GitOps repository"
        else:
            repo, message = ctx.git.get_source_repo_name(), "Update source repository"
        await ctx.git.commit_changes_to_repo(
            ctx.git.get_repo_owner(), repo, await self.modifications(ctx), message
        )


class AddJenkinsSecrets(PostCreateCommand):
    """Folder credentials read by the component Jenkinsfiles."""

    description = "Jenkins credentials"

    async def execute(self, ctx: CommandContext) -> None:
        """Store secret text and git credentials in the component folder."""
        jenkins = ctx.jenkins()
        acs = ctx.acs()
        signing = await signing_values(ctx)
        secrets = {
            "ROX_API_TOKEN": acs.token,
            "COSIGN_SECRET_KEY": signing["COSIGN_SECRET_KEY"],
            "COSIGN_SECRET_PASSWORD": signing["COSIGN_SECRET_PASSWORD"],
            "IMAGE_REGISTRY_PASSWORD": signing["IMAGE_REGISTRY_PASSWORD"],
            **tpa_values(ctx.tpa()),
        }
        for credential_id, secret in secrets.items():
            await jenkins.add_secret_text(credential_id, secret)
        await jenkins.add_username_password(
            DEFAULT_CREDENTIAL_ID, GITOPS_AUTH_USERNAME, ctx.git.get_token()
        )


class CreateJenkinsJobs(PostCreateCommand):
    """Pipeline jobs for the source and GitOps repositories."""

    description = "Jenkins jobs creation"

    async def execute(self, ctx: CommandContext) -> None:
        """Create one job per repository, named after it."""
        jenkins = ctx.jenkins()
        await jenkins.create_job(
            ctx.git.get_source_repo_name(), ctx.git.get_source_repo_url()
        )
        await jenkins.create_job(
            ctx.git.get_gitops_repo_name(), ctx.git.get_gitops_repo_url()
        )


class AddAzureVariables(PostCreateCommand):
    """Variable group named after the component, shared by both pipelines."""

    description = "Azure variable group"

    async def execute(self, ctx: CommandContext) -> None:
        """Create or replace the component variable group."""
        tas, acs, tpa = ctx.tas(), ctx.acs(), ctx.tpa()
        signing = await signing_values(ctx)
        variables = {
            "ROX_CENTRAL_ENDPOINT": acs.endpoint,
            "COSIGN_PUBLIC_KEY": signing["COSIGN_PUBLIC_KEY"],
            "IMAGE_REGISTRY_USER": signing["IMAGE_REGISTRY_USER"],
            "REKOR_HOST": tas.rekor_url,
            "TUF_MIRROR": tas.tuf_url,
            **public_tpa_values(tpa),
        }
        secrets = {
            "ROX_API_TOKEN": acs.token,
            "COSIGN_SECRET_KEY": signing["COSIGN_SECRET_KEY"],
            "COSIGN_SECRET_PASSWORD": signing["COSIGN_SECRET_PASSWORD"],
            "GITOPS_AUTH_PASSWORD": ctx.git.get_token(),
            "IMAGE_REGISTRY_PASSWORD": signing["IMAGE_REGISTRY_PASSWORD"],
            TPA_SECRET_VARIABLE: tpa.oidc_client_secret,
        }
        await ctx.azure().set_variable_group(ctx.component_name, variables, secrets)


class ModifyAzureFiles(PostCreateCommand):
    """Point the pipeline files at the test agent pool and component variable group."""

    description = "Azure pipeline file modifications"

    async def execute(self, ctx: CommandContext) -> None:
        """Patch ``azure-pipelines.yml`` in both repositories."""
        azure = ctx.azure()
        modifications = (
            ContentModifications()
            .add(
                AZURE_PIPELINE_FILE,
                AZURE_DEFAULT_POOL_LINE,
                f"name: {azure.config.agent_pool}",
            )
            .add(
                AZURE_PIPELINE_FILE,
                AZURE_DEFAULT_GROUP_LINE,
                f"- group: {ctx.component_name}",
            )
        )
        owner = ctx.git.get_repo_owner()
        for repo in (ctx.git.get_source_repo_name(), ctx.git.get_gitops_repo_name()):
            await ctx.git.commit_changes_to_repo(
                owner, repo, modifications, "Update Azure pipeline settings"
            )


class CreateAzurePipelines(PostCreateCommand):
    """Service connection, pipeline and authorizations for each repository."""

    description = "Azure pipelines creation"

    async def execute(self, ctx: CommandContext) -> None:
        """Create and authorize the source and GitOps pipelines."""
        azure = ctx.azure()
        owner = ctx.git.get_repo_owner()
        group_id = await azure.get_variable_group_id(ctx.component_name)
        queue_id = await azure.get_queue_id(azure.config.agent_pool)

        for repo in (ctx.git.get_source_repo_name(), ctx.git.get_gitops_repo_name()):
            endpoint_id = await azure.create_service_endpoint(
                repo,
                ctx.git.git_type,
                f"https://{ctx.git.get_host()}",
                ctx.git.get_token(),
            )
            pipeline_id = await azure.create_pipeline(repo, f"{owner}/{repo}", endpoint_id)
            await azure.authorize_pipeline("endpoint", endpoint_id, pipeline_id)
            await azure.authorize_pipeline("variablegroup", group_id, pipeline_id)
            await azure.authorize_pipeline("queue", queue_id, pipeline_id)
            logger.info(f"Azure pipeline {repo} is ready")
