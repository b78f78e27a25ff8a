"""Tests for post-create commands."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tssc.e2e_orchestrator.errors import InvalidConfigError, UnsupportedStrategyError
from tssc.e2e_orchestrator.models.enums import CIType, GitType
from tssc.e2e_orchestrator.models.provider_config import AcsConfig, TasConfig, TpaConfig
from tssc.e2e_orchestrator.modification.content import ContentModifications
from tssc.e2e_orchestrator.modification.env_script import ENV_FILE_PATH
from tssc.e2e_orchestrator.modification.jenkinsfile import JENKINSFILE_PATH
from tssc.e2e_orchestrator.postcreate.commands import (
    AddAzureVariables,
    AddGithubSecretsAndVariables,
    AddGitlabProjectVariables,
    AddJenkinsSecrets,
    CommandContext,
    CreateAzurePipelines,
    CreateJenkinsJobs,
    CreateWebhook,
    JenkinsfileAndEnvModification,
    ModifyAzureFiles,
    UncommentCustomRootCA,
    UpdateCIRunnerImage,
)
from tssc.e2e_orchestrator.provider_registry import IntegrationSecrets
from tssc.e2e_orchestrator.providers.ci.azure import AZURE_PIPELINE_FILE, AzureCI
from tssc.e2e_orchestrator.providers.ci.base import CIProvider
from tssc.e2e_orchestrator.providers.ci.jenkins import DEFAULT_CREDENTIAL_ID, JenkinsCI
from tssc.e2e_orchestrator.providers.git.base import GitProvider
from tssc.e2e_orchestrator.providers.integrations import CredentialStore
from tssc.e2e_orchestrator.providers.registry import RegistryProvider

INTEGRATIONS = IntegrationSecrets(
    tas=TasConfig(tuf_url="https://tuf", rekor_url="https://rekor"),
    acs=AcsConfig(endpoint="central:443", token="rox-token"),
    tpa=TpaConfig(
        bombastic_api_url="https://tpa",
        oidc_issuer_url="https://sso",
        oidc_client_id="cli",
        oidc_client_secret="oidc-secret",
    ),
)

WORKFLOW = """jobs:
  build:
    container:
      image: quay.io/redhat-appstudio/rhtap-task-runner:latest
"""


def _git(git_type: GitType = GitType.GITHUB) -> MagicMock:
    git = MagicMock(spec=GitProvider)
    git.git_type = git_type
    git.get_repo_owner.return_value = "tssc-org"
    git.get_source_repo_name.return_value = "go-abcdefgh"
    git.get_gitops_repo_name.return_value = "go-abcdefgh-gitops"
    git.get_source_repo_url.return_value = "https://github.com/tssc-org/go-abcdefgh"
    git.get_gitops_repo_url.return_value = (
        "https://github.com/tssc-org/go-abcdefgh-gitops"
    )
    git.get_host.return_value = "github.com"
    git.get_token.return_value = "git-token"
    for name in (
        "config_webhook_on_source_repo",
        "config_webhook_on_gitops_repo",
        "set_variables_on_source_repo",
        "set_variables_on_gitops_repo",
        "set_secrets_on_source_repo",
        "set_secrets_on_gitops_repo",
        "commit_changes_to_repo",
    ):
        setattr(git, name, AsyncMock())
    git.get_file_content_in_string = AsyncMock(return_value=WORKFLOW)
    return git


def _context(
    ci: MagicMock,
    git: MagicMock | None = None,
    integrations: IntegrationSecrets = INTEGRATIONS,
    runner_image: str | None = None,
) -> CommandContext:
    registry = MagicMock(spec=RegistryProvider)
    registry.get_registry_host.return_value = "quay.io"
    registry.get_image_registry_user.return_value = "robot"
    registry.get_image_registry_password.return_value = "robot-pw"

    credentials = MagicMock(spec=CredentialStore)
    credentials.get_cosign_public_key = AsyncMock(return_value="PUB")
    credentials.get_encoded_cosign_private_key = AsyncMock(return_value="KEY")
    credentials.get_encoded_cosign_private_key_password = AsyncMock(return_value="PASS")

    return CommandContext(
        component_name="go-abcdefgh",
        git=git or _git(),
        ci=ci,
        registry=registry,
        credentials=credentials,
        integrations=integrations,
        runner_image=runner_image,
    )


def _ci(ci_type: CIType = CIType.GITHUB_ACTIONS) -> MagicMock:
    ci = MagicMock(spec=CIProvider)
    ci.get_ci_type.return_value = ci_type
    ci.get_webhook_url = AsyncMock(return_value="https://hooks.example.com")
    ci.get_ci_file_path_in_repo.return_value = ".github/workflows/build.yaml"
    ci.get_gitops_ci_file_path_in_repo.return_value = ".github/workflows/promote.yaml"
    return ci


@pytest.fixture
def jenkins() -> MagicMock:
    """Create a Jenkins CI provider with mocked calls."""
    ci = MagicMock(spec=JenkinsCI)
    ci.get_ci_type.return_value = CIType.JENKINS
    ci.add_secret_text = AsyncMock()
    ci.add_username_password = AsyncMock()
    ci.create_job = AsyncMock()
    return ci


@pytest.fixture
def azure() -> MagicMock:
    """Create an Azure CI provider with mocked calls."""
    ci = MagicMock(spec=AzureCI)
    ci.get_ci_type.return_value = CIType.AZURE
    ci.config = MagicMock(agent_pool="tssc-pool")
    ci.set_variable_group = AsyncMock(return_value="7")
    ci.get_variable_group_id = AsyncMock(return_value="7")
    ci.get_queue_id = AsyncMock(return_value="9")
    ci.create_service_endpoint = AsyncMock(side_effect=["e1", "e2"])
    ci.create_pipeline = AsyncMock(side_effect=[11, 12])
    ci.authorize_pipeline = AsyncMock()
    return ci


async def test_create_webhook_on_both_repositories() -> None:
    """The CI webhook URL is registered on source and GitOps repositories."""
    ctx = _context(_ci(CIType.TEKTON))

    await CreateWebhook().execute(ctx)

    ctx.git.config_webhook_on_source_repo.assert_awaited_once_with(
        "https://hooks.example.com"
    )
    ctx.git.config_webhook_on_gitops_repo.assert_awaited_once_with(
        "https://hooks.example.com"
    )


async def test_github_secrets_and_variables() -> None:
    """Sensitive values go to secrets and the TPA secret only to GitOps."""
    ctx = _context(_ci())

    await AddGithubSecretsAndVariables().execute(ctx)

    source_variables = ctx.git.set_variables_on_source_repo.await_args.args[0]
    source_secrets = ctx.git.set_secrets_on_source_repo.await_args.args[0]
    gitops_variables = ctx.git.set_variables_on_gitops_repo.await_args.args[0]
    gitops_secrets = ctx.git.set_secrets_on_gitops_repo.await_args.args[0]

    assert source_variables["IMAGE_REGISTRY"] == "quay.io"
    assert source_variables["ROX_CENTRAL_ENDPOINT"] == "central:443"
    assert source_secrets["GITOPS_AUTH_PASSWORD"] == "git-token"
    assert source_secrets["COSIGN_SECRET_KEY"] == "KEY"
    assert "TRUSTIFICATION_OIDC_CLIENT_SECRET" not in gitops_variables
    assert gitops_variables["TRUSTIFICATION_OIDC_CLIENT_ID"] == "cli"
    assert gitops_secrets["TRUSTIFICATION_OIDC_CLIENT_SECRET"] == "oidc-secret"


async def test_missing_integration_is_reported() -> None:
    """Commands needing TAS fail when it is not configured."""
    ctx = _context(_ci(), integrations=IntegrationSecrets())

    with pytest.raises(InvalidConfigError, match="TAS"):
        await AddGithubSecretsAndVariables().execute(ctx)

    ctx.git.set_variables_on_source_repo.assert_not_awaited()


async def test_gitlab_project_variables() -> None:
    """GitLab receives the GitOps password as ``user:token``."""
    ctx = _context(_ci(CIType.GITLAB_CI), git=_git(GitType.GITLAB))

    await AddGitlabProjectVariables().execute(ctx)

    source_secrets = ctx.git.set_secrets_on_source_repo.await_args.args[0]
    source_variables = ctx.git.set_variables_on_source_repo.await_args.args[0]
    assert source_secrets["GITOPS_AUTH_PASSWORD"] == "fakeUsername:git-token"
    assert source_variables["DISABLE_ACS"] == "false"
    ctx.git.set_secrets_on_gitops_repo.assert_awaited_once_with(
        {"IMAGE_REGISTRY_PASSWORD": "robot-pw"}
    )


async def test_update_runner_image_skipped_without_image() -> None:
    """Nothing is committed when no runner image is configured."""
    ctx = _context(_ci())

    await UpdateCIRunnerImage().execute(ctx)

    ctx.git.commit_changes_to_repo.assert_not_awaited()


async def test_update_runner_image_in_both_repositories() -> None:
    """The runner image is swapped in the CI file of each repository."""
    ctx = _context(_ci(), runner_image="quay.io/test/runner:2")

    await UpdateCIRunnerImage().execute(ctx)

    calls = ctx.git.commit_changes_to_repo.await_args_list
    assert [c.args[1] for c in calls] == ["go-abcdefgh", "go-abcdefgh-gitops"]
    modifications = calls[0].args[2]
    assert isinstance(modifications, ContentModifications)
    assert "quay.io/test/runner:2" in modifications.apply_to_content(
        ".github/workflows/build.yaml", WORKFLOW
    )
    assert calls[0].args[3] == "Update CI Runner Image to quay.io/test/runner:2"


async def test_custom_root_ca_on_github_actions() -> None:
    """The CA is published as a variable and enabled in both workflows."""
    git = _git()
    git.get_file_content_in_string = AsyncMock(
        return_value="env:\n  # CUSTOM_ROOT_CA: ${{ vars.CUSTOM_ROOT_CA }}\n"
    )
    ctx = _context(_ci(), git=git)
    ctx.custom_root_ca = "PEM"

    await UncommentCustomRootCA().execute(ctx)

    git.set_variables_on_source_repo.assert_awaited_once_with({"CUSTOM_ROOT_CA": "PEM"})
    git.set_variables_on_gitops_repo.assert_awaited_once_with({"CUSTOM_ROOT_CA": "PEM"})
    calls = git.commit_changes_to_repo.await_args_list
    assert [c.args[1] for c in calls] == ["go-abcdefgh", "go-abcdefgh-gitops"]
    assert calls[1].args[2].paths() == [".github/workflows/promote.yaml"]


async def test_custom_root_ca_skipped_for_other_ci() -> None:
    """CI types without commented root CA lines are left untouched."""
    ctx = _context(_ci(CIType.TEKTON))
    ctx.custom_root_ca = "PEM"

    await UncommentCustomRootCA().execute(ctx)

    ctx.git.set_variables_on_source_repo.assert_not_awaited()
    ctx.git.commit_changes_to_repo.assert_not_awaited()


async def test_custom_root_ca_without_commented_lines() -> None:
    """Files without the commented lines get no commit."""
    ctx = _context(_ci())
    ctx.custom_root_ca = "PEM"

    await UncommentCustomRootCA().execute(ctx)

    ctx.git.commit_changes_to_repo.assert_not_awaited()


def test_jenkinsfile_command_names() -> None:
    """The targeted repository is part of the command name."""
    assert (
        JenkinsfileAndEnvModification(gitops=True).name
        == "JenkinsfileAndEnvModification(GitOps)"
    )
    assert (
        JenkinsfileAndEnvModification().name
        == "JenkinsfileAndEnvModification(Source)"
    )


async def test_jenkinsfile_modifications_per_repository(jenkins: MagicMock) -> None:
    """Only the GitOps repository gets env.sh patches."""
    ctx = _context(jenkins)

    source = await JenkinsfileAndEnvModification().modifications(ctx)
    gitops = await JenkinsfileAndEnvModification(gitops=True).modifications(ctx)

    assert source.paths() == [JENKINSFILE_PATH]
    assert set(gitops.paths()) == {JENKINSFILE_PATH, ENV_FILE_PATH}


async def test_jenkinsfile_command_commits_to_target(jenkins: MagicMock) -> None:
    """The GitOps variant commits to the GitOps repository."""
    ctx = _context(jenkins)

    await JenkinsfileAndEnvModification(gitops=True).execute(ctx)

    args = ctx.git.commit_changes_to_repo.await_args.args
    assert args[:2] == ("tssc-org", "go-abcdefgh-gitops")
    assert args[3] == "Update GitOps repository"


async def test_jenkins_secrets(jenkins: MagicMock) -> None:
    """Secret text credentials and the git credential are stored."""
    ctx = _context(jenkins)

    await AddJenkinsSecrets().execute(ctx)

    stored = {c.args[0]: c.args[1] for c in jenkins.add_secret_text.await_args_list}
    assert stored["ROX_API_TOKEN"] == "rox-token"
    assert stored["TRUSTIFICATION_OIDC_CLIENT_SECRET"] == "oidc-secret"
    jenkins.add_username_password.assert_awaited_once_with(
        DEFAULT_CREDENTIAL_ID, "fakeUsername", "git-token"
    )


async def test_jenkins_jobs_per_repository(jenkins: MagicMock) -> None:
    """One job is created for each repository."""
    ctx = _context(jenkins)

    await CreateJenkinsJobs().execute(ctx)

    assert [c.args[0] for c in jenkins.create_job.await_args_list] == [
        "go-abcdefgh",
        "go-abcdefgh-gitops",
    ]


async def test_jenkins_command_with_other_ci() -> None:
    """Jenkins commands refuse other CI providers."""
    ctx = _context(_ci(CIType.TEKTON))

    with pytest.raises(UnsupportedStrategyError, match="tekton"):
        await CreateJenkinsJobs().execute(ctx)


async def test_azure_variable_group(azure: MagicMock) -> None:
    """The variable group is named after the component."""
    ctx = _context(azure)

    await AddAzureVariables().execute(ctx)

    name, variables, secrets = azure.set_variable_group.await_args.args
    assert name == "go-abcdefgh"
    assert variables["TUF_MIRROR"] == "https://tuf"
    assert secrets["GITOPS_AUTH_PASSWORD"] == "git-token"


async def test_modify_azure_files(azure: MagicMock) -> None:
    """Pool and variable group lines are patched in both repositories."""
    ctx = _context(azure)

    await ModifyAzureFiles().execute(ctx)

    calls = ctx.git.commit_changes_to_repo.await_args_list
    assert len(calls) == 2
    patched = calls[0].args[2].apply_to_content(
        AZURE_PIPELINE_FILE, "pool:\n  name: Default\nvariables:\n  - group: rhtap\n"
    )
    assert "name: tssc-pool" in patched
    assert "- group: go-abcdefgh" in patched


async def test_create_azure_pipelines(azure: MagicMock) -> None:
    """Each pipeline is authorized for its endpoint, group and queue."""
    ctx = _context(azure)

    await CreateAzurePipelines().execute(ctx)

    azure.create_pipeline.assert_any_await(
        "go-abcdefgh-gitops", "tssc-org/go-abcdefgh-gitops", "e2"
    )
    authorizations = [c.args for c in azure.authorize_pipeline.await_args_list]
    assert authorizations == [
        ("endpoint", "e1", 11),
        ("variablegroup", "7", 11),
        ("queue", "9", 11),
        ("endpoint", "e2", 12),
        ("variablegroup", "7", 12),
        ("queue", "9", 12),
    ]
