"""Post-create strategies keyed by (CI type, git type)."""

import logging
from collections.abc import Callable

from tssc.e2e_orchestrator.errors import TsscError, UnsupportedStrategyError, error_kind
from tssc.e2e_orchestrator.models.enums import CIType, GitType
from tssc.e2e_orchestrator.postcreate.commands import (
    AddAzureVariables,
    AddGithubSecretsAndVariables,
    AddGitlabProjectVariables,
    AddJenkinsSecrets,
    CommandContext,
    CreateAzurePipelines,
    CreateJenkinsFolder,
    CreateJenkinsJobs,
    CreateWebhook,
    JenkinsfileAndEnvModification,
    ModifyAzureFiles,
    PostCreateCommand,
    UncommentCustomRootCA,
    UpdateCIRunnerImage,
)

logger = logging.getLogger(__name__)

Strategy = Callable[[], list[PostCreateCommand]]


def no_op() -> list[PostCreateCommand]:
    """Tekton on GitHub is wired by the GitHub app; nothing to do."""
    return []


def tekton_webhooks() -> list[PostCreateCommand]:
    """Tekton on GitLab and Bitbucket needs explicit webhooks."""
    return [CreateWebhook()]


def github_actions() -> list[PostCreateCommand]:
    """Actions secrets and variables, the runner image, then the custom root CA."""
    return [
        AddGithubSecretsAndVariables(),
        UpdateCIRunnerImage(),
        UncommentCustomRootCA(),
    ]


def gitlab_ci() -> list[PostCreateCommand]:
    """Runner image, then project variables."""
    return [UpdateCIRunnerImage(), AddGitlabProjectVariables()]


def jenkins() -> list[PostCreateCommand]:
    """Folder, patched files, credentials, jobs, webhook, runner image and root CA."""
    return [
        CreateJenkinsFolder(),
        JenkinsfileAndEnvModification(gitops=False),
        JenkinsfileAndEnvModification(gitops=True),
        AddJenkinsSecrets(),
        CreateJenkinsJobs(),
        CreateWebhook(),
        UpdateCIRunnerImage(),
        UncommentCustomRootCA(),
    ]


def azure() -> list[PostCreateCommand]:
    """Variable group, patched pipeline files, pipelines and runner image."""
    return [
        AddAzureVariables(),
        ModifyAzureFiles(),
        CreateAzurePipelines(),
        UpdateCIRunnerImage(),
    ]


STRATEGIES: dict[tuple[CIType, GitType], Strategy] = {
    (CIType.TEKTON, GitType.GITHUB): no_op,
    (CIType.TEKTON, GitType.GITLAB): tekton_webhooks,
    (CIType.TEKTON, GitType.BITBUCKET): tekton_webhooks,
    (CIType.GITHUB_ACTIONS, GitType.GITHUB): github_actions,
    (CIType.GITLAB_CI, GitType.GITLAB): gitlab_ci,
    (CIType.JENKINS, GitType.GITHUB): jenkins,
    (CIType.JENKINS, GitType.GITLAB): jenkins,
    (CIType.JENKINS, GitType.BITBUCKET): jenkins,
    (CIType.AZURE, GitType.GITHUB): azure,
}


def resolve_strategy(ci_type: CIType, git_type: GitType) -> list[PostCreateCommand]:
    """Return the ordered commands for a CI and git combination.

    Raises:
        UnsupportedStrategyError: If the combination has no strategy

    """
    strategy = STRATEGIES.get((ci_type, git_type))
    if strategy is None:
        raise UnsupportedStrategyError(
            f"No post-create strategy for CI {ci_type.value} with git {git_type.value}"
        )
    return strategy()


async def run_post_create(ctx: CommandContext) -> list[str]:
    """Run the component's post-create commands in order.

    Execution stops at the first failing command.

    Returns:
        Names of the executed commands

    Raises:
        TsscError: Naming the failed command and component, with the
            original error's kind and the original error as cause

    """
    commands = resolve_strategy(ctx.ci.get_ci_type(), ctx.git.git_type)
    if not commands:
        logger.info(f"No post-create actions needed for {ctx.component_name}")
        return []

    executed: list[str] = []
    for command in commands:
        logger.info(f"Starting {command.name} for {ctx.component_name}")
        try:
            await command.execute(ctx)
        except Exception as e:
            raise TsscError(
                f"Post-create command {command.name} failed for component "
                f"{ctx.component_name}: {e}",
                kind=error_kind(e),
                status_code=getattr(e, "status_code", None),
                provider_error_code=getattr(e, "provider_error_code", None),
            ) from e
        logger.info(f"Completed {command.name} for {ctx.component_name}")
        executed.append(command.name)
    return executed
