"""Abstract base for git hosting providers."""

import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping

from pydantic import BaseModel, Field

from tssc.e2e_orchestrator.errors import InvalidConfigError
from tssc.e2e_orchestrator.models.enums import Environment, GitType
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.modification.content import ContentModifications
from tssc.e2e_orchestrator.retry import RetryPolicy, log_retry, retry_on_error
from tssc.e2e_orchestrator.templates import sample_change_modifications

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"
SAMPLE_PR_TITLE = "Test PR from TSSC e2e test"
SAMPLE_PR_DESCRIPTION = "This PR was created automatically by the TSSC e2e test"
SAMPLE_COMMIT_MESSAGE = "Test commit from TSSC e2e test"

IMAGE_LINE_PATTERN = re.compile(
    r"^(?P<indent>[ \t]*)- image: (?P<image>\S.*?)[ \t]*$", re.M
)

COMMIT_CONFLICT_POLICY = RetryPolicy(max_retries=3, min_timeout=2, max_timeout=10)


class VariableChanges(BaseModel):
    """Keys created versus updated by a secrets or variables call."""

    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)


def deployment_patch_path(component_name: str, environment: Environment) -> str:
    """Path of the overlay holding the deployed image for an environment."""
    return f"components/{component_name}/overlays/{environment.value}/deployment-patch.yaml"


def find_image_line(content: str, path: str) -> re.Match[str]:
    """Return the single ``- image:`` line of an overlay.

    Raises:
        InvalidConfigError: If the overlay has no or several image lines

    """
    matches = list(IMAGE_LINE_PATTERN.finditer(content))
    if len(matches) != 1:
        raise InvalidConfigError(
            f"Expected exactly one '- image:' line in {path}, found {len(matches)}"
        )
    return matches[0]


class GitProvider(ABC):
    """Git hosting provider owning a component's source and GitOps repositories.

    Subclasses implement the raw repository operations; the workflow level
    operations (sample changes, promotions, webhooks, secrets) are shared.
    """

    git_type: GitType
    host_type: str

    def __init__(self, component_name: str, template: str, owner: str, host: str) -> None:
        """Initialize provider for one component.

        Args:
            component_name: Component name, also the source repository name
            template: Software template the component was created from
            owner: Organization, group or workspace owning the repositories
            host: Git host name

        """
        self.component_name = component_name
        self.template = template
        self.owner = owner
        self.host = host

    def get_repo_owner(self) -> str:
        """Return the owner of both repositories."""
        return self.owner

    def get_source_repo_name(self) -> str:
        """Return the source repository name."""
        return self.component_name

    def get_gitops_repo_name(self) -> str:
        """Return the GitOps repository name."""
        return f"{self.component_name}-gitops"

    def get_host(self) -> str:
        """Return the git host name."""
        return self.host

    def get_repo_url(self, repo: str) -> str:
        """Return the browser URL of a repository."""
        return f"https://{self.host}/{self.owner}/{repo}"

    def get_source_repo_url(self) -> str:
        """Return the source repository URL."""
        return self.get_repo_url(self.get_source_repo_name())

    def get_gitops_repo_url(self) -> str:
        """Return the GitOps repository URL."""
        return self.get_repo_url(self.get_gitops_repo_name())

    def scaffolder_values(self) -> dict[str, str]:
        """Git specific values of the developer hub scaffolder request."""
        return {}

    @abstractmethod
    def get_token(self) -> str:
        """Return the secret CI systems use to clone and push."""

    @abstractmethod
    async def get_file_content_in_string(
        self, owner: str, repo: str, path: str, branch: str = DEFAULT_BRANCH
    ) -> str:
        """Return a file's content at the tip of ``branch``.

        Raises:
            NotFoundError: If the file does not exist

        """

    @abstractmethod
    async def get_commit_sha(self, repo: str, branch: str = DEFAULT_BRANCH) -> str:
        """Return the commit SHA at the tip of ``branch``."""

    @abstractmethod
    async def _write_commit(
        self,
        owner: str,
        repo: str,
        branch: str,
        parent_sha: str,
        files: Mapping[str, str],
        message: str,
    ) -> str:
        """Write all ``files`` as a single commit on top of ``parent_sha``.

        Returns:
            The new commit SHA

        Raises:
            ConflictError: If ``branch`` no longer points at ``parent_sha``

        """

    @abstractmethod
    async def create_branch(self, repo: str, branch: str, from_sha: str) -> None:
        """Create ``branch`` pointing at ``from_sha``."""

    @abstractmethod
    async def _open_pull_request(
        self, repo: str, head: str, base: str, title: str, description: str
    ) -> PullRequest:
        """Open a pull request from ``head`` into ``base``."""

    @abstractmethod
    async def _merge(self, pull_request: PullRequest) -> PullRequest:
        """Merge an open pull request, or report an already merged one."""

    @abstractmethod
    async def configure_webhook(self, repo: str, url: str) -> None:
        """Register ``url`` as a webhook, updating an existing hook with that URL."""

    @abstractmethod
    async def set_repo_variables(
        self, repo: str, variables: Mapping[str, str]
    ) -> VariableChanges:
        """Create or update plain CI variables on a repository."""

    @abstractmethod
    async def set_repo_secrets(
        self, repo: str, secrets: Mapping[str, str]
    ) -> VariableChanges:
        """Create or update secret CI variables on a repository."""

    async def get_source_repo_commit_sha(self, branch: str = DEFAULT_BRANCH) -> str:
        """Return the latest commit SHA of the source repository."""
        return await self.get_commit_sha(self.get_source_repo_name(), branch)

    async def get_gitops_repo_commit_sha(self, branch: str = DEFAULT_BRANCH) -> str:
        """Return the latest commit SHA of the GitOps repository."""
        return await self.get_commit_sha(self.get_gitops_repo_name(), branch)

    async def commit_changes_to_repo(
        self,
        owner: str,
        repo: str,
        modifications: ContentModifications,
        message: str,
        branch: str = DEFAULT_BRANCH,
    ) -> str:
        """Apply modifications to the branch tip and commit them at once.

        Empty modifications create no commit; the current branch SHA is
        returned instead.

        Returns:
            SHA of the new commit

        Raises:
            ConflictError: If the branch moved while the commit was prepared

        """
        parent_sha = await self.get_commit_sha(repo, branch)
        if modifications.is_empty():
            logger.info(f"No modifications for {repo}@{branch}, skipping commit")
            return parent_sha

        files: dict[str, str] = {}
        for path in modifications.paths():
            current = await self.get_file_content_in_string(owner, repo, path, branch)
            files[path] = modifications.apply_to_content(path, current)

        sha = await self._write_commit(owner, repo, branch, parent_sha, files, message)
        logger.info(f"Committed {len(files)} file(s) to {repo}@{branch}: {sha}")
        return sha

    async def _commit_retrying_conflicts(
        self,
        repo: str,
        modifications: ContentModifications,
        message: str,
        branch: str = DEFAULT_BRANCH,
    ) -> str:
        async def _commit() -> str:
            return await self.commit_changes_to_repo(
                self.owner, repo, modifications, message, branch
            )

        return await retry_on_error(
            _commit, COMMIT_CONFLICT_POLICY, log_retry(f"Commit to {repo}@{branch}")
        )

    async def _create_pull_request_with_changes(
        self,
        repo: str,
        branch: str,
        modifications: ContentModifications,
        commit_message: str,
        title: str,
        description: str,
    ) -> PullRequest:
        base_sha = await self.get_commit_sha(repo, DEFAULT_BRANCH)
        await self.create_branch(repo, branch, base_sha)
        head_sha = await self._commit_retrying_conflicts(
            repo, modifications, commit_message, branch
        )
        pull_request = await self._open_pull_request(
            repo, branch, DEFAULT_BRANCH, title, description
        )
        if pull_request.sha != head_sha:
            pull_request = pull_request.model_copy(update={"sha": head_sha})
        logger.info(f"Created {pull_request} on {repo}")
        return pull_request

    async def create_sample_pull_request_on_source_repo(self) -> PullRequest:
        """Open a PR with the template's sample change on the source repository."""
        branch = f"test-branch-{int(time.time() * 1000)}"
        return await self._create_pull_request_with_changes(
            self.get_source_repo_name(),
            branch,
            sample_change_modifications(self.template),
            SAMPLE_COMMIT_MESSAGE,
            SAMPLE_PR_TITLE,
            SAMPLE_PR_DESCRIPTION,
        )

    async def create_sample_commit_on_source_repo(self) -> str:
        """Commit the template's sample change directly to ``main``."""
        return await self._commit_retrying_conflicts(
            self.get_source_repo_name(),
            sample_change_modifications(self.template),
            SAMPLE_COMMIT_MESSAGE,
        )

    async def merge_pull_request(self, pull_request: PullRequest) -> PullRequest:
        """Merge a pull request; an already merged one is returned unchanged."""
        if pull_request.is_merged:
            logger.info(f"{pull_request} is already merged")
            return pull_request
        merged = await self._merge(pull_request)
        logger.info(f"Merged {merged}")
        return merged

    async def _promotion_modifications(
        self, environment: Environment, image: str
    ) -> ContentModifications:
        path = deployment_patch_path(self.component_name, environment)
        content = await self.get_file_content_in_string(
            self.owner, self.get_gitops_repo_name(), path
        )
        match = find_image_line(content, path)
        new_line = f"{match.group('indent')}- image: {image}"
        return ContentModifications().add(path, match.group(0), new_line)

    async def create_promotion_pull_request_on_gitops_repo(
        self, environment: Environment, image: str
    ) -> PullRequest:
        """Open a PR promoting ``image`` to ``environment`` on the GitOps repository."""
        modifications = await self._promotion_modifications(environment, image)
        return await self._create_pull_request_with_changes(
            self.get_gitops_repo_name(),
            f"promote-to-{environment.value}-{int(time.time() * 1000)}",
            modifications,
            f"Update {environment.value} environment to image {image}",
            f"Promote to {environment.value} environment",
            f"This PR promotes the application to the {environment.value} environment "
            f"with image: {image}",
        )

    async def create_promotion_commit_on_gitops_repo(
        self, environment: Environment, image: str
    ) -> str:
        """Commit the promotion of ``image`` to ``environment`` directly to ``main``."""
        modifications = await self._promotion_modifications(environment, image)
        return await self._commit_retrying_conflicts(
            self.get_gitops_repo_name(),
            modifications,
            f"Update {environment.value} environment to image {image}",
        )

    async def extract_application_image(self, environment: Environment) -> str:
        """Return the image deployed to ``environment`` according to the overlay."""
        path = deployment_patch_path(self.component_name, environment)
        content = await self.get_file_content_in_string(
            self.owner, self.get_gitops_repo_name(), path
        )
        image = find_image_line(content, path).group("image")
        logger.info(f"Image in {environment.value}: {image}")
        return image

    async def config_webhook_on_source_repo(self, url: str) -> None:
        """Register a webhook on the source repository."""
        await self.configure_webhook(self.get_source_repo_name(), url)

    async def config_webhook_on_gitops_repo(self, url: str) -> None:
        """Register a webhook on the GitOps repository."""
        await self.configure_webhook(self.get_gitops_repo_name(), url)

    async def set_secrets_on_source_repo(self, secrets: Mapping[str, str]) -> VariableChanges:
        """Set CI secrets on the source repository."""
        return await self.set_repo_secrets(self.get_source_repo_name(), secrets)

    async def set_secrets_on_gitops_repo(self, secrets: Mapping[str, str]) -> VariableChanges:
        """Set CI secrets on the GitOps repository."""
        return await self.set_repo_secrets(self.get_gitops_repo_name(), secrets)

    async def set_variables_on_source_repo(
        self, variables: Mapping[str, str]
    ) -> VariableChanges:
        """Set CI variables on the source repository."""
        return await self.set_repo_variables(self.get_source_repo_name(), variables)

    async def set_variables_on_gitops_repo(
        self, variables: Mapping[str, str]
    ) -> VariableChanges:
        """Set CI variables on the GitOps repository."""
        return await self.set_repo_variables(self.get_gitops_repo_name(), variables)
