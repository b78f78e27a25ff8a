"""GitLab git provider implementation."""

import logging
from collections.abc import Mapping
from urllib.parse import quote

from tssc.e2e_orchestrator.errors import ConflictError, NotFoundError, TsscError
from tssc.e2e_orchestrator.http import HttpClient
from tssc.e2e_orchestrator.models.enums import GitType
from tssc.e2e_orchestrator.models.provider_config import GitLabConfig
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.providers.git.base import (
    DEFAULT_BRANCH,
    GitProvider,
    VariableChanges,
)

logger = logging.getLogger(__name__)


def gitlab_http_client(config: GitLabConfig) -> HttpClient:
    """Build an API client for a GitLab token."""
    return HttpClient(config.base_url, "gitlab", headers={"PRIVATE-TOKEN": config.token})


def _maskable(value: str) -> bool:
    # GitLab only masks single-line values of at least 8 characters.
    return len(value) >= 8 and not any(c.isspace() for c in value)


def project_path(group: str, repo: str) -> str:
    """URL-encoded ``group/repo`` project identifier."""
    return "projects/" + quote(f"{group}/{repo}", safe="")


class GitLabProvider(GitProvider):
    """Projects hosted on GitLab."""

    git_type = GitType.GITLAB
    host_type = "GitLab"

    def __init__(
        self,
        component_name: str,
        template: str,
        config: GitLabConfig,
        http: HttpClient | None = None,
    ) -> None:
        """Initialize GitLab provider with configuration."""
        super().__init__(component_name, template, config.group, config.host)
        self.config = config
        self.http = http or gitlab_http_client(config)

    def _project(self, repo: str, owner: str | None = None) -> str:
        return project_path(owner or self.owner, repo)

    def get_token(self) -> str:
        """Return the API token."""
        return self.config.token

    def scaffolder_values(self) -> dict[str, str]:
        """GitLab values of the developer hub scaffolder request."""
        return {"glHost": self.host, "glOwner": self.owner}

    async def get_file_content_in_string(
        self, owner: str, repo: str, path: str, branch: str = DEFAULT_BRANCH
    ) -> str:
        """Return a file's content at the tip of ``branch``."""
        logger.info(f"Getting file contents of {path} in project {repo}")
        return await self.http.get_text(
            f"{self._project(repo, owner)}/repository/files/{quote(path, safe='')}/raw",
            params={"ref": branch},
        )

    async def get_commit_sha(self, repo: str, branch: str = DEFAULT_BRANCH) -> str:
        """Return the commit SHA at the tip of ``branch``."""
        data = await self.http.get_json(
            f"{self._project(repo)}/repository/branches/{quote(branch, safe='')}"
        )
        if not isinstance(data, dict):
            raise NotFoundError(f"Branch {branch} not found in {repo}")
        return str(data["commit"]["id"])

    async def _write_commit(
        self,
        owner: str,
        repo: str,
        branch: str,
        parent_sha: str,
        files: Mapping[str, str],
        message: str,
    ) -> str:
        """Create one commit updating every file through the commits API."""
        current = await self.get_commit_sha(repo, branch)
        if current != parent_sha:
            raise ConflictError(f"Branch {branch} of {repo} moved during commit")

        data = await self.http.post_json(
            f"{self._project(repo, owner)}/repository/commits",
            {
                "branch": branch,
                "commit_message": message,
                "actions": [
                    {"action": "update", "file_path": path, "content": content}
                    for path, content in files.items()
                ],
            },
        )
        if not isinstance(data, dict):
            raise TsscError(f"Unexpected response committing to {repo}")
        return str(data["id"])

    async def create_branch(self, repo: str, branch: str, from_sha: str) -> None:
        """Create ``branch`` pointing at ``from_sha``."""
        await self.http.request(
            "POST",
            f"{self._project(repo)}/repository/branches",
            params={"branch": branch, "ref": from_sha},
        )

    async def _open_pull_request(
        self, repo: str, head: str, base: str, title: str, description: str
    ) -> PullRequest:
        """Open a merge request from ``head`` into ``base``."""
        data = await self.http.post_json(
            f"{self._project(repo)}/merge_requests",
            {
                "source_branch": head,
                "target_branch": base,
                "title": title,
                "description": description,
            },
        )
        if not isinstance(data, dict):
            raise TsscError(f"Unexpected response creating merge request on {repo}")
        return PullRequest(
            pull_number=int(data["iid"]),
            sha=str(data.get("sha") or ""),
            repository=repo,
            url=data.get("web_url"),
        )

    async def _merge(self, pull_request: PullRequest) -> PullRequest:
        """Merge a merge request, tolerating one merged concurrently."""
        mr_path = (
            f"{self._project(pull_request.repository)}/merge_requests/"
            f"{pull_request.pull_number}"
        )
        current = await self.http.get_json(mr_path)
        if isinstance(current, dict) and current.get("state") == "merged":
            sha = current.get("merge_commit_sha") or current.get("squash_commit_sha")
            return pull_request.with_merge_info(str(sha))

        data = await self.http.put_json(
            f"{mr_path}/merge", {"should_remove_source_branch": True}
        )
        if not isinstance(data, dict) or data.get("state") != "merged":
            raise TsscError(f"Failed to merge {pull_request}")
        sha = data.get("merge_commit_sha") or data.get("squash_commit_sha") or data["sha"]
        return pull_request.with_merge_info(str(sha))

    async def configure_webhook(self, repo: str, url: str) -> None:
        """Register ``url`` as a project hook, updating an existing hook with that URL."""
        hooks_path = f"{self._project(repo)}/hooks"
        payload = {
            "url": url,
            "push_events": True,
            "merge_requests_events": True,
            "enable_ssl_verification": False,
        }
        hooks = await self.http.get_json(hooks_path)
        for hook in hooks if isinstance(hooks, list) else []:
            if hook.get("url") == url:
                await self.http.put_json(f"{hooks_path}/{hook['id']}", payload)
                logger.info(f"Updated webhook {url} on {repo}")
                return
        await self.http.post_json(hooks_path, payload)
        logger.info(f"Created webhook {url} on {repo}")

    async def _set_project_variables(
        self, repo: str, variables: Mapping[str, str], masked: bool
    ) -> VariableChanges:
        changes = VariableChanges()
        variables_path = f"{self._project(repo)}/variables"
        for key, value in variables.items():
            payload = {
                "key": key,
                "value": value,
                "masked": masked and _maskable(value),
                "protected": False,
            }
            try:
                existing = await self.http.get_json(f"{variables_path}/{key}")
            except NotFoundError:
                await self.http.post_json(variables_path, payload)
                changes.created.append(key)
                continue

            if not isinstance(existing, dict) or existing.get("value") != value:
                await self.http.put_json(f"{variables_path}/{key}", payload)
            changes.updated.append(key)
        logger.info(
            f"Variables on {repo}: {len(changes.created)} created, "
            f"{len(changes.updated)} updated"
        )
        return changes

    async def set_repo_variables(
        self, repo: str, variables: Mapping[str, str]
    ) -> VariableChanges:
        """Create or update project CI/CD variables."""
        return await self._set_project_variables(repo, variables, masked=False)

    async def set_repo_secrets(
        self, repo: str, secrets: Mapping[str, str]
    ) -> VariableChanges:
        """Create or update masked project CI/CD variables."""
        return await self._set_project_variables(repo, secrets, masked=True)
