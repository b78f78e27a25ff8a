"""Bitbucket Cloud git provider implementation."""

import logging
from collections.abc import Mapping
from urllib.parse import quote

import aiohttp

from tssc.e2e_orchestrator.errors import ConflictError, NotFoundError, TsscError
from tssc.e2e_orchestrator.http import HttpClient
from tssc.e2e_orchestrator.models.enums import GitType
from tssc.e2e_orchestrator.models.provider_config import BitbucketConfig
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.providers.git.base import (
    DEFAULT_BRANCH,
    GitProvider,
    VariableChanges,
)

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = ["repo:push", "pullrequest:created", "pullrequest:updated"]


def bitbucket_http_client(config: BitbucketConfig) -> HttpClient:
    """Build an API client authenticating with an app password."""
    return HttpClient(
        config.base_url,
        "bitbucket",
        auth=aiohttp.BasicAuth(config.username, config.app_password),
    )


class BitbucketProvider(GitProvider):
    """Repositories hosted on Bitbucket Cloud."""

    git_type = GitType.BITBUCKET
    host_type = "Bitbucket"

    def __init__(
        self,
        component_name: str,
        template: str,
        config: BitbucketConfig,
        http: HttpClient | None = None,
    ) -> None:
        """Initialize Bitbucket provider with configuration."""
        super().__init__(component_name, template, config.workspace, config.host)
        self.config = config
        self.http = http or bitbucket_http_client(config)

    def _repo_path(self, repo: str, owner: str | None = None) -> str:
        return f"repositories/{owner or self.owner}/{repo}"

    def get_token(self) -> str:
        """Return the app password."""
        return self.config.app_password

    def scaffolder_values(self) -> dict[str, str]:
        """Bitbucket values of the developer hub scaffolder request."""
        return {
            "bbHost": self.host,
            "bbOwner": self.config.username,
            "workspace": self.owner,
            "project": self.config.project,
        }

    async def get_file_content_in_string(
        self, owner: str, repo: str, path: str, branch: str = DEFAULT_BRANCH
    ) -> str:
        """Return a file's content at the tip of ``branch``."""
        logger.info(f"Getting file contents of {path} in repo {repo}")
        return await self.http.get_text(
            f"{self._repo_path(repo, owner)}/src/{quote(branch, safe='')}/{quote(path)}"
        )

    async def get_commit_sha(self, repo: str, branch: str = DEFAULT_BRANCH) -> str:
        """Return the commit SHA at the tip of ``branch``."""
        data = await self.http.get_json(
            f"{self._repo_path(repo)}/refs/branches/{quote(branch, safe='')}"
        )
        if not isinstance(data, dict):
            raise NotFoundError(f"Branch {branch} not found in {repo}")
        return str(data["target"]["hash"])

    async def _write_commit(
        self,
        owner: str,
        repo: str,
        branch: str,
        parent_sha: str,
        files: Mapping[str, str],
        message: str,
    ) -> str:
        """Post all files to the src endpoint as one commit on ``parent_sha``."""
        form: dict[str, str] = {
            "message": message,
            "branch": branch,
            "parents": parent_sha,
        }
        form.update(files)
        try:
            await self.http.request("POST", f"{self._repo_path(repo, owner)}/src", data=form)
        except TsscError as e:
            if e.status_code in (400, 409):
                raise ConflictError(
                    f"Branch {branch} of {repo} moved during commit",
                    status_code=e.status_code,
                ) from e
            raise
        return await self.get_commit_sha(repo, branch)

    async def create_branch(self, repo: str, branch: str, from_sha: str) -> None:
        """Create ``branch`` pointing at ``from_sha``."""
        await self.http.post_json(
            f"{self._repo_path(repo)}/refs/branches",
            {"name": branch, "target": {"hash": from_sha}},
        )

    async def _open_pull_request(
        self, repo: str, head: str, base: str, title: str, description: str
    ) -> PullRequest:
        """Open a pull request from ``head`` into ``base``."""
        data = await self.http.post_json(
            f"{self._repo_path(repo)}/pullrequests",
            {
                "title": title,
                "description": description,
                "source": {"branch": {"name": head}},
                "destination": {"branch": {"name": base}},
            },
        )
        if not isinstance(data, dict):
            raise TsscError(f"Unexpected response creating pull request on {repo}")
        return PullRequest(
            pull_number=int(data["id"]),
            sha=str(data.get("source", {}).get("commit", {}).get("hash", "")),
            repository=repo,
            url=data.get("links", {}).get("html", {}).get("href"),
        )

    async def _merge(self, pull_request: PullRequest) -> PullRequest:
        """Merge a pull request, tolerating one merged concurrently."""
        pr_path = (
            f"{self._repo_path(pull_request.repository)}/pullrequests/"
            f"{pull_request.pull_number}"
        )
        current = await self.http.get_json(pr_path)
        if isinstance(current, dict) and current.get("state") == "MERGED":
            return pull_request.with_merge_info(str(current["merge_commit"]["hash"]))

        data = await self.http.post_json(
            f"{pr_path}/merge", {"merge_strategy": "merge_commit"}
        )
        if not isinstance(data, dict) or data.get("state") != "MERGED":
            raise TsscError(f"Failed to merge {pull_request}")
        # The API returns a short hash; resolve the full SHA from the branch tip.
        merge_sha = await self.get_commit_sha(pull_request.repository, DEFAULT_BRANCH)
        return pull_request.with_merge_info(merge_sha)

    async def configure_webhook(self, repo: str, url: str) -> None:
        """Register ``url`` as a webhook, updating an existing hook with that URL."""
        hooks_path = f"{self._repo_path(repo)}/hooks"
        payload = {
            "description": "TSSC e2e webhook",
            "url": url,
            "active": True,
            "skip_cert_verification": True,
            "events": WEBHOOK_EVENTS,
        }
        hooks = await self.http.get_json(hooks_path)
        values = hooks.get("values", []) if isinstance(hooks, dict) else []
        for hook in values:
            if hook.get("url") == url:
                await self.http.put_json(f"{hooks_path}/{quote(hook['uuid'])}", payload)
                logger.info(f"Updated webhook {url} on {repo}")
                return
        await self.http.post_json(hooks_path, payload)
        logger.info(f"Created webhook {url} on {repo}")

    async def _existing_variables(self, repo: str) -> dict[str, dict[str, object]]:
        existing: dict[str, dict[str, object]] = {}
        url: str | None = f"{self._repo_path(repo)}/pipelines_config/variables/"
        while url:
            page = await self.http.get_json(url)
            if not isinstance(page, dict):
                break
            for variable in page.get("values", []):
                existing[str(variable["key"])] = variable
            url = page.get("next")
        return existing

    async def _set_pipeline_variables(
        self, repo: str, variables: Mapping[str, str], secured: bool
    ) -> VariableChanges:
        changes = VariableChanges()
        variables_path = f"{self._repo_path(repo)}/pipelines_config/variables"
        existing = await self._existing_variables(repo)
        for key, value in variables.items():
            payload = {"key": key, "value": value, "secured": secured}
            current = existing.get(key)
            if current is None:
                await self.http.post_json(f"{variables_path}/", payload)
                changes.created.append(key)
                continue

            if secured or current.get("value") != value:
                uuid = quote(str(current["uuid"]))
                await self.http.put_json(f"{variables_path}/{uuid}", payload)
            changes.updated.append(key)
        logger.info(
            f"Variables on {repo}: {len(changes.created)} created, "
            f"{len(changes.updated)} updated"
        )
        return changes

    async def set_repo_variables(
        self, repo: str, variables: Mapping[str, str]
    ) -> VariableChanges:
        """Create or update repository pipeline variables."""
        return await self._set_pipeline_variables(repo, variables, secured=False)

    async def set_repo_secrets(
        self, repo: str, secrets: Mapping[str, str]
    ) -> VariableChanges:
        """Create or update secured repository pipeline variables."""
        return await self._set_pipeline_variables(repo, secrets, secured=True)
