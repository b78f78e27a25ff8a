"""GitHub git provider implementation."""

import base64
import logging
from collections.abc import Mapping
from urllib.parse import quote

from nacl import encoding, public

from tssc.e2e_orchestrator.errors import ConflictError, NotFoundError, TsscError
from tssc.e2e_orchestrator.http import HttpClient
from tssc.e2e_orchestrator.models.enums import GitType
from tssc.e2e_orchestrator.models.provider_config import GitHubConfig
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.providers.git.base import (
    DEFAULT_BRANCH,
    GitProvider,
    VariableChanges,
)

logger = logging.getLogger(__name__)


def github_http_client(config: GitHubConfig) -> HttpClient:
    """Build an API client for a GitHub token."""
    return HttpClient(
        config.base_url,
        "github",
        headers={
            "Authorization": f"Bearer {config.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        },
    )


def encrypt_secret(public_key: str, value: str) -> str:
    """Seal ``value`` for the repository's Actions public key."""
    key = public.PublicKey(public_key.encode("utf-8"), encoding.Base64Encoder())
    sealed = public.SealedBox(key).encrypt(value.encode("utf-8"))
    return base64.b64encode(sealed).decode("utf-8")


class GitHubProvider(GitProvider):
    """Repositories hosted on GitHub."""

    git_type = GitType.GITHUB
    host_type = "GitHub"

    def __init__(
        self,
        component_name: str,
        template: str,
        config: GitHubConfig,
        http: HttpClient | None = None,
    ) -> None:
        """Initialize GitHub provider with configuration."""
        super().__init__(component_name, template, config.owner, config.host)
        self.config = config
        self.http = http or github_http_client(config)

    def _repo_path(self, repo: str, owner: str | None = None) -> str:
        return f"repos/{owner or self.owner}/{repo}"

    def get_token(self) -> str:
        """Return the API token."""
        return self.config.token

    def scaffolder_values(self) -> dict[str, str]:
        """GitHub values of the developer hub scaffolder request."""
        return {"ghHost": self.host, "ghOwner": self.owner}

    async def get_file_content_in_string(
        self, owner: str, repo: str, path: str, branch: str = DEFAULT_BRANCH
    ) -> str:
        """Return a file's content at the tip of ``branch``."""
        logger.info(f"Getting file contents of {path} in repo {repo}")
        data = await self.http.get_json(
            f"{self._repo_path(repo, owner)}/contents/{quote(path)}",
            params={"ref": branch},
        )
        if not isinstance(data, dict) or "content" not in data:
            raise NotFoundError(f"Could not retrieve content for file: {path}")
        return base64.b64decode(str(data["content"])).decode("utf-8")

    async def get_commit_sha(self, repo: str, branch: str = DEFAULT_BRANCH) -> str:
        """Return the commit SHA at the tip of ``branch``."""
        data = await self.http.get_json(
            f"{self._repo_path(repo)}/git/ref/heads/{quote(branch)}"
        )
        if not isinstance(data, dict):
            raise NotFoundError(f"Branch {branch} not found in {repo}")
        return str(data["object"]["sha"])

    async def _write_commit(
        self,
        owner: str,
        repo: str,
        branch: str,
        parent_sha: str,
        files: Mapping[str, str],
        message: str,
    ) -> str:
        """Upload blobs, build a tree on the parent tree and fast-forward the ref."""
        repo_path = self._repo_path(repo, owner)
        parent = await self.http.get_json(f"{repo_path}/git/commits/{parent_sha}")
        base_tree = parent["tree"]["sha"] if isinstance(parent, dict) else None

        tree = []
        for path, content in files.items():
            blob = await self.http.post_json(
                f"{repo_path}/git/blobs", {"content": content, "encoding": "utf-8"}
            )
            blob_sha = blob["sha"] if isinstance(blob, dict) else None
            tree.append({"path": path, "mode": "100644", "type": "blob", "sha": blob_sha})

        new_tree = await self.http.post_json(
            f"{repo_path}/git/trees", {"base_tree": base_tree, "tree": tree}
        )
        commit = await self.http.post_json(
            f"{repo_path}/git/commits",
            {
                "message": message,
                "tree": new_tree["sha"] if isinstance(new_tree, dict) else None,
                "parents": [parent_sha],
            },
        )
        commit_sha = str(commit["sha"]) if isinstance(commit, dict) else ""

        try:
            await self.http.patch_json(
                f"{repo_path}/git/refs/heads/{quote(branch)}",
                {"sha": commit_sha, "force": False},
            )
        except TsscError as e:
            if e.status_code in (409, 422):
                raise ConflictError(
                    f"Branch {branch} of {repo} moved during commit",
                    status_code=e.status_code,
                ) from e
            raise
        return commit_sha

    async def create_branch(self, repo: str, branch: str, from_sha: str) -> None:
        """Create ``branch`` pointing at ``from_sha``."""
        await self.http.post_json(
            f"{self._repo_path(repo)}/git/refs",
            {"ref": f"refs/heads/{branch}", "sha": from_sha},
        )

    async def _open_pull_request(
        self, repo: str, head: str, base: str, title: str, description: str
    ) -> PullRequest:
        """Open a pull request from ``head`` into ``base``."""
        data = await self.http.post_json(
            f"{self._repo_path(repo)}/pulls",
            {"title": title, "head": head, "base": base, "body": description},
        )
        if not isinstance(data, dict):
            raise TsscError(f"Unexpected response creating pull request on {repo}")
        return PullRequest(
            pull_number=int(data["number"]),
            sha=str(data["head"]["sha"]),
            repository=repo,
            url=data.get("html_url"),
        )

    async def _merge(self, pull_request: PullRequest) -> PullRequest:
        """Squash-merge a pull request, tolerating one merged concurrently."""
        pr_path = f"{self._repo_path(pull_request.repository)}/pulls/{pull_request.pull_number}"
        current = await self.http.get_json(pr_path)
        if isinstance(current, dict) and current.get("merged"):
            return pull_request.with_merge_info(str(current["merge_commit_sha"]))

        data = await self.http.put_json(
            f"{pr_path}/merge",
            {
                "merge_method": "squash",
                "commit_title": f"Merge PR #{pull_request.pull_number}",
            },
        )
        if not isinstance(data, dict) or not data.get("merged"):
            raise TsscError(f"Failed to merge {pull_request}")
        return pull_request.with_merge_info(str(data["sha"]))

    async def configure_webhook(self, repo: str, url: str) -> None:
        """Register ``url`` as a webhook, updating an existing hook with that URL."""
        hooks_path = f"{self._repo_path(repo)}/hooks"
        payload = {
            "name": "web",
            "active": True,
            "events": ["push", "pull_request"],
            "config": {"url": url, "content_type": "json", "insecure_ssl": "1"},
        }
        hooks = await self.http.get_json(hooks_path)
        for hook in hooks if isinstance(hooks, list) else []:
            if hook.get("config", {}).get("url") == url:
                await self.http.patch_json(f"{hooks_path}/{hook['id']}", payload)
                logger.info(f"Updated webhook {url} on {repo}")
                return
        await self.http.post_json(hooks_path, payload)
        logger.info(f"Created webhook {url} on {repo}")

    async def set_repo_variables(
        self, repo: str, variables: Mapping[str, str]
    ) -> VariableChanges:
        """Create or update Actions variables."""
        changes = VariableChanges()
        variables_path = f"{self._repo_path(repo)}/actions/variables"
        for name, value in variables.items():
            try:
                existing = await self.http.get_json(f"{variables_path}/{name}")
            except NotFoundError:
                await self.http.post_json(variables_path, {"name": name, "value": value})
                changes.created.append(name)
                continue

            if not isinstance(existing, dict) or existing.get("value") != value:
                await self.http.patch_json(
                    f"{variables_path}/{name}", {"name": name, "value": value}
                )
            changes.updated.append(name)
        logger.info(
            f"Variables on {repo}: {len(changes.created)} created, "
            f"{len(changes.updated)} updated"
        )
        return changes

    async def set_repo_secrets(
        self, repo: str, secrets: Mapping[str, str]
    ) -> VariableChanges:
        """Create or update Actions secrets, sealed with the repository key."""
        changes = VariableChanges()
        secrets_path = f"{self._repo_path(repo)}/actions/secrets"
        key = await self.http.get_json(f"{secrets_path}/public-key")
        if not isinstance(key, dict):
            raise TsscError(f"Could not read Actions public key of {repo}")

        for name, value in secrets.items():
            try:
                await self.http.get_json(f"{secrets_path}/{name}")
                exists = True
            except NotFoundError:
                exists = False

            await self.http.put_json(
                f"{secrets_path}/{name}",
                {
                    "encrypted_value": encrypt_secret(str(key["key"]), value),
                    "key_id": key["key_id"],
                },
            )
            (changes.updated if exists else changes.created).append(name)
        logger.info(
            f"Secrets on {repo}: {len(changes.created)} created, "
            f"{len(changes.updated)} updated"
        )
        return changes
