"""Tests for the GitHub git provider."""

import base64
from unittest.mock import patch

import pytest
from aioresponses import aioresponses
from nacl import encoding, public

from tssc.e2e_orchestrator.errors import ConflictError, InvalidConfigError, NotFoundError
from tssc.e2e_orchestrator.models.enums import Environment
from tssc.e2e_orchestrator.models.provider_config import GitHubConfig
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.modification.content import ContentModifications
from tssc.e2e_orchestrator.providers.git.base import find_image_line
from tssc.e2e_orchestrator.providers.git.github import GitHubProvider

API = "https://api.github.com"
REPO = f"{API}/repos/tssc-org/go-abcdefgh"
GITOPS = f"{API}/repos/tssc-org/go-abcdefgh-gitops"
OVERLAY = "components/go-abcdefgh/overlays/stage/deployment-patch.yaml"
OVERLAY_CONTENT = (
    "spec:\n"
    "  template:\n"
    "    spec:\n"
    "      containers:\n"
    "        - image: quay.io/org/go-abcdefgh@sha256:old\n"
    "          name: container-image\n"
)


def _content(text: str) -> dict[str, str]:
    return {"content": base64.b64encode(text.encode()).decode()}


@pytest.fixture
def github() -> GitHubProvider:
    """Create a GitHub provider for a go component."""
    return GitHubProvider(
        "go-abcdefgh", "go", GitHubConfig(token="ghp_test", owner="tssc-org")
    )


def test_repository_names_and_urls(github: GitHubProvider) -> None:
    """Source and GitOps repositories are derived from the component name."""
    assert github.get_source_repo_name() == "go-abcdefgh"
    assert github.get_gitops_repo_name() == "go-abcdefgh-gitops"
    assert github.get_source_repo_url() == "https://github.com/tssc-org/go-abcdefgh"
    assert github.get_repo_owner() == "tssc-org"
    assert github.get_token() == "ghp_test"


async def test_get_file_content_in_string(github: GitHubProvider) -> None:
    """File content is base64-decoded."""
    with aioresponses() as m:
        m.get(f"{REPO}/contents/main.go?ref=main", payload=_content("package main\n"))

        content = await github.get_file_content_in_string(
            "tssc-org", "go-abcdefgh", "main.go"
        )

    assert content == "package main\n"


async def test_get_file_content_missing(github: GitHubProvider) -> None:
    """A missing file raises NotFoundError."""
    with aioresponses() as m:
        m.get(f"{REPO}/contents/nope.txt?ref=main", status=404)

        with pytest.raises(NotFoundError):
            await github.get_file_content_in_string("tssc-org", "go-abcdefgh", "nope.txt")


async def test_commit_changes_writes_single_tree(github: GitHubProvider) -> None:
    """Modified files are uploaded as blobs of one commit on the branch tip."""
    mods = ContentModifications().add("main.go", "Hello World", "Hello TSSC")
    with aioresponses() as m:
        m.get(f"{REPO}/git/ref/heads/main", payload={"object": {"sha": "parent"}})
        m.get(
            f"{REPO}/contents/main.go?ref=main",
            payload=_content('fmt.Println("Hello World")'),
        )
        m.get(f"{REPO}/git/commits/parent", payload={"tree": {"sha": "base-tree"}})
        m.post(f"{REPO}/git/blobs", payload={"sha": "blob-1"})
        m.post(f"{REPO}/git/trees", payload={"sha": "tree-2"})
        m.post(f"{REPO}/git/commits", payload={"sha": "commit-2"})
        m.patch(f"{REPO}/git/refs/heads/main", payload={})

        sha = await github.commit_changes_to_repo(
            "tssc-org", "go-abcdefgh", mods, "Update greeting"
        )

        blob_call = next(
            calls[0] for (method, url), calls in m.requests.items()
            if method == "POST" and str(url).endswith("/git/blobs")
        )
        commit_call = next(
            calls[0] for (method, url), calls in m.requests.items()
            if method == "POST" and str(url).endswith("/git/commits")
        )

    assert sha == "commit-2"
    assert blob_call.kwargs["json"]["content"] == 'fmt.Println("Hello TSSC")'
    assert commit_call.kwargs["json"]["parents"] == ["parent"]
    assert commit_call.kwargs["json"]["tree"] == "tree-2"


async def test_commit_empty_modifications_returns_current_sha(
    github: GitHubProvider,
) -> None:
    """Empty modifications create no commit and return the branch tip."""
    with aioresponses() as m:
        m.get(f"{REPO}/git/ref/heads/main", payload={"object": {"sha": "tip"}})

        sha = await github.commit_changes_to_repo(
            "tssc-org", "go-abcdefgh", ContentModifications(), "nothing"
        )

    assert sha == "tip"


async def test_commit_conflict_on_moved_ref(github: GitHubProvider) -> None:
    """A rejected fast-forward surfaces as ConflictError."""
    mods = ContentModifications().add("main.go", "a", "b")
    with aioresponses() as m:
        m.get(f"{REPO}/git/ref/heads/main", payload={"object": {"sha": "parent"}})
        m.get(f"{REPO}/contents/main.go?ref=main", payload=_content("a"))
        m.get(f"{REPO}/git/commits/parent", payload={"tree": {"sha": "t"}})
        m.post(f"{REPO}/git/blobs", payload={"sha": "b"})
        m.post(f"{REPO}/git/trees", payload={"sha": "t2"})
        m.post(f"{REPO}/git/commits", payload={"sha": "c"})
        m.patch(f"{REPO}/git/refs/heads/main", status=422)

        with pytest.raises(ConflictError):
            await github.commit_changes_to_repo("tssc-org", "go-abcdefgh", mods, "m")


async def test_create_sample_pull_request(github: GitHubProvider) -> None:
    """The sample PR is opened from a fresh test branch and keeps the head SHA."""
    with aioresponses() as m:
        m.get(f"{REPO}/git/ref/heads/main", payload={"object": {"sha": "base"}})
        m.post(f"{REPO}/git/refs", payload={})
        m.get(
            f"{REPO}/git/ref/heads/test-branch-1700000000000",
            payload={"object": {"sha": "base"}},
        )
        m.get(
            f"{REPO}/contents/main.go?ref=test-branch-1700000000000",
            payload=_content("Hello World"),
        )
        m.get(f"{REPO}/git/commits/base", payload={"tree": {"sha": "t"}})
        m.post(f"{REPO}/git/blobs", payload={"sha": "b"})
        m.post(f"{REPO}/git/trees", payload={"sha": "t2"})
        m.post(f"{REPO}/git/commits", payload={"sha": "head"})
        m.patch(f"{REPO}/git/refs/heads/test-branch-1700000000000", payload={})
        m.post(
            f"{REPO}/pulls",
            payload={
                "number": 5,
                "head": {"sha": "head"},
                "html_url": "https://github.com/tssc-org/go-abcdefgh/pull/5",
            },
        )

        with patch("time.time", return_value=1700000000.0):
            pr = await github.create_sample_pull_request_on_source_repo()

    assert pr.pull_number == 5
    assert pr.sha == "head"
    assert pr.repository == "go-abcdefgh"
    assert not pr.is_merged


async def test_merge_pull_request(github: GitHubProvider) -> None:
    """Merging returns the PR pointing at the merge commit."""
    pr = PullRequest(pull_number=5, sha="head", repository="go-abcdefgh")
    with aioresponses() as m:
        m.get(f"{REPO}/pulls/5", payload={"merged": False})
        m.put(f"{REPO}/pulls/5/merge", payload={"merged": True, "sha": "merge-sha"})

        merged = await github.merge_pull_request(pr)

    assert merged.is_merged
    assert merged.sha == "merge-sha"


async def test_merge_already_merged_is_identity(github: GitHubProvider) -> None:
    """An already merged PR is returned unchanged without API calls."""
    merged = PullRequest(
        pull_number=5, sha="merge-sha", repository="go-abcdefgh", is_merged=True
    )
    with aioresponses():
        assert await github.merge_pull_request(merged) is merged


async def test_extract_application_image(github: GitHubProvider) -> None:
    """The image is read from the environment overlay."""
    with aioresponses() as m:
        m.get(f"{GITOPS}/contents/{OVERLAY}?ref=main", payload=_content(OVERLAY_CONTENT))

        image = await github.extract_application_image(Environment.STAGE)

    assert image == "quay.io/org/go-abcdefgh@sha256:old"


async def test_extract_application_image_requires_single_line(
    github: GitHubProvider,
) -> None:
    """Overlays with two image lines are rejected."""
    doubled = OVERLAY_CONTENT + "        - image: quay.io/org/other:1\n"
    with aioresponses() as m:
        m.get(f"{GITOPS}/contents/{OVERLAY}?ref=main", payload=_content(doubled))

        with pytest.raises(InvalidConfigError, match="exactly one"):
            await github.extract_application_image(Environment.STAGE)


async def test_promotion_commit_preserves_indentation(github: GitHubProvider) -> None:
    """The promotion commit swaps the image line and keeps its indentation."""
    with aioresponses() as m:
        m.get(f"{GITOPS}/contents/{OVERLAY}?ref=main", payload=_content(OVERLAY_CONTENT))
        m.get(f"{GITOPS}/git/ref/heads/main", payload={"object": {"sha": "p"}})
        m.get(f"{GITOPS}/contents/{OVERLAY}?ref=main", payload=_content(OVERLAY_CONTENT))
        m.get(f"{GITOPS}/git/commits/p", payload={"tree": {"sha": "t"}})
        m.post(f"{GITOPS}/git/blobs", payload={"sha": "b"})
        m.post(f"{GITOPS}/git/trees", payload={"sha": "t2"})
        m.post(f"{GITOPS}/git/commits", payload={"sha": "promo"})
        m.patch(f"{GITOPS}/git/refs/heads/main", payload={})

        sha = await github.create_promotion_commit_on_gitops_repo(
            Environment.STAGE, "quay.io/org/go-abcdefgh@sha256:new"
        )

        blob_call = next(
            calls[0] for (method, url), calls in m.requests.items()
            if method == "POST" and str(url).endswith("/git/blobs")
        )

    assert sha == "promo"
    assert (
        "        - image: quay.io/org/go-abcdefgh@sha256:new\n"
        in blob_call.kwargs["json"]["content"]
    )


@pytest.mark.parametrize(
    "content",
    [
        "containers:\n  - image: quay.io/org/app:1",
        "containers:\n  - image: quay.io/org/app:1  \n",
        "containers:\n  - image: quay.io/org/app:1\n\n",
    ],
)
def test_find_image_line_stays_on_its_line(content: str) -> None:
    """The match ends at the image line, even when it is the last one."""
    match = find_image_line(content, OVERLAY)

    assert match.group("image") == "quay.io/org/app:1"
    assert "\n" not in match.group(0)


async def test_promotion_keeps_trailing_blank_line(github: GitHubProvider) -> None:
    """Promoting an overlay ending with its image line keeps the newlines after it."""
    overlay = "containers:\n  - image: quay.io/org/go-abcdefgh@sha256:old\n\n"
    with aioresponses() as m:
        m.get(f"{GITOPS}/contents/{OVERLAY}?ref=main", payload=_content(overlay))

        modifications = await github._promotion_modifications(
            Environment.STAGE, "quay.io/org/go-abcdefgh@sha256:new"
        )

    assert modifications.apply_to_content(OVERLAY, overlay) == (
        "containers:\n  - image: quay.io/org/go-abcdefgh@sha256:new\n\n"
    )


async def test_configure_webhook_updates_existing(github: GitHubProvider) -> None:
    """A hook already pointing at the URL is updated instead of duplicated."""
    url = "https://pac.example.com"
    with aioresponses() as m:
        m.get(f"{REPO}/hooks", payload=[{"id": 9, "config": {"url": url}}])
        m.patch(f"{REPO}/hooks/9", payload={})

        await github.config_webhook_on_source_repo(url)

        methods = [method for method, _ in m.requests]

    assert "POST" not in methods
    assert "PATCH" in methods


async def test_set_variables_created_then_updated(github: GitHubProvider) -> None:
    """A new variable is created and an equal one is reported as updated."""
    with aioresponses() as m:
        m.get(f"{REPO}/actions/variables/IMAGE_REGISTRY", status=404)
        m.post(f"{REPO}/actions/variables", payload={})
        m.get(
            f"{REPO}/actions/variables/QUAY_IO_USER",
            payload={"name": "QUAY_IO_USER", "value": "robot"},
        )

        changes = await github.set_variables_on_source_repo(
            {"IMAGE_REGISTRY": "quay.io", "QUAY_IO_USER": "robot"}
        )

    assert changes.created == ["IMAGE_REGISTRY"]
    assert changes.updated == ["QUAY_IO_USER"]


async def test_set_secrets_are_sealed(github: GitHubProvider) -> None:
    """Secrets are encrypted with the repository's Actions public key."""
    private_key = public.PrivateKey.generate()
    public_key = private_key.public_key.encode(encoding.Base64Encoder()).decode()
    with aioresponses() as m:
        m.get(
            f"{REPO}/actions/secrets/public-key",
            payload={"key": public_key, "key_id": "kid"},
        )
        m.get(f"{REPO}/actions/secrets/ROX_API_TOKEN", status=404)
        m.put(f"{REPO}/actions/secrets/ROX_API_TOKEN", status=201)

        changes = await github.set_secrets_on_source_repo({"ROX_API_TOKEN": "s3cr3t"})

        put_call = next(
            calls[0] for (method, _), calls in m.requests.items() if method == "PUT"
        )

    sealed = base64.b64decode(put_call.kwargs["json"]["encrypted_value"])
    assert public.SealedBox(private_key).decrypt(sealed) == b"s3cr3t"
    assert put_call.kwargs["json"]["key_id"] == "kid"
    assert changes.created == ["ROX_API_TOKEN"]
