"""Tests for the promotion workflow steps."""

from collections.abc import Iterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tssc.e2e_orchestrator.errors import NotFoundError, SyncFailedError
from tssc.e2e_orchestrator.models.enums import (
    CIType,
    Environment,
    EventType,
    GitType,
    PipelineStatus,
)
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.promotion import (
    StepFailedError,
    extract_sbom_document_ids,
    handle_source_repo_code_changes,
    image_digest,
    promote_to,
    run_step,
    uses_direct_commits,
    verify_sboms,
    wait_initial_deploy_synced,
)
from tssc.e2e_orchestrator.providers.cd.base import CDProvider, SyncResult
from tssc.e2e_orchestrator.providers.ci.base import CIProvider
from tssc.e2e_orchestrator.providers.git.base import GitProvider
from tssc.e2e_orchestrator.providers.tpa import SbomRecord, SbomStore

IMAGE = "quay.io/tssc/go-abcdefgh@sha256:aaa111"
PR = PullRequest(pull_number=5, sha="head123", repository="go-abcdefgh-gitops")
MERGED = PR.with_merge_info("merge456")
SYNCED = SyncResult(synced=True, status="Synced", message="Synced at merge456")
PROMOTION_LOGS = 'uploaded {"document_id": "doc-1"} and {"document_id":"doc-2"}'


def _pipeline(logs: str | None = None) -> Pipeline:
    return Pipeline(
        id="run-1",
        ci_type=CIType.TEKTON,
        repository_name="go-abcdefgh",
        status=PipelineStatus.SUCCESS,
        logs=logs,
    )


def _ci(ci_type: CIType) -> MagicMock:
    ci = MagicMock(spec=CIProvider)
    ci.get_ci_type.return_value = ci_type
    ci.builds_on_push = ci_type != CIType.JENKINS
    ci.get_pipeline_logs = AsyncMock(return_value=PROMOTION_LOGS)
    ci.trigger_build = AsyncMock()
    return ci


@pytest.fixture
def git() -> MagicMock:
    """Create a git provider with mocked repository operations."""
    provider = MagicMock(spec=GitProvider)
    provider.git_type = GitType.GITHUB
    provider.get_source_repo_name.return_value = "go-abcdefgh"
    provider.get_gitops_repo_name.return_value = "go-abcdefgh-gitops"
    provider.get_gitops_repo_commit_sha = AsyncMock(return_value="tip789")
    provider.create_sample_commit_on_source_repo = AsyncMock(return_value="commit1")
    provider.create_sample_pull_request_on_source_repo = AsyncMock(
        return_value=PullRequest(pull_number=2, sha="src1", repository="go-abcdefgh")
    )
    provider.create_promotion_pull_request_on_gitops_repo = AsyncMock(return_value=PR)
    provider.create_promotion_commit_on_gitops_repo = AsyncMock(return_value="promo1")
    provider.merge_pull_request = AsyncMock(return_value=MERGED)
    return provider


@pytest.fixture
def cd() -> MagicMock:
    """Create a CD provider whose applications exist and sync."""
    provider = MagicMock(spec=CDProvider)
    provider.get_application = AsyncMock(return_value={"metadata": {}})
    provider.sync_application = AsyncMock()
    provider.wait_until_application_is_synced = AsyncMock(return_value=SYNCED)
    return provider


@pytest.fixture
def wait_pipeline() -> Iterator[AsyncMock]:
    """Patch pipeline lookup and completion."""
    with patch(
        "tssc.e2e_orchestrator.promotion.get_pipeline_and_wait_for_completion",
        new_callable=AsyncMock,
    ) as mock_wait:
        mock_wait.side_effect = lambda *args, **kwargs: _pipeline()
        yield mock_wait


@pytest.mark.parametrize(
    ("ci_type", "direct"),
    [
        (CIType.TEKTON, False),
        (CIType.GITLAB_CI, False),
        (CIType.JENKINS, True),
        (CIType.GITHUB_ACTIONS, True),
        (CIType.AZURE, True),
    ],
)
def test_uses_direct_commits(ci_type: CIType, direct: bool) -> None:
    """Jenkins, GitHub Actions and Azure skip pull requests."""
    assert uses_direct_commits(_ci(ci_type)) is direct


def test_extract_sbom_document_ids() -> None:
    """Every document ID in the logs is returned in order."""
    assert extract_sbom_document_ids(PROMOTION_LOGS) == ["doc-1", "doc-2"]
    assert extract_sbom_document_ids(None) == []
    assert extract_sbom_document_ids("no sbom here") == []


def test_image_digest() -> None:
    """The part after the last colon is the digest."""
    assert image_digest(IMAGE) == "aaa111"
    assert image_digest("quay.io/tssc/app") == ""


async def test_wait_initial_deploy_synced(git: MagicMock, cd: MagicMock) -> None:
    """The development application is synced to the GitOps tip."""
    result = await wait_initial_deploy_synced(git, cd)

    assert result.synced
    cd.sync_application.assert_awaited_once_with(Environment.DEVELOPMENT)
    cd.wait_until_application_is_synced.assert_awaited_once_with(
        Environment.DEVELOPMENT, "tip789"
    )


async def test_wait_initial_deploy_missing_application(
    git: MagicMock, cd: MagicMock
) -> None:
    """A missing development application is reported as not found."""
    cd.get_application.return_value = None

    with pytest.raises(NotFoundError, match="development"):
        await wait_initial_deploy_synced(git, cd)

    cd.sync_application.assert_not_awaited()


async def test_wait_initial_deploy_not_synced(git: MagicMock, cd: MagicMock) -> None:
    """An application stuck on another revision fails the step."""
    cd.wait_until_application_is_synced.return_value = SyncResult(
        synced=False, status="OutOfSync", message="revision mismatch"
    )

    with pytest.raises(SyncFailedError, match="revision mismatch"):
        await wait_initial_deploy_synced(git, cd)


async def test_source_changes_with_pull_request(
    git: MagicMock, wait_pipeline: AsyncMock
) -> None:
    """PR pipelines run before the merge and push pipelines after it."""
    ci = _ci(CIType.TEKTON)

    await handle_source_repo_code_changes(git, ci)

    events = [c.args[2] for c in wait_pipeline.await_args_list]
    assert events == [EventType.PULL_REQUEST, EventType.PUSH]
    assert wait_pipeline.await_args_list[1].args[1] == MERGED
    git.create_sample_commit_on_source_repo.assert_not_awaited()


async def test_source_changes_with_direct_commit(
    git: MagicMock, wait_pipeline: AsyncMock
) -> None:
    """Jenkins builds are triggered for the direct commit."""
    ci = _ci(CIType.JENKINS)

    await handle_source_repo_code_changes(git, ci)

    ci.trigger_build.assert_awaited_once_with("go-abcdefgh")
    commit = wait_pipeline.await_args.args[1]
    assert commit.is_direct_commit
    assert commit.sha == "commit1"
    assert wait_pipeline.await_args.args[2] == EventType.PUSH
    git.create_sample_pull_request_on_source_repo.assert_not_awaited()


async def test_direct_commit_builds_on_push_without_trigger(
    git: MagicMock, wait_pipeline: AsyncMock
) -> None:
    """Providers building on push are not triggered by hand."""
    ci = _ci(CIType.GITHUB_ACTIONS)

    await handle_source_repo_code_changes(git, ci)

    ci.trigger_build.assert_not_awaited()
    assert wait_pipeline.await_args.args[1].sha == "commit1"


async def test_direct_commit_trigger_follows_capability(
    git: MagicMock, wait_pipeline: AsyncMock
) -> None:
    """Any provider that does not build on push gets its build queued."""
    ci = _ci(CIType.AZURE)
    ci.builds_on_push = False

    await handle_source_repo_code_changes(git, ci)

    ci.trigger_build.assert_awaited_once_with("go-abcdefgh")


async def test_promote_with_pull_request(
    git: MagicMock, cd: MagicMock, wait_pipeline: AsyncMock
) -> None:
    """The application is synced to the merge commit of the promotion PR."""
    ci = _ci(CIType.GITLAB_CI)

    pipeline = await promote_to(git, ci, cd, Environment.STAGE, IMAGE)

    git.create_promotion_pull_request_on_gitops_repo.assert_awaited_once_with(
        Environment.STAGE, IMAGE
    )
    assert wait_pipeline.await_args.args[2] == EventType.PULL_REQUEST
    git.merge_pull_request.assert_awaited_once_with(PR)
    cd.wait_until_application_is_synced.assert_awaited_once_with(
        Environment.STAGE, "merge456"
    )
    assert pipeline.logs == PROMOTION_LOGS


async def test_promote_with_direct_commit(
    git: MagicMock, cd: MagicMock, wait_pipeline: AsyncMock
) -> None:
    """The GitOps push pipeline stands in for the promotion pipeline."""
    ci = _ci(CIType.JENKINS)

    pipeline = await promote_to(git, ci, cd, Environment.PROD, IMAGE)

    ci.trigger_build.assert_awaited_once_with("go-abcdefgh-gitops")
    commit = wait_pipeline.await_args.args[1]
    assert commit.sha == "promo1"
    assert commit.repository == "go-abcdefgh-gitops"
    git.merge_pull_request.assert_not_awaited()
    cd.wait_until_application_is_synced.assert_awaited_once_with(
        Environment.PROD, "promo1"
    )
    assert pipeline.logs == PROMOTION_LOGS


async def test_promote_missing_application(
    git: MagicMock, cd: MagicMock, wait_pipeline: AsyncMock
) -> None:
    """No promotion change is made without a target application."""
    cd.get_application.return_value = None

    with pytest.raises(NotFoundError, match="stage"):
        await promote_to(git, _ci(CIType.TEKTON), cd, Environment.STAGE, IMAGE)

    git.create_promotion_pull_request_on_gitops_repo.assert_not_awaited()


@pytest.fixture
def store() -> MagicMock:
    """Create an SBOM store holding the image SBOM and one document."""
    sbom = SbomRecord(id="s1", document_id="doc-1", name="go-abcdefgh")
    mock = MagicMock(spec=SbomStore)
    mock.search_sbom_by_sha256 = AsyncMock(return_value=sbom)
    mock.search_sbom_by_name_and_doc_id = AsyncMock(
        side_effect=lambda name, doc_id: sbom if doc_id == "doc-1" else None
    )
    return mock


async def test_verify_sboms(store: MagicMock) -> None:
    """Every logged document ID is found under the image SBOM name."""
    records = await verify_sboms(store, IMAGE, ["doc-1"])

    assert [r.document_id for r in records] == ["doc-1"]
    store.search_sbom_by_sha256.assert_awaited_once_with("aaa111")
    store.search_sbom_by_name_and_doc_id.assert_awaited_once_with("go-abcdefgh", "doc-1")


async def test_verify_sboms_without_document_ids(store: MagicMock) -> None:
    """Without logged IDs the image SBOM itself is returned."""
    records = await verify_sboms(store, IMAGE, [])

    assert [r.id for r in records] == ["s1"]


async def test_verify_sboms_missing_document(store: MagicMock) -> None:
    """Missing document IDs are named in the error."""
    with pytest.raises(NotFoundError, match="doc-9"):
        await verify_sboms(store, IMAGE, ["doc-1", "doc-9"])


async def test_verify_sboms_missing_image_sbom(store: MagicMock) -> None:
    """An image without SBOM fails the verification."""
    store.search_sbom_by_sha256.return_value = None

    with pytest.raises(NotFoundError, match="aaa111"):
        await verify_sboms(store, IMAGE, ["doc-1"])


async def test_run_step_wraps_errors() -> None:
    """Step failures carry the step name and the original error."""
    error = SyncFailedError("not synced")

    async def _fail() -> None:
        raise error

    with pytest.raises(StepFailedError) as exc_info:
        await run_step("go-github-tekton", "promote to stage", _fail)

    assert exc_info.value.step == "promote to stage"
    assert exc_info.value.error is error
    assert "Step 'promote to stage' failed: not synced" == str(exc_info.value)


async def test_run_step_returns_value() -> None:
    """The step result is passed through."""

    async def _ok() -> str:
        return "done"

    assert await run_step("project", "step", _ok) == "done"
