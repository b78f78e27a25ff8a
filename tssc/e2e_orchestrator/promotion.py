"""GitOps promotion workflow from a source change to production."""

import logging
import re
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field

from tssc.e2e_orchestrator.errors import NotFoundError, SyncFailedError
from tssc.e2e_orchestrator.models.enums import CIType, Environment, EventType
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.pipelines import BANNER, get_pipeline_and_wait_for_completion
from tssc.e2e_orchestrator.providers.cd.base import CDProvider, SyncResult
from tssc.e2e_orchestrator.providers.ci.base import CIProvider
from tssc.e2e_orchestrator.providers.git.base import GitProvider
from tssc.e2e_orchestrator.providers.tpa import SbomRecord, SbomStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DIRECT_COMMIT_CI_TYPES = frozenset({CIType.JENKINS, CIType.GITHUB_ACTIONS, CIType.AZURE})
SBOM_DOCUMENT_ID_PATTERN = re.compile(r'"document_id"\s*:\s*"([^"]+)"')


class StepFailedError(Exception):
    """A workflow step failed; wraps the original error with the step name."""

    def __init__(self, step: str, error: BaseException) -> None:
        """Initialize with the failed step and its error."""
        super().__init__(f"Step '{step}' failed: {error}")
        self.step = step
        self.error = error


class PromotionOutcome(BaseModel):
    """What a completed workflow produced."""

    image: str = Field(default="", description="Image promoted to production")
    sbom_document_ids: list[str] = Field(default_factory=list)
    sboms: list[SbomRecord] = Field(default_factory=list)


def uses_direct_commits(ci: CIProvider) -> bool:
    """Whether changes go straight to ``main`` instead of through PRs."""
    return ci.get_ci_type() in DIRECT_COMMIT_CI_TYPES


def extract_sbom_document_ids(logs: str | None) -> list[str]:
    """Return every SBOM document ID printed in pipeline logs, in order."""
    if not logs:
        return []
    return SBOM_DOCUMENT_ID_PATTERN.findall(logs)


def image_digest(image: str) -> str:
    """Return the digest (or tag) after the last ``:`` of an image reference."""
    return image.rsplit(":", 1)[-1] if ":" in image else ""


def _require_synced(environment: Environment, result: SyncResult) -> SyncResult:
    if not result.synced:
        raise SyncFailedError(
            f"Failed to sync {environment.value} application: {result.message}"
        )
    return result


async def _require_application(cd: CDProvider, environment: Environment) -> None:
    if await cd.get_application(environment) is None:
        raise NotFoundError(f"No application found for the {environment.value} environment")
    logger.info(f"Application exists in {environment.value} environment")


async def wait_initial_deploy_synced(git: GitProvider, cd: CDProvider) -> SyncResult:
    """Sync the development application to the GitOps tip and wait for it.

    Raises:
        NotFoundError: If the development application does not exist
        SyncFailedError: If the application did not sync to the tip

    """
    environment = Environment.DEVELOPMENT
    await _require_application(cd, environment)
    commit_sha = await git.get_gitops_repo_commit_sha()
    await cd.sync_application(environment)
    result = await cd.wait_until_application_is_synced(environment, commit_sha)
    _require_synced(environment, result)
    logger.info("Application deployed correctly in the development environment")
    return result


async def build_with_direct_commit(git: GitProvider, ci: CIProvider) -> Pipeline:
    """Commit the sample change to ``main`` and wait for the push build."""
    logger.info(f"Creating a direct commit on {git.get_source_repo_name()}...")
    sha = await git.create_sample_commit_on_source_repo()
    logger.info(f"Created commit with SHA: {sha}")

    if not ci.builds_on_push:
        await ci.trigger_build(git.get_source_repo_name())

    commit = PullRequest.for_commit(sha, git.get_source_repo_name())
    return await get_pipeline_and_wait_for_completion(
        ci, commit, EventType.PUSH, "source build pipeline"
    )


async def build_with_pull_request(git: GitProvider, ci: CIProvider) -> Pipeline:
    """Open a PR with the sample change, merge it after its pipeline and wait again."""
    pull_request = await git.create_sample_pull_request_on_source_repo()
    logger.info(f"Created {pull_request}")

    await get_pipeline_and_wait_for_completion(
        ci, pull_request, EventType.PULL_REQUEST, "pull request pipeline"
    )
    merged = await git.merge_pull_request(pull_request)
    logger.info(f"Merged {merged}, waiting for the push pipeline")

    return await get_pipeline_and_wait_for_completion(
        ci, merged, EventType.PUSH, "push pipeline"
    )


async def handle_source_repo_code_changes(git: GitProvider, ci: CIProvider) -> Pipeline:
    """Build a new application image from a source change.

    Jenkins, GitHub Actions and Azure use a direct commit to ``main``; other
    CI systems go through a pull request.

    Returns:
        The push pipeline that built the image

    """
    logger.info(
        f"Making source changes for {git.get_source_repo_name()} "
        f"({git.git_type.value}, {ci.get_ci_type().value})"
    )
    if uses_direct_commits(ci):
        return await build_with_direct_commit(git, ci)
    return await build_with_pull_request(git, ci)


async def promote_with_pr(
    git: GitProvider,
    ci: CIProvider,
    cd: CDProvider,
    environment: Environment,
    image: str,
) -> Pipeline:
    """Promote ``image`` to ``environment`` through a GitOps pull request.

    Args:
        git: Git provider of the component
        ci: CI provider running the promotion checks
        cd: CD provider deploying the environment
        environment: Target environment
        image: Image reference to deploy

    Returns:
        The promotion pipeline, with its logs attached

    Raises:
        NotFoundError: If the environment has no application
        PipelineFailedError: If the promotion pipeline failed
        SyncFailedError: If the application did not sync to the merge commit

    """
    logger.info(f"Promoting application to {environment.value} with a pull request...")
    await _require_application(cd, environment)

    pull_request = await git.create_promotion_pull_request_on_gitops_repo(environment, image)
    logger.info(f"Created promotion {pull_request} in {git.get_gitops_repo_name()}")

    pipeline = await get_pipeline_and_wait_for_completion(
        ci, pull_request, EventType.PULL_REQUEST, f"{environment.value} promotion pipeline"
    )
    pipeline.logs = await ci.get_pipeline_logs(pipeline)

    merged = await git.merge_pull_request(pull_request)
    logger.info(f"Merged promotion {merged}")

    await cd.sync_application(environment)
    result = await cd.wait_until_application_is_synced(environment, merged.sha)
    _require_synced(environment, result)
    logger.info(f"Application promoted to {environment.value}: {result.message}")
    return pipeline


async def promote_without_pr(
    git: GitProvider,
    ci: CIProvider,
    cd: CDProvider,
    environment: Environment,
    image: str,
) -> Pipeline:
    """Promote ``image`` to ``environment`` with a direct GitOps commit.

    The GitOps push pipeline plays the role of the promotion pipeline.

    Returns:
        The GitOps push pipeline, with its logs attached

    Raises:
        NotFoundError: If the environment has no application
        PipelineFailedError: If the GitOps pipeline failed
        SyncFailedError: If the application did not sync to the commit

    """
    logger.info(f"Promoting application to {environment.value} with a direct commit...")
    await _require_application(cd, environment)

    sha = await git.create_promotion_commit_on_gitops_repo(environment, image)
    logger.info(f"Created promotion commit with SHA: {sha}")

    if not ci.builds_on_push:
        await ci.trigger_build(git.get_gitops_repo_name())

    commit = PullRequest.for_commit(sha, git.get_gitops_repo_name())
    pipeline = await get_pipeline_and_wait_for_completion(
        ci, commit, EventType.PUSH, f"{environment.value} promotion pipeline"
    )
    pipeline.logs = await ci.get_pipeline_logs(pipeline)

    await cd.sync_application(environment)
    result = await cd.wait_until_application_is_synced(environment, sha)
    _require_synced(environment, result)
    logger.info(f"Application promoted to {environment.value}: {result.message}")
    return pipeline


async def promote_to(
    git: GitProvider,
    ci: CIProvider,
    cd: CDProvider,
    environment: Environment,
    image: str,
) -> Pipeline:
    """Promote with the protocol matching the CI system."""
    if uses_direct_commits(ci):
        return await promote_without_pr(git, ci, cd, environment, image)
    return await promote_with_pr(git, ci, cd, environment, image)


async def verify_sboms(
    store: SbomStore, image: str, document_ids: list[str]
) -> list[SbomRecord]:
    """Check that the SBOM store holds the image's SBOM and every document ID.

    Returns:
        The SBOM records found, one per document ID (or the image SBOM when
        no document ID was logged)

    Raises:
        NotFoundError: If the image SBOM or any document ID is missing

    """
    digest = image_digest(image)
    if not digest:
        raise NotFoundError(f"Image {image} has no digest to look up its SBOM")

    sbom = await store.search_sbom_by_sha256(digest)
    if sbom is None:
        raise NotFoundError(f"No SBOM found for image digest {digest}")
    logger.info(f"Found SBOM {sbom.name} for image digest {digest}")

    records: list[SbomRecord] = []
    missing: list[str] = []
    for document_id in document_ids:
        record = await store.search_sbom_by_name_and_doc_id(sbom.name, document_id)
        if record is None:
            missing.append(document_id)
        else:
            records.append(record)
    if missing:
        raise NotFoundError(
            f"SBOM document(s) {', '.join(missing)} for {digest} not found in the store"
        )
    return records or [sbom]


async def run_step(project: str, name: str, step: Callable[[], Awaitable[T]]) -> T:
    """Run a workflow step between banners, tagging failures with its name."""
    logger.info(BANNER)
    logger.info(f"[{project}] Step: {name}")
    logger.info(BANNER)
    try:
        return await step()
    except Exception as e:
        logger.error(f"[{project}] Step '{name}' failed: {e}")
        raise StepFailedError(name, e) from e
