"""Locating, awaiting and asserting CI pipelines for workflow steps."""

import logging

from tssc.e2e_orchestrator.errors import NotFoundError, PipelineFailedError, TsscError
from tssc.e2e_orchestrator.models.cancel_result import CancelResult
from tssc.e2e_orchestrator.models.enums import CIType, EventType, PipelineStatus
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.providers.ci.base import CIProvider
from tssc.e2e_orchestrator.retry import Ok, Result, Retry, RetryPolicy, Stop, retry

logger = logging.getLogger(__name__)

BANNER = "=" * 80

PIPELINE_LOOKUP_POLICY = RetryPolicy(max_retries=10, min_timeout=10, max_timeout=50)


async def find_pipeline(
    ci: CIProvider,
    pull_request: PullRequest,
    event_type: EventType,
    policy: RetryPolicy = PIPELINE_LOOKUP_POLICY,
) -> Pipeline:
    """Poll the CI backend until a run for the PR or commit shows up.

    A missing run is a retryable miss; provider errors that are not worth
    retrying stop the lookup.

    Raises:
        NotFoundError: If no run appeared after all retries

    """

    async def _lookup(attempt: int) -> Result[Pipeline]:
        try:
            pipeline = await ci.get_pipeline(
                pull_request, PipelineStatus.RUNNING, event_type
            )
        except TsscError as e:
            return Retry(e) if e.retryable else Stop(e)
        if pipeline is None:
            return Retry(
                NotFoundError(
                    f"No {event_type.value} pipeline found for {pull_request} "
                    f"in {pull_request.repository}"
                )
            )
        return Ok(pipeline)

    def _on_retry(error: BaseException, attempt: int) -> None:
        logger.info(f"Attempt {attempt}: {error}, retrying")

    return await retry(_lookup, policy, _on_retry)


async def expect_pipeline_success(pipeline: Pipeline, ci: CIProvider) -> None:
    """Raise with the run's logs attached unless it succeeded.

    The logs are written to the log output first so they are visible even
    when the caller only reports the error message.

    Raises:
        PipelineFailedError: If the run is not successful

    """
    if pipeline.is_successful():
        return

    logger.error(
        f"Pipeline {pipeline.display_name} finished with status {pipeline.status.value}"
    )
    try:
        logs = await ci.get_pipeline_logs(pipeline)
    except Exception as e:
        logs = f"Failed to fetch logs: {e}"
    pipeline.logs = logs

    logger.info(BANNER)
    logger.info(f"Logs of pipeline {pipeline.display_name}:")
    logger.info(BANNER)
    logger.info(logs)
    logger.info(BANNER)

    raise PipelineFailedError(
        f"Pipeline {pipeline.display_name} on {pipeline.repository_name} "
        f"finished with status {pipeline.status.value}",
        logs=logs,
    )


async def get_pipeline_and_wait_for_completion(
    ci: CIProvider,
    pull_request: PullRequest,
    event_type: EventType,
    description: str,
    policy: RetryPolicy = PIPELINE_LOOKUP_POLICY,
) -> Pipeline:
    """Find the run of a PR or commit, wait for it and require success.

    Args:
        ci: CI provider watching the repository
        pull_request: PR, merged PR or direct commit reference
        event_type: Event the run was triggered by
        description: What the run does, used in log messages
        policy: Back-off used while the run has not appeared yet

    Returns:
        The finished, successful run

    Raises:
        NotFoundError: If no run appeared
        OperationTimeoutError: If the run did not finish in time
        PipelineFailedError: If the run did not succeed

    """
    logger.info(f"Looking for {description} ({event_type.value} on {pull_request})")
    pipeline = await find_pipeline(ci, pull_request, event_type, policy)
    logger.info(f"Waiting for {description} {pipeline.display_name} to finish...")

    status = await ci.wait_for_pipeline_to_finish(pipeline)
    logger.info(
        f"{description} {pipeline.display_name} completed with status: {status.value}"
    )

    await expect_pipeline_success(pipeline, ci)
    return pipeline


async def handle_initial_pipelines(ci: CIProvider) -> CancelResult | None:
    """Drain the runs triggered by setup commits after post-create.

    Tekton runs are left to finish; other CI systems have them cancelled.

    Returns:
        The cancellation result, or None for Tekton

    """
    if ci.get_ci_type() == CIType.TEKTON:
        logger.info("Waiting for initial Tekton pipeline runs to finish...")
        await ci.wait_for_all_pipeline_runs_to_finish()
        return None

    logger.info(f"Cancelling initial {ci.get_ci_type().value} pipelines...")
    result = await ci.cancel_all_pipelines()
    for error in result.errors:
        logger.warning(f"Could not cancel pipeline {error.pipeline_id}: {error.message}")
    return result
