"""Tests for pipeline lookup and assertion helpers."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tssc.e2e_orchestrator.errors import (
    NotFoundError,
    PipelineFailedError,
    TransientError,
    UnauthorizedError,
)
from tssc.e2e_orchestrator.models.cancel_result import CancelError, CancelResult
from tssc.e2e_orchestrator.models.enums import CIType, EventType, PipelineStatus
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.pipelines import (
    expect_pipeline_success,
    find_pipeline,
    get_pipeline_and_wait_for_completion,
    handle_initial_pipelines,
)
from tssc.e2e_orchestrator.providers.ci.base import CIProvider
from tssc.e2e_orchestrator.retry import RetryPolicy

FAST = RetryPolicy(max_retries=2, min_timeout=0, max_timeout=0)
PR = PullRequest(pull_number=3, sha="abc1234def", repository="go-abcdefgh")


def _pipeline(status: PipelineStatus = PipelineStatus.RUNNING) -> Pipeline:
    return Pipeline(
        id="run-1",
        ci_type=CIType.GITLAB_CI,
        repository_name="go-abcdefgh",
        status=status,
        name="Pipeline #1",
    )


@pytest.fixture
def ci() -> MagicMock:
    """Create a CI provider with mocked backend calls."""
    provider = MagicMock(spec=CIProvider)
    provider.get_ci_type.return_value = CIType.GITLAB_CI
    provider.get_pipeline = AsyncMock(return_value=_pipeline())
    provider.wait_for_pipeline_to_finish = AsyncMock(return_value=PipelineStatus.SUCCESS)
    provider.get_pipeline_logs = AsyncMock(return_value="step failed")
    provider.wait_for_all_pipeline_runs_to_finish = AsyncMock()
    provider.cancel_all_pipelines = AsyncMock(return_value=CancelResult())
    return provider


async def test_find_pipeline_retries_until_found(ci: MagicMock) -> None:
    """A missing run is retried until the backend reports it."""
    ci.get_pipeline.side_effect = [None, _pipeline()]

    with patch("asyncio.sleep") as mock_sleep:
        pipeline = await find_pipeline(ci, PR, EventType.PULL_REQUEST, FAST)

    assert pipeline.id == "run-1"
    assert mock_sleep.await_count == 1
    ci.get_pipeline.assert_awaited_with(PR, PipelineStatus.RUNNING, EventType.PULL_REQUEST)


async def test_find_pipeline_gives_up(ci: MagicMock) -> None:
    """After all retries a missing run raises NotFoundError."""
    ci.get_pipeline.return_value = None

    with patch("asyncio.sleep"), pytest.raises(NotFoundError, match="pull_request"):
        await find_pipeline(ci, PR, EventType.PULL_REQUEST, FAST)

    assert ci.get_pipeline.await_count == 3


async def test_find_pipeline_retries_transient_errors(ci: MagicMock) -> None:
    """Transient provider errors are retried."""
    ci.get_pipeline.side_effect = [TransientError("502"), _pipeline()]

    with patch("asyncio.sleep"):
        pipeline = await find_pipeline(ci, PR, EventType.PUSH, FAST)

    assert pipeline.id == "run-1"


async def test_find_pipeline_stops_on_auth_error(ci: MagicMock) -> None:
    """Authentication failures are not retried."""
    ci.get_pipeline.side_effect = UnauthorizedError("bad token")

    with patch("asyncio.sleep") as mock_sleep, pytest.raises(UnauthorizedError):
        await find_pipeline(ci, PR, EventType.PUSH, FAST)

    mock_sleep.assert_not_awaited()


async def test_expect_pipeline_success_passes(ci: MagicMock) -> None:
    """Successful runs pass without fetching logs."""
    await expect_pipeline_success(_pipeline(PipelineStatus.SUCCESS), ci)

    ci.get_pipeline_logs.assert_not_awaited()


async def test_expect_pipeline_success_attaches_logs(ci: MagicMock) -> None:
    """Failed runs raise with their logs attached."""
    pipeline = _pipeline(PipelineStatus.FAILURE)

    with pytest.raises(PipelineFailedError, match="failure") as exc_info:
        await expect_pipeline_success(pipeline, ci)

    assert exc_info.value.logs == "step failed"
    assert pipeline.logs == "step failed"


async def test_expect_pipeline_success_log_fetch_failure(ci: MagicMock) -> None:
    """A log fetch error is reported in place of the logs."""
    ci.get_pipeline_logs.side_effect = NotFoundError("gone")

    with pytest.raises(PipelineFailedError) as exc_info:
        await expect_pipeline_success(_pipeline(PipelineStatus.CANCELLED), ci)

    assert exc_info.value.logs == "Failed to fetch logs: gone"


async def test_get_pipeline_and_wait_for_completion(ci: MagicMock) -> None:
    """The found run is awaited and its final status checked."""

    async def finish(pipeline: Pipeline) -> PipelineStatus:
        pipeline.status = PipelineStatus.SUCCESS
        return PipelineStatus.SUCCESS

    ci.wait_for_pipeline_to_finish.side_effect = finish

    pipeline = await get_pipeline_and_wait_for_completion(
        ci, PR, EventType.PULL_REQUEST, "PR pipeline", FAST
    )

    assert pipeline.is_successful()
    ci.wait_for_pipeline_to_finish.assert_awaited_once_with(pipeline)


async def test_get_pipeline_and_wait_for_failed_run(ci: MagicMock) -> None:
    """A run finishing unsuccessfully raises PipelineFailedError."""

    async def finish(pipeline: Pipeline) -> PipelineStatus:
        pipeline.status = PipelineStatus.FAILURE
        return PipelineStatus.FAILURE

    ci.wait_for_pipeline_to_finish.side_effect = finish

    with pytest.raises(PipelineFailedError):
        await get_pipeline_and_wait_for_completion(
            ci, PR, EventType.PUSH, "push pipeline", FAST
        )


async def test_handle_initial_pipelines_waits_for_tekton(ci: MagicMock) -> None:
    """Tekton runs are waited for, not cancelled."""
    ci.get_ci_type.return_value = CIType.TEKTON

    assert await handle_initial_pipelines(ci) is None

    ci.wait_for_all_pipeline_runs_to_finish.assert_awaited_once()
    ci.cancel_all_pipelines.assert_not_awaited()


async def test_handle_initial_pipelines_cancels_others(ci: MagicMock) -> None:
    """Other CI systems have their runs cancelled and errors reported."""
    ci.cancel_all_pipelines.return_value = CancelResult(
        total=1,
        failed=1,
        errors=(CancelError(pipeline_id="1", message="boom"),),
    )

    result = await handle_initial_pipelines(ci)

    assert result is not None
    assert result.failed == 1
    ci.wait_for_all_pipeline_runs_to_finish.assert_not_awaited()
