"""Abstract base class for CI providers."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence

from pydantic import BaseModel, Field

from tssc.e2e_orchestrator.config import Timeouts
from tssc.e2e_orchestrator.errors import (
    OperationTimeoutError,
    TsscError,
    is_retryable,
)
from tssc.e2e_orchestrator.models.cancel_result import CancelResult, CancelResultBuilder
from tssc.e2e_orchestrator.models.enums import CIType, EventType, PipelineStatus
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.retry import Ok, Result, Retry, RetryPolicy, Stop, retry

logger = logging.getLogger(__name__)

EMPTY_LOG = "Log is empty"
LOG_RETRY_POLICY = RetryPolicy(max_retries=4, min_timeout=5, max_timeout=15, factor=2)

CANCEL_ERROR_MESSAGES = {
    404: "Pipeline not found (may have completed)",
    403: "Insufficient permissions to cancel pipeline",
    409: "Pipeline cannot be cancelled (already completed or in final state)",
}


class EmptyLogError(TsscError):
    """A job log came back empty."""


class CancelOptions(BaseModel):
    """Filters and limits for ``cancel_all_pipelines``."""

    exclude_patterns: list[str] = Field(
        default_factory=list,
        description="Regular expressions matched against pipeline name, id and branch",
    )
    include_completed: bool = Field(
        default=False, description="Also consider pipelines in a terminal state"
    )
    event_type: EventType | None = Field(default=None, description="Only this event")
    branch: str | None = Field(default=None, description="Only this branch")
    concurrency: int = Field(default=10, ge=1, description="Parallel cancellations")
    dry_run: bool = Field(default=False, description="Report without cancelling")


class JobInfo(BaseModel):
    """A job or task of a pipeline, as used for log assembly."""

    id: str
    name: str
    steps: list[tuple[str, str]] = Field(
        default_factory=list, description="(step name, status) pairs"
    )


def job_banner(job: JobInfo) -> str:
    """Banner opening the log section of a job."""
    return f"--- Job: {job.name} (id={job.id}) ---"


def format_job_log(job: JobInfo, log: str) -> str:
    """Render one job section: banner, step statuses, then the log."""
    if not job.steps:
        return f"{job_banner(job)} {log}"
    steps = "\n".join(f"  step {name}: {status}" for name, status in job.steps)
    return f"{job_banner(job)}\n{steps}\n{log}"


def _sort_key(job: JobInfo) -> tuple[int, int | str]:
    return (0, int(job.id)) if job.id.isdigit() else (1, job.id)


async def fetch_job_log(
    job: JobInfo,
    fetch: Callable[[JobInfo], Awaitable[str]],
    policy: RetryPolicy = LOG_RETRY_POLICY,
) -> str:
    """Fetch one job log, retrying empty responses.

    A log that stays empty after the last attempt is reported as
    ``Log is empty``; a fetch error is reported inline. Neither fails the
    caller.
    """

    async def _attempt(attempt: int) -> Result[str]:
        try:
            log = await fetch(job)
        except Exception as e:
            return Retry(e) if is_retryable(e) else Stop(e)
        if not log:
            logger.info(f"Got empty log on attempt {attempt} for job {job.id}")
            return Retry(EmptyLogError(f"Empty log for job {job.id}"))
        return Ok(log)

    def _on_retry(error: BaseException, attempt: int) -> None:
        logger.warning(
            f"Retry attempt {attempt}/{policy.max_retries + 1} for log of job "
            f"{job.id}: {error}"
        )

    try:
        log = await retry(_attempt, policy, _on_retry)
    except EmptyLogError:
        logger.warning(f"Job {job.id} has an empty log after multiple retries")
        return format_job_log(job, EMPTY_LOG)
    except Exception as e:
        logger.error(f"Failed to get log of job {job.id}: {e}")
        return format_job_log(job, f"Failed to retrieve log: {e}")
    return format_job_log(job, log)


async def assemble_job_logs(
    jobs: Sequence[JobInfo],
    fetch: Callable[[JobInfo], Awaitable[str]],
    policy: RetryPolicy = LOG_RETRY_POLICY,
    sort: bool = True,
) -> str:
    """Concatenate the logs of all jobs, in chronological id order unless ``sort`` is off."""
    ordered = sorted(jobs, key=_sort_key) if sort else list(jobs)
    sections = [await fetch_job_log(job, fetch, policy) for job in ordered]
    return "\n".join(sections)


def _excluded_by(pipeline: Pipeline, patterns: Sequence[re.Pattern[str]]) -> str | None:
    fields = [pipeline.name, pipeline.id, pipeline.branch]
    for pattern in patterns:
        for value in fields:
            if value and pattern.search(value):
                return pattern.pattern
    return None


class CIProvider(ABC):
    """A CI system building one component's source and GitOps repositories."""

    ci_type: CIType
    # Whether a push to a repository starts its pipeline without trigger_build.
    builds_on_push: bool = True

    def __init__(self, component_name: str, timeouts: Timeouts | None = None) -> None:
        """Initialize provider for one component."""
        self.component_name = component_name
        self.timeouts = timeouts or Timeouts()

    @property
    def source_repo_name(self) -> str:
        """Source repository name of the component."""
        return self.component_name

    @property
    def gitops_repo_name(self) -> str:
        """GitOps repository name of the component."""
        return f"{self.component_name}-gitops"

    def get_ci_type(self) -> CIType:
        """Return the CI variant."""
        return self.ci_type

    async def trigger_build(self, job_name: str | None = None) -> None:
        """Start the pipeline of a repository, the source one by default.

        Only needed when ``builds_on_push`` is false; push-triggered
        providers have nothing to do.
        """
        logger.debug(
            f"{self.ci_type.value} builds {job_name or self.source_repo_name} on push"
        )

    @abstractmethod
    async def get_pipeline(
        self,
        pull_request: PullRequest,
        desired_status: PipelineStatus = PipelineStatus.RUNNING,
        event_type: EventType | None = None,
    ) -> Pipeline | None:
        """Return the run triggered by the pull request's commit.

        The run must match the commit SHA, the event type when the backend
        reports one, and have progressed at least to ``desired_status``.

        Returns:
            The matching run, or None when none exists yet

        """

    @abstractmethod
    async def check_pipeline_status(self, pipeline: Pipeline) -> PipelineStatus:
        """Return the current status of a run."""

    @abstractmethod
    async def list_pipelines(self) -> list[Pipeline]:
        """Return every run of the component's repositories."""

    @abstractmethod
    async def get_pipeline_logs(self, pipeline: Pipeline) -> str:
        """Return the assembled logs of a run."""

    @abstractmethod
    async def cancel_pipeline(self, pipeline: Pipeline) -> None:
        """Ask the backend to cancel a run."""

    @abstractmethod
    async def get_webhook_url(self) -> str:
        """Return the URL git providers should send events to."""

    @abstractmethod
    def get_ci_file_path_in_repo(self) -> str:
        """Return the CI definition path inside the source repository."""

    def get_gitops_ci_file_path_in_repo(self) -> str:
        """Return the CI definition path inside the GitOps repository."""
        return self.get_ci_file_path_in_repo()

    async def wait_for_pipeline_to_finish(
        self,
        pipeline: Pipeline,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> PipelineStatus:
        """Wait for a run to reach a terminal status.

        Args:
            pipeline: Run to watch; its ``status`` is updated in place
            timeout: Maximum wait time in seconds
            poll_interval: Seconds between polls

        Returns:
            Final status

        Raises:
            OperationTimeoutError: If the run doesn't finish within timeout

        """
        timeout = self.timeouts.pipeline_completion if timeout is None else timeout
        if poll_interval is None:
            poll_interval = self.timeouts.pipeline_poll_interval

        start_time = asyncio.get_event_loop().time()
        end_time = start_time + timeout

        while True:
            status = await self.check_pipeline_status(pipeline)
            pipeline.status = status

            if status.is_terminal:
                logger.info(f"Pipeline {pipeline.display_name} finished: {status.value}")
                return status

            current_time = asyncio.get_event_loop().time()
            if current_time >= end_time:
                raise OperationTimeoutError(
                    f"Pipeline {pipeline.display_name} did not complete within "
                    f"{timeout} seconds"
                )

            logger.info(
                f"Pipeline {pipeline.display_name} is {status.value}, "
                f"checking again in {poll_interval}s"
            )
            await asyncio.sleep(poll_interval)

    async def wait_for_all_pipeline_runs_to_finish(
        self,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> None:
        """Wait until no run of the component is pending or running.

        Raises:
            OperationTimeoutError: If runs are still active at the deadline

        """
        timeout = self.timeouts.all_pipelines if timeout is None else timeout
        if poll_interval is None:
            poll_interval = self.timeouts.all_pipelines_poll_interval

        end_time = asyncio.get_event_loop().time() + timeout
        while True:
            active = [p for p in await self.list_pipelines() if p.is_active()]
            if not active:
                logger.info(f"All pipelines of {self.component_name} have finished")
                return

            if asyncio.get_event_loop().time() >= end_time:
                names = ", ".join(p.display_name for p in active)
                raise OperationTimeoutError(
                    f"{len(active)} pipeline(s) of {self.component_name} still "
                    f"active after {timeout} seconds: {names}"
                )

            logger.info(f"Waiting for {len(active)} pipeline(s) to complete")
            await asyncio.sleep(poll_interval)

    def _skip_reason(
        self,
        pipeline: Pipeline,
        options: CancelOptions,
        patterns: Sequence[re.Pattern[str]],
    ) -> str | None:
        if pipeline.is_completed() and not options.include_completed:
            return f"already completed ({pipeline.status.value})"
        pattern = _excluded_by(pipeline, patterns)
        if pattern is not None:
            return f"matches exclude pattern {pattern}"
        if options.event_type is not None and pipeline.event_type != options.event_type.value:
            return f"event type {pipeline.event_type} is not {options.event_type.value}"
        if options.branch is not None and pipeline.branch != options.branch:
            return f"branch {pipeline.branch} is not {options.branch}"
        return None

    def _compile_patterns(
        self, patterns: Sequence[str], builder: CancelResultBuilder
    ) -> list[re.Pattern[str]]:
        compiled = []
        for pattern in patterns:
            try:
                compiled.append(re.compile(pattern))
            except re.error as e:
                logger.warning(f"Ignoring invalid exclude pattern {pattern!r}: {e}")
                builder.error("*", f"Invalid exclude pattern {pattern!r}: {e}")
        return compiled

    async def _cancel_one(
        self,
        pipeline: Pipeline,
        builder: CancelResultBuilder,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            try:
                await self.cancel_pipeline(pipeline)
            except Exception as e:
                status_code = getattr(e, "status_code", None)
                message = CANCEL_ERROR_MESSAGES.get(status_code or 0, str(e))
                logger.warning(f"Failed to cancel {pipeline.display_name}: {message}")
                builder.fail(
                    pipeline.id,
                    pipeline.name,
                    pipeline.status.value,
                    message,
                    status_code=status_code,
                    provider_error_code=getattr(e, "provider_error_code", None),
                )
                return
        logger.info(f"Cancelled {pipeline.display_name}")
        builder.cancelled(pipeline.id, pipeline.name, pipeline.status.value)

    async def cancel_all_pipelines(
        self, options: CancelOptions | None = None
    ) -> CancelResult:
        """Cancel the component's active runs.

        Never raises: listing and cancellation failures are reported in the
        result's ``errors``.
        """
        options = options or CancelOptions()
        builder = CancelResultBuilder()
        patterns = self._compile_patterns(options.exclude_patterns, builder)

        try:
            pipelines = await self.list_pipelines()
        except Exception as e:
            logger.error(f"Failed to list pipelines of {self.component_name}: {e}")
            builder.error(
                "*",
                f"Failed to list pipelines: {e}",
                status_code=getattr(e, "status_code", None),
                provider_error_code=getattr(e, "provider_error_code", None),
            )
            return builder.build()

        builder.add_candidates(len(pipelines))
        to_cancel: list[Pipeline] = []
        for pipeline in pipelines:
            reason = self._skip_reason(pipeline, options, patterns)
            if reason is not None:
                builder.skip(pipeline.id, pipeline.name, pipeline.status.value, reason)
            elif options.dry_run:
                builder.plan(pipeline.id, pipeline.name, pipeline.status.value)
            else:
                to_cancel.append(pipeline)

        if to_cancel:
            semaphore = asyncio.Semaphore(options.concurrency)
            await asyncio.gather(
                *(self._cancel_one(p, builder, semaphore) for p in to_cancel)
            )

        result = builder.build()
        logger.info(
            f"Cancel pipelines of {self.component_name}: total={result.total} "
            f"cancelled={result.cancelled} failed={result.failed} "
            f"skipped={result.skipped} planned={result.planned}"
        )
        return result
