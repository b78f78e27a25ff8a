"""Exponential back-off on tenacity with an explicit retry/stop/ok result type."""

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)

from tssc.e2e_orchestrator.errors import RateLimitedError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Operation succeeded with a value."""

    value: T


@dataclass(frozen=True)
class Retry:
    """Operation failed and may be attempted again."""

    error: BaseException


@dataclass(frozen=True)
class Stop:
    """Operation failed and must not be attempted again."""

    error: BaseException


Result = Ok[T] | Retry | Stop


class RetryPolicy(BaseModel):
    """Back-off parameters, in seconds."""

    max_retries: int = Field(default=10, ge=0, description="Retries after the first try")
    min_timeout: float = Field(default=1.0, ge=0, description="First delay")
    max_timeout: float = Field(default=60.0, ge=0, description="Delay ceiling")
    factor: float = Field(default=2.0, ge=1, description="Exponential growth factor")
    jitter: bool = Field(default=False, description="Randomize each delay")

    def backoff(self) -> wait_exponential:
        """Tenacity wait strategy growing from ``min_timeout`` up to ``max_timeout``."""
        strategy = wait_random_exponential if self.jitter else wait_exponential
        return strategy(
            multiplier=self.min_timeout,
            min=self.min_timeout,
            max=self.max_timeout,
            exp_base=self.factor,
        )


RetryCallback = Callable[[BaseException, int], None]


async def retry(
    operation: Callable[[int], Awaitable[Result[T]]],
    policy: RetryPolicy,
    on_retry: RetryCallback | None = None,
) -> T:
    """Run ``operation`` until it returns ``Ok`` or retries are exhausted.

    Args:
        operation: Coroutine function receiving the 1-based attempt number
        policy: Back-off parameters
        on_retry: Called with the error and attempt number before each sleep

    Returns:
        The value carried by the first ``Ok``

    Raises:
        BaseException: The error of a ``Stop`` result, or of the last ``Retry``
            once ``policy.max_retries`` retries have been used

    """
    attempts = itertools.count(1)

    async def _attempt() -> Result[T]:
        return await operation(next(attempts))

    backoff = policy.backoff()

    def _wait(retry_state: RetryCallState) -> float:
        error = _last_result(retry_state).error
        if isinstance(error, RateLimitedError) and error.retry_after:
            return error.retry_after
        return backoff(retry_state)

    def _before_sleep(retry_state: RetryCallState) -> None:
        if on_retry is not None:
            on_retry(_last_result(retry_state).error, retry_state.attempt_number)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=_wait,
        retry=retry_if_result(lambda result: isinstance(result, Retry)),
        before_sleep=_before_sleep,
        retry_error_callback=_last_result,
        sleep=_sleep,
    )
    result = await retrying(_attempt)
    if isinstance(result, Ok):
        return result.value
    raise result.error


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _last_result(retry_state: RetryCallState) -> Any:
    return retry_state.outcome.result()  # type: ignore[union-attr]


async def retry_on_error(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    on_retry: RetryCallback | None = None,
) -> T:
    """Retry an exception raising coroutine function.

    Exceptions are classified with ``is_retryable``; non-retryable errors stop
    the loop immediately.
    """

    async def attempt_once(_: int) -> Result[T]:
        try:
            return Ok(await operation())
        except Exception as e:
            if is_retryable(e):
                return Retry(e)
            return Stop(e)

    return await retry(attempt_once, policy, on_retry)


def log_retry(description: str) -> RetryCallback:
    """Build an ``on_retry`` callback that logs a warning."""

    def _log(error: BaseException, attempt: int) -> None:
        logger.warning(f"{description}: attempt {attempt} failed, retrying: {error}")

    return _log
