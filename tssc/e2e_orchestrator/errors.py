"""Error taxonomy shared by providers, workflow steps and the CLI."""

import asyncio
from enum import Enum

import aiohttp


class ErrorKind(str, Enum):
    """Classification carried alongside every harness error."""

    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    INVALID_CONFIG = "invalid_config"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_NETWORK = "transient_network"
    TRANSIENT_PROVIDER = "transient_provider"
    CONFLICT = "conflict"
    PIPELINE_FAILED = "pipeline_failed"
    SYNC_FAILED = "sync_failed"
    TIMEOUT = "timeout"
    UNSUPPORTED_STRATEGY = "unsupported_strategy"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.RATE_LIMITED,
        ErrorKind.TRANSIENT_NETWORK,
        ErrorKind.TRANSIENT_PROVIDER,
        ErrorKind.CONFLICT,
        ErrorKind.UNKNOWN,
    }
)

# Substrings that mark an error message as non-retryable when no kind is known.
NON_RETRYABLE_PATTERNS = (
    "unauthorized",
    "forbidden",
    "401",
    "authentication failed",
    "invalid token",
    "template not found",
    "invalid template",
    "permission denied",
    "missing env var",
)


class TsscError(Exception):
    """Base error for the orchestrator.

    Attributes:
        kind: Error classification
        status_code: HTTP status code reported by the provider, if any
        provider_error_code: Provider specific error code, if any

    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        status_code: int | None = None,
        provider_error_code: str | None = None,
    ) -> None:
        """Initialize error with message and optional provider context."""
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.status_code = status_code
        self.provider_error_code = provider_error_code

    @property
    def retryable(self) -> bool:
        """Whether the operation that raised this error may be retried."""
        return self.kind in RETRYABLE_KINDS


class NotFoundError(TsscError):
    """Resource does not exist."""

    kind = ErrorKind.NOT_FOUND


class UnauthorizedError(TsscError):
    """Credentials were rejected."""

    kind = ErrorKind.UNAUTHORIZED


class ForbiddenError(TsscError):
    """Credentials lack the required permission."""

    kind = ErrorKind.FORBIDDEN


class InvalidConfigError(TsscError):
    """Configuration, test plan or environment is invalid."""

    kind = ErrorKind.INVALID_CONFIG


class RateLimitedError(TsscError):
    """Provider rate limit was hit."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        status_code: int | None = 429,
        provider_error_code: str | None = None,
    ) -> None:
        """Initialize with the provider supplied Retry-After value."""
        super().__init__(
            message, status_code=status_code, provider_error_code=provider_error_code
        )
        self.retry_after = retry_after


class TransientError(TsscError):
    """Network or provider hiccup that is worth retrying."""

    kind = ErrorKind.TRANSIENT_PROVIDER


class ConflictError(TsscError):
    """Resource changed underneath the caller (e.g. a moved branch ref)."""

    kind = ErrorKind.CONFLICT


class PipelineFailedError(TsscError):
    """A CI pipeline finished in a non-successful state."""

    kind = ErrorKind.PIPELINE_FAILED

    def __init__(self, message: str, *, logs: str | None = None) -> None:
        """Initialize with the pipeline logs fetched for the report."""
        super().__init__(message)
        self.logs = logs


class SyncFailedError(TsscError):
    """A CD application did not reach the expected synced state."""

    kind = ErrorKind.SYNC_FAILED


class OperationTimeoutError(TsscError):
    """An operation did not finish within its deadline."""

    kind = ErrorKind.TIMEOUT


class UnsupportedStrategyError(TsscError):
    """No strategy exists for the requested provider combination."""

    kind = ErrorKind.UNSUPPORTED_STRATEGY


_STATUS_ERRORS: dict[int, type[TsscError]] = {
    401: UnauthorizedError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
    429: RateLimitedError,
}


def error_from_status(
    status: int,
    message: str,
    provider_error_code: str | None = None,
) -> TsscError:
    """Build the error matching an HTTP status code.

    Args:
        status: HTTP status code
        message: Human readable message including the response body
        provider_error_code: Error code extracted from the response body

    Returns:
        Error instance of the matching kind

    """
    error_cls = _STATUS_ERRORS.get(status)
    if error_cls is not None:
        return error_cls(
            message, status_code=status, provider_error_code=provider_error_code
        )
    if status >= 500:
        return TransientError(
            message, status_code=status, provider_error_code=provider_error_code
        )
    return TsscError(
        message,
        kind=ErrorKind.UNKNOWN,
        status_code=status,
        provider_error_code=provider_error_code,
    )


def classify_message(message: str) -> ErrorKind:
    """Classify a bare error message by substring matching.

    Only used for exceptions raised outside the harness, which carry no kind.
    """
    lowered = message.lower()
    for pattern in NON_RETRYABLE_PATTERNS:
        if pattern in lowered:
            if pattern in ("forbidden", "permission denied"):
                return ErrorKind.FORBIDDEN
            if pattern in ("template not found", "invalid template", "missing env var"):
                return ErrorKind.INVALID_CONFIG
            return ErrorKind.UNAUTHORIZED
    return ErrorKind.UNKNOWN


def error_kind(error: BaseException) -> ErrorKind:
    """Return the kind of any exception."""
    if isinstance(error, TsscError):
        return error.kind
    if isinstance(error, (aiohttp.ClientConnectionError, asyncio.TimeoutError)):
        return ErrorKind.TRANSIENT_NETWORK
    return classify_message(str(error))


def is_retryable(error: BaseException) -> bool:
    """Return True when the error is worth another attempt."""
    if isinstance(error, TsscError):
        return error.retryable
    return error_kind(error) in RETRYABLE_KINDS
