"""Outcome of a mass pipeline cancellation."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

CancelOutcome = Literal["cancelled", "failed", "skipped", "planned"]


class CancelDetail(BaseModel):
    """What happened to one candidate pipeline."""

    model_config = ConfigDict(frozen=True)

    pipeline_id: str
    name: str | None = None
    status: str
    result: CancelOutcome
    reason: str | None = None


class CancelError(BaseModel):
    """A cancellation that the provider rejected."""

    model_config = ConfigDict(frozen=True)

    pipeline_id: str
    message: str
    status_code: int | None = None
    provider_error_code: str | None = None


class CancelResult(BaseModel):
    """Totals and per-pipeline outcome of ``cancel_all_pipelines``.

    ``planned`` counts pipelines a dry run would have cancelled; it is zero for
    real cancellations, so ``cancelled + failed + skipped + planned == total``.
    """

    model_config = ConfigDict(frozen=True)

    total: int = 0
    cancelled: int = 0
    failed: int = 0
    skipped: int = 0
    planned: int = 0
    details: tuple[CancelDetail, ...] = Field(default_factory=tuple)
    errors: tuple[CancelError, ...] = Field(default_factory=tuple)

    def is_consistent(self) -> bool:
        """Whether the counters add up to the total."""
        return self.cancelled + self.failed + self.skipped + self.planned == self.total


class CancelResultBuilder:
    """Mutable staging area that produces a frozen ``CancelResult``."""

    def __init__(self) -> None:
        """Start with empty counters."""
        self.total = 0
        self.details: list[CancelDetail] = []
        self.errors: list[CancelError] = []

    def add_candidates(self, count: int) -> None:
        """Account for listed pipelines."""
        self.total += count

    def skip(self, pipeline_id: str, name: str | None, status: str, reason: str) -> None:
        """Record a pipeline left alone by the filters."""
        self.details.append(
            CancelDetail(
                pipeline_id=pipeline_id,
                name=name,
                status=status,
                result="skipped",
                reason=reason,
            )
        )

    def plan(self, pipeline_id: str, name: str | None, status: str) -> None:
        """Record a pipeline a dry run would cancel."""
        self.details.append(
            CancelDetail(
                pipeline_id=pipeline_id,
                name=name,
                status=status,
                result="planned",
                reason="dry run",
            )
        )

    def cancelled(self, pipeline_id: str, name: str | None, status: str) -> None:
        """Record a successful cancellation."""
        self.details.append(
            CancelDetail(
                pipeline_id=pipeline_id, name=name, status=status, result="cancelled"
            )
        )

    def fail(
        self,
        pipeline_id: str,
        name: str | None,
        status: str,
        message: str,
        status_code: int | None = None,
        provider_error_code: str | None = None,
    ) -> None:
        """Record a rejected cancellation."""
        self.details.append(
            CancelDetail(
                pipeline_id=pipeline_id,
                name=name,
                status=status,
                result="failed",
                reason=message,
            )
        )
        self.error(pipeline_id, message, status_code, provider_error_code)

    def error(
        self,
        pipeline_id: str,
        message: str,
        status_code: int | None = None,
        provider_error_code: str | None = None,
    ) -> None:
        """Record a provider error without touching the counters."""
        self.errors.append(
            CancelError(
                pipeline_id=pipeline_id,
                message=message,
                status_code=status_code,
                provider_error_code=provider_error_code,
            )
        )

    def _count(self, outcome: CancelOutcome) -> int:
        return sum(1 for detail in self.details if detail.result == outcome)

    def build(self) -> CancelResult:
        """Freeze the collected outcome."""
        return CancelResult(
            total=self.total,
            cancelled=self._count("cancelled"),
            failed=self._count("failed"),
            skipped=self._count("skipped"),
            planned=self._count("planned"),
            details=tuple(self.details),
            errors=tuple(self.errors),
        )
