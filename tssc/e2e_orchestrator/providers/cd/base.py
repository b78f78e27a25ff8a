"""Abstract base for continuous delivery providers."""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from tssc.e2e_orchestrator.models.enums import Environment


class SyncResult(BaseModel):
    """Outcome of waiting for an application to sync."""

    synced: bool = Field(..., description="Whether the expected revision is live")
    status: str = Field(..., description="Last observed sync status")
    message: str = Field(..., description="Human readable summary")


class CDProvider(ABC):
    """Applications deploying a component's GitOps overlays per environment."""

    @abstractmethod
    async def get_application(self, environment: Environment) -> dict[str, Any] | None:
        """Return the application record of an environment, or None."""

    @abstractmethod
    async def sync_application(self, environment: Environment) -> None:
        """Request a sync of an environment's application without waiting."""

    @abstractmethod
    async def wait_until_application_is_synced(
        self,
        environment: Environment,
        expected_sha: str,
        retries: int | None = None,
        interval: float | None = None,
    ) -> SyncResult:
        """Wait until the application runs ``expected_sha`` healthy and synced."""
