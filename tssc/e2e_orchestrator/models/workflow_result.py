"""Models for workflow execution results."""

from typing import Literal

from pydantic import BaseModel, Field


class WorkflowResult(BaseModel):
    """Result of running the component workflow for one project."""

    project: str = Field(..., description="Project name of the combination")
    component: str = Field(..., description="Final component name")
    status: Literal["success", "failure", "timeout", "error"] = Field(
        ..., description="Workflow status"
    )
    duration: float = Field(..., description="Execution time in seconds")
    failed_step: str | None = Field(default=None, description="Step that failed")
    message: str | None = Field(
        default=None, description="Error message or status details"
    )
    sbom_document_ids: list[str] = Field(
        default_factory=list, description="SBOM document IDs found in promotion logs"
    )
