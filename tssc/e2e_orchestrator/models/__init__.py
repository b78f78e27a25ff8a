"""Data models for test plans, pipelines, pull requests and results."""

from tssc.e2e_orchestrator.models.cancel_result import (
    CancelDetail,
    CancelError,
    CancelResult,
    CancelResultBuilder,
)
from tssc.e2e_orchestrator.models.enums import (
    CIType,
    Environment,
    EventType,
    GitType,
    PipelineStatus,
    RegistryType,
)
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.models.test_item import TestItem
from tssc.e2e_orchestrator.models.test_plan import (
    ProjectConfig,
    TestPlan,
    TestPlanFile,
    TsscConfig,
)
from tssc.e2e_orchestrator.models.workflow_result import WorkflowResult

__all__ = [
    "CIType",
    "CancelDetail",
    "CancelError",
    "CancelResult",
    "CancelResultBuilder",
    "Environment",
    "EventType",
    "GitType",
    "Pipeline",
    "PipelineStatus",
    "ProjectConfig",
    "PullRequest",
    "RegistryType",
    "TestItem",
    "TestPlan",
    "TestPlanFile",
    "TsscConfig",
    "WorkflowResult",
]
