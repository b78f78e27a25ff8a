"""Tests for the GitHub Actions CI provider."""

from unittest.mock import patch

import pytest
from aioresponses import aioresponses

from tssc.e2e_orchestrator.errors import TsscError
from tssc.e2e_orchestrator.models.enums import CIType, EventType, PipelineStatus
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.provider_config import GitHubConfig
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.providers.ci.github_actions import (
    GitHubActionsCI,
    latest_per_workflow,
    workflow_run_status,
)

RUNS = "https://api.github.com/repos/tssc-org/go-abcdefgh/actions/runs"
GITOPS_RUNS = "https://api.github.com/repos/tssc-org/go-abcdefgh-gitops/actions/runs"


@pytest.fixture
def actions() -> GitHubActionsCI:
    """Create a GitHub Actions provider for a go component."""
    return GitHubActionsCI("go-abcdefgh", GitHubConfig(token="ghp", owner="tssc-org"))


def _pipeline(run_id: str = "11") -> Pipeline:
    return Pipeline(
        id=run_id, ci_type=CIType.GITHUB_ACTIONS, repository_name="go-abcdefgh"
    )


@pytest.mark.parametrize(
    ("run", "expected"),
    [
        ({"status": "completed", "conclusion": "success"}, PipelineStatus.SUCCESS),
        ({"status": "completed", "conclusion": "timed_out"}, PipelineStatus.FAILURE),
        ({"status": "completed", "conclusion": "cancelled"}, PipelineStatus.CANCELLED),
        ({"status": "in_progress"}, PipelineStatus.RUNNING),
        ({"status": "queued"}, PipelineStatus.PENDING),
        ({"status": "mystery"}, PipelineStatus.UNKNOWN),
    ],
)
def test_workflow_run_status(run: dict[str, str], expected: PipelineStatus) -> None:
    """Run status and conclusion map to a normalized status."""
    assert workflow_run_status(run) == expected


def test_latest_per_workflow_keeps_newest() -> None:
    """Only the newest run of each workflow survives."""
    runs = [
        {"id": 1, "workflow_id": 7, "created_at": "2024-01-01T00:00:00Z"},
        {"id": 2, "workflow_id": 7, "created_at": "2024-01-02T00:00:00Z"},
        {"id": 3, "workflow_id": 8, "created_at": "2024-01-01T00:00:00Z"},
    ]

    assert sorted(run["id"] for run in latest_per_workflow(runs)) == [2, 3]


async def test_get_pipeline_filters_event(actions: GitHubActionsCI) -> None:
    """Runs of other events are ignored."""
    pr = PullRequest(pull_number=4, sha="abc1234", repository="go-abcdefgh")
    with aioresponses() as m:
        m.get(
            f"{RUNS}?head_sha=abc1234&per_page=100",
            payload={
                "workflow_runs": [
                    {
                        "id": 1,
                        "workflow_id": 7,
                        "event": "push",
                        "status": "in_progress",
                        "created_at": "2024-01-02T00:00:00Z",
                    },
                    {
                        "id": 2,
                        "workflow_id": 8,
                        "event": "pull_request",
                        "status": "completed",
                        "conclusion": "success",
                        "head_sha": "abc1234",
                        "head_branch": "test-branch-1",
                        "created_at": "2024-01-01T00:00:00Z",
                    },
                ]
            },
        )

        pipeline = await actions.get_pipeline(
            pr, PipelineStatus.RUNNING, EventType.PULL_REQUEST
        )

    assert pipeline is not None
    assert pipeline.id == "2"
    assert pipeline.status == PipelineStatus.SUCCESS
    assert pipeline.branch == "test-branch-1"
    assert pipeline.event_type == "pull_request"


async def test_get_pipeline_none_when_no_runs(actions: GitHubActionsCI) -> None:
    """No workflow run yet is reported as None."""
    pr = PullRequest(pull_number=4, sha="abc1234", repository="go-abcdefgh")
    with aioresponses() as m:
        m.get(f"{RUNS}?head_sha=abc1234&per_page=100", payload={"workflow_runs": []})

        assert await actions.get_pipeline(pr) is None


async def test_check_pipeline_status(actions: GitHubActionsCI) -> None:
    """The run is fetched by id."""
    with aioresponses() as m:
        m.get(f"{RUNS}/11", payload={"status": "completed", "conclusion": "failure"})

        status = await actions.check_pipeline_status(_pipeline())

    assert status == PipelineStatus.FAILURE


async def test_list_pipelines_covers_both_repositories(actions: GitHubActionsCI) -> None:
    """Runs of both component repositories are listed."""
    with aioresponses() as m:
        m.get(
            f"{RUNS}?per_page=100",
            payload={"workflow_runs": [{"id": 1, "status": "in_progress"}]},
        )
        m.get(
            f"{GITOPS_RUNS}?per_page=100",
            payload={"workflow_runs": [{"id": 2, "status": "queued"}]},
        )

        pipelines = await actions.list_pipelines()

    assert [(p.id, p.repository_name, p.status) for p in pipelines] == [
        ("1", "go-abcdefgh", PipelineStatus.RUNNING),
        ("2", "go-abcdefgh-gitops", PipelineStatus.PENDING),
    ]


async def test_get_pipeline_logs_retries_empty_job_log(actions: GitHubActionsCI) -> None:
    """Job logs are assembled and an empty log is fetched again."""
    jobs_api = "https://api.github.com/repos/tssc-org/go-abcdefgh/actions/jobs"
    with aioresponses() as m:
        m.get(
            f"{RUNS}/11/jobs",
            payload={
                "jobs": [
                    {
                        "id": 2,
                        "name": "build",
                        "steps": [{"name": "checkout", "conclusion": "success"}],
                    }
                ]
            },
        )
        m.get(f"{jobs_api}/2/logs", body="")
        m.get(f"{jobs_api}/2/logs", body="built")

        with patch("asyncio.sleep"):
            logs = await actions.get_pipeline_logs(_pipeline())

    assert logs == "--- Job: build (id=2) ---\n  step checkout: success\nbuilt"


async def test_cancel_pipeline_posts_cancel(actions: GitHubActionsCI) -> None:
    """Cancellation posts to the run's cancel endpoint."""
    with aioresponses() as m:
        m.post(f"{RUNS}/11/cancel", status=202)

        await actions.cancel_pipeline(_pipeline())

        assert ("POST", f"{RUNS}/11/cancel") in {
            (method, str(url)) for method, url in m.requests
        }


async def test_no_webhook_and_workflow_paths(actions: GitHubActionsCI) -> None:
    """Workflows are triggered natively and live under .github/workflows."""
    with pytest.raises(TsscError):
        await actions.get_webhook_url()
    assert actions.get_ci_file_path_in_repo() == (
        ".github/workflows/build-and-update-gitops.yml"
    )
    assert actions.get_gitops_ci_file_path_in_repo() == (
        ".github/workflows/gitops-promotion.yml"
    )
