"""Tests for the Pipeline and PullRequest models."""

from tssc.e2e_orchestrator.models.enums import CIType, PipelineStatus
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.pull_request import PullRequest


def test_status_ordering() -> None:
    """Terminal statuses reach running, pending doesn't."""
    assert PipelineStatus.SUCCESS.reaches(PipelineStatus.RUNNING)
    assert PipelineStatus.CANCELLED.reaches(PipelineStatus.RUNNING)
    assert PipelineStatus.RUNNING.reaches(PipelineStatus.RUNNING)
    assert not PipelineStatus.PENDING.reaches(PipelineStatus.RUNNING)
    assert not PipelineStatus.UNKNOWN.reaches(PipelineStatus.PENDING)


def test_pipeline_state_helpers() -> None:
    """Completed, successful and active follow the status."""
    pipeline = Pipeline.for_tekton("app-on-push-x", "app", PipelineStatus.RUNNING)

    assert pipeline.is_active()
    assert not pipeline.is_completed()

    pipeline.status = PipelineStatus.FAILURE

    assert pipeline.is_completed()
    assert not pipeline.is_successful()


def test_jenkins_display_name() -> None:
    """Jenkins builds display as job and build number."""
    pipeline = Pipeline.for_jenkins("app", 7, "app", PipelineStatus.SUCCESS)

    assert pipeline.id == "app-7"
    assert pipeline.display_name == "app #7"
    assert pipeline.ci_type == CIType.JENKINS


def test_direct_commit_reference() -> None:
    """for_commit builds a PR reference numbered 0."""
    commit = PullRequest.for_commit("abc1234def", "app")

    assert commit.is_direct_commit
    assert str(commit) == "PR #0 (abc1234)"


def test_with_merge_info() -> None:
    """A merged copy points at the merge commit."""
    pr = PullRequest(pull_number=3, sha="head", repository="app", url="https://x/3")

    merged = pr.with_merge_info("merge-sha")

    assert merged.is_merged
    assert merged.sha == "merge-sha"
    assert merged.merged_at is not None
    assert not pr.is_merged
    assert str(merged) == "PR #3 (merge-s) [MERGED] [https://x/3]"
