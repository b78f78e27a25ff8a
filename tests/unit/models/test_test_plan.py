"""Tests for test plan models."""

import pytest

from tssc.e2e_orchestrator.models.enums import CIType, GitType
from tssc.e2e_orchestrator.models.test_plan import TestPlan, TestPlanFile

SINGLE_PLAN = {
    "templates": ["go", "python"],
    "tssc": [
        {"git": "github", "ci": "tekton", "registry": "quay", "tpa": "remote", "acs": "local"},
        {"git": "gitlab", "ci": "jenkins", "registry": "nexus"},
    ],
    "tests": ["full_workflow"],
}


def test_single_plan_form_is_wrapped() -> None:
    """A top-level plan is read as a single default plan."""
    plan_file = TestPlanFile.model_validate(SINGLE_PLAN)

    assert len(plan_file.plans) == 1
    plan = plan_file.plans[0]
    assert plan.name == "default"
    assert plan.tssc_configs[1].git == GitType.GITLAB
    assert plan.tssc_configs[1].ci == CIType.JENKINS


def test_project_count_is_templates_times_configs() -> None:
    """A plan expands into |templates| x |tssc configs| projects."""
    plan = TestPlan.model_validate(SINGLE_PLAN)

    assert plan.project_count == 4
    assert plan.is_valid()


def test_empty_plan_is_invalid() -> None:
    """A plan without templates yields no projects."""
    assert not TestPlan.model_validate({"tssc": SINGLE_PLAN["tssc"]}).is_valid()


def test_test_match_patterns() -> None:
    """An explicit pattern wins over patterns derived from test names."""
    assert TestPlan(tests=["a", "b"]).test_match_patterns() == [
        "**/a.test.ts",
        "**/b.test.ts",
    ]
    assert TestPlan.model_validate(
        {"tests": ["a"], "testMatchPattern": "e2e/**"}
    ).test_match_patterns() == ["e2e/**"]


def test_select_named_plans() -> None:
    """select returns the requested plans in request order."""
    plan_file = TestPlanFile.model_validate(
        {"testPlans": [{"name": "backend", **SINGLE_PLAN}, {"name": "ui", **SINGLE_PLAN}]}
    )

    assert [p.name for p in plan_file.select(["ui"])] == ["ui"]
    assert [p.name for p in plan_file.select(None)] == ["backend", "ui"]


def test_select_unknown_plan_raises() -> None:
    """Selecting a plan that doesn't exist is an error."""
    plan_file = TestPlanFile.model_validate({"testPlans": [{"name": "backend"}]})

    with pytest.raises(ValueError, match="Unknown test plan"):
        plan_file.select(["nightly"])
