"""Expand test plans into per-project configurations shared by all workers."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import yaml
from pydantic import ValidationError

from tssc.e2e_orchestrator.errors import InvalidConfigError
from tssc.e2e_orchestrator.models.test_item import TestItem, random_suffix
from tssc.e2e_orchestrator.models.test_plan import (
    ProjectConfig,
    TestPlan,
    TestPlanFile,
    TsscConfig,
)

logger = logging.getLogger(__name__)

PROJECT_CONFIGS_FILE = "project-configs.json"
PROJECT_CONFIG_SUMMARY_FILE = "project-config-summary.json"


def load_test_plan_file(path: Path) -> TestPlanFile:
    """Load a test plan descriptor.

    The file is JSON; YAML is accepted as well since it is a superset.

    Args:
        path: Path to the test plan file

    Returns:
        Parsed test plan file

    Raises:
        InvalidConfigError: If the file is missing, unparsable or doesn't
            match the plan schema

    """
    if not path.exists():
        raise InvalidConfigError(f"Test plan file not found: {path}")

    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise InvalidConfigError(f"Invalid test plan in {path}: {e}") from e

    if data is None:
        raise InvalidConfigError(f"Empty test plan file: {path}")

    try:
        return TestPlanFile.model_validate(data)
    except ValidationError as e:
        raise InvalidConfigError(f"Invalid test plan schema in {path}: {e}") from e


def project_name(template: str, config: TsscConfig) -> str:
    """Return the unique project name of a (template, configuration) pair.

    Every field that tells two configurations apart is part of the name, so
    configurations differing only in their trust policy backend or fixed
    component name get distinct projects.
    """
    parts = [config.git.value, config.ci.value, config.registry.value]
    if config.acs:
        parts.append(config.acs)
    if config.tpa:
        parts.append(f"tpa={config.tpa}")
    if config.name:
        parts.append(f"name={config.name}")
    return f"{template}[{'-'.join(parts)}]"


def component_name(template: str, config: TsscConfig, taken: set[str]) -> str:
    """Return a component name not in ``taken``.

    A fixed ``config.name`` is used as is; otherwise ``<template>-<suffix>``
    with a fresh random suffix.

    Raises:
        InvalidConfigError: If a fixed name is used by two combinations

    """
    if config.name:
        if config.name in taken:
            raise InvalidConfigError(f"Component name {config.name} is used twice")
        return config.name

    while True:
        name = f"{template}-{random_suffix()}"
        if name not in taken:
            return name


def expand_plan(plan: TestPlan, taken: set[str] | None = None) -> list[ProjectConfig]:
    """Return one project config per (template, TSSC configuration) pair.

    Args:
        plan: Plan to expand
        taken: Component names already handed out in this run; updated in place

    Returns:
        Project configs in template-major order

    """
    taken = set() if taken is None else taken
    projects: list[ProjectConfig] = []
    for template in plan.templates:
        for config in plan.tssc_configs:
            name = component_name(template, config, taken)
            taken.add(name)
            item = TestItem(
                name=name,
                template=template,
                registry_type=config.registry,
                git_type=config.git,
                ci_type=config.ci,
                tpa=config.tpa,
                acs=config.acs,
            )
            projects.append(ProjectConfig(name=project_name(template, config), test_item=item))
    return projects


def expand_plans(plans: list[TestPlan]) -> list[ProjectConfig]:
    """Expand several plans, keeping component and project names unique.

    Raises:
        InvalidConfigError: If no plan yields a combination or the same
            (template, configuration) pair is listed more than once

    """
    valid = [plan for plan in plans if plan.is_valid()]
    for plan in plans:
        if not plan.is_valid():
            logger.warning(f"Test plan {plan.name} has no templates or TSSC configs")
    if not valid:
        raise InvalidConfigError("No valid test plan to expand")

    taken: set[str] = set()
    projects: list[ProjectConfig] = []
    seen_projects: set[str] = set()
    for plan in valid:
        for project in expand_plan(plan, taken):
            if project.name in seen_projects:
                raise InvalidConfigError(
                    f"Project {project.name} is defined more than once"
                )
            seen_projects.add(project.name)
            projects.append(project)
        logger.info(f"Test plan {plan.name}: {plan.project_count} project(s)")
    return projects


def build_summary(plans: list[TestPlan], projects: list[ProjectConfig]) -> dict[str, object]:
    """Return the diagnostics written next to the project configs."""
    return {
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "totalProjects": len(projects),
        "selectedPlans": [plan.name for plan in plans],
        "tests": sorted({test for plan in plans for test in plan.tests}),
        "testMatchPatterns": [
            pattern for plan in plans for pattern in plan.test_match_patterns()
        ],
        "projects": [
            {"name": project.name, "component": project.test_item.name}
            for project in projects
        ],
    }


def write_project_configs(projects: list[ProjectConfig], output_dir: Path) -> Path:
    """Write the project configs file read by every worker."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / PROJECT_CONFIGS_FILE
    data = [project.model_dump(mode="json", by_alias=True) for project in projects]
    path.write_text(json.dumps(data, indent=2))
    return path


def generate_project_configs(
    testplan_path: Path,
    output_dir: Path,
    plan_names: list[str] | None = None,
) -> list[ProjectConfig]:
    """Expand the selected plans and write the configs and summary files.

    Args:
        testplan_path: Path to the test plan file
        output_dir: Directory receiving the generated files
        plan_names: Plans to include; all when empty

    Returns:
        Generated project configs

    Raises:
        InvalidConfigError: If the plan can't be loaded or selected

    """
    plan_file = load_test_plan_file(testplan_path)
    try:
        plans = plan_file.select(plan_names)
    except ValueError as e:
        raise InvalidConfigError(str(e)) from e

    projects = expand_plans(plans)
    configs_path = write_project_configs(projects, output_dir)
    summary_path = output_dir / PROJECT_CONFIG_SUMMARY_FILE
    summary_path.write_text(json.dumps(build_summary(plans, projects), indent=2))

    logger.info(f"Wrote {len(projects)} project config(s) to {configs_path}")
    return projects


def load_project_configs(output_dir: Path) -> list[ProjectConfig]:
    """Read the project configs written by ``generate_project_configs``.

    Raises:
        InvalidConfigError: If the file is missing or malformed

    """
    path = output_dir / PROJECT_CONFIGS_FILE
    if not path.exists():
        raise InvalidConfigError(
            f"Project configs not found: {path}; run generate-config first"
        )
    try:
        data = json.loads(path.read_text())
        return [ProjectConfig.model_validate(entry) for entry in data]
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        raise InvalidConfigError(f"Invalid project configs in {path}: {e}") from e


def update_project_config_name(output_dir: Path, project: str, item: TestItem) -> None:
    """Persist a regenerated component name for ``project``.

    Raises:
        InvalidConfigError: If the project is not in the configs file

    """
    projects = load_project_configs(output_dir)
    updated: list[ProjectConfig] = []
    found = False
    for entry in projects:
        if entry.name == project:
            entry = entry.model_copy(update={"test_item": item})
            found = True
        updated.append(entry)
    if not found:
        raise InvalidConfigError(f"Project {project} not found in project configs")

    write_project_configs(updated, output_dir)
    logger.info(f"Project {project} now uses component name {item.name}")
