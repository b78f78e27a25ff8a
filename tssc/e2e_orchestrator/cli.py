"""CLI entry point for the TSSC e2e component workflow orchestrator."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import typer

from tssc.e2e_orchestrator.config import HarnessSettings
from tssc.e2e_orchestrator.errors import TsscError
from tssc.e2e_orchestrator.models.cancel_result import CancelResult
from tssc.e2e_orchestrator.models.test_plan import ProjectConfig
from tssc.e2e_orchestrator.orchestrator import WorkflowOrchestrator
from tssc.e2e_orchestrator.plan_expander import (
    generate_project_configs,
    load_project_configs,
)
from tssc.e2e_orchestrator.provider_registry import ProviderRegistry
from tssc.e2e_orchestrator.providers.ci.base import CancelOptions

# Configure logging - force reconfiguration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,  # Force reconfiguration even if already set up
)
logger = logging.getLogger(__name__)

app = typer.Typer()


def select_projects(
    projects: list[ProjectConfig], names: list[str] | None
) -> list[ProjectConfig]:
    """Return the projects named in ``names``, or all of them when empty.

    Raises:
        ValueError: If a requested project does not exist

    """
    if not names:
        return projects

    by_name = {project.name: project for project in projects}
    missing = [name for name in names if name not in by_name]
    if missing:
        raise ValueError(f"Unknown project(s): {', '.join(missing)}")
    return [by_name[name] for name in names]


@app.command("generate-config")
def generate_config(
    testplan_path: Path | None = typer.Option(  # noqa: B008
        None, help="Path to the test plan file (default: $TESTPLAN_PATH)"
    ),
    testplan_name: list[str] | None = typer.Option(  # noqa: B008
        None, help="Test plan to include; repeatable (default: $TESTPLAN_NAME)"
    ),
    output_dir: Path | None = typer.Option(  # noqa: B008
        None, help="Directory for the generated files (default: $TMP_DIR)"
    ),
) -> None:
    """Expand the test plan into project configs shared by all workers."""
    settings = HarnessSettings.from_env()
    path = testplan_path or Path(settings.testplan_path)
    names = testplan_name or settings.testplan_names
    directory = output_dir or Path(settings.tmp_dir)

    logger.info("=" * 80)
    logger.info("TSSC e2e - Generating project configs")
    logger.info("=" * 80)
    logger.info(f"Test plan: {path}")
    logger.info(f"Selected plans: {', '.join(names) if names else 'all'}")

    try:
        projects = generate_project_configs(path, directory, names)
    except TsscError as e:
        logger.error(f"Failed to generate project configs: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    for project in projects:
        logger.info(f"  {project.name} -> {project.test_item.name}")
    typer.echo(json.dumps({"total": len(projects), "output_dir": str(directory)}))


@app.command()
def run(
    project: list[str] | None = typer.Option(  # noqa: B008
        None, help="Project to run; repeatable (default: all)"
    ),
    workers: int | None = typer.Option(
        None, min=1, help="Parallel workflows (default: $WORKERS)"
    ),
    config_dir: Path | None = typer.Option(  # noqa: B008
        None, help="Directory holding project-configs.json (default: $TMP_DIR)"
    ),
) -> None:
    """Run the component workflow for each project."""
    settings = HarnessSettings.from_env()
    if workers is not None:
        settings.workers = workers
    directory = config_dir or Path(settings.tmp_dir)

    logger.info("=" * 80)
    logger.info("TSSC e2e - Starting")
    logger.info("=" * 80)
    logger.info(f"Config directory: {directory}")
    logger.info(f"Workers: {settings.workers}")

    try:
        projects = select_projects(load_project_configs(directory), project)
    except (TsscError, ValueError) as e:
        logger.error(f"Failed to load project configs: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    orchestrator = WorkflowOrchestrator(ProviderRegistry(settings), config_dir=directory)

    try:
        logger.info("Starting workflow orchestration...")
        results = asyncio.run(orchestrator.run(projects))
        logger.info(f"Workflow orchestration completed with {len(results)} results")
    except Exception as e:
        logger.exception("Workflow execution failed")
        typer.echo(f"Error running workflows: {e}", err=True)
        raise typer.Exit(code=1)

    if not results:
        typer.echo("No projects to run")
        return

    # Log results summary
    logger.info("=" * 80)
    logger.info("Workflow Results Summary:")
    logger.info("=" * 80)
    for result in results:
        if result.status == "success":
            logger.info(
                f"✓ {result.project} ({result.component}): {result.status} "
                f"({result.duration:.2f}s)"
            )
        else:
            step = f" at '{result.failed_step}'" if result.failed_step else ""
            logger.error(
                f"✗ {result.project} ({result.component}): {result.status}{step}"
            )
            if result.message:  # pragma: no cover
                logger.error(f"  Message: {result.message}")

    output = {
        "total": len(results),
        "passed": sum(1 for r in results if r.status == "success"),
        "failed": sum(1 for r in results if r.status == "failure"),
        "errors": sum(1 for r in results if r.status == "error"),
        "timeouts": sum(1 for r in results if r.status == "timeout"),
        "results": [r.model_dump(mode="json") for r in results],
    }

    typer.echo(json.dumps(output, indent=2))

    fail_count = sum(1 for r in results if r.status != "success")
    if fail_count:
        logger.error(f"Workflows failed: {fail_count}/{len(results)}")
        raise typer.Exit(code=1)


async def _cancel_pipelines(
    registry: ProviderRegistry, project: ProjectConfig, options: CancelOptions
) -> CancelResult:
    ci = await registry.ci_provider(project.test_item)
    return await ci.cancel_all_pipelines(options)


@app.command("cancel-pipelines")
def cancel_pipelines(
    project: str = typer.Option(..., help="Project whose pipelines to cancel"),
    exclude: list[str] | None = typer.Option(  # noqa: B008
        None, help="Regex on pipeline name, id or branch to leave alone; repeatable"
    ),
    include_completed: bool = typer.Option(
        False, help="Also consider pipelines that already finished"
    ),
    dry_run: bool = typer.Option(False, help="Report without cancelling"),
    concurrency: int = typer.Option(10, min=1, help="Parallel cancellations"),
    config_dir: Path | None = typer.Option(  # noqa: B008
        None, help="Directory holding project-configs.json (default: $TMP_DIR)"
    ),
) -> None:
    """Cancel the pipelines of a project's component."""
    settings = HarnessSettings.from_env()
    directory = config_dir or Path(settings.tmp_dir)

    try:
        (selected,) = select_projects(load_project_configs(directory), [project])
    except (TsscError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    options = CancelOptions(
        exclude_patterns=exclude or [],
        include_completed=include_completed,
        dry_run=dry_run,
        concurrency=concurrency,
    )
    logger.info(
        f"Cancelling pipelines of {selected.test_item.name}"
        f"{' (dry run)' if dry_run else ''}"
    )

    try:
        result = asyncio.run(
            _cancel_pipelines(ProviderRegistry(settings), selected, options)
        )
    except TsscError as e:
        logger.error(f"Failed to set up CI provider: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(result.model_dump_json(indent=2))
    if result.errors:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
