"""Workflow orchestrator running every project's component lifecycle."""

import asyncio
import logging
from collections.abc import Awaitable
from pathlib import Path
from typing import TypeVar

from tssc.e2e_orchestrator.component import Component
from tssc.e2e_orchestrator.errors import ErrorKind, error_kind
from tssc.e2e_orchestrator.models.enums import Environment
from tssc.e2e_orchestrator.models.test_item import TestItem
from tssc.e2e_orchestrator.models.test_plan import ProjectConfig
from tssc.e2e_orchestrator.models.workflow_result import WorkflowResult
from tssc.e2e_orchestrator.pipelines import handle_initial_pipelines
from tssc.e2e_orchestrator.plan_expander import update_project_config_name
from tssc.e2e_orchestrator.promotion import (
    PromotionOutcome,
    StepFailedError,
    extract_sbom_document_ids,
    handle_source_repo_code_changes,
    promote_to,
    run_step,
    verify_sboms,
    wait_initial_deploy_synced,
)
from tssc.e2e_orchestrator.provider_registry import ProviderRegistry
from tssc.e2e_orchestrator.providers.tpa import SbomRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Kinds reported as a failed assertion rather than an error of the harness.
FAILURE_KINDS = frozenset(
    {ErrorKind.PIPELINE_FAILED, ErrorKind.SYNC_FAILED, ErrorKind.NOT_FOUND}
)


class ComponentWorkflow:
    """Drives one component from creation to a verified production deployment.

    Steps run strictly in order; each one's post-condition is the next one's
    pre-condition. ``current_step`` names the step in progress, so a timeout
    can be attributed.
    """

    def __init__(
        self,
        project: ProjectConfig,
        registry: ProviderRegistry,
        config_dir: Path | None = None,
        reuse_existing: bool = False,
    ) -> None:
        """Initialize workflow for a project config.

        Args:
            project: Project to run
            registry: Provider registry of the run
            config_dir: Directory of the project configs file; regenerated
                component names are written back there when set
            reuse_existing: Adopt an existing component instead of creating one

        """
        self.project = project
        self.registry = registry
        self.config_dir = config_dir
        self.current_step: str | None = None
        self.component = Component(
            project.test_item,
            registry,
            on_rename=self._persist_name,
            reuse_existing=reuse_existing,
        )

    def _persist_name(self, item: TestItem) -> None:
        if self.config_dir is not None:
            update_project_config_name(self.config_dir, self.project.name, item)

    async def _step(self, name: str, step: Awaitable[T]) -> T:
        self.current_step = name
        return await run_step(self.project.name, name, lambda: step)

    async def run(self) -> PromotionOutcome:
        """Run the whole workflow.

        Returns:
            Image promoted to production and the verified SBOM documents

        Raises:
            StepFailedError: Wrapping the error of the first failing step

        """
        providers = await self._step("create component", self.component.create())
        git, ci, cd = providers.git, providers.ci, providers.cd

        await self._step(
            "wait for initial deployment", wait_initial_deploy_synced(git, cd)
        )
        await self._step("cancel spurious pipelines", handle_initial_pipelines(ci))
        await self._step(
            "source repository code changes", handle_source_repo_code_changes(git, ci)
        )

        document_ids: list[str] = []
        for source, target in (
            (Environment.DEVELOPMENT, Environment.STAGE),
            (Environment.STAGE, Environment.PROD),
        ):
            image = await self._step(
                f"extract {source.value} image", git.extract_application_image(source)
            )
            pipeline = await self._step(
                f"promote to {target.value}", promote_to(git, ci, cd, target, image)
            )
            found = extract_sbom_document_ids(pipeline.logs)
            logger.info(
                f"[{self.project.name}] SBOM document ID(s) in {target.value} "
                f"promotion logs: {found}"
            )
            document_ids.extend(found)

        prod_image = await self._step(
            "extract prod image", git.extract_application_image(Environment.PROD)
        )

        async def _verify() -> list[SbomRecord]:
            store = await self.registry.sbom_store()
            return await verify_sboms(store, prod_image, document_ids)

        sboms = await self._step("verify SBOMs", _verify())
        self.current_step = None
        return PromotionOutcome(
            image=prod_image, sbom_document_ids=document_ids, sboms=sboms
        )


class WorkflowOrchestrator:
    """Runs the component workflow for every project concurrently."""

    def __init__(
        self,
        registry: ProviderRegistry,
        config_dir: Path | None = None,
    ) -> None:
        """Initialize orchestrator with the provider registry."""
        self.registry = registry
        self.settings = registry.settings
        self.config_dir = config_dir

    async def run(self, projects: list[ProjectConfig]) -> list[WorkflowResult]:
        """Run every project, at most ``settings.workers`` at a time."""
        if not projects:
            logger.info("No projects to run")
            return []

        logger.info(
            f"Running {len(projects)} project(s) with {self.settings.workers} worker(s)"
        )
        semaphore = asyncio.Semaphore(self.settings.workers)
        tasks = [self._run_project(project, semaphore) for project in projects]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Workflow execution completed")

        return self._process_results(projects, list(results))

    def _process_results(
        self,
        projects: list[ProjectConfig],
        results: list[WorkflowResult | BaseException],
    ) -> list[WorkflowResult]:
        """Process results from workflow execution."""
        final_results: list[WorkflowResult] = []
        for project, result in zip(projects, results):
            if isinstance(result, WorkflowResult):
                logger.info(f"Workflow result: {result.project} = {result.status}")
                final_results.append(result)
            elif isinstance(result, BaseException):
                logger.error(
                    f"Workflow execution error: {type(result).__name__}: {result}",
                    exc_info=result,
                )
                final_results.append(
                    WorkflowResult(
                        project=project.name,
                        component=project.test_item.name,
                        status="error",
                        duration=0.0,
                        message=str(result),
                    )
                )
        return final_results

    async def _run_project(
        self, project: ProjectConfig, semaphore: asyncio.Semaphore
    ) -> WorkflowResult:
        """Run one project's workflow under the per-test timeout."""
        async with semaphore:
            workflow = ComponentWorkflow(
                project,
                self.registry,
                config_dir=self.config_dir,
                reuse_existing=self.settings.ui_test,
            )
            timeout = self.settings.timeouts.per_test
            start_time = asyncio.get_event_loop().time()
            logger.info(f"Starting workflow: {project.name}")

            def _result(status: str, **kwargs: object) -> WorkflowResult:
                return WorkflowResult(
                    project=project.name,
                    component=workflow.component.name,
                    status=status,
                    duration=asyncio.get_event_loop().time() - start_time,
                    **kwargs,
                )

            try:
                outcome = await asyncio.wait_for(workflow.run(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.error(f"Workflow {project.name} timed out after {timeout}s")
                return _result(
                    "timeout",
                    failed_step=workflow.current_step,
                    message=f"Workflow did not complete within {timeout} seconds",
                )
            except StepFailedError as e:
                kind = error_kind(e.error)
                if kind == ErrorKind.TIMEOUT:
                    status = "timeout"
                elif kind in FAILURE_KINDS:
                    status = "failure"
                else:
                    status = "error"
                return _result(
                    status,
                    failed_step=e.step,
                    message=f"{workflow.component.item.describe()}: {e.error}",
                )

            return _result(
                "success",
                message=f"Promoted {outcome.image} to production",
                sbom_document_ids=outcome.sbom_document_ids,
            )
