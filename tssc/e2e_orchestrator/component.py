"""Component lifecycle: creation through the developer hub, retries and post-create."""

import logging
from collections.abc import Callable
from enum import Enum

from tssc.e2e_orchestrator.errors import (
    ErrorKind,
    NotFoundError,
    TsscError,
    classify_message,
    error_kind,
)
from tssc.e2e_orchestrator.models.test_item import TestItem
from tssc.e2e_orchestrator.pipelines import handle_initial_pipelines
from tssc.e2e_orchestrator.postcreate.commands import CommandContext
from tssc.e2e_orchestrator.postcreate.strategies import run_post_create
from tssc.e2e_orchestrator.provider_registry import ComponentProviders, ProviderRegistry
from tssc.e2e_orchestrator.providers.developer_hub import build_scaffold_options
from tssc.e2e_orchestrator.retry import Ok, Result, Retry, RetryPolicy, Stop, retry

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY = 30.0

# Creation failures of any other kind are retried under a new name.
NON_RETRYABLE_CREATE_KINDS = frozenset(
    {
        ErrorKind.UNAUTHORIZED,
        ErrorKind.FORBIDDEN,
        ErrorKind.INVALID_CONFIG,
        ErrorKind.UNSUPPORTED_STRATEGY,
    }
)

RenameCallback = Callable[[TestItem], None]


class ComponentStatus(str, Enum):
    """Lifecycle states of a component."""

    PENDING = "pending"
    CREATING = "creating"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    ComponentStatus.PENDING: {ComponentStatus.CREATING, ComponentStatus.FAILED},
    ComponentStatus.CREATING: {ComponentStatus.COMPLETED, ComponentStatus.FAILED},
    ComponentStatus.COMPLETED: set(),
    ComponentStatus.FAILED: set(),
}


class Component:
    """A component created from a test item, owning its repositories and pipelines.

    Provider handles are built from the registry by component name; the
    component keeps no other reference to shared state.
    """

    def __init__(
        self,
        item: TestItem,
        registry: ProviderRegistry,
        on_rename: RenameCallback | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        reuse_existing: bool = False,
    ) -> None:
        """Initialize a pending component.

        Args:
            item: Test item describing the component
            registry: Provider registry of the run
            on_rename: Called with the renamed item whenever a retry regenerates
                the name, so the new name can be persisted
            max_retries: Creation retries after the first attempt
            retry_delay: Seconds to wait before each retry
            reuse_existing: Adopt an existing component with the same name
                instead of creating one

        """
        self.item = item
        self.registry = registry
        self.on_rename = on_rename
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.reuse_existing = reuse_existing
        self.names_tried: list[str] = []
        self.reused = False
        self._status = ComponentStatus.PENDING
        self._providers: ComponentProviders | None = None

    @property
    def name(self) -> str:
        """Current component name."""
        return self.item.name

    @property
    def status(self) -> ComponentStatus:
        """Current lifecycle state."""
        return self._status

    @property
    def providers(self) -> ComponentProviders:
        """Provider handles, available once the component is completed."""
        if self._providers is None:
            raise TsscError(f"Component {self.name} has not been created")
        return self._providers

    def _transition(self, status: ComponentStatus) -> None:
        if status == self._status:
            return
        if status not in _TRANSITIONS[self._status]:
            raise TsscError(
                f"Component {self.name} cannot go from {self._status.value} "
                f"to {status.value}"
            )
        logger.info(f"Component {self.name}: {self._status.value} -> {status.value}")
        self._status = status

    async def _exists(self, providers: ComponentProviders) -> bool:
        try:
            await providers.git.get_source_repo_commit_sha()
        except NotFoundError:
            return False
        return True

    async def _register(self, providers: ComponentProviders) -> None:
        """Start the scaffolder task and wait for it to complete."""
        hub = await self.registry.developer_hub()
        git = providers.git
        options = build_scaffold_options(
            template=self.item.template,
            name=self.name,
            ci_type=self.item.ci_type.value,
            namespace=hub.config.namespace,
            image_name=self.name,
            image_org=self.registry.settings.image_registry_org,
            image_registry=providers.registry.get_registry_host(),
            host_type=git.host_type,
            git_values=git.scaffolder_values(),
        )
        task_id = await hub.create_component(options)
        logger.info(f"Component {self.name} creation task: {task_id}")

        timeouts = self.registry.settings.timeouts
        status = await hub.wait_until_component_is_completed(
            task_id, timeouts.component_creation, timeouts.component_poll_interval
        )
        if status == "completed":
            return

        try:
            logs = await hub.get_task_logs(task_id)
        except TsscError as e:
            logs = f"Failed to fetch task logs: {e}"
        raise TsscError(
            f"Component {self.name} creation task {task_id} ended with status "
            f"{status}: {logs}",
            kind=classify_message(logs),
        )

    async def _attempt(self, attempt: int) -> Result[ComponentProviders]:
        self.names_tried.append(self.name)
        logger.info(f"Creating component {self.name} (attempt {attempt})")
        try:
            providers = await self.registry.providers_for(self.item)
            if self.reuse_existing and await self._exists(providers):
                logger.info(f"Reusing existing component {self.name}")
                self.reused = True
                return Ok(providers)
            await self._register(providers)
        except Exception as e:
            if error_kind(e) in NON_RETRYABLE_CREATE_KINDS:
                return Stop(e)
            return Retry(e)
        return Ok(providers)

    def _regenerate_name(self, error: BaseException, attempt: int) -> None:
        old_name = self.name
        self.item = self.item.with_regenerated_name()
        logger.warning(
            f"Component creation attempt {attempt} for {old_name} failed: {error}. "
            f"Retrying as {self.name}"
        )
        if self.on_rename is not None:
            self.on_rename(self.item)

    async def create(self) -> ComponentProviders:
        """Create the component and run its post-create setup.

        Retryable creation failures regenerate the name (persisting it through
        ``on_rename``) and try again after ``retry_delay`` seconds.

        Returns:
            Provider handles of the completed component

        Raises:
            TsscError: If creation failed for good, summarizing the tried names;
                the original error is the cause

        """
        self._transition(ComponentStatus.CREATING)
        policy = RetryPolicy(
            max_retries=self.max_retries,
            min_timeout=self.retry_delay,
            max_timeout=self.retry_delay,
            factor=1,
        )
        try:
            providers = await retry(self._attempt, policy, self._regenerate_name)
        except Exception as e:
            self._transition(ComponentStatus.FAILED)
            raise TsscError(
                f"Failed to create component ({self.item.describe()}) after "
                f"{len(self.names_tried)} attempt(s), names tried: "
                f"{', '.join(self.names_tried)}: {e}",
                kind=error_kind(e),
            ) from e

        try:
            if not self.reused:
                await self.post_create(providers)
        except Exception:
            self._transition(ComponentStatus.FAILED)
            raise

        self._providers = providers
        self._transition(ComponentStatus.COMPLETED)
        return providers

    async def post_create(self, providers: ComponentProviders) -> None:
        """Wire the component to its CI system and drain setup pipelines."""
        ctx = CommandContext(
            component_name=self.name,
            git=providers.git,
            ci=providers.ci,
            registry=providers.registry,
            credentials=self.registry.credentials(),
            integrations=await self.registry.integration_secrets(),
            runner_image=self.registry.settings.ci_test_runner_image,
            custom_root_ca=self.registry.settings.custom_root_ca,
        )
        await run_post_create(ctx)
        await handle_initial_pipelines(providers.ci)
