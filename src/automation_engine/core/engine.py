"""
Workflow engine: wires catalog, dispatcher, runner and scheduler together
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import EngineSettings
from ..exceptions import (
    InvalidWorkflowError, InvalidWorkflowReason, RunNotFoundError, WorkflowConflictError
)
from ..integrations.event_bus import EventBus
from ..integrations.messaging import (
    ChannelRouter, MessageDispatcher, RecordingMessageDispatcher, WhatsAppMessageDispatcher
)
from ..models.execution import Run, RunStatus, utc_now
from ..models.workflow import WorkflowDefinition
from ..storage.repository import RunStore
from ..storage.sqlalchemy_repository import DatabaseManager, SQLAlchemyRunStore
from .catalog import WorkflowCatalog
from .dispatcher import DispatchResult, TriggerDispatcher
from .error_handler import RetryPolicy, RetryStrategy
from .executor import Clock, Sleep, StepExecutor
from .parser import WorkflowParser
from .runner import RunRunner
from .scheduler import RunScheduler


logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Workflow execution engine"""

    def __init__(
        self,
        catalog: WorkflowCatalog,
        store: RunStore,
        message_dispatcher: MessageDispatcher,
        event_bus: EventBus = None,
        retry_policy: RetryPolicy = None,
        clock: Clock = None,
        sleep: Sleep = None,
        poll_interval: float = 5.0,
        batch_size: int = 100,
        lease_seconds: float = 300.0,
        owner_id: str = None
    ):
        self.store = store
        self.message_dispatcher = message_dispatcher
        self.event_bus = event_bus or EventBus()
        self.clock = clock or utc_now
        self.parser = WorkflowParser()

        self.executor = StepExecutor(
            message_dispatcher,
            retry_policy=retry_policy,
            clock=self.clock,
            sleep=sleep,
            event_bus=self.event_bus
        )
        self.runner = RunRunner(self.executor, store, self.event_bus, self.clock)
        self.dispatcher = TriggerDispatcher(catalog, self.runner)
        self.scheduler = RunScheduler(
            store,
            self.runner,
            lambda: self.dispatcher.catalog,
            event_bus=self.event_bus,
            clock=self.clock,
            poll_interval=poll_interval,
            batch_size=batch_size,
            lease_seconds=lease_seconds,
            owner_id=owner_id
        )

    @classmethod
    async def from_settings(cls, settings: EngineSettings, catalog: WorkflowCatalog = None) -> "WorkflowEngine":
        """Engine on the configured database, workflow directory and transport"""
        if catalog is None:
            if settings.workflows_dir:
                catalog = WorkflowCatalog.from_directory(settings.workflows_dir)
            else:
                catalog = WorkflowCatalog.default()

        db_manager = DatabaseManager(settings.database_url)
        await db_manager.initialize()

        return cls(
            catalog=catalog,
            store=SQLAlchemyRunStore(db_manager),
            message_dispatcher=build_message_dispatcher(settings),
            retry_policy=RetryPolicy(
                max_attempts=settings.dispatch_max_attempts,
                initial_delay=settings.retry_initial_delay,
                backoff_factor=settings.retry_backoff_factor,
                max_delay=settings.retry_max_delay,
                strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
            ),
            poll_interval=settings.scheduler_poll_interval,
            batch_size=settings.scheduler_batch_size,
            lease_seconds=settings.scheduler_lease_seconds,
        )

    @property
    def catalog(self) -> WorkflowCatalog:
        return self.dispatcher.catalog

    async def start(self):
        """Start resuming due runs in the background"""
        await self.scheduler.start()

    async def close(self):
        await self.scheduler.stop()
        await self.message_dispatcher.close()
        await self.store.close()

    # Triggering

    async def dispatch(self, workflow_id: str, payload: Optional[Dict[str, Any]] = None) -> str:
        return await self.dispatcher.dispatch(workflow_id, payload)

    async def trigger(self, workflow_id: str, payload: Optional[Dict[str, Any]] = None) -> DispatchResult:
        return await self.dispatcher.trigger(workflow_id, payload)

    async def trigger_webhook(
        self,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        http_method: str = "POST"
    ) -> DispatchResult:
        return await self.dispatcher.trigger_webhook(path, payload, http_method)

    # Waiting runs

    async def sweep(self) -> List[Run]:
        return await self.scheduler.sweep()

    async def resume(self, run_id: str) -> Optional[Run]:
        return await self.scheduler.resume(run_id)

    async def cancel(self, run_id: str) -> Run:
        return await self.scheduler.cancel(run_id)

    # Inspection

    async def get_run(self, run_id: str) -> Run:
        run = await self.store.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def list_runs(
        self,
        workflow_id: str = None,
        status: RunStatus = None,
        offset: int = 0,
        limit: int = 100
    ) -> List[Run]:
        return await self.store.list_runs(workflow_id, status, offset, limit)

    async def purge_finished(self, before: datetime) -> int:
        count = await self.store.purge_finished(before)
        logger.info(f"Purged {count} finished run(s) older than {before.isoformat()}")
        return count

    # Catalog

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        return self.catalog.get(workflow_id, active_only=False)

    def list_workflows(self, active_only: bool = False) -> List[WorkflowDefinition]:
        return self.catalog.workflows(active_only)

    def reload(self, catalog: WorkflowCatalog):
        self.dispatcher.reload(catalog)

    def deploy(self, definition: Dict[str, Any]) -> WorkflowDefinition:
        """
        Validate a workflow document and add it to the running catalog.

        Raises InvalidWorkflowError for an invalid document and
        WorkflowConflictError when the id or an active trigger path is taken.
        """
        workflow = self.parser.parse_dict(definition)
        if workflow.id in self.catalog:
            raise WorkflowConflictError(workflow.id, "already deployed")
        self._check_trigger_path(workflow)

        self.reload(self.catalog.with_workflow(workflow))
        logger.info(f"Workflow {workflow.id} v{workflow.version} deployed")
        return workflow

    def update(self, workflow_id: str, definition: Dict[str, Any]) -> WorkflowDefinition:
        """
        Replace a deployed workflow.

        Waiting runs resume on the new definition; a run parked on a node the
        new definition no longer has fails when it resumes.
        """
        self.catalog.get(workflow_id, active_only=False)
        workflow = self.parser.parse_dict(definition)
        if workflow.id != workflow_id:
            raise InvalidWorkflowError(
                InvalidWorkflowReason.MALFORMED_DEFINITION,
                f"Definition id '{workflow.id}' does not match workflow '{workflow_id}'"
            )
        self._check_trigger_path(workflow)

        self.reload(self.catalog.with_workflow(workflow))
        logger.info(f"Workflow {workflow.id} updated to v{workflow.version}")
        return workflow

    def remove(self, workflow_id: str) -> WorkflowDefinition:
        """Drop a workflow; its waiting runs fail with UnknownWorkflowError when they resume"""
        workflow = self.catalog.get(workflow_id, active_only=False)
        self.reload(self.catalog.without(workflow_id))
        logger.info(f"Workflow {workflow_id} removed")
        return workflow

    def _check_trigger_path(self, workflow: WorkflowDefinition):
        if not workflow.active:
            return
        trigger = workflow.trigger.params
        for other in self.catalog.workflows(active_only=True):
            served = (other.trigger.params.path, other.trigger.params.http_method)
            if other.id != workflow.id and served == (trigger.path, trigger.http_method):
                raise WorkflowConflictError(
                    workflow.id,
                    f"{trigger.http_method} /{trigger.path} is already served by workflow {other.id}"
                )

    def activate(self, workflow_id: str) -> WorkflowDefinition:
        self.reload(self.catalog.activate(workflow_id))
        logger.info(f"Workflow {workflow_id} activated")
        return self.catalog.get(workflow_id)

    def deactivate(self, workflow_id: str) -> WorkflowDefinition:
        self.reload(self.catalog.deactivate(workflow_id))
        logger.info(f"Workflow {workflow_id} deactivated")
        return self.catalog.get(workflow_id, active_only=False)


def build_message_dispatcher(settings: EngineSettings) -> MessageDispatcher:
    if settings.message_transport == "whatsapp":
        whatsapp = WhatsAppMessageDispatcher(
            phone_number_id=settings.whatsapp_phone_number_id,
            access_token=settings.whatsapp_access_token,
            api_base=settings.whatsapp_api_base,
        )
        return ChannelRouter({"whatsapp": whatsapp})

    logger.warning("MESSAGE_TRANSPORT=mock: messages are recorded, not sent")
    return RecordingMessageDispatcher()
