"""
Trigger dispatcher: turns inbound events into runs
"""
import copy
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..models.execution import Run, RunStatus
from ..models.workflow import WorkflowDefinition
from .catalog import WorkflowCatalog
from .runner import RunRunner


logger = logging.getLogger(__name__)


class DispatchResult:
    """The triggered run and any fan-out siblings it spawned before its first suspension"""

    def __init__(self, run: Run, siblings: List[Run]):
        self.run = run
        self.siblings = siblings

    @property
    def run_id(self) -> str:
        return self.run.run_id

    @property
    def status(self) -> RunStatus:
        return self.run.status


class TriggerDispatcher:
    """Matches events to workflows and starts runs"""

    def __init__(self, catalog: WorkflowCatalog, runner: RunRunner):
        self._catalog = catalog
        self.runner = runner

    @property
    def catalog(self) -> WorkflowCatalog:
        return self._catalog

    def reload(self, catalog: WorkflowCatalog):
        """Swap in a new catalog; runs already started are unaffected"""
        self._catalog = catalog
        logger.info(f"Workflow catalog reloaded ({len(catalog)} workflows)")

    async def dispatch(self, workflow_id: str, payload: Optional[Dict[str, Any]] = None) -> str:
        """
        Start a run of an active workflow and return its run id.

        Drives the run until its first suspension or end and returns without
        waiting on delayed steps. Raises UnknownWorkflowError when the
        workflow is absent or inactive.
        """
        result = await self.trigger(workflow_id, payload)
        return result.run_id

    async def dispatch_webhook(
        self,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        http_method: str = "POST"
    ) -> str:
        result = await self.trigger_webhook(path, payload, http_method)
        return result.run_id

    async def trigger(self, workflow_id: str, payload: Optional[Dict[str, Any]] = None) -> DispatchResult:
        """Like dispatch, returning the run itself"""
        workflow = self._catalog.get(workflow_id)
        return await self._start(workflow, payload)

    async def trigger_webhook(
        self,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        http_method: str = "POST"
    ) -> DispatchResult:
        workflow = self._catalog.find_by_path(path, http_method)
        return await self._start(workflow, payload)

    async def _start(self, workflow: WorkflowDefinition, payload: Optional[Dict[str, Any]]) -> DispatchResult:
        trigger = workflow.trigger
        run = Run(
            run_id=str(uuid4()),
            workflow_id=workflow.id,
            workflow_version=workflow.version,
            current_node=trigger.name,
            outputs={trigger.name: copy.deepcopy(payload) if payload is not None else {}},
            created_at=self.runner.clock(),
        )
        logger.info(f"Dispatching workflow {workflow.id} as run {run.run_id}")

        driven = await self.runner.start(run, workflow)
        return DispatchResult(run, [r for r in driven if r is not run])
