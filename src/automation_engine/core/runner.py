"""
Run runner: drives a run from node to node until it suspends or ends
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import PersistenceError
from ..integrations.event_bus import (
    EventBus, RUN_COMPLETED, RUN_FAILED, RUN_NODE_COMPLETED, RUN_RESUMED, RUN_STARTED, RUN_WAITING
)
from ..models.execution import Continue, Failed, Outcome, Run, RunStatus, Suspend, Terminal, utc_now
from ..models.workflow import WorkflowDefinition
from ..storage.repository import RunStore
from .executor import Clock, StepExecutor


logger = logging.getLogger(__name__)


class RunRunner:
    """
    Executes runs synchronously between suspension points.

    A run is persisted whenever it becomes Waiting or terminal, and after
    every node when the workflow saves execution progress. Every per-run
    error ends up in the run itself; nothing propagates to the caller.
    """

    def __init__(
        self,
        executor: StepExecutor,
        store: RunStore,
        event_bus: EventBus = None,
        clock: Clock = None
    ):
        self.executor = executor
        self.store = store
        self.event_bus = event_bus or EventBus()
        self.clock = clock or utc_now

    async def start(self, run: Run, workflow: WorkflowDefinition) -> List[Run]:
        """Drive a freshly triggered run; returns it and any fan-out siblings"""
        await self._publish(RUN_STARTED, run)
        return await self.drive(run, workflow)

    async def resume(self, run: Run, workflow: WorkflowDefinition, now: datetime = None) -> List[Run]:
        """Continue a Waiting run past the Delay node it is parked on"""
        now = now or self.clock()
        run.resume()
        await self._publish(RUN_RESUMED, run)
        try:
            outcome = self.executor.complete_delay(run, workflow, now)
        except Exception as e:
            logger.error(f"Run {run.run_id} could not resume at '{run.current_node}'", exc_info=True)
            outcome = Failed(e)
        return await self.drive(run, workflow, outcome)

    async def drive(self, run: Run, workflow: WorkflowDefinition, outcome: Optional[Outcome] = None) -> List[Run]:
        """
        Advance `run` until it suspends or ends.

        Fan-out siblings created on the way are driven the same way, after
        the run that forked them.
        """
        pending: List[Tuple[Run, Optional[Outcome]]] = [(run, outcome)]
        driven: List[Run] = []
        while pending:
            current, current_outcome = pending.pop(0)
            try:
                await self._drive_one(current, workflow, current_outcome, pending)
            except PersistenceError as e:
                logger.error(f"Run {current.run_id}: persistence failed: {e}")
                await self.fail(current, e)
            except Exception as e:
                logger.error(f"Run {current.run_id}: unexpected error", exc_info=True)
                await self.fail(current, e)
            driven.append(current)
        return driven

    async def _drive_one(
        self,
        run: Run,
        workflow: WorkflowDefinition,
        outcome: Optional[Outcome],
        pending: List[Tuple[Run, Optional[Outcome]]]
    ):
        if outcome is None and workflow.settings.save_execution_progress:
            await self.store.put(run)

        while True:
            if outcome is None:
                outcome = await self.executor.advance(run, workflow)

            if isinstance(outcome, Continue):
                await self._publish(RUN_NODE_COMPLETED, run, {"node": run.current_node})
                first, *rest = outcome.targets
                for target in rest:
                    sibling = run.fork(target)
                    logger.info(f"Run {run.run_id} forked {sibling.run_id} at '{target}'")
                    await self._publish(RUN_STARTED, sibling)
                    pending.append((sibling, None))
                run.move_to(first)
                if workflow.settings.save_execution_progress:
                    await self.store.put(run)
                outcome = None

            elif isinstance(outcome, Suspend):
                run.wait_until(outcome.wake_at)
                await self.store.put(run)
                logger.info(f"Run {run.run_id} waiting at '{run.current_node}' until {outcome.wake_at.isoformat()}")
                await self._publish(RUN_WAITING, run)
                return

            elif isinstance(outcome, Terminal):
                await self._publish(RUN_NODE_COMPLETED, run, {"node": run.current_node})
                run.complete()
                await self.store.put(run)
                logger.info(f"Run {run.run_id} completed")
                await self._publish(RUN_COMPLETED, run)
                return

            elif isinstance(outcome, Failed):
                await self.fail(run, outcome.error)
                return

            else:
                raise TypeError(f"Unknown outcome: {outcome!r}")

    async def fail(self, run: Run, error: Exception):
        """Mark the run Failed and make a best effort to record it"""
        if run.status in (RunStatus.RUNNING, RunStatus.WAITING):
            run.fail(error)
        elif run.status != RunStatus.FAILED:
            logger.error(f"Run {run.run_id} is {run.status.value} but could not be recorded: {error}")
            return

        logger.warning(f"Run {run.run_id} failed at '{run.current_node}': {error}")
        try:
            await self.store.put(run)
        except PersistenceError as e:
            logger.error(f"Run {run.run_id}: failure could not be recorded: {e}")
        await self._publish(RUN_FAILED, run, {"error": run.last_error})

    async def _publish(self, topic: str, run: Run, extra: Dict[str, Any] = None):
        payload = {
            "run_id": run.run_id,
            "workflow_id": run.workflow_id,
            "status": run.status.value,
            "current_node": run.current_node,
        }
        if run.parent_run_id:
            payload["parent_run_id"] = run.parent_run_id
        payload.update(extra or {})
        await self.event_bus.publish(topic, payload)
