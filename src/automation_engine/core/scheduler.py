"""
Run scheduler: resumes Waiting runs when their wake time has passed
"""
import asyncio
import logging
import os
import socket
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from ..exceptions import PersistenceError, RunNotFoundError, StateTransitionError, UnknownWorkflowError
from ..integrations.event_bus import EventBus, RUN_CANCELLED
from ..models.execution import Run, RunStatus, utc_now
from ..storage.repository import RunStore
from .catalog import WorkflowCatalog
from .executor import Clock
from .runner import RunRunner


logger = logging.getLogger(__name__)

CatalogProvider = Callable[[], WorkflowCatalog]


def default_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


class RunScheduler:
    """
    Owns Waiting runs.

    Resumption is mutually exclusive per run id: an in-process lock plus a
    lease in the run store, so two workers never resume the same run.
    """

    def __init__(
        self,
        store: RunStore,
        runner: RunRunner,
        catalog_provider: CatalogProvider,
        event_bus: EventBus = None,
        clock: Clock = None,
        poll_interval: float = 5.0,
        batch_size: int = 100,
        lease_seconds: float = 300.0,
        concurrency: int = 10,
        owner_id: str = None
    ):
        self.store = store
        self.runner = runner
        self.catalog_provider = catalog_provider
        self.event_bus = event_bus or runner.event_bus
        self.clock = clock or utc_now
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.lease_seconds = lease_seconds
        self.concurrency = concurrency
        self.owner_id = owner_id or default_owner_id()
        self._run_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)
        self._scheduler_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._resumed_count = 0

    async def start(self):
        """Start the background sweep"""
        if self._scheduler_task:
            return

        self._stop_event.clear()
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())
        logger.info(f"Run scheduler started (owner {self.owner_id}, poll every {self.poll_interval}s)")

    async def stop(self):
        """Stop the background sweep"""
        if not self._scheduler_task:
            return

        self._stop_event.set()
        await self._scheduler_task
        self._scheduler_task = None
        logger.info("Run scheduler stopped")

    @property
    def running(self) -> bool:
        return self._scheduler_task is not None

    async def _scheduler_loop(self):
        while not self._stop_event.is_set():
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Scheduler loop error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def sweep(self) -> List[Run]:
        """Resume every run that is due now; returns the runs after resumption"""
        now = self.clock()
        due_runs = await self.store.due(now, self.batch_size)
        if not due_runs:
            return []

        logger.info(f"Resuming {len(due_runs)} due run(s)")
        semaphore = asyncio.Semaphore(self.concurrency)

        async def resume_one(run_id: str) -> Optional[Run]:
            async with semaphore:
                return await self.resume(run_id)

        results = await asyncio.gather(*(resume_one(run.run_id) for run in due_runs), return_exceptions=True)

        resumed = []
        for run, result in zip(due_runs, results):
            if isinstance(result, Exception):
                logger.error(f"Resuming run {run.run_id} failed: {result}", exc_info=result)
            elif result is not None:
                resumed.append(result)
        return resumed

    async def resume(self, run_id: str) -> Optional[Run]:
        """
        Resume one run if it is due.

        A run that is terminal, or Waiting with a wake time still in the
        future, is left untouched. Returns the run's current state, or None
        when another worker holds its lease.
        """
        async with self._exclusive(run_id):
            now = self.clock()
            if not await self.store.claim(run_id, self.owner_id, now, self.lease_seconds):
                if await self.store.get(run_id) is None:
                    raise RunNotFoundError(run_id)
                logger.info(f"Run {run_id} is leased by another worker, skipping")
                return None

            try:
                async with self._renewing_lease(run_id):
                    return await self._resume_claimed(run_id, now)
            finally:
                await self.store.release(run_id, self.owner_id)

    @asynccontextmanager
    async def _renewing_lease(self, run_id: str):
        """Keep extending the lease of a claimed run until the block exits"""
        async def renew():
            while True:
                await asyncio.sleep(self.lease_seconds / 3)
                try:
                    renewed = await self.store.claim(run_id, self.owner_id, self.clock(), self.lease_seconds)
                except PersistenceError as e:
                    logger.warning(f"Run {run_id}: lease renewal failed: {e}")
                    continue
                if not renewed:
                    logger.warning(f"Run {run_id}: lease lost while resuming")
                    return

        renewal = asyncio.create_task(renew())
        try:
            yield
        finally:
            renewal.cancel()
            try:
                await renewal
            except asyncio.CancelledError:
                pass

    @asynccontextmanager
    async def _exclusive(self, run_id: str):
        """Per-run in-process lock, dropped once nobody uses it"""
        lock = self._run_locks.setdefault(run_id, asyncio.Lock())
        self._lock_users[run_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[run_id] -= 1
            if not self._lock_users[run_id]:
                del self._lock_users[run_id]
                del self._run_locks[run_id]

    async def _resume_claimed(self, run_id: str, now: datetime) -> Run:
        run = await self.store.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)

        if run.status != RunStatus.WAITING:
            logger.debug(f"Run {run_id} is {run.status.value}, nothing to resume")
            return run
        if run.wake_at is None or run.wake_at > now:
            logger.debug(f"Run {run_id} is not due until {run.wake_at}")
            return run

        try:
            workflow = self.catalog_provider().get(run.workflow_id, active_only=False)
        except UnknownWorkflowError as e:
            logger.error(f"Run {run_id} belongs to a workflow that is no longer loaded")
            await self.runner.fail(run, e)
            return run

        await self.runner.resume(run, workflow, now)
        self._resumed_count += 1
        return run

    async def cancel(self, run_id: str) -> Run:
        """Cancel a Waiting run; it never executes another node"""
        async with self._exclusive(run_id):
            run = await self.store.get(run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            if run.status != RunStatus.WAITING:
                raise StateTransitionError(
                    run.status.value, RunStatus.CANCELLED.value, "only waiting runs can be cancelled"
                )
            if not await self.store.claim(run_id, self.owner_id, self.clock(), self.lease_seconds):
                raise StateTransitionError(
                    run.status.value, RunStatus.CANCELLED.value, "run is being resumed"
                )
            try:
                run = await self.store.get(run_id)
                run.cancel()
                await self.store.put(run)
            finally:
                await self.store.release(run_id, self.owner_id)

        logger.info(f"Run {run_id} cancelled")
        await self.event_bus.publish(RUN_CANCELLED, {
            "run_id": run.run_id,
            "workflow_id": run.workflow_id,
            "status": run.status.value,
            "current_node": run.current_node,
        })
        return run

    def get_scheduler_stats(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "running": self.running,
            "poll_interval": self.poll_interval,
            "batch_size": self.batch_size,
            "resumed_runs": self._resumed_count,
        }
