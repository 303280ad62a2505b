"""
Run scheduler tests
"""
import asyncio

import pytest

from automation_engine.core import WorkflowCatalog
from automation_engine.exceptions import PersistenceError, RunNotFoundError, StateTransitionError
from automation_engine.integrations import RecordingMessageDispatcher
from automation_engine.models import RunStatus
from automation_engine.storage import InMemoryRunStore


WELCOME = {"contact": {"phone": "910000000021", "name": "John"}}


class FlakyRunStore(InMemoryRunStore):
    """Rejects writes of Waiting runs"""

    async def put(self, run):
        if run.status == RunStatus.WAITING:
            raise PersistenceError("disk full")
        await super().put(run)


class TakeoverAttemptDispatcher(RecordingMessageDispatcher):
    """Lets the clock run past the lease mid-send, then tries to take the run over"""

    def __init__(self, store, clock):
        super().__init__()
        self.store = store
        self.clock = clock
        self.run_id = None
        self.takeovers = []

    async def send(self, message):
        if self.run_id:
            self.clock.advance(seconds=1)
            await asyncio.sleep(0.05)
            self.takeovers.append(await self.store.claim(self.run_id, "other-worker", self.clock(), 300))
        return await super().send(message)


class TestRunScheduler:
    """Resumption of waiting runs"""

    @pytest.mark.asyncio
    async def test_resume_before_due_is_noop(self, engine, recorder):
        run_id = await engine.dispatch("welcome_sequence", WELCOME)

        run = await engine.resume(run_id)

        assert run.status == RunStatus.WAITING
        assert len(recorder.sent) == 1

    @pytest.mark.asyncio
    async def test_resume_is_idempotent(self, engine, recorder, clock):
        run_id = await engine.dispatch("welcome_sequence", WELCOME)
        clock.advance(hours=2)

        first = await engine.resume(run_id)
        second = await engine.resume(run_id)

        assert first.status == RunStatus.COMPLETED
        assert second.status == RunStatus.COMPLETED
        assert len(recorder.sent) == 2

    @pytest.mark.asyncio
    async def test_concurrent_resume_sends_once(self, engine, recorder, clock):
        run_id = await engine.dispatch("welcome_sequence", WELCOME)
        clock.advance(hours=2)

        results = await asyncio.gather(engine.resume(run_id), engine.resume(run_id), engine.sweep())

        assert results[0].status == RunStatus.COMPLETED
        assert results[1].status == RunStatus.COMPLETED
        assert len(recorder.sent) == 2
        assert (await engine.get_run(run_id)).status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_two_workers_share_store(self, make_engine, memory_store, recorder, clock):
        worker_a = make_engine(owner_id="worker-a")
        worker_b = make_engine(owner_id="worker-b")
        run_id = await worker_a.dispatch("welcome_sequence", WELCOME)
        clock.advance(hours=2)

        await asyncio.gather(worker_a.sweep(), worker_b.sweep())

        assert len(recorder.sent) == 2
        assert (await memory_store.get(run_id)).status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_leased_run_is_skipped(self, engine, memory_store, recorder, clock):
        run_id = await engine.dispatch("welcome_sequence", WELCOME)
        clock.advance(hours=2)
        assert await memory_store.claim(run_id, "other-worker", clock(), 300)

        assert await engine.resume(run_id) is None
        assert await engine.sweep() == []
        assert len(recorder.sent) == 1

        clock.advance(seconds=301)
        run = await engine.resume(run_id)

        assert run.status == RunStatus.COMPLETED
        assert len(recorder.sent) == 2

    @pytest.mark.asyncio
    async def test_lease_released_after_resume(self, engine, memory_store, clock):
        run_id = await engine.dispatch("welcome_sequence", WELCOME)
        clock.advance(hours=2)
        await engine.resume(run_id)

        assert run_id not in memory_store.leases

    @pytest.mark.asyncio
    async def test_lease_renewed_during_slow_resume(self, make_engine, memory_store, clock):
        dispatcher = TakeoverAttemptDispatcher(memory_store, clock)
        engine = make_engine(message_dispatcher=dispatcher, lease_seconds=0.03)
        run_id = await engine.dispatch("welcome_sequence", WELCOME)
        dispatcher.run_id = run_id
        clock.advance(hours=2)

        run = await engine.resume(run_id)

        assert run.status == RunStatus.COMPLETED
        assert dispatcher.takeovers == [False]
        assert len(dispatcher.sent) == 2
        assert run_id not in memory_store.leases

    @pytest.mark.asyncio
    async def test_resume_unknown_run(self, engine):
        with pytest.raises(RunNotFoundError):
            await engine.resume("no-such-run")

    @pytest.mark.asyncio
    async def test_sweep_resumes_earliest_first(self, engine, recorder, clock):
        await engine.dispatch("feedback_collection", {"contact": {"phone": "1"}})
        await engine.dispatch("welcome_sequence", {"contact": {"phone": "2", "name": "B"}})
        await engine.dispatch("abandoned_cart", {"contact": {"phone": "3"}})
        recorder.clear()

        clock.advance(hours=2)
        resumed = await engine.sweep()

        assert sorted(run.workflow_id for run in resumed) == ["abandoned_cart", "welcome_sequence"]
        assert sorted(m.recipient for m in recorder.sent) == ["2", "3"]

        clock.advance(days=3)
        resumed = await engine.sweep()
        assert sorted(run.workflow_id for run in resumed) == ["abandoned_cart", "feedback_collection"]

    @pytest.mark.asyncio
    async def test_batch_size_limits_sweep(self, make_engine, clock):
        engine = make_engine(batch_size=2)
        for i in range(3):
            await engine.dispatch("feedback_collection", {"contact": {"phone": str(i)}})
        clock.advance(days=3)

        assert len(await engine.sweep()) == 2
        assert len(await engine.sweep()) == 1
        assert await engine.sweep() == []

    @pytest.mark.asyncio
    async def test_cancel_waiting_run(self, engine, recorder, clock, event_bus):
        cancelled = []
        await event_bus.subscribe("run.cancelled", cancelled.append)
        run_id = await engine.dispatch("welcome_sequence", WELCOME)

        run = await engine.cancel(run_id)

        assert run.status == RunStatus.CANCELLED
        assert run.wake_at is None
        assert len(cancelled) == 1

        clock.advance(hours=3)
        assert await engine.sweep() == []
        assert (await engine.resume(run_id)).status == RunStatus.CANCELLED
        assert len(recorder.sent) == 1

    @pytest.mark.asyncio
    async def test_cancel_requires_waiting(self, engine):
        result = await engine.trigger("lead_nurturing", {"lead": {"score": 75}, "contact": {"phone": "1"}})

        with pytest.raises(StateTransitionError):
            await engine.cancel(result.run_id)
        with pytest.raises(RunNotFoundError):
            await engine.cancel("no-such-run")

    @pytest.mark.asyncio
    async def test_deactivated_workflow_still_resumes(self, engine, recorder, clock):
        run_id = await engine.dispatch("welcome_sequence", WELCOME)
        engine.deactivate("welcome_sequence")
        clock.advance(hours=2)

        await engine.sweep()

        assert (await engine.get_run(run_id)).status == RunStatus.COMPLETED
        assert len(recorder.sent) == 2

    @pytest.mark.asyncio
    async def test_removed_workflow_fails_run(self, engine, recorder, clock):
        run_id = await engine.dispatch("welcome_sequence", WELCOME)
        engine.reload(WorkflowCatalog([]))
        clock.advance(hours=2)

        resumed = await engine.sweep()

        assert [run.status for run in resumed] == [RunStatus.FAILED]
        stored = await engine.get_run(run_id)
        assert stored.status == RunStatus.FAILED
        assert stored.last_error["type"] == "UnknownWorkflowError"
        assert len(recorder.sent) == 1

    @pytest.mark.asyncio
    async def test_suspend_persistence_failure_fails_run(self, make_engine, recorder, clock):
        store = FlakyRunStore()
        engine = make_engine(store=store)

        result = await engine.trigger("welcome_sequence", WELCOME)

        assert result.status == RunStatus.FAILED
        stored = await store.get(result.run_id)
        assert stored.status == RunStatus.FAILED
        assert stored.last_error["type"] == "PersistenceError"

        clock.advance(hours=2)
        assert await engine.sweep() == []
        assert len(recorder.sent) == 1

    @pytest.mark.asyncio
    async def test_background_loop(self, make_engine, recorder, clock):
        engine = make_engine(poll_interval=0.01)
        run_id = await engine.dispatch("welcome_sequence", WELCOME)
        clock.advance(hours=2)

        await engine.start()
        assert engine.scheduler.running
        try:
            for _ in range(200):
                if (await engine.get_run(run_id)).status == RunStatus.COMPLETED:
                    break
                await asyncio.sleep(0.01)
        finally:
            await engine.scheduler.stop()

        assert not engine.scheduler.running
        assert (await engine.get_run(run_id)).status == RunStatus.COMPLETED
        assert engine.scheduler.get_scheduler_stats()["resumed_runs"] == 1
