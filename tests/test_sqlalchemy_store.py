"""
SQLAlchemy run store tests (SQLite)
"""
from datetime import datetime, timedelta, timezone

import pytest

from automation_engine.core import WorkflowEngine
from automation_engine.models import Run, RunStatus
from automation_engine.storage import DatabaseManager, SQLAlchemyRunStore
from automation_engine.exceptions import PersistenceError


NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _waiting(run_id: str, wake_at: datetime, workflow_id: str = "welcome_sequence") -> Run:
    run = Run(run_id=run_id, workflow_id=workflow_id, current_node="Wait", created_at=NOW)
    run.wait_until(wake_at)
    return run


class TestSQLAlchemyRunStore:
    """Run persistence on SQLite"""

    @pytest.mark.asyncio
    async def test_put_and_get(self, sqlite_store):
        run = _waiting("run-1", NOW + timedelta(hours=2))
        run.outputs = {"Webhook": {"contact": {"phone": "910000000021", "name": "Zoë"}}}
        await sqlite_store.put(run)

        loaded = await sqlite_store.get("run-1")

        assert loaded.status == RunStatus.WAITING
        assert loaded.wake_at == NOW + timedelta(hours=2)
        assert loaded.wake_at.tzinfo is not None
        assert loaded.outputs == run.outputs
        assert loaded.created_at == NOW
        assert await sqlite_store.get("missing") is None

    @pytest.mark.asyncio
    async def test_put_replaces(self, sqlite_store):
        run = _waiting("run-1", NOW)
        await sqlite_store.put(run)
        run.resume()
        run.complete()
        await sqlite_store.put(run)

        loaded = await sqlite_store.get("run-1")
        assert loaded.status == RunStatus.COMPLETED
        assert loaded.wake_at is None
        assert await sqlite_store.due(NOW + timedelta(days=1)) == []

    @pytest.mark.asyncio
    async def test_due(self, sqlite_store):
        await sqlite_store.put(_waiting("late", NOW + timedelta(minutes=30)))
        await sqlite_store.put(_waiting("early", NOW + timedelta(minutes=10)))
        await sqlite_store.put(_waiting("future", NOW + timedelta(hours=5)))

        due = await sqlite_store.due(NOW + timedelta(minutes=30))
        assert [run.run_id for run in due] == ["early", "late"]
        assert [run.run_id for run in await sqlite_store.due(NOW + timedelta(hours=6), limit=1)] == ["early"]

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, sqlite_store):
        await sqlite_store.put(_waiting("run-1", NOW))

        assert await sqlite_store.claim("run-1", "worker-a", NOW, 60)
        assert not await sqlite_store.claim("run-1", "worker-b", NOW + timedelta(seconds=30), 60)
        assert await sqlite_store.claim("run-1", "worker-a", NOW + timedelta(seconds=30), 60)
        assert await sqlite_store.claim("run-1", "worker-b", NOW + timedelta(seconds=91), 60)
        assert not await sqlite_store.claim("missing", "worker-a", NOW, 60)

    @pytest.mark.asyncio
    async def test_release(self, sqlite_store):
        await sqlite_store.put(_waiting("run-1", NOW))
        await sqlite_store.claim("run-1", "worker-a", NOW, 60)

        await sqlite_store.release("run-1", "worker-b")
        assert not await sqlite_store.claim("run-1", "worker-b", NOW, 60)

        await sqlite_store.release("run-1", "worker-a")
        assert await sqlite_store.claim("run-1", "worker-b", NOW, 60)

    @pytest.mark.asyncio
    async def test_put_keeps_lease(self, sqlite_store):
        run = _waiting("run-1", NOW)
        await sqlite_store.put(run)
        await sqlite_store.claim("run-1", "worker-a", NOW, 60)

        await sqlite_store.put(run)

        assert not await sqlite_store.claim("run-1", "worker-b", NOW, 60)

    @pytest.mark.asyncio
    async def test_list_runs(self, sqlite_store):
        for i in range(3):
            run = _waiting(f"run-{i}", NOW, workflow_id="a" if i < 2 else "b")
            run.created_at = NOW + timedelta(minutes=i)
            await sqlite_store.put(run)

        assert [r.run_id for r in await sqlite_store.list_runs()] == ["run-2", "run-1", "run-0"]
        assert [r.run_id for r in await sqlite_store.list_runs(workflow_id="a")] == ["run-1", "run-0"]
        assert [r.run_id for r in await sqlite_store.list_runs(offset=1, limit=1)] == ["run-1"]
        assert await sqlite_store.list_runs(status=RunStatus.COMPLETED) == []

    @pytest.mark.asyncio
    async def test_delete_and_purge(self, sqlite_store):
        finished = _waiting("finished", NOW)
        finished.cancel()
        await sqlite_store.put(finished)
        await sqlite_store.put(_waiting("waiting", NOW))

        assert await sqlite_store.purge_finished(finished.finished_at - timedelta(seconds=1)) == 0
        assert await sqlite_store.purge_finished(finished.finished_at + timedelta(seconds=1)) == 1
        assert await sqlite_store.get("finished") is None

        assert await sqlite_store.delete("waiting")
        assert not await sqlite_store.delete("waiting")

    @pytest.mark.asyncio
    async def test_uninitialized_database(self, tmp_path):
        store = SQLAlchemyRunStore(DatabaseManager(f"sqlite+aiosqlite:///{tmp_path}/none.db"))
        with pytest.raises(PersistenceError):
            await store.get("run-1")


class TestDurableResume:
    """Waiting runs survive an engine restart"""

    @pytest.mark.asyncio
    async def test_resume_after_restart(self, tmp_path, make_engine, recorder, clock):
        url = f"sqlite+aiosqlite:///{tmp_path}/durable.db"

        first_db = DatabaseManager(url)
        await first_db.initialize()
        first: WorkflowEngine = make_engine(store=SQLAlchemyRunStore(first_db), owner_id="before-restart")
        run_id = await first.dispatch("welcome_sequence", {"contact": {"phone": "910000000021", "name": "John"}})
        await first.close()

        clock.advance(hours=2)
        second_db = DatabaseManager(url)
        await second_db.initialize()
        second: WorkflowEngine = make_engine(store=SQLAlchemyRunStore(second_db), owner_id="after-restart")
        try:
            resumed = await second.sweep()
            run = await second.get_run(run_id)
        finally:
            await second_db.close()

        assert [r.run_id for r in resumed] == [run_id]
        assert run.status == RunStatus.COMPLETED
        assert [m.body[0] for m in recorder.sent] == ["👋", "📋"]
