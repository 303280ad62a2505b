"""
SQLAlchemy run store
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from ..exceptions import PersistenceError
from ..models.execution import Run, RunStatus, TERMINAL_STATUSES
from .repository import RunStore
from .sqlalchemy_models import Base, RunRecord


logger = logging.getLogger(__name__)


def _epoch(value: Optional[datetime]) -> Optional[float]:
    return value.timestamp() if value else None


class DatabaseManager:
    """Database engine and session factory"""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine: Optional[AsyncEngine] = None
        self.async_session_maker = None

    async def initialize(self):
        """Connect and create tables"""
        options = {"echo": False, "pool_pre_ping": True}
        if not self.database_url.startswith("sqlite"):
            options.update(pool_size=20, max_overflow=10)
        self.engine = create_async_engine(self.database_url, **options)

        self.async_session_maker = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        if self.engine:
            await self.engine.dispose()
            self.engine = None

    @asynccontextmanager
    async def get_session(self):
        """Session that commits on success and rolls back on error"""
        if self.async_session_maker is None:
            raise PersistenceError("Database is not initialized")
        async with self.async_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()


class SQLAlchemyRunStore(RunStore):
    """Run store on an async SQLAlchemy database (table workflow_runs)"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    @asynccontextmanager
    async def _session(self, operation: str):
        try:
            async with self.db.get_session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Run store {operation} failed: {e}")
            raise PersistenceError(f"Run store {operation} failed: {e}") from e

    async def put(self, run: Run) -> None:
        async with self._session("put") as session:
            record = await session.get(RunRecord, run.run_id)
            if record is None:
                record = RunRecord(run_id=run.run_id, created_at=_epoch(run.created_at))
                session.add(record)
            record.workflow_id = run.workflow_id
            record.workflow_version = run.workflow_version
            record.parent_run_id = run.parent_run_id
            record.status = run.status.value
            record.current_node = run.current_node
            record.wake_at = _epoch(run.wake_at)
            record.context = run.to_dict()
            record.last_error = run.last_error
            record.fork_count = run.fork_count
            record.finished_at = _epoch(run.finished_at)

    async def get(self, run_id: str) -> Optional[Run]:
        async with self._session("get") as session:
            record = await session.get(RunRecord, run_id)
            return Run.from_dict(record.context) if record else None

    async def delete(self, run_id: str) -> bool:
        async with self._session("delete") as session:
            result = await session.execute(delete(RunRecord).where(RunRecord.run_id == run_id))
            return result.rowcount > 0

    async def due(self, now: datetime, limit: int = 100) -> List[Run]:
        async with self._session("due") as session:
            result = await session.execute(
                select(RunRecord)
                .where(and_(
                    RunRecord.status == RunStatus.WAITING.value,
                    RunRecord.wake_at <= now.timestamp()
                ))
                .order_by(RunRecord.wake_at)
                .limit(limit)
            )
            return [Run.from_dict(record.context) for record in result.scalars().all()]

    async def claim(self, run_id: str, owner: str, now: datetime, lease_seconds: float) -> bool:
        now_ts = now.timestamp()
        async with self._session("claim") as session:
            result = await session.execute(
                update(RunRecord)
                .where(and_(
                    RunRecord.run_id == run_id,
                    or_(
                        RunRecord.lease_owner.is_(None),
                        RunRecord.lease_owner == owner,
                        RunRecord.lease_expires_at <= now_ts
                    )
                ))
                .values(lease_owner=owner, lease_expires_at=now_ts + lease_seconds)
            )
            return result.rowcount == 1

    async def release(self, run_id: str, owner: str) -> None:
        async with self._session("release") as session:
            await session.execute(
                update(RunRecord)
                .where(and_(RunRecord.run_id == run_id, RunRecord.lease_owner == owner))
                .values(lease_owner=None, lease_expires_at=None)
            )

    async def list_runs(
        self,
        workflow_id: str = None,
        status: RunStatus = None,
        offset: int = 0,
        limit: int = 100
    ) -> List[Run]:
        async with self._session("list") as session:
            query = select(RunRecord)
            if workflow_id:
                query = query.where(RunRecord.workflow_id == workflow_id)
            if status:
                query = query.where(RunRecord.status == status.value)
            query = query.order_by(RunRecord.created_at.desc(), RunRecord.run_id.desc())
            result = await session.execute(query.offset(offset).limit(limit))
            return [Run.from_dict(record.context) for record in result.scalars().all()]

    async def purge_finished(self, before: datetime) -> int:
        async with self._session("purge") as session:
            result = await session.execute(
                delete(RunRecord).where(and_(
                    RunRecord.status.in_([status.value for status in TERMINAL_STATUSES]),
                    RunRecord.finished_at < before.timestamp()
                ))
            )
            return result.rowcount

    async def close(self) -> None:
        await self.db.close()
