"""
Run store interface and in-memory implementation
"""
import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from ..models.execution import Run, RunStatus, TERMINAL_STATUSES


class RunStore(ABC):
    """Durable store of runs keyed by run id"""

    @abstractmethod
    async def put(self, run: Run) -> None:
        """Insert or replace the stored copy of a run"""
        pass

    @abstractmethod
    async def get(self, run_id: str) -> Optional[Run]:
        """A fresh copy of the stored run, or None"""
        pass

    @abstractmethod
    async def delete(self, run_id: str) -> bool:
        pass

    @abstractmethod
    async def due(self, now: datetime, limit: int = 100) -> List[Run]:
        """Waiting runs whose wake time is at or before `now`, earliest first"""
        pass

    @abstractmethod
    async def claim(self, run_id: str, owner: str, now: datetime, lease_seconds: float) -> bool:
        """
        Take the single-owner lease on a run.

        Succeeds when the run exists and its lease is free, expired or already
        held by `owner`.
        """
        pass

    @abstractmethod
    async def release(self, run_id: str, owner: str) -> None:
        """Drop the lease if `owner` holds it"""
        pass

    @abstractmethod
    async def list_runs(
        self,
        workflow_id: str = None,
        status: RunStatus = None,
        offset: int = 0,
        limit: int = 100
    ) -> List[Run]:
        """Runs newest first, optionally filtered"""
        pass

    @abstractmethod
    async def purge_finished(self, before: datetime) -> int:
        """Delete terminal runs finished before `before`; returns the count"""
        pass

    async def close(self) -> None:
        pass


class InMemoryRunStore(RunStore):
    """Run store kept in process memory, for tests and development"""

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.leases: Dict[str, Tuple[str, datetime]] = {}
        self._lock = asyncio.Lock()

    async def put(self, run: Run) -> None:
        async with self._lock:
            self.records[run.run_id] = run.to_dict()

    async def get(self, run_id: str) -> Optional[Run]:
        async with self._lock:
            record = self.records.get(run_id)
        return Run.from_dict(record) if record else None

    async def delete(self, run_id: str) -> bool:
        async with self._lock:
            self.leases.pop(run_id, None)
            return self.records.pop(run_id, None) is not None

    async def due(self, now: datetime, limit: int = 100) -> List[Run]:
        async with self._lock:
            runs = [Run.from_dict(record) for record in self.records.values()
                    if record["status"] == RunStatus.WAITING.value]
        due_runs = [run for run in runs if run.wake_at is not None and run.wake_at <= now]
        due_runs.sort(key=lambda run: run.wake_at)
        return due_runs[:limit]

    async def claim(self, run_id: str, owner: str, now: datetime, lease_seconds: float) -> bool:
        async with self._lock:
            if run_id not in self.records:
                return False
            lease = self.leases.get(run_id)
            if lease and lease[0] != owner and lease[1] > now:
                return False
            self.leases[run_id] = (owner, now + timedelta(seconds=lease_seconds))
            return True

    async def release(self, run_id: str, owner: str) -> None:
        async with self._lock:
            lease = self.leases.get(run_id)
            if lease and lease[0] == owner:
                del self.leases[run_id]

    async def list_runs(
        self,
        workflow_id: str = None,
        status: RunStatus = None,
        offset: int = 0,
        limit: int = 100
    ) -> List[Run]:
        async with self._lock:
            runs = [Run.from_dict(record) for record in self.records.values()]
        if workflow_id:
            runs = [run for run in runs if run.workflow_id == workflow_id]
        if status:
            runs = [run for run in runs if run.status == status]
        runs.sort(key=lambda run: (run.created_at, run.run_id), reverse=True)
        return runs[offset:offset + limit]

    async def purge_finished(self, before: datetime) -> int:
        async with self._lock:
            expired = [
                run_id for run_id, record in self.records.items()
                if RunStatus(record["status"]) in TERMINAL_STATUSES
                and record["finished_at"] and datetime.fromisoformat(record["finished_at"]) < before
            ]
            for run_id in expired:
                del self.records[run_id]
                self.leases.pop(run_id, None)
        return len(expired)
