"""
Run (execution context) model and step outcomes
"""
import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from ..exceptions import StateTransitionError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RunStatus(str, Enum):
    """Run lifecycle status"""
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})

# Newest history entries kept per run
MAX_HISTORY = 200

_ALLOWED_TRANSITIONS = {
    RunStatus.RUNNING: {RunStatus.WAITING, RunStatus.COMPLETED, RunStatus.FAILED},
    RunStatus.WAITING: {RunStatus.RUNNING, RunStatus.CANCELLED, RunStatus.FAILED},
}


def error_info(error: Exception, node: Optional[str] = None) -> Dict[str, Any]:
    """Serialisable description of an error, stored as a run's last_error"""
    info: Dict[str, Any] = {
        "type": type(error).__name__,
        "message": str(error),
        "node": node,
        "at": utc_now().isoformat(),
    }
    cause = getattr(error, "last_error", None) or error.__cause__
    if cause is not None:
        info["cause"] = f"{type(cause).__name__}: {cause}"
    return info


@dataclass
class Run:
    """One instantiation of a workflow for one triggering event"""
    run_id: str
    workflow_id: str
    workflow_version: str = ""
    current_node: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    outputs: Dict[str, Any] = field(default_factory=dict)
    wake_at: Optional[datetime] = None
    last_error: Optional[Dict[str, Any]] = None
    parent_run_id: Optional[str] = None
    fork_count: int = 0
    history: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def record_output(self, node_name: str, value: Any, at: datetime = None):
        """Bind a node's output and append it to the history (newest MAX_HISTORY kept)"""
        self.outputs[node_name] = value
        self.history.append({"node": node_name, "at": _iso(at or utc_now())})
        if len(self.history) > MAX_HISTORY:
            del self.history[:-MAX_HISTORY]
        self.updated_at = at or utc_now()

    def move_to(self, node_name: str):
        self.current_node = node_name
        self.updated_at = utc_now()

    def wait_until(self, wake_at: datetime):
        self._transition(RunStatus.WAITING)
        self.wake_at = wake_at

    def resume(self):
        self._transition(RunStatus.RUNNING)

    def complete(self):
        self._transition(RunStatus.COMPLETED)
        self.wake_at = None
        self.finished_at = utc_now()

    def fail(self, error: Exception, node: Optional[str] = None):
        self._transition(RunStatus.FAILED)
        self.last_error = error_info(error, node or self.current_node)
        self.wake_at = None
        self.finished_at = utc_now()

    def cancel(self):
        self._transition(RunStatus.CANCELLED)
        self.wake_at = None
        self.finished_at = utc_now()

    def fork(self, target: str) -> "Run":
        """Sibling continuation with independent copies of the bindings"""
        self.fork_count += 1
        return Run(
            run_id=f"{self.run_id}.{self.fork_count}",
            workflow_id=self.workflow_id,
            workflow_version=self.workflow_version,
            current_node=target,
            status=RunStatus.RUNNING,
            outputs=copy.deepcopy(self.outputs),
            parent_run_id=self.run_id,
            history=copy.deepcopy(self.history),
        )

    def _transition(self, target: RunStatus):
        if target not in _ALLOWED_TRANSITIONS.get(self.status, ()):
            raise StateTransitionError(self.status.value, target.value)
        self.status = target
        self.updated_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "workflow_version": self.workflow_version,
            "current_node": self.current_node,
            "status": self.status.value,
            "outputs": copy.deepcopy(self.outputs),
            "wake_at": _iso(self.wake_at),
            "last_error": copy.deepcopy(self.last_error),
            "parent_run_id": self.parent_run_id,
            "fork_count": self.fork_count,
            "history": copy.deepcopy(self.history),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "finished_at": _iso(self.finished_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Run":
        return cls(
            run_id=data["run_id"],
            workflow_id=data["workflow_id"],
            workflow_version=data.get("workflow_version", ""),
            current_node=data.get("current_node"),
            status=RunStatus(data["status"]),
            outputs=copy.deepcopy(data.get("outputs") or {}),
            wake_at=_parse_iso(data.get("wake_at")),
            last_error=copy.deepcopy(data.get("last_error")),
            parent_run_id=data.get("parent_run_id"),
            fork_count=data.get("fork_count", 0),
            history=copy.deepcopy(data.get("history") or []),
            created_at=_parse_iso(data.get("created_at")) or utc_now(),
            updated_at=_parse_iso(data.get("updated_at")) or utc_now(),
            finished_at=_parse_iso(data.get("finished_at")),
        )


@dataclass(frozen=True)
class Continue:
    """Proceed to the given nodes; more than one target forks the run"""
    targets: Tuple[str, ...]


@dataclass(frozen=True)
class Suspend:
    """Park the run until wake_at"""
    wake_at: datetime


@dataclass(frozen=True)
class Terminal:
    """No further connections: the run is complete"""


@dataclass(frozen=True)
class Failed:
    """The current node failed; the run stops"""
    error: Exception


Outcome = Union[Continue, Suspend, Terminal, Failed]
