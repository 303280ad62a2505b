"""
Workflow definition model

A definition is an immutable arena of nodes indexed by integer id, with
connections stored as adjacency lists keyed by (source id, port).
"""
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union


MAIN_PORT = "main"
TRUE_PORT = "true"
FALSE_PORT = "false"


class NodeKind(str, Enum):
    """Closed set of node kinds"""
    TRIGGER = "trigger"
    TRANSFORM = "transform"
    CONDITIONAL = "conditional"
    DELAY = "delay"
    ACTION = "action"


DELAY_UNITS = {
    "seconds": timedelta(seconds=1),
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
    "weeks": timedelta(weeks=1),
}


@dataclass(frozen=True)
class TriggerParams:
    """Webhook trigger"""
    path: str
    http_method: str = "POST"

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "http_method": self.http_method}


@dataclass(frozen=True)
class TransformParams:
    """Key/expression pairs evaluated into the node's output"""
    values: Tuple[Tuple[str, Any], ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"values": {key: expr for key, expr in self.values}}


@dataclass(frozen=True)
class ConditionalParams:
    """Binary predicate: value1 <operation> value2"""
    value1: Any
    operation: str
    value2: Any = None
    type: str = "number"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value1": self.value1,
            "operation": self.operation,
            "value2": self.value2,
            "type": self.type,
        }


@dataclass(frozen=True)
class DelayParams:
    """Suspend the run for amount * unit"""
    amount: float
    unit: str

    @property
    def duration(self) -> timedelta:
        return DELAY_UNITS[self.unit] * self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": self.amount, "unit": self.unit}


@dataclass(frozen=True)
class ActionParams:
    """Outbound message send"""
    to: str
    message: str
    channel: str = "whatsapp"
    subject: Optional[str] = None
    credentials: Tuple[Tuple[str, str], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to": self.to,
            "message": self.message,
            "channel": self.channel,
            "subject": self.subject,
            "credentials": {key: expr for key, expr in self.credentials},
        }


NodeParams = Union[TriggerParams, TransformParams, ConditionalParams, DelayParams, ActionParams]


@dataclass(frozen=True)
class Node:
    """One step of a workflow"""
    id: int
    name: str
    kind: NodeKind
    params: NodeParams

    @property
    def ports(self) -> Tuple[str, ...]:
        if self.kind == NodeKind.CONDITIONAL:
            return (TRUE_PORT, FALSE_PORT)
        return (MAIN_PORT,)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "parameters": self.params.to_dict(),
        }


@dataclass(frozen=True)
class Connection:
    """Directed edge from a source node's port to a target node"""
    source: str
    target: str
    port: str = MAIN_PORT

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.source, "port": self.port, "to": self.target}


@dataclass(frozen=True)
class RetrySettings:
    """Per-workflow override of the dispatch retry policy"""
    max_attempts: int = 5
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 60.0
    strategy: str = "exponential"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "initial_delay": self.initial_delay,
            "backoff_factor": self.backoff_factor,
            "max_delay": self.max_delay,
            "strategy": self.strategy,
        }


@dataclass(frozen=True)
class WorkflowSettings:
    """Workflow-level execution settings"""
    save_execution_progress: bool = True
    retry: Optional[RetrySettings] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"save_execution_progress": self.save_execution_progress}
        if self.retry is not None:
            data["retry"] = self.retry.to_dict()
        return data


@dataclass(frozen=True)
class WorkflowDefinition:
    """Validated, immutable workflow graph"""
    id: str
    name: str
    nodes: Tuple[Node, ...]
    connections: Tuple[Connection, ...]
    trigger_id: int
    version: str = "1.0.0"
    description: Optional[str] = None
    active: bool = True
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)

    def __post_init__(self):
        by_name = {node.name: node for node in self.nodes}
        adjacency: Dict[Tuple[int, str], List[int]] = {}
        for connection in self.connections:
            key = (by_name[connection.source].id, connection.port)
            adjacency.setdefault(key, []).append(by_name[connection.target].id)
        object.__setattr__(self, "_by_name", MappingProxyType(by_name))
        object.__setattr__(
            self,
            "_adjacency",
            MappingProxyType({key: tuple(ids) for key, ids in adjacency.items()})
        )

    @property
    def trigger(self) -> Node:
        return self.nodes[self.trigger_id]

    @property
    def adjacency(self) -> Mapping[Tuple[int, str], Tuple[int, ...]]:
        return self._adjacency

    def has_node(self, name: str) -> bool:
        return name in self._by_name

    def node(self, name: str) -> Node:
        """Look up a node by name; KeyError when absent"""
        return self._by_name[name]

    def successors(self, name: str, port: str = MAIN_PORT) -> List[Node]:
        """Targets of every connection leaving `name` on `port`, in declaration order"""
        source = self._by_name[name]
        return [self.nodes[target_id] for target_id in self._adjacency.get((source.id, port), ())]

    def with_active(self, active: bool) -> "WorkflowDefinition":
        return WorkflowDefinition(
            id=self.id,
            name=self.name,
            nodes=self.nodes,
            connections=self.connections,
            trigger_id=self.trigger_id,
            version=self.version,
            description=self.description,
            active=active,
            settings=self.settings,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow": {
                "id": self.id,
                "name": self.name,
                "version": self.version,
                "description": self.description,
                "active": self.active,
                "settings": self.settings.to_dict(),
                "nodes": [node.to_dict() for node in self.nodes],
                "connections": [connection.to_dict() for connection in self.connections],
            }
        }
