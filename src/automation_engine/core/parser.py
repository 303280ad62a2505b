"""
Workflow parser: YAML/JSON/dict -> validated WorkflowDefinition
"""
import json
import logging
from collections import deque
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

import yaml
from jsonschema import Draft7Validator

from ..exceptions import ExpressionSyntaxError, InvalidWorkflowError, InvalidWorkflowReason
from ..models.workflow import (
    ActionParams, ConditionalParams, Connection, DelayParams, MAIN_PORT, Node, NodeKind,
    NodeParams, RetrySettings, TransformParams, TriggerParams, WorkflowDefinition,
    WorkflowSettings
)
from .expressions import ExpressionEvaluator
from .schemas import NODE_PARAMETER_SCHEMAS, OPERATIONS_BY_TYPE, UNARY_OPERATIONS, WORKFLOW_SCHEMA


logger = logging.getLogger(__name__)

Problem = Tuple[InvalidWorkflowReason, str]


def _schema_messages(validator: Draft7Validator, data: Any) -> List[str]:
    messages = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
        location = ".".join(str(part) for part in error.absolute_path) or "<root>"
        messages.append(f"{location}: {error.message}")
    return messages


def _sorted_items(mapping: Dict[Any, Any]) -> Tuple[Tuple[Any, Any], ...]:
    """Key-ordered pairs, the same order the canonical text form uses"""
    return tuple(sorted(mapping.items(), key=lambda item: str(item[0])))


class WorkflowParser:
    """Parses workflow documents and rejects anything not fully valid"""

    def __init__(self):
        self.evaluator = ExpressionEvaluator()
        self.workflow_validator = Draft7Validator(WORKFLOW_SCHEMA)
        self.parameter_validators = {
            kind: Draft7Validator(schema) for kind, schema in NODE_PARAMETER_SCHEMAS.items()
        }
        self.parsers = {
            'yaml': self._parse_yaml,
            'yml': self._parse_yaml,
            'json': self._parse_json
        }

    def parse(self, source: Union[str, Path, Dict[str, Any]]) -> WorkflowDefinition:
        """
        Parse a workflow definition.

        Args:
            source: file path, YAML/JSON text or an already loaded mapping

        Returns:
            WorkflowDefinition: the validated definition
        """
        if isinstance(source, dict):
            return self.parse_dict(source)

        if isinstance(source, Path):
            return self.parse_file(source)

        if isinstance(source, str):
            if "\n" not in source and Path(source).is_file():
                return self.parse_file(Path(source))
            return self.parse_string(source)

        raise self._malformed(f"Unsupported source type: {type(source).__name__}")

    def parse_file(self, file_path: Path) -> WorkflowDefinition:
        suffix = file_path.suffix.lower().lstrip('.')
        if suffix not in self.parsers:
            raise self._malformed(f"Unsupported file format: {suffix}")

        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()

        return self.parse_dict(self.parsers[suffix](content))

    def parse_string(self, content: str) -> WorkflowDefinition:
        """Parse YAML text; JSON is a subset of YAML so both are accepted"""
        return self.parse_dict(self._parse_yaml(content))

    def _parse_yaml(self, content: str) -> Dict[str, Any]:
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise self._malformed(f"Failed to parse YAML: {e}")

    def _parse_json(self, content: str) -> Dict[str, Any]:
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise self._malformed(f"Failed to parse JSON: {e}")

    def parse_dict(self, data: Dict[str, Any]) -> WorkflowDefinition:
        if isinstance(data, dict) and 'workflow' in data:
            data = data['workflow']
        if not isinstance(data, dict):
            raise self._malformed("Workflow definition must be a mapping")

        structural = _schema_messages(self.workflow_validator, data)
        if structural:
            raise self._malformed(structural[0], structural)

        problems: List[Problem] = []
        nodes = self._parse_nodes(data.get('nodes', []), problems)
        connections = self._parse_connections(data.get('connections', []), nodes, problems)
        trigger_id = self._find_trigger(nodes, problems)
        if not problems:
            self._check_connection_rules(nodes, connections, problems)
        if not problems:
            self._check_cycles(nodes, connections, problems)

        if problems:
            reason, message = problems[0]
            raise InvalidWorkflowError(reason, message, [text for _, text in problems])

        workflow = WorkflowDefinition(
            id=data['id'],
            name=data['name'],
            version=str(data.get('version', '1.0.0')),
            description=data.get('description'),
            active=data.get('active', True),
            settings=self._parse_settings(data.get('settings', {})),
            nodes=tuple(nodes),
            connections=tuple(connections),
            trigger_id=trigger_id,
        )
        logger.debug(f"Parsed workflow {workflow.id} v{workflow.version} ({len(nodes)} nodes)")
        return workflow

    def _parse_settings(self, data: Dict[str, Any]) -> WorkflowSettings:
        retry = data.get('retry')
        return WorkflowSettings(
            save_execution_progress=data.get('save_execution_progress', True),
            retry=RetrySettings(**retry) if retry is not None else None,
        )

    def _parse_nodes(self, nodes_data: List[Dict[str, Any]], problems: List[Problem]) -> List[Node]:
        nodes: List[Node] = []
        seen = set()
        for node_data in nodes_data:
            name = node_data['name']
            if name in seen:
                problems.append((InvalidWorkflowReason.DUPLICATE_NODE, f"Duplicate node name: {name}"))
                continue
            seen.add(name)

            try:
                kind = NodeKind(node_data['kind'])
            except ValueError:
                problems.append((
                    InvalidWorkflowReason.UNKNOWN_NODE_KIND,
                    f"Node '{name}' has unknown kind: {node_data['kind']}"
                ))
                continue

            parameters = node_data.get('parameters') or {}
            messages = _schema_messages(self.parameter_validators[kind], parameters)
            messages.extend(self._check_parameters(kind, parameters) if not messages else [])
            if messages:
                for message in messages:
                    problems.append((
                        InvalidWorkflowReason.MALFORMED_PARAMETERS,
                        f"Node '{name}' ({kind.value}) {message}"
                    ))
                continue

            nodes.append(Node(id=len(nodes), name=name, kind=kind, params=self._build_params(kind, parameters)))
        return nodes

    def _check_parameters(self, kind: NodeKind, parameters: Dict[str, Any]) -> List[str]:
        """Checks the schemas cannot express: operations per type and expression syntax"""
        messages = []
        if kind == NodeKind.CONDITIONAL:
            value_type = parameters.get('type', 'number')
            operation = parameters['operation']
            if operation not in OPERATIONS_BY_TYPE[value_type]:
                messages.append(f"operation '{operation}' is not valid for type '{value_type}'")
            elif operation not in UNARY_OPERATIONS and 'value2' not in parameters:
                messages.append(f"operation '{operation}' requires value2")
        try:
            self.evaluator.references(parameters)
        except ExpressionSyntaxError as e:
            messages.append(str(e))
        return messages

    def _build_params(self, kind: NodeKind, parameters: Dict[str, Any]) -> NodeParams:
        if kind == NodeKind.TRIGGER:
            return TriggerParams(path=parameters['path'].strip('/'), http_method=parameters.get('http_method', 'POST'))
        if kind == NodeKind.TRANSFORM:
            return TransformParams(values=_sorted_items(parameters['values']))
        if kind == NodeKind.CONDITIONAL:
            return ConditionalParams(
                value1=parameters['value1'],
                operation=parameters['operation'],
                value2=parameters.get('value2'),
                type=parameters.get('type', 'number'),
            )
        if kind == NodeKind.DELAY:
            return DelayParams(amount=parameters['amount'], unit=parameters['unit'])
        return ActionParams(
            to=parameters['to'],
            message=parameters['message'],
            channel=parameters.get('channel', 'whatsapp'),
            subject=parameters.get('subject'),
            credentials=_sorted_items(parameters.get('credentials') or {}),
        )

    def _parse_connections(
        self,
        connections_data: List[Dict[str, Any]],
        nodes: List[Node],
        problems: List[Problem]
    ) -> List[Connection]:
        names = {node.name for node in nodes}
        connections = []
        for data in connections_data:
            connection = Connection(source=data['from'], target=data['to'], port=str(data.get('port', MAIN_PORT)))
            dangling = [end for end in (connection.source, connection.target) if end not in names]
            if dangling:
                problems.append((
                    InvalidWorkflowReason.DANGLING_CONNECTION,
                    f"Connection {connection.source} -> {connection.target} references unknown node(s): "
                    f"{', '.join(dangling)}"
                ))
                continue
            connections.append(connection)
        return connections

    def _find_trigger(self, nodes: List[Node], problems: List[Problem]) -> int:
        triggers = [node for node in nodes if node.kind == NodeKind.TRIGGER]
        if not triggers:
            problems.append((InvalidWorkflowReason.MISSING_TRIGGER, "Workflow has no trigger node"))
            return -1
        if len(triggers) > 1:
            problems.append((
                InvalidWorkflowReason.MULTIPLE_TRIGGERS,
                f"Workflow has {len(triggers)} trigger nodes: {', '.join(t.name for t in triggers)}"
            ))
        return triggers[0].id

    def _check_connection_rules(self, nodes: List[Node], connections: List[Connection], problems: List[Problem]):
        by_name = {node.name: node for node in nodes}
        for connection in connections:
            source = by_name[connection.source]
            if connection.port not in source.ports:
                problems.append((
                    InvalidWorkflowReason.INVALID_PORT,
                    f"Node '{source.name}' ({source.kind.value}) has no port '{connection.port}'"
                ))
            if by_name[connection.target].kind == NodeKind.TRIGGER:
                problems.append((
                    InvalidWorkflowReason.INVALID_CONNECTION,
                    f"Trigger '{connection.target}' cannot have incoming connections"
                ))

    def _check_cycles(self, nodes: List[Node], connections: List[Connection], problems: List[Problem]):
        """Reject cycles that do not pass through a Delay node"""
        by_name = {node.name: node for node in nodes}
        adjacency: Dict[str, List[str]] = {node.name: [] for node in nodes}
        predecessors: Dict[str, List[str]] = {node.name: [] for node in nodes}
        in_degree: Dict[str, int] = {node.name: 0 for node in nodes}
        for connection in connections:
            if by_name[connection.source].kind != NodeKind.DELAY:
                adjacency[connection.source].append(connection.target)
                predecessors[connection.target].append(connection.source)
                in_degree[connection.target] += 1

        # Topological sort; whatever is never dequeued sits on or behind a cycle
        queue = deque(name for name, degree in in_degree.items() if degree == 0)
        while queue:
            name = queue.popleft()
            for target in adjacency[name]:
                in_degree[target] -= 1
                if in_degree[target] == 0:
                    queue.append(target)

        remaining = [node.name for node in nodes if in_degree[node.name] > 0]
        if remaining:
            cycle = self._trace_cycle(remaining[0], predecessors, set(remaining))
            problems.append((
                InvalidWorkflowReason.UNCONDITIONED_CYCLE,
                f"Cycle without a delay: {' -> '.join(cycle)}"
            ))

    @staticmethod
    def _trace_cycle(start: str, predecessors: Dict[str, List[str]], remaining: set) -> List[str]:
        """Walk predecessors inside the unsorted nodes until one repeats"""
        path = [start]
        position = {start: 0}
        current = start
        while True:
            current = next(name for name in predecessors[current] if name in remaining)
            if current in position:
                cycle = path[position[current]:] + [current]
                return cycle[::-1]
            position[current] = len(path)
            path.append(current)

    def serialize(self, workflow: WorkflowDefinition, fmt: str = "json") -> str:
        """Canonical text form; parsing it back yields an equal definition"""
        data = workflow.to_dict()
        if fmt == "json":
            return json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True)
        if fmt == "yaml":
            return yaml.safe_dump(data, allow_unicode=True, sort_keys=True)
        raise ValueError(f"Unsupported serialisation format: {fmt}")

    def _malformed(self, message: str, problems: List[str] = None) -> InvalidWorkflowError:
        return InvalidWorkflowError(InvalidWorkflowReason.MALFORMED_DEFINITION, message, problems)
