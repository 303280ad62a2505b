"""
JSON Schemas for workflow documents and node parameters
"""
from typing import Any, Dict

from ..models.workflow import DELAY_UNITS, NodeKind


NUMBER_OPERATIONS = ("equal", "not_equal", "greater", "greater_equal", "smaller", "smaller_equal")
STRING_OPERATIONS = (
    "equal", "not_equal", "contains", "not_contains",
    "starts_with", "ends_with", "is_empty", "is_not_empty"
)
BOOLEAN_OPERATIONS = ("equal", "not_equal")
UNARY_OPERATIONS = ("is_empty", "is_not_empty")

OPERATIONS_BY_TYPE = {
    "number": NUMBER_OPERATIONS,
    "string": STRING_OPERATIONS,
    "boolean": BOOLEAN_OPERATIONS,
}


RETRY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "max_attempts": {"type": "integer", "minimum": 1},
        "initial_delay": {"type": "number", "minimum": 0},
        "backoff_factor": {"type": "number", "minimum": 1},
        "max_delay": {"type": "number", "minimum": 0},
        "strategy": {"enum": ["fixed", "linear", "exponential"]},
    },
    "additionalProperties": False,
}


WORKFLOW_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "version": {"type": ["string", "number"]},
        "description": {"type": ["string", "null"]},
        "active": {"type": "boolean"},
        "settings": {
            "type": "object",
            "properties": {
                "save_execution_progress": {"type": "boolean"},
                "retry": RETRY_SCHEMA,
            },
            "additionalProperties": False,
        },
        "nodes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "kind": {"type": "string"},
                    "parameters": {"type": "object"},
                },
                "required": ["name", "kind"],
            },
        },
        "connections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "from": {"type": "string"},
                    "to": {"type": "string"},
                    "port": {"type": "string"},
                },
                "required": ["from", "to"],
            },
        },
    },
    "required": ["id", "name", "nodes"],
}


NODE_PARAMETER_SCHEMAS: Dict[NodeKind, Dict[str, Any]] = {
    NodeKind.TRIGGER: {
        "type": "object",
        "properties": {
            "path": {"type": "string", "minLength": 1},
            "http_method": {"enum": ["GET", "POST", "PUT"]},
        },
        "required": ["path"],
        "additionalProperties": False,
    },
    NodeKind.TRANSFORM: {
        "type": "object",
        "properties": {
            "values": {"type": "object", "minProperties": 1},
        },
        "required": ["values"],
        "additionalProperties": False,
    },
    NodeKind.CONDITIONAL: {
        "type": "object",
        "properties": {
            "value1": {},
            "operation": {"type": "string"},
            "value2": {},
            "type": {"enum": list(OPERATIONS_BY_TYPE)},
        },
        "required": ["value1", "operation"],
        "additionalProperties": False,
    },
    NodeKind.DELAY: {
        "type": "object",
        "properties": {
            "amount": {"type": "number", "exclusiveMinimum": 0},
            "unit": {"enum": list(DELAY_UNITS)},
        },
        "required": ["amount", "unit"],
        "additionalProperties": False,
    },
    NodeKind.ACTION: {
        "type": "object",
        "properties": {
            "to": {"type": "string", "minLength": 1},
            "message": {"type": "string"},
            "channel": {"type": "string", "minLength": 1},
            "subject": {"type": ["string", "null"]},
            "credentials": {
                "type": "object",
                "additionalProperties": {"type": "string"},
            },
        },
        "required": ["to", "message"],
        "additionalProperties": False,
    },
}
