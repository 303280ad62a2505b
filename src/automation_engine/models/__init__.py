"""Workflow and run models"""

from .workflow import (
    NodeKind, Node, Connection, WorkflowDefinition, WorkflowSettings, RetrySettings,
    TriggerParams, TransformParams, ConditionalParams, DelayParams, ActionParams,
    MAIN_PORT, TRUE_PORT, FALSE_PORT
)
from .execution import (
    Run, RunStatus, Outcome, Continue, Suspend, Terminal, Failed, utc_now
)

__all__ = [
    "NodeKind",
    "Node",
    "Connection",
    "WorkflowDefinition",
    "WorkflowSettings",
    "RetrySettings",
    "TriggerParams",
    "TransformParams",
    "ConditionalParams",
    "DelayParams",
    "ActionParams",
    "MAIN_PORT",
    "TRUE_PORT",
    "FALSE_PORT",
    "Run",
    "RunStatus",
    "Outcome",
    "Continue",
    "Suspend",
    "Terminal",
    "Failed",
    "utc_now"
]
