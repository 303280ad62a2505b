"""
Automation engine exception hierarchy
"""
from enum import Enum
from typing import List, Optional


class AutomationEngineError(Exception):
    """Base class for every engine error"""
    pass


class InvalidWorkflowReason(str, Enum):
    """Why a workflow definition was rejected at load time"""
    MALFORMED_DEFINITION = "malformed_definition"
    DUPLICATE_NODE = "duplicate_node"
    DANGLING_CONNECTION = "dangling_connection"
    INVALID_CONNECTION = "invalid_connection"
    INVALID_PORT = "invalid_port"
    MISSING_TRIGGER = "missing_trigger"
    MULTIPLE_TRIGGERS = "multiple_triggers"
    UNCONDITIONED_CYCLE = "unconditioned_cycle"
    UNKNOWN_NODE_KIND = "unknown_node_kind"
    MALFORMED_PARAMETERS = "malformed_parameters"


class InvalidWorkflowError(AutomationEngineError):
    """Workflow definition failed validation"""

    def __init__(
        self,
        reason: InvalidWorkflowReason,
        message: str,
        problems: Optional[List[str]] = None
    ):
        self.reason = reason
        self.problems = problems or [message]
        super().__init__(f"Invalid workflow ({reason.value}): {message}")


class UnknownWorkflowError(AutomationEngineError):
    """No active workflow matches the requested id or trigger path"""

    def __init__(self, workflow_id: str, message: str = None):
        self.workflow_id = workflow_id
        super().__init__(message or f"Unknown or inactive workflow: {workflow_id}")


class WorkflowConflictError(AutomationEngineError):
    """A deployed workflow clashes with one already in the catalog"""

    def __init__(self, workflow_id: str, message: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id}: {message}")


class ExpressionError(AutomationEngineError):
    """Expression evaluation failed"""
    pass


class ExpressionSyntaxError(ExpressionError):
    """A template block is not a valid reference"""

    def __init__(self, expression: str, message: str = None):
        self.expression = expression
        super().__init__(message or f"Invalid expression: {{{{ {expression} }}}}")


class UnresolvedReferenceError(ExpressionError):
    """A reference names an unknown node or a missing field"""

    def __init__(self, reference: str, reason: str):
        self.reference = reference
        self.reason = reason
        super().__init__(f"Unresolved reference {reference}: {reason}")


class ExpressionTypeError(ExpressionError):
    """A value cannot be used where the node needs it"""
    pass


class NodeExecutionError(AutomationEngineError):
    """Node execution failed"""

    def __init__(self, node_id: str, message: str, cause: Exception = None):
        self.node_id = node_id
        self.cause = cause
        super().__init__(f"Node '{node_id}' execution failed: {message}")


class RetryExhaustedError(NodeExecutionError):
    """Dispatch kept failing until the retry policy gave up"""

    def __init__(self, node_id: str, attempts: int, last_error: Exception = None):
        self.attempts = attempts
        self.last_error = last_error
        message = f"Retry exhausted after {attempts} attempts"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(node_id, message, last_error)


class DispatchError(AutomationEngineError):
    """Outbound message dispatch failed"""
    pass


class DispatchRetriableError(DispatchError):
    """Transient dispatch failure (network, rate limit)"""
    pass


class DispatchFatalError(DispatchError):
    """Permanent dispatch failure (invalid recipient, revoked credentials)"""
    pass


class PersistenceError(AutomationEngineError):
    """Run store is unavailable or rejected an operation"""
    pass


class RunNotFoundError(AutomationEngineError):
    """No run stored under the given id"""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class StateTransitionError(AutomationEngineError):
    """Invalid run state transition"""

    def __init__(self, current_state: str, target_state: str, message: str = None):
        self.current_state = current_state
        self.target_state = target_state
        msg = f"Invalid state transition from '{current_state}' to '{target_state}'"
        if message:
            msg += f": {message}"
        super().__init__(msg)
