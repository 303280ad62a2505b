"""Core execution components"""

from .catalog import WorkflowCatalog
from .dispatcher import DispatchResult, TriggerDispatcher
from .engine import WorkflowEngine
from .error_handler import RetryPolicy, RetryStrategy
from .executor import StepExecutor
from .expressions import ExpressionEvaluator
from .parser import WorkflowParser
from .runner import RunRunner
from .scheduler import RunScheduler

__all__ = [
    "WorkflowCatalog",
    "DispatchResult",
    "TriggerDispatcher",
    "WorkflowEngine",
    "RetryPolicy",
    "RetryStrategy",
    "StepExecutor",
    "ExpressionEvaluator",
    "WorkflowParser",
    "RunRunner",
    "RunScheduler"
]
