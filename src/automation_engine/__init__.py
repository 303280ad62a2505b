"""
Messaging Automation Engine

Executes declarative messaging workflows: webhook triggers, transforms,
conditional branches, durable delays and outbound message sends.
"""

__version__ = "1.0.0"

from .core import WorkflowCatalog, WorkflowEngine, WorkflowParser
from .models import Run, RunStatus, WorkflowDefinition

__all__ = [
    "WorkflowCatalog",
    "WorkflowEngine",
    "WorkflowParser",
    "Run",
    "RunStatus",
    "WorkflowDefinition",
    "__version__"
]
