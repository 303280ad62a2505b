"""
API request and response models
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.execution import Run, RunStatus
from ..models.workflow import WorkflowDefinition


class ExecuteRequest(BaseModel):
    """Manual trigger of a workflow"""
    payload: Dict[str, Any] = Field(default_factory=dict, description="Triggering payload")


class DispatchResponse(BaseModel):
    """A run started by a trigger"""
    run_id: str = Field(..., description="Run ID")
    workflow_id: str = Field(..., description="Workflow ID")
    status: RunStatus = Field(..., description="Status after the first suspension or end")
    sibling_run_ids: List[str] = Field(default_factory=list, description="Fan-out sibling run IDs")


class WorkflowSummary(BaseModel):
    """Workflow catalog entry"""
    id: str
    name: str
    version: str
    description: Optional[str] = None
    active: bool
    trigger_path: str
    http_method: str
    node_count: int

    @classmethod
    def from_workflow(cls, workflow: WorkflowDefinition) -> "WorkflowSummary":
        return cls(
            id=workflow.id,
            name=workflow.name,
            version=workflow.version,
            description=workflow.description,
            active=workflow.active,
            trigger_path=workflow.trigger.params.path,
            http_method=workflow.trigger.params.http_method,
            node_count=len(workflow.nodes),
        )


class WorkflowDetail(WorkflowSummary):
    """Workflow with its full definition"""
    definition: Dict[str, Any]

    @classmethod
    def from_workflow(cls, workflow: WorkflowDefinition) -> "WorkflowDetail":
        summary = WorkflowSummary.from_workflow(workflow)
        return cls(**summary.model_dump(), definition=workflow.to_dict()["workflow"])


class RunResponse(BaseModel):
    """Run state"""
    run_id: str
    workflow_id: str
    workflow_version: str
    status: RunStatus
    current_node: Optional[str] = None
    wake_at: Optional[datetime] = None
    last_error: Optional[Dict[str, Any]] = None
    parent_run_id: Optional[str] = None
    outputs: Dict[str, Any] = Field(default_factory=dict)
    history: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    finished_at: Optional[datetime] = None

    @classmethod
    def from_run(cls, run: Run) -> "RunResponse":
        return cls(
            run_id=run.run_id,
            workflow_id=run.workflow_id,
            workflow_version=run.workflow_version,
            status=run.status,
            current_node=run.current_node,
            wake_at=run.wake_at,
            last_error=run.last_error,
            parent_run_id=run.parent_run_id,
            outputs=run.outputs,
            history=run.history,
            created_at=run.created_at,
            updated_at=run.updated_at,
            finished_at=run.finished_at,
        )


class RunListResponse(BaseModel):
    """A page of runs"""
    items: List[RunResponse]
    offset: int
    limit: int


class HealthResponse(BaseModel):
    """Service health"""
    status: str
    version: str
    workflows: int
    active_workflows: int
    scheduler: Dict[str, Any]


class ErrorResponse(BaseModel):
    """Error body"""
    error: str
    message: str
    details: Optional[List[str]] = None
