"""
Workflow catalog API
"""
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, Query, Request, status

from ..dependencies import get_workflow_engine
from ..models import DispatchResponse, ExecuteRequest, WorkflowDetail, WorkflowSummary


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=List[WorkflowSummary])
async def list_workflows(
    active_only: bool = Query(False, description="Only active workflows"),
    engine=Depends(get_workflow_engine)
) -> List[WorkflowSummary]:
    return [WorkflowSummary.from_workflow(w) for w in engine.list_workflows(active_only)]


@router.post("/", response_model=WorkflowDetail, status_code=status.HTTP_201_CREATED)
async def deploy_workflow(
    definition: Dict[str, Any] = Body(..., description="Workflow document, as in a workflow file"),
    engine=Depends(get_workflow_engine)
) -> WorkflowDetail:
    """Validate a workflow and add it to the running catalog"""
    workflow = engine.deploy(definition)
    logger.info(f"Workflow {workflow.id} deployed via API")
    return WorkflowDetail.from_workflow(workflow)


@router.get("/{workflow_id}", response_model=WorkflowDetail)
async def get_workflow(
    workflow_id: str,
    engine=Depends(get_workflow_engine)
) -> WorkflowDetail:
    return WorkflowDetail.from_workflow(engine.get_workflow(workflow_id))


@router.put("/{workflow_id}", response_model=WorkflowDetail)
async def update_workflow(
    workflow_id: str,
    definition: Dict[str, Any] = Body(..., description="Replacement workflow document"),
    engine=Depends(get_workflow_engine)
) -> WorkflowDetail:
    """Replace a workflow; waiting runs resume on the new definition"""
    return WorkflowDetail.from_workflow(engine.update(workflow_id, definition))


@router.delete("/{workflow_id}", response_model=WorkflowSummary)
async def delete_workflow(
    workflow_id: str,
    engine=Depends(get_workflow_engine)
) -> WorkflowSummary:
    """Remove a workflow from the catalog; its runs stay stored"""
    workflow = engine.remove(workflow_id)
    logger.info(f"Workflow {workflow_id} deleted via API")
    return WorkflowSummary.from_workflow(workflow)


@router.post("/{workflow_id}/activate", response_model=WorkflowSummary)
async def activate_workflow(
    workflow_id: str,
    engine=Depends(get_workflow_engine)
) -> WorkflowSummary:
    """Make a workflow dispatchable"""
    return WorkflowSummary.from_workflow(engine.activate(workflow_id))


@router.post("/{workflow_id}/deactivate", response_model=WorkflowSummary)
async def deactivate_workflow(
    workflow_id: str,
    engine=Depends(get_workflow_engine)
) -> WorkflowSummary:
    """Stop new runs; runs already started keep resuming"""
    return WorkflowSummary.from_workflow(engine.deactivate(workflow_id))


@router.post("/{workflow_id}/execute", response_model=DispatchResponse, status_code=status.HTTP_202_ACCEPTED)
async def execute_workflow(
    workflow_id: str,
    body: ExecuteRequest,
    request: Request,
    engine=Depends(get_workflow_engine)
) -> DispatchResponse:
    """Trigger a workflow by id with an explicit payload"""
    result = await engine.trigger(workflow_id, body.payload)
    request.state.run_id = result.run_id
    return DispatchResponse(
        run_id=result.run_id,
        workflow_id=workflow_id,
        status=result.status,
        sibling_run_ids=[run.run_id for run in result.siblings],
    )
