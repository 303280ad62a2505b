"""
Run inspection and cancellation API
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...models.execution import RunStatus
from ..dependencies import get_workflow_engine
from ..models import RunListResponse, RunResponse


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=RunListResponse)
async def list_runs(
    workflow_id: Optional[str] = Query(None, description="Filter by workflow"),
    status: Optional[RunStatus] = Query(None, description="Filter by status"),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    engine=Depends(get_workflow_engine)
) -> RunListResponse:
    """Execution history, newest first"""
    runs = await engine.list_runs(workflow_id, status, offset, limit)
    return RunListResponse(items=[RunResponse.from_run(run) for run in runs], offset=offset, limit=limit)


@router.get("/{run_id}", response_model=RunResponse)
async def get_run(
    run_id: str,
    engine=Depends(get_workflow_engine)
) -> RunResponse:
    return RunResponse.from_run(await engine.get_run(run_id))


@router.post("/{run_id}/cancel", response_model=RunResponse)
async def cancel_run(
    run_id: str,
    engine=Depends(get_workflow_engine)
) -> RunResponse:
    """Cancel a waiting run; messages already sent stay sent"""
    run = await engine.cancel(run_id)
    logger.info(f"Run {run_id} cancelled via API")
    return RunResponse.from_run(run)
