"""
Inbound webhook triggers
"""
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..dependencies import get_workflow_engine
from ..models import DispatchResponse


logger = logging.getLogger(__name__)
router = APIRouter()


async def _read_payload(request: Request) -> Any:
    if request.method == "GET":
        return dict(request.query_params)

    body = await request.body()
    if not body:
        return {}
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "invalid_payload",
                "message": f"Webhook body is not valid JSON: {e}"
            }
        )


@router.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT"],
    response_model=DispatchResponse,
    status_code=status.HTTP_202_ACCEPTED
)
async def receive_webhook(
    path: str,
    request: Request,
    engine=Depends(get_workflow_engine)
) -> DispatchResponse:
    """Start a run of the active workflow listening on this path"""
    payload = await _read_payload(request)
    result = await engine.trigger_webhook(path, payload, request.method)
    request.state.run_id = result.run_id

    logger.info(f"Webhook /{path} started run {result.run_id} ({result.status.value})")
    return DispatchResponse(
        run_id=result.run_id,
        workflow_id=result.run.workflow_id,
        status=result.status,
        sibling_run_ids=[run.run_id for run in result.siblings],
    )
