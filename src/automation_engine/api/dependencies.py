"""
FastAPI dependency injection
"""
import logging

from fastapi import HTTPException, Request, status

from ..core.engine import WorkflowEngine


logger = logging.getLogger(__name__)


def get_workflow_engine(request: Request) -> WorkflowEngine:
    """The engine owned by the running application"""
    engine = getattr(request.app.state, "engine", None)

    if not engine:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "service_unavailable",
                "message": "Workflow engine not initialized"
            }
        )

    return engine
