"""
FastAPI application
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import EngineSettings
from ..core.engine import WorkflowEngine
from ..exceptions import (
    AutomationEngineError, InvalidWorkflowError, PersistenceError, RunNotFoundError,
    StateTransitionError, UnknownWorkflowError, WorkflowConflictError
)
from .middleware import RequestLoggingMiddleware
from .models import HealthResponse
from .routers import runs, webhooks, workflows


logger = logging.getLogger(__name__)


def _error_response(request: Request, status_code: int, error: str, exc: Exception, details=None) -> JSONResponse:
    content = {
        "error": error,
        "message": str(exc),
        "request_id": getattr(request.state, "request_id", None)
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def create_app(
    engine: Optional[WorkflowEngine] = None,
    settings: Optional[EngineSettings] = None,
    start_scheduler: bool = True
) -> FastAPI:
    """
    Build the API application.

    Without an engine, one is built from `settings` (or the environment)
    when the application starts, and closed when it stops.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Messaging Automation Engine API...")

        owned = engine is None
        app.state.engine = engine or await WorkflowEngine.from_settings(settings or EngineSettings.from_env())
        if start_scheduler:
            await app.state.engine.start()

        logger.info(f"API started with {len(app.state.engine.catalog)} workflow(s)")

        yield

        logger.info("Shutting down Messaging Automation Engine API...")
        if owned:
            await app.state.engine.close()
        else:
            await app.state.engine.scheduler.stop()
        app.state.engine = None

        logger.info("API shut down")

    app = FastAPI(
        title="Messaging Automation Engine API",
        description="Webhook-triggered messaging workflows with durable delays",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(webhooks.router, prefix="/webhook", tags=["webhooks"])
    app.include_router(workflows.router, prefix="/api/v1/workflows", tags=["workflows"])
    app.include_router(runs.router, prefix="/api/v1/runs", tags=["runs"])

    @app.exception_handler(UnknownWorkflowError)
    async def unknown_workflow_handler(request: Request, exc: UnknownWorkflowError):
        return _error_response(request, status.HTTP_404_NOT_FOUND, "workflow_not_found", exc)

    @app.exception_handler(RunNotFoundError)
    async def run_not_found_handler(request: Request, exc: RunNotFoundError):
        return _error_response(request, status.HTTP_404_NOT_FOUND, "run_not_found", exc)

    @app.exception_handler(StateTransitionError)
    async def state_transition_handler(request: Request, exc: StateTransitionError):
        return _error_response(request, status.HTTP_409_CONFLICT, "invalid_state", exc)

    @app.exception_handler(InvalidWorkflowError)
    async def invalid_workflow_handler(request: Request, exc: InvalidWorkflowError):
        return _error_response(request, status.HTTP_400_BAD_REQUEST, exc.reason.value, exc, exc.problems)

    @app.exception_handler(WorkflowConflictError)
    async def workflow_conflict_handler(request: Request, exc: WorkflowConflictError):
        return _error_response(request, status.HTTP_409_CONFLICT, "workflow_conflict", exc)

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError):
        logger.error(f"Run store unavailable: {exc}")
        return _error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "store_unavailable", exc)

    @app.exception_handler(AutomationEngineError)
    async def engine_error_handler(request: Request, exc: AutomationEngineError):
        logger.error(f"Engine error: {exc}", exc_info=True)
        return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "engine_error", exc)

    @app.get("/health", response_model=HealthResponse, tags=["monitoring"])
    async def health(request: Request) -> HealthResponse:
        current = getattr(request.app.state, "engine", None)
        if current is None:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "starting", "version": __version__}
            )
        return HealthResponse(
            status="healthy",
            version=__version__,
            workflows=len(current.catalog),
            active_workflows=len(current.list_workflows(active_only=True)),
            scheduler=current.scheduler.get_scheduler_stats(),
        )

    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": "Messaging Automation Engine API",
            "version": __version__,
            "status": "running",
            "docs": "/docs",
            "health": "/health"
        }

    return app
