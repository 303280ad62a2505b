"""
API middleware
"""
import logging
import time
import uuid
from typing import Callable, List

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware


logger = logging.getLogger(__name__)

WEBHOOK_PREFIX = "/webhook/"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request with an id and its duration.

    Webhook calls are logged with their hook path, and any request that
    started a run gets the run id in its log line and an X-Run-ID header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.run_id = None

        path = request.url.path
        tags: List[str] = [f"request_id={request_id}"]
        if path.startswith(WEBHOOK_PREFIX):
            tags.append(f"hook={path[len(WEBHOOK_PREFIX):].strip('/')}")

        start_time = time.perf_counter()
        logger.info(f"Request started: {request.method} {path} [{'] ['.join(tags)}]")

        response = await call_next(request)

        duration = time.perf_counter() - start_time
        run_id = getattr(request.state, "run_id", None)
        if run_id:
            tags.append(f"run_id={run_id}")
            response.headers["X-Run-ID"] = run_id
        tags.extend([f"status={response.status_code}", f"duration={duration:.3f}s"])

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration:.6f}"

        logger.info(f"Request completed: {request.method} {path} [{'] ['.join(tags)}]")
        return response
