"""HTTP middleware: request tagging, error responses and slow request alerts."""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Tuple, Type
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    ExecutionAbortedError, ExpressionError, GraphStructureError,
    NodeRegistryError, UnsupportedNodeTypeError, WorkflowEngineError, create_error_response
)
from .logging import get_logger, log_with_context, logging_context


logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# First match wins; anything else is a server side failure
_STATUS_CODES: Tuple[Tuple[Tuple[Type[WorkflowEngineError], ...], int], ...] = (
    ((GraphStructureError, ExpressionError, UnsupportedNodeTypeError, NodeRegistryError), 400),
    ((ExecutionAbortedError,), 409),
)


def status_code_for(error: WorkflowEngineError) -> int:
    """Map an engine error to the HTTP status it is reported with."""
    for error_types, status_code in _STATUS_CODES:
        if isinstance(error, error_types):
            return status_code
    return 500


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Tag every request with an ID and turn uncaught errors into JSON responses.

    Log records written while the request is handled carry the request ID,
    method and path.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        start_time = time.perf_counter()

        with logging_context(request_id=request_id, method=request.method, path=request.url.path):
            try:
                response = await call_next(request)
            except WorkflowEngineError as e:
                log_with_context(
                    logger, logging.WARNING, f"{e.error_code} while handling request",
                    duration=round(time.perf_counter() - start_time, 3),
                    error_details=e.to_dict()
                )
                return JSONResponse(
                    status_code=status_code_for(e),
                    content=create_error_response(e),
                    headers={REQUEST_ID_HEADER: request_id}
                )
            except Exception as e:
                logger.error(f"Unexpected error while handling request: {e}", exc_info=True)
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": "InternalServerError",
                        "message": "An unexpected error occurred",
                        "details": {
                            "error_type": type(e).__name__,
                            "timestamp": datetime.now(timezone.utc).isoformat()
                        },
                        "request_id": request_id
                    },
                    headers={REQUEST_ID_HEADER: request_id}
                )

            log_with_context(
                logger, logging.INFO, f"{request.method} {request.url.path} -> {response.status_code}",
                status_code=response.status_code,
                duration=round(time.perf_counter() - start_time, 3)
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response


class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """Report response times and warn about slow requests."""

    def __init__(self, app, slow_request_threshold: float = 5.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        if duration > self.slow_request_threshold:
            log_with_context(
                logger, logging.WARNING, f"Slow request: {request.method} {request.url.path}",
                duration=round(duration, 3),
                threshold=self.slow_request_threshold
            )

        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
