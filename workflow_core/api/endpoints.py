"""FastAPI REST and WebSocket endpoints for workflow validation and execution."""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional, Tuple
from fastapi import APIRouter, HTTPException, Depends, status, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from ..core.execution_engine import CancellationToken, ExecutionEngine
from ..core.node_registry import NodeExecutorRegistry
from ..core.validator import GraphValidator
from ..core.exceptions import WorkflowEngineError, create_error_response
from ..models.core import (
    ExecutionContext,
    ExecutionResult,
    ExecutionUpdate,
    ValidationIssue,
    ValidationResult,
    WorkflowEdge,
    WorkflowNode
)
from ..core.logging import get_logger, logging_context

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Global instances (initialized by the application factory)
_execution_engine: Optional[ExecutionEngine] = None
_validator: Optional[GraphValidator] = None
_node_registry: Optional[NodeExecutorRegistry] = None

# Cancellation tokens of in-flight runs, keyed by run ID
_active_runs: Dict[str, CancellationToken] = {}


def init_dependencies(
    execution_engine: ExecutionEngine,
    validator: GraphValidator,
    node_registry: Optional[NodeExecutorRegistry] = None
):
    """Initialize the global dependencies."""
    global _execution_engine, _validator, _node_registry
    _execution_engine = execution_engine
    _validator = validator
    _node_registry = node_registry or execution_engine.registry
    _active_runs.clear()


def get_execution_engine() -> ExecutionEngine:
    """Dependency to get execution engine."""
    if _execution_engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution engine not initialized"
        )
    return _execution_engine


def get_validator() -> GraphValidator:
    """Dependency to get graph validator."""
    if _validator is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Graph validator not initialized"
        )
    return _validator


def get_node_registry() -> NodeExecutorRegistry:
    """Dependency to get node executor registry."""
    if _node_registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Node registry not initialized"
        )
    return _node_registry


# Request/Response models
class ValidateWorkflowRequest(BaseModel):
    """Request model for validating a workflow."""
    nodes: List[WorkflowNode] = Field(default_factory=list, description="Graph nodes")
    edges: List[WorkflowEdge] = Field(default_factory=list, description="Graph edges")
    credentials: Optional[Dict[str, str]] = Field(None, description="Provider credentials to check")


class ValidateCredentialsRequest(BaseModel):
    """Request model for checking provider credentials."""
    nodes: List[WorkflowNode] = Field(default_factory=list, description="Graph nodes")
    credentials: Dict[str, str] = Field(default_factory=dict, description="Provider name to secret")


class CredentialsValidationResponse(BaseModel):
    """Response model for credential validation."""
    issues: List[ValidationIssue] = Field(default_factory=list, description="Missing credentials")


class ExecuteWorkflowRequest(BaseModel):
    """Request model for running a workflow."""
    nodes: List[WorkflowNode] = Field(default_factory=list, description="Graph nodes")
    edges: List[WorkflowEdge] = Field(default_factory=list, description="Graph edges")
    context: ExecutionContext = Field(default_factory=ExecutionContext, description="Credentials and variables")
    run_id: Optional[str] = Field(None, description="Caller-chosen run ID used for cancellation")


class ExecuteWorkflowResponse(BaseModel):
    """Response model for workflow execution."""
    run_id: str = Field(..., description="Identifier of the run")
    result: ExecutionResult = Field(..., description="Final result of the run")
    updates: List[ExecutionUpdate] = Field(default_factory=list, description="Every update emitted, in order")


class CancelWorkflowResponse(BaseModel):
    """Response model for cancellation."""
    run_id: str = Field(..., description="Identifier of the run")
    cancelled: bool = Field(..., description="Whether an in-flight run was signalled")


class NodeTypesResponse(BaseModel):
    """Response model for the registered node types."""
    node_types: List[str] = Field(..., description="Node types with a registered executor")


def _register_run(run_id: Optional[str]) -> Tuple[str, CancellationToken]:
    run_id = run_id or str(uuid.uuid4())
    if run_id in _active_runs:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "RunAlreadyActive",
                "message": f"A run with ID '{run_id}' is already in progress",
                "details": {"run_id": run_id}
            }
        )
    token = CancellationToken()
    _active_runs[run_id] = token
    return run_id, token


def _internal_error(message: str, error: Exception) -> HTTPException:
    if isinstance(error, WorkflowEngineError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=create_error_response(error)
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": message,
            "details": {"original_error": str(error)},
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


# Endpoints

@router.post(
    "/workflow/validate",
    response_model=ValidationResult,
    summary="Validate a workflow graph",
    description="Run structural, configuration and security checks and score the graph"
)
async def validate_workflow(
    request: ValidateWorkflowRequest,
    validator: GraphValidator = Depends(get_validator)
) -> ValidationResult:
    """
    Validate a workflow graph.

    Args:
        request: Graph to validate, optionally with credentials to check
        validator: Graph validator dependency

    Returns:
        Scored validation result
    """
    logger.info(f"Validating workflow with {len(request.nodes)} node(s) and {len(request.edges)} edge(s)")
    result = validator.analyze(request.nodes, request.edges, request.credentials)
    logger.info(f"Workflow validation finished: score={result.score} grade={result.grade}")
    return result


@router.post(
    "/workflow/validate/credentials",
    response_model=CredentialsValidationResponse,
    summary="Check provider credentials",
    description="Report every provider used by the graph that has no credential"
)
async def validate_workflow_credentials(
    request: ValidateCredentialsRequest,
    validator: GraphValidator = Depends(get_validator)
) -> CredentialsValidationResponse:
    """Check that the supplied credentials cover every provider the graph uses."""
    issues = validator.validate_credentials(request.credentials, request.nodes)
    return CredentialsValidationResponse(issues=issues)


@router.post(
    "/workflow/execute",
    response_model=ExecuteWorkflowResponse,
    summary="Execute a workflow graph",
    description="Run the graph to completion and return its result with every streamed update"
)
async def execute_workflow(
    request: ExecuteWorkflowRequest,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> ExecuteWorkflowResponse:
    """
    Execute a workflow graph.

    Node failures, cycles and cancellation are part of the returned result,
    not HTTP errors.

    Args:
        request: Graph, context and optional run ID
        execution_engine: Execution engine dependency

    Returns:
        Run ID, final result and the ordered list of updates

    Raises:
        HTTPException: If the run ID is already in use or execution setup fails
    """
    run_id, token = _register_run(request.run_id)
    updates: List[ExecutionUpdate] = []

    try:
        logger.info(f"Starting workflow execution: run_id={run_id}")
        with logging_context(run_id=run_id):
            result = await execution_engine.execute_workflow(
                request.nodes,
                request.edges,
                request.context,
                on_update=updates.append,
                cancel_token=token
            )
        logger.info(f"Workflow execution finished: run_id={run_id} success={result.success}")
        return ExecuteWorkflowResponse(run_id=run_id, result=result, updates=updates)

    except Exception as e:
        logger.error(f"Unexpected error during workflow execution {run_id}: {str(e)}", exc_info=True)
        raise _internal_error("An unexpected error occurred while executing the workflow", e)
    finally:
        _active_runs.pop(run_id, None)


@router.post(
    "/workflow/cancel/{run_id}",
    response_model=CancelWorkflowResponse,
    summary="Cancel a workflow run",
    description="Ask an in-flight run to stop before its next node"
)
async def cancel_workflow(run_id: str) -> CancelWorkflowResponse:
    """Signal the cancellation token of an in-flight run."""
    token = _active_runs.get(run_id)
    if token is None:
        logger.info(f"Cancellation requested for unknown or finished run: {run_id}")
        return CancelWorkflowResponse(run_id=run_id, cancelled=False)

    token.abort()
    logger.info(f"Cancellation requested for run: {run_id}")
    return CancelWorkflowResponse(run_id=run_id, cancelled=True)


@router.get(
    "/node-types",
    response_model=NodeTypesResponse,
    summary="List node types",
    description="List the node types that have a registered executor"
)
async def list_node_types(
    node_registry: NodeExecutorRegistry = Depends(get_node_registry)
) -> NodeTypesResponse:
    """List the node types the engine can execute."""
    return NodeTypesResponse(node_types=node_registry.list_types())


# WebSocket endpoint for streamed execution

async def _watch_client(websocket: WebSocket, token: CancellationToken) -> None:
    """Abort the run when the client disconnects or asks to cancel."""
    while True:
        try:
            message = await websocket.receive_json()
        except (WebSocketDisconnect, RuntimeError):
            logger.info("WebSocket client disconnected, aborting run")
            token.abort()
            return
        except ValueError:
            # Non-JSON frame; keep watching
            continue

        if isinstance(message, dict) and message.get("action") == "cancel":
            logger.info("WebSocket client requested cancellation")
            token.abort()


@router.websocket("/ws/execute")
async def websocket_execute(websocket: WebSocket):
    """
    WebSocket endpoint for streamed workflow execution.

    The client sends one message with the same shape as the execute request
    body. The server then sends every ExecutionUpdate as it happens:
    {
        "type": "node_start" | "node_complete" | "node_error" | "complete" | "error",
        "node_id": ..., "output": ..., "error": ..., "message": ...
    }
    followed by a final {"type": "result", "run_id": ..., "result": {...}}
    and closes. Sending {"action": "cancel"} or disconnecting aborts the run.
    """
    if _execution_engine is None:
        await websocket.close(code=1011, reason="Execution engine not initialized")
        return

    await websocket.accept()

    try:
        payload = await websocket.receive_json()
        request = ExecuteWorkflowRequest.model_validate(payload)
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected before sending a request")
        return
    except (ValidationError, ValueError) as e:
        await websocket.send_json({"type": "error", "message": f"Invalid execute request: {str(e)}"})
        await websocket.close(code=1003)
        return

    run_id = request.run_id or str(uuid.uuid4())
    if run_id in _active_runs:
        await websocket.send_json({"type": "error", "message": f"A run with ID '{run_id}' is already in progress"})
        await websocket.close(code=1008)
        return

    token = CancellationToken()
    _active_runs[run_id] = token
    queue: "asyncio.Queue[Optional[ExecutionUpdate]]" = asyncio.Queue()

    # The task copies the current context, so engine logs carry the run ID
    with logging_context(run_id=run_id):
        run_task = asyncio.create_task(_execution_engine.execute_workflow(
            request.nodes,
            request.edges,
            request.context,
            on_update=queue.put_nowait,
            cancel_token=token
        ))
    run_task.add_done_callback(lambda _: queue.put_nowait(None))
    watcher = asyncio.create_task(_watch_client(websocket, token))

    logger.info(f"Started streamed workflow execution: run_id={run_id}")
    try:
        while True:
            update = await queue.get()
            if update is None:
                break
            await websocket.send_json(update.model_dump(mode="json"))

        result = await run_task
        await websocket.send_json({
            "type": "result",
            "run_id": run_id,
            "result": result.model_dump(mode="json")
        })
        await websocket.close()
        logger.info(f"Streamed workflow execution finished: run_id={run_id} success={result.success}")

    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected during run {run_id}")
        token.abort()
        await run_task
    except Exception as e:
        logger.error(f"WebSocket error during run {run_id}: {str(e)}")
        token.abort()
        await run_task
    finally:
        watcher.cancel()
        _active_runs.pop(run_id, None)
