"""Execution Engine for workflow processing."""

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..models.core import (
    ExecutionConfig, ExecutionContext, ExecutionMetrics, ExecutionResult,
    ExecutionUpdate, NodeStatus, UpdateType, WorkflowEdge, WorkflowNode, WorkflowStatus
)
from .exceptions import (
    ExecutionAbortedError, GraphStructureError, NodeExecutionError,
    UnsupportedNodeTypeError, WorkflowEngineError
)
from .graph_sorter import get_node_inputs, topological_sort
from .logging import get_logger, log_with_context
from .node_registry import NodeExecutorRegistry, create_default_registry

logger = get_logger(__name__)

UpdateCallback = Callable[[ExecutionUpdate], Any]


class CancellationToken:
    """Caller-owned abort flag, observed by the engine between nodes.

    Safe to trip from any thread while a run is in progress.
    """

    def __init__(self):
        self._event = threading.Event()

    def abort(self) -> None:
        """Request that the run stop before its next node."""
        self._event.set()

    @property
    def is_aborted(self) -> bool:
        return self._event.is_set()


class _RunState:
    """Mutable bookkeeping for a single run; never shared between runs."""

    def __init__(self, total_nodes: int):
        self.status = WorkflowStatus.IDLE
        self.node_status: Dict[str, NodeStatus] = {}
        self.results: Dict[str, Any] = {}
        self.metrics = ExecutionMetrics(total_nodes=total_nodes)
        self.started_at = time.perf_counter()

    def finish(self, status: WorkflowStatus) -> ExecutionMetrics:
        self.status = status
        self.metrics.total_execution_time = time.perf_counter() - self.started_at
        return self.metrics


class ExecutionEngine:
    """Engine that runs a workflow graph node by node in dependency order.

    The engine holds no per-run state, so one instance can drive any number of
    runs, including concurrent ones on the same event loop.
    """

    def __init__(self, registry: Optional[NodeExecutorRegistry] = None, config: Optional[ExecutionConfig] = None):
        """Initialize the execution engine.

        Args:
            registry: Registry used to dispatch nodes by type; defaults to the built-ins
            config: Per-node timeout and retry limits; defaults to no limits
        """
        self.registry = registry or create_default_registry()
        self.config = config or ExecutionConfig()

        logger.info(
            f"ExecutionEngine initialized with timeout={self.config.timeout}, "
            f"max_retries={self.config.max_retries}"
        )

    async def execute_workflow(
        self,
        nodes: Sequence[WorkflowNode],
        edges: Sequence[WorkflowEdge],
        context: Optional[ExecutionContext] = None,
        on_update: Optional[UpdateCallback] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> ExecutionResult:
        """
        Execute a workflow graph.

        Nodes run strictly one after another. Every failure, including a cycle
        or a cancellation, is reported through the returned result and a
        terminal ``error`` update rather than raised.

        Args:
            nodes: Graph nodes
            edges: Graph edges
            context: Credentials and variables for the run
            on_update: Called synchronously, in order, with every ExecutionUpdate
            cancel_token: Token checked before each node starts

        Returns:
            ExecutionResult: Outputs keyed by node ID on success, or the error
        """
        context = context or ExecutionContext()
        run = _RunState(total_nodes=len(nodes))

        try:
            results = await self._run(nodes, edges, context, run, on_update, cancel_token)
        except Exception as e:
            message = e.message if isinstance(e, WorkflowEngineError) else str(e)
            aborted = isinstance(e, ExecutionAbortedError)
            metrics = run.finish(WorkflowStatus.ABORTED if aborted else WorkflowStatus.FAILED)

            if aborted:
                logger.info(f"Workflow execution aborted after {metrics.executed_nodes} node(s)")
            else:
                logger.error(f"Workflow execution failed: {message}")

            self._emit(on_update, ExecutionUpdate(type=UpdateType.ERROR, message=message))
            return ExecutionResult(success=False, results={}, error=message, metrics=metrics)

        metrics = run.finish(WorkflowStatus.COMPLETED)
        self._emit(on_update, ExecutionUpdate(type=UpdateType.COMPLETE))
        logger.info(
            f"Workflow execution completed: {metrics.executed_nodes} node(s) "
            f"in {metrics.total_execution_time:.3f}s"
        )
        return ExecutionResult(success=True, results=results, metrics=metrics)

    async def _run(
        self,
        nodes: Sequence[WorkflowNode],
        edges: Sequence[WorkflowEdge],
        context: ExecutionContext,
        run: _RunState,
        on_update: Optional[UpdateCallback],
        cancel_token: Optional[CancellationToken]
    ) -> Dict[str, Any]:
        sort_result = topological_sort(nodes, edges)
        if sort_result.has_cycle:
            raise GraphStructureError(
                f"Workflow contains cycles: {', '.join(sort_result.cycle_nodes)}",
                cycle_nodes=sort_result.cycle_nodes
            )

        run.status = WorkflowStatus.RUNNING
        for node in sort_result.order:
            if cancel_token is not None and cancel_token.is_aborted:
                raise ExecutionAbortedError(next_node_id=node.id)

            run.node_status[node.id] = NodeStatus.RUNNING
            self._emit(on_update, ExecutionUpdate(type=UpdateType.NODE_START, node_id=node.id))

            inputs = get_node_inputs(node.id, edges, run.results, nodes)
            started = time.perf_counter()
            try:
                output = await self._execute_node(node, inputs, context)
            except Exception as e:
                duration = time.perf_counter() - started
                cause = self._describe_failure(e)
                run.node_status[node.id] = NodeStatus.ERROR
                run.metrics.failed_nodes += 1
                run.metrics.node_execution_times[node.id] = duration

                log_with_context(
                    logger, logging.ERROR, f"Node {node.id} failed: {cause}",
                    node_id=node.id, node_type=node.type, duration=duration
                )
                self._emit(on_update, ExecutionUpdate(type=UpdateType.NODE_ERROR, node_id=node.id, error=cause))
                raise NodeExecutionError(
                    f"Node {node.id} failed: {cause}",
                    node_id=node.id,
                    node_type=node.type,
                    execution_time=duration
                ) from e

            duration = time.perf_counter() - started
            run.results[node.id] = output
            run.node_status[node.id] = NodeStatus.COMPLETED
            run.metrics.executed_nodes += 1
            run.metrics.node_execution_times[node.id] = duration

            log_with_context(
                logger, logging.DEBUG, f"Node {node.id} completed",
                node_id=node.id, node_type=node.type, duration=duration
            )
            self._emit(on_update, ExecutionUpdate(type=UpdateType.NODE_COMPLETE, node_id=node.id, output=output))

        return run.results

    async def _execute_node(self, node: WorkflowNode, inputs: Dict[str, Any], context: ExecutionContext) -> Any:
        """
        Run one node, applying the configured timeout and retries.

        Raises:
            NodeExecutionError: If the last attempt times out
            Exception: Whatever the executor raised on its last attempt
        """
        attempts = self.config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._attempt(node, inputs, context)
            except UnsupportedNodeTypeError:
                raise
            except Exception as e:
                if attempt >= attempts:
                    raise
                logger.warning(
                    f"Node {node.id} attempt {attempt}/{attempts} failed, retrying: "
                    f"{self._describe_failure(e)}"
                )

    async def _attempt(self, node: WorkflowNode, inputs: Dict[str, Any], context: ExecutionContext) -> Any:
        if self.config.timeout is None:
            return await self.registry.execute(node, inputs, context)
        try:
            return await asyncio.wait_for(
                self.registry.execute(node, inputs, context),
                timeout=self.config.timeout
            )
        except asyncio.TimeoutError:
            raise NodeExecutionError(
                f"timed out after {self.config.timeout}s",
                node_id=node.id,
                node_type=node.type
            ) from None

    @staticmethod
    def _describe_failure(error: Exception) -> str:
        if isinstance(error, WorkflowEngineError):
            return error.message
        return str(error) or error.__class__.__name__

    @staticmethod
    def _emit(on_update: Optional[UpdateCallback], update: ExecutionUpdate) -> None:
        """Deliver an update to the caller's callback."""
        if on_update is None:
            return
        try:
            on_update(update)
        except Exception as e:
            logger.error(f"Failed to deliver execution update {update.type.value}: {str(e)}")
            # Don't raise exception to avoid breaking execution


def collect_updates() -> Tuple[List[ExecutionUpdate], UpdateCallback]:
    """Return a list and a callback that appends every update to it."""
    updates: List[ExecutionUpdate] = []
    return updates, updates.append
