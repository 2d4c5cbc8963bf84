"""Node executor registry mapping node types to their behavior."""

import inspect
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from ..models.core import ExecutionContext, WorkflowNode
from .exceptions import NodeRegistryError, UnsupportedNodeTypeError
from .logging import get_logger
from .node_executors import BUILTIN_EXECUTORS

logger = get_logger(__name__)

NodeExecutor = Callable[
    [WorkflowNode, Mapping[str, Any], ExecutionContext],
    Union[Any, Awaitable[Any]]
]


class NodeExecutorRegistry:
    """Registry of executors that can be dispatched by node type.

    An executor is any callable taking ``(node, inputs, context)``. It may be
    a plain function or a coroutine function; the registry awaits the result
    when needed. Downstream users add behavior for their own node types with
    :meth:`register`, either directly or as a decorator::

        registry = create_default_registry()

        @registry.register("textModel")
        async def run_text_model(node, inputs, context):
            ...
    """

    def __init__(self, executors: Optional[Dict[str, NodeExecutor]] = None):
        """Initialize the registry.

        Args:
            executors: Optional initial mapping of node type to executor
        """
        self._executors: Dict[str, NodeExecutor] = {}
        for node_type, executor in (executors or {}).items():
            self.register(node_type, executor)

    def register(self, node_type: str, executor: Optional[NodeExecutor] = None, replace: bool = True):
        """Register an executor for a node type.

        Args:
            node_type: Type tag the executor handles
            executor: Callable taking (node, inputs, context). When omitted,
                returns a decorator.
            replace: Whether an existing executor for the type may be overridden

        Raises:
            NodeRegistryError: If the type is empty, the executor is not callable,
                or the type is taken and ``replace`` is false
        """
        if executor is None:
            def decorator(func: NodeExecutor) -> NodeExecutor:
                self.register(node_type, func, replace=replace)
                return func
            return decorator

        if not node_type or not node_type.strip():
            raise NodeRegistryError("Node type cannot be empty", operation="register")

        node_type = node_type.strip()

        if not callable(executor):
            raise NodeRegistryError(
                f"Executor for '{node_type}' must be callable",
                node_type=node_type,
                operation="register"
            )

        try:
            sig = inspect.signature(executor)
            if len(sig.parameters) < 3 and not any(
                p.kind == inspect.Parameter.VAR_POSITIONAL for p in sig.parameters.values()
            ):
                raise NodeRegistryError(
                    f"Executor for '{node_type}' must accept (node, inputs, context)",
                    node_type=node_type,
                    operation="register"
                )
        except (ValueError, TypeError) as e:
            logger.warning(f"Cannot inspect executor signature for '{node_type}': {e}")

        if node_type in self._executors and not replace:
            raise NodeRegistryError(
                f"Node type '{node_type}' is already registered",
                node_type=node_type,
                operation="register"
            )

        if node_type in self._executors:
            logger.info(f"Overriding executor for node type '{node_type}'")
        self._executors[node_type] = executor
        logger.debug(f"Registered executor for node type '{node_type}'")
        return executor

    def unregister(self, node_type: str) -> bool:
        """Remove the executor for a node type.

        Returns:
            True if an executor was removed, False if none was registered
        """
        removed = self._executors.pop(node_type, None) is not None
        if removed:
            logger.info(f"Unregistered executor for node type '{node_type}'")
        return removed

    def get(self, node_type: str) -> NodeExecutor:
        """Return the executor for a node type.

        Raises:
            UnsupportedNodeTypeError: If no executor is registered for the type
        """
        try:
            return self._executors[node_type]
        except KeyError:
            raise UnsupportedNodeTypeError(node_type) from None

    def has(self, node_type: str) -> bool:
        """Check if an executor is registered for a node type."""
        return node_type in self._executors

    def list_types(self) -> List[str]:
        """List registered node types in registration order."""
        return list(self._executors)

    def copy(self) -> "NodeExecutorRegistry":
        """Return an independent registry with the same executors."""
        return NodeExecutorRegistry(dict(self._executors))

    async def execute(self, node: WorkflowNode, inputs: Mapping[str, Any], context: ExecutionContext) -> Any:
        """Run the executor registered for ``node.type``.

        Raises:
            UnsupportedNodeTypeError: If the node type has no executor
            Exception: Whatever the executor raises
        """
        if node.type not in self._executors:
            raise UnsupportedNodeTypeError(node.type, node_id=node.id)

        result = self._executors[node.type](node, inputs, context)
        if inspect.isawaitable(result):
            result = await result
        return result


def create_default_registry() -> NodeExecutorRegistry:
    """Create a registry pre-populated with the built-in node executors."""
    return NodeExecutorRegistry(BUILTIN_EXECUTORS)
