"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    GraphStructureError,
    NodeExecutionError,
    UnsupportedNodeTypeError,
    ExecutionAbortedError,
    NodeRegistryError,
    ExpressionError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .graph_sorter import topological_sort, get_node_inputs
from .node_registry import NodeExecutorRegistry, create_default_registry
from .execution_engine import CancellationToken, ExecutionEngine
from .validator import (
    GraphValidator,
    detect_cycles,
    is_url_safe,
    calculate_score,
    get_grade,
    validate_workflow,
    validate_credentials,
)

__all__ = [
    "WorkflowEngineError",
    "GraphStructureError",
    "NodeExecutionError",
    "UnsupportedNodeTypeError",
    "ExecutionAbortedError",
    "NodeRegistryError",
    "ExpressionError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "topological_sort",
    "get_node_inputs",
    "NodeExecutorRegistry",
    "create_default_registry",
    "CancellationToken",
    "ExecutionEngine",
    "GraphValidator",
    "detect_cycles",
    "is_url_safe",
    "calculate_score",
    "get_grade",
    "validate_workflow",
    "validate_credentials",
]
