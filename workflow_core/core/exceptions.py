"""Custom exceptions for the workflow engine with detailed error information."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    CONFIGURATION = "configuration"
    SECURITY = "security"
    CANCELLATION = "cancellation"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class GraphStructureError(WorkflowEngineError):
    """Raised when a graph cannot be executed because of its shape (e.g. a cycle)."""

    def __init__(
        self,
        message: str,
        cycle_nodes: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.cycle_nodes = cycle_nodes or []
        if cycle_nodes:
            self.add_details(cycle_nodes=cycle_nodes)


class NodeExecutionError(WorkflowEngineError):
    """Raised when node execution fails."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        node_type: Optional[str] = None,
        execution_time: Optional[float] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.EXECUTION)
        super().__init__(message, **kwargs)
        self.node_id = node_id
        if node_id:
            self.add_context(node_id=node_id)
        if node_type:
            self.add_context(node_type=node_type)
        if execution_time:
            self.add_details(execution_time=execution_time)


class UnsupportedNodeTypeError(NodeExecutionError):
    """Raised when no executor is registered for a node type."""

    def __init__(self, node_type: str, node_id: Optional[str] = None, **kwargs):
        super().__init__(
            f"Node type '{node_type}' is not supported; register an executor for it",
            node_id=node_id,
            node_type=node_type,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        self.node_type = node_type


class ExecutionAbortedError(WorkflowEngineError):
    """Raised when a run observes its cancellation token."""

    def __init__(self, message: str = "Execution aborted", next_node_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.CANCELLATION,
            **kwargs
        )
        if next_node_id:
            self.add_context(next_node_id=next_node_id)


class NodeRegistryError(WorkflowEngineError):
    """Raised when node executor registration fails."""

    def __init__(
        self,
        message: str,
        node_type: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if node_type:
            self.add_context(node_type=node_type)
        if operation:
            self.add_context(operation=operation)


class ExpressionError(WorkflowEngineError):
    """Base exception for restricted expression evaluation errors."""

    def __init__(
        self,
        message: str,
        expression: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.EXECUTION)
        super().__init__(message, **kwargs)
        self.expression = expression
        if expression is not None:
            self.add_context(expression=expression)


class ExpressionSyntaxError(ExpressionError):
    """Raised when an expression cannot be parsed."""


class ExpressionSecurityError(ExpressionError):
    """Raised when an expression uses a construct outside the allowed grammar."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.SECURITY)
        super().__init__(message, **kwargs)


class ExpressionNameError(ExpressionError):
    """Raised when an expression references a name that is not bound."""


class ConfigurationError(WorkflowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
