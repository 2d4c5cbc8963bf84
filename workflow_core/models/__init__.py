"""Data models for the workflow engine."""

from .core import (
    WorkflowStatus,
    NodeStatus,
    UpdateType,
    IssueSeverity,
    Position,
    WorkflowNode,
    WorkflowEdge,
    ExecutionContext,
    ExecutionUpdate,
    ExecutionConfig,
    ExecutionMetrics,
    ExecutionResult,
    SortResult,
    ValidationIssue,
    ValidationConfig,
    ValidationResult,
)

__all__ = [
    "WorkflowStatus",
    "NodeStatus",
    "UpdateType",
    "IssueSeverity",
    "Position",
    "WorkflowNode",
    "WorkflowEdge",
    "ExecutionContext",
    "ExecutionUpdate",
    "ExecutionConfig",
    "ExecutionMetrics",
    "ExecutionResult",
    "SortResult",
    "ValidationIssue",
    "ValidationConfig",
    "ValidationResult",
]
