"""Core Pydantic models for the workflow engine."""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator


class WorkflowStatus(str, Enum):
    """Lifecycle of a single workflow run."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class NodeStatus(str, Enum):
    """Lifecycle of a single node within a run."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class UpdateType(str, Enum):
    """Enumeration of streamed execution event types."""
    NODE_START = "node_start"
    NODE_COMPLETE = "node_complete"
    NODE_ERROR = "node_error"
    COMPLETE = "complete"
    ERROR = "error"


class IssueSeverity(str, Enum):
    """Severity of a validation issue."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Position(BaseModel):
    """Layout position of a node on the canvas."""
    x: float = Field(default=0.0, description="Horizontal position")
    y: float = Field(default=0.0, description="Vertical position")


class WorkflowNode(BaseModel):
    """A unit of computation in a workflow graph."""
    id: str = Field(..., description="Unique identifier for the node within its graph")
    type: str = Field(..., description="Type tag selecting validation rules and execution behavior")
    position: Position = Field(default_factory=Position, description="Layout position of the node")
    data: Dict[str, Any] = Field(default_factory=dict, description="Node configuration")

    @field_validator('position', mode='before')
    @classmethod
    def default_missing_position(cls, position):
        """Treat an explicit null position as the origin."""
        if position is None:
            return Position()
        return position


class WorkflowEdge(BaseModel):
    """A directed data dependency between two nodes."""
    id: str = Field(..., description="Unique identifier for the edge")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")


class ExecutionContext(BaseModel):
    """Caller-supplied context for a workflow run."""
    credentials: Dict[str, str] = Field(default_factory=dict, description="Provider name to secret")
    variables: Dict[str, Any] = Field(default_factory=dict, description="Free-form run variables")


class ExecutionUpdate(BaseModel):
    """A lifecycle event streamed during a workflow run."""
    type: UpdateType = Field(..., description="Type of event")
    node_id: Optional[str] = Field(None, description="Node the event refers to")
    output: Any = Field(None, description="Node output for node_complete events")
    error: Optional[str] = Field(None, description="Failure message for node_error events")
    message: Optional[str] = Field(None, description="Run failure message for error events")


class ExecutionConfig(BaseModel):
    """Per-run execution limits.

    Both limits are disabled by default; the engine then runs every node
    exactly once with no time bound.
    """
    timeout: Optional[float] = Field(None, description="Max seconds per node attempt")
    max_retries: int = Field(default=0, description="Extra attempts for a failing node")

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, timeout):
        """Ensure timeout is positive if specified."""
        if timeout is not None and timeout <= 0:
            raise ValueError("Timeout must be a positive number")
        return timeout

    @field_validator('max_retries')
    @classmethod
    def validate_max_retries(cls, max_retries):
        """Ensure retry count is not negative."""
        if max_retries < 0:
            raise ValueError("Max retries cannot be negative")
        return max_retries


class ExecutionMetrics(BaseModel):
    """Timing and count metrics collected for a run."""
    total_nodes: int = Field(default=0, description="Number of nodes in the graph")
    executed_nodes: int = Field(default=0, description="Number of nodes that completed")
    failed_nodes: int = Field(default=0, description="Number of nodes that failed")
    total_execution_time: float = Field(default=0.0, description="Wall time of the run in seconds")
    node_execution_times: Dict[str, float] = Field(default_factory=dict, description="Seconds spent per node")


class ExecutionResult(BaseModel):
    """Final result of a workflow run."""
    success: bool = Field(..., description="Whether every node completed")
    results: Dict[str, Any] = Field(default_factory=dict, description="Node ID to output value")
    error: Optional[str] = Field(None, description="Error message if the run failed")
    metrics: ExecutionMetrics = Field(default_factory=ExecutionMetrics, description="Run metrics")


class SortResult(BaseModel):
    """Result of ordering a workflow graph."""
    order: List[WorkflowNode] = Field(default_factory=list, description="Dependency-respecting node order")
    has_cycle: bool = Field(default=False, description="Whether a directed cycle was found")
    cycle_nodes: List[str] = Field(default_factory=list, description="IDs of nodes found on cycles")


class ValidationIssue(BaseModel):
    """A single finding about a workflow graph."""
    severity: IssueSeverity = Field(..., description="Issue severity")
    node_id: Optional[str] = Field(None, description="Node the issue refers to")
    field: Optional[str] = Field(None, description="Node data field the issue refers to")
    message: str = Field(..., description="Human-readable description")
    suggestion: Optional[str] = Field(None, description="How to fix the issue")


class ValidationConfig(BaseModel):
    """Switches for the workflow validator."""
    check_cycles: bool = Field(default=True, description="Report directed cycles")
    check_ssrf: bool = Field(default=True, description="Reject URLs pointing at private networks")
    check_api_keys: bool = Field(default=True, description="Check credentials when they are supplied")
    check_configuration: bool = Field(default=True, description="Run type-specific configuration rules")
    strict_mode: bool = Field(default=False, description="Report warnings as errors")
    max_chain_depth: int = Field(default=10, description="Chain length above which a node is flagged")


class ValidationResult(BaseModel):
    """Scored result of workflow validation."""
    valid: bool = Field(..., description="No errors and no warnings")
    can_execute: bool = Field(..., description="No error-severity issues")
    score: int = Field(..., description="Score between 0 and 100")
    grade: str = Field(..., description="Letter grade A to F")
    issues: List[ValidationIssue] = Field(default_factory=list, description="All issues found")
