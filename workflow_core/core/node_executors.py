"""Built-in executors for the base node types."""

from typing import Any, Dict, Mapping

from ..models.core import ExecutionContext, WorkflowNode
from .exceptions import ExpressionError, NodeExecutionError
from .expressions import evaluate, to_text
from .logging import get_logger

logger = get_logger(__name__)


def execute_start(node: WorkflowNode, inputs: Mapping[str, Any], context: ExecutionContext) -> Any:
    """Pass through the first input, falling back to the run's ``initialInput`` variable."""
    value = inputs.get("input1")
    if value is not None and value != "":
        return value
    initial = context.variables.get("initialInput")
    if initial is not None:
        return initial
    return ""


def execute_end(node: WorkflowNode, inputs: Mapping[str, Any], context: ExecutionContext) -> Any:
    """Return the first input as the workflow output."""
    value = inputs.get("input1")
    return "" if value is None else value


def execute_prompt(node: WorkflowNode, inputs: Mapping[str, Any], context: ExecutionContext) -> str:
    """
    Fill the node's template with its inputs.

    Every literal ``$<key>`` is replaced by the text of the matching input.
    Longer keys go first so ``$input1`` never consumes the prefix of
    ``$input10``.
    """
    template = node.data.get("prompt") or node.data.get("content") or ""
    template = str(template)

    for key in sorted(inputs, key=len, reverse=True):
        template = template.replace(f"${key}", to_text(inputs[key]))

    return template


def execute_javascript(node: WorkflowNode, inputs: Mapping[str, Any], context: ExecutionContext) -> Any:
    """Evaluate the node's script with its inputs bound by name."""
    code = node.data.get("code") or 'return ""'
    try:
        return evaluate(str(code), dict(inputs))
    except ExpressionError as e:
        raise NodeExecutionError(
            f"Script execution failed: {e.message}",
            node_id=node.id,
            node_type=node.type
        ) from e


def execute_conditional(node: WorkflowNode, inputs: Mapping[str, Any], context: ExecutionContext) -> bool:
    """Evaluate the node's condition with its inputs bound by name."""
    condition = node.data.get("condition") or "true"
    try:
        return bool(evaluate(str(condition), dict(inputs)))
    except ExpressionError as e:
        raise NodeExecutionError(
            f"Condition evaluation failed: {e.message}",
            node_id=node.id,
            node_type=node.type
        ) from e


BUILTIN_EXECUTORS: Dict[str, Any] = {
    "start": execute_start,
    "end": execute_end,
    "prompt": execute_prompt,
    "javascript": execute_javascript,
    "conditional": execute_conditional,
}
