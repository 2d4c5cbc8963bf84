"""Dependency ordering, cycle detection and input gathering for workflow graphs."""

from collections import deque
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..models.core import SortResult, WorkflowEdge, WorkflowNode
from .logging import get_logger

logger = get_logger(__name__)


def build_adjacency(edges: Sequence[WorkflowEdge]) -> Dict[str, List[str]]:
    """Map each source node ID to its targets, in edge insertion order."""
    adjacency: Dict[str, List[str]] = {}
    for edge in edges:
        adjacency.setdefault(edge.source, []).append(edge.target)
    return adjacency


def topological_sort(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> SortResult:
    """
    Order nodes so that every edge points from an earlier to a later node.

    Depth-first traversal starting from the entry nodes (nodes no edge points
    at) in ``nodes`` order, then from every node not yet reached. Nodes are
    prepended to the order once all their successors are finished, which gives
    a reverse postorder.

    Args:
        nodes: Graph nodes; their order breaks ties between entry nodes
        edges: Graph edges; their order breaks ties between successors

    Returns:
        SortResult: The order plus cycle information. When ``has_cycle`` is
        true the order is not a valid topological order and must not be
        executed.
    """
    adjacency = build_adjacency(edges)
    node_map = {node.id: node for node in nodes}

    visited = set()
    on_stack = set()
    order = deque()
    cycle_nodes: Dict[str, None] = {}

    def visit(start_id: str) -> None:
        if start_id in visited:
            return
        visited.add(start_id)
        on_stack.add(start_id)
        path: List[str] = [start_id]
        stack: List[Tuple[str, Iterator[str]]] = [(start_id, iter(adjacency.get(start_id, ())))]

        while stack:
            node_id, neighbors = stack[-1]
            for neighbor_id in neighbors:
                if neighbor_id in on_stack:
                    # Back edge: everything on the path from the re-entered node down is on the cycle
                    for member in path[path.index(neighbor_id):]:
                        cycle_nodes[member] = None
                    continue
                if neighbor_id in visited:
                    continue
                visited.add(neighbor_id)
                on_stack.add(neighbor_id)
                path.append(neighbor_id)
                stack.append((neighbor_id, iter(adjacency.get(neighbor_id, ()))))
                break
            else:
                stack.pop()
                path.pop()
                on_stack.discard(node_id)
                if node_id in node_map:
                    order.appendleft(node_map[node_id])

    targets = {edge.target for edge in edges}
    entry_nodes = [node for node in nodes if node.id not in targets]

    if not entry_nodes and nodes:
        visit(nodes[0].id)
    else:
        for node in entry_nodes:
            visit(node.id)

    for node in nodes:
        if node.id not in visited:
            visit(node.id)

    result = SortResult(
        order=list(order),
        has_cycle=bool(cycle_nodes),
        cycle_nodes=list(cycle_nodes)
    )

    if result.has_cycle:
        logger.debug(f"Cycle detected involving nodes: {', '.join(result.cycle_nodes)}")
    return result


def get_node_inputs(
    node_id: str,
    edges: Sequence[WorkflowEdge],
    results: Mapping[str, Any],
    nodes: Optional[Sequence[WorkflowNode]] = None
) -> Dict[str, Any]:
    """
    Collect the inputs of a node from the results of its source nodes.

    Incoming edges are ordered left to right by the x position of their source
    node (stable, unknown sources count as 0) and keyed ``input1``,
    ``input2``, ... A source without a recorded result yields ``None``.

    Args:
        node_id: ID of the node whose inputs are gathered
        edges: Graph edges
        results: Outputs recorded so far, keyed by node ID
        nodes: Graph nodes; when omitted edges keep their original order

    Returns:
        Mapping of input keys to source outputs
    """
    incoming = [edge for edge in edges if edge.target == node_id]

    if nodes is not None:
        positions = {node.id: node.position.x for node in nodes}
        incoming.sort(key=lambda edge: positions.get(edge.source, 0))

    return {
        f"input{index}": results.get(edge.source)
        for index, edge in enumerate(incoming, start=1)
    }
