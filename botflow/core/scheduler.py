"""Topological ordering of workflow nodes."""

from collections import deque
from typing import Dict, List

from ..models.core import Edge, Node, find_integrity_errors
from .exceptions import CyclicGraphError, GraphValidationError
from .logging import get_logger

logger = get_logger(__name__)


def _kahn_order(nodes: List[Node], edges: List[Edge]) -> List[Node]:
    in_degree: Dict[str, int] = {node.id: 0 for node in nodes}
    outgoing: Dict[str, List[str]] = {node.id: [] for node in nodes}
    for edge in edges:
        in_degree[edge.target] += 1
        outgoing[edge.source].append(edge.target)

    by_id = {node.id: node for node in nodes}
    queue = deque(node for node in nodes if in_degree[node.id] == 0)
    order: List[Node] = []

    while queue:
        node = queue.popleft()
        order.append(node)
        for target in outgoing[node.id]:
            in_degree[target] -= 1
            if in_degree[target] == 0:
                queue.append(by_id[target])

    return order


def validate_graph_integrity(nodes: List[Node], edges: List[Edge]) -> None:
    """Raise GraphValidationError on duplicate node ids or dangling edges."""
    errors = find_integrity_errors(nodes, edges)
    if errors:
        raise GraphValidationError(
            f"Graph integrity check failed: {'; '.join(errors)}",
            validation_errors=errors
        )


def find_unordered_nodes(nodes: List[Node], edges: List[Edge]) -> List[str]:
    """
    Ids of the nodes a topological sort cannot place, in input order.

    These are the nodes on (or downstream of) a cycle; an empty list means
    the graph is acyclic.
    """
    validate_graph_integrity(nodes, edges)
    ordered = {node.id for node in _kahn_order(nodes, edges)}
    return [node.id for node in nodes if node.id not in ordered]


def topological_sort(nodes: List[Node], edges: List[Edge]) -> List[Node]:
    """
    Order nodes so that every edge's source precedes its target.

    Ready nodes are taken first-in first-out, seeded in input list order, so
    the result is deterministic for identical input.

    Args:
        nodes: Nodes of the graph
        edges: Edges of the graph

    Returns:
        Every node exactly once, in execution order

    Raises:
        GraphValidationError: If node ids repeat or an edge references an unknown node
        CyclicGraphError: If the graph contains a cycle
    """
    validate_graph_integrity(nodes, edges)
    order = _kahn_order(nodes, edges)

    if len(order) < len(nodes):
        placed = {node.id for node in order}
        cycle_nodes = [node.id for node in nodes if node.id not in placed]
        logger.warning(f"Cycle detected; unordered nodes: {', '.join(cycle_nodes)}")
        raise CyclicGraphError(
            f"Graph contains a cycle involving nodes: {', '.join(cycle_nodes)}",
            cycle_nodes=cycle_nodes
        )

    return order
