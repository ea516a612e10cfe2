"""
Graph Validator - structural checks run before a graph is planned or executed.

Every check runs and all issues are accumulated, in this order:
required node counts, dangling edges, port validity, then reachability and
cycle detection from the Start node (one shared depth-first pass). Issues are
returned, never raised; ``run_graph`` turns a non-empty list into a
``GraphValidationError``.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Literal

from flowgraph.graph.registry import get_input_ports, get_output_ports, list_required_node_types
from flowgraph.graph.types import Graph, GraphNode, NodeType

logger = logging.getLogger(__name__)

IssueLevel = Literal["error", "warning"]

CYCLE_MESSAGE = "Cycle detected in the graph. Resolve loops to build a deterministic run plan."


@dataclass
class ValidationIssue:
    """A single problem found in a graph."""

    level: IssueLevel
    code: str
    message: str
    node_id: str | None = None
    edge_id: str | None = None

    @property
    def is_error(self) -> bool:
        return self.level == "error"

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


def validate_graph(graph: Graph) -> list[ValidationIssue]:
    """Return every structural issue in ``graph`` (empty when valid)."""
    issues: list[ValidationIssue] = []
    issues.extend(_check_required_nodes(graph))
    issues.extend(_check_edges(graph))

    start = graph.get_start_node()
    if start is not None:
        reachable, cycle_nodes = _walk_from(start.id, _adjacency(graph))
        reachable_ends = [n for n in graph.nodes if n.type == NodeType.END and n.id in reachable]
        if not reachable_ends:
            issues.append(
                ValidationIssue(
                    level="error",
                    code="missing_reachable_end",
                    message="No End node is reachable from the Start node.",
                )
            )
        for node_id in cycle_nodes:
            issues.append(
                ValidationIssue(level="error", code="cycle_detected", message=CYCLE_MESSAGE, node_id=node_id)
            )

    if issues:
        logger.debug(f"Graph has {len(issues)} validation issue(s)")
    return issues


def _check_required_nodes(graph: Graph) -> list[ValidationIssue]:
    issues = []
    for definition in list_required_node_types():
        count = sum(1 for node in graph.nodes if node.type == definition.type)
        required = definition.required_count or 0
        if count < required:
            issues.append(
                ValidationIssue(
                    level="error",
                    code="missing_required_node",
                    message=f"Missing required node: {definition.label}.",
                )
            )
        if required == 1 and count > 1:
            issues.append(
                ValidationIssue(
                    level="error",
                    code="too_many_required_nodes",
                    message=f"Too many {definition.label} nodes. Expected 1, found {count}.",
                )
            )
    return issues


def _check_edges(graph: Graph) -> list[ValidationIssue]:
    issues = []
    nodes = graph.nodes_by_id()

    for edge in graph.edges:
        source = nodes.get(edge.source)
        target = nodes.get(edge.target)
        if source is None:
            issues.append(
                ValidationIssue(
                    level="error",
                    code="edge_missing_source",
                    message=f"Edge {edge.id} references a missing source node.",
                    edge_id=edge.id,
                )
            )
            continue
        if target is None:
            issues.append(
                ValidationIssue(
                    level="error",
                    code="edge_missing_target",
                    message=f"Edge {edge.id} references a missing target node.",
                    edge_id=edge.id,
                )
            )
            continue

        issues.extend(_check_source_port(edge.id, edge.source_port, source))
        issues.extend(_check_target_port(edge.id, edge.target_port, target))
    return issues


def _check_source_port(edge_id: str, port_id: str | None, source: GraphNode) -> list[ValidationIssue]:
    ports = get_output_ports(source)
    if port_id:
        if not any(port.id == port_id for port in ports):
            return [
                ValidationIssue(
                    level="error",
                    code="edge_invalid_source_port",
                    message=f"Edge {edge_id} references an invalid output port on {source.id}.",
                    node_id=source.id,
                    edge_id=edge_id,
                )
            ]
    elif len(ports) > 1:
        return [
            ValidationIssue(
                level="warning",
                code="edge_missing_source_port",
                message=f"Edge {edge_id} should target a specific output port on {source.id}.",
                node_id=source.id,
                edge_id=edge_id,
            )
        ]
    return []


def _check_target_port(edge_id: str, port_id: str | None, target: GraphNode) -> list[ValidationIssue]:
    ports = get_input_ports(target)
    if port_id:
        if not any(port.id == port_id for port in ports):
            return [
                ValidationIssue(
                    level="error",
                    code="edge_invalid_target_port",
                    message=f"Edge {edge_id} references an invalid input port on {target.id}.",
                    node_id=target.id,
                    edge_id=edge_id,
                )
            ]
    elif len(ports) > 1 and not any(port.id == "in" for port in ports):
        return [
            ValidationIssue(
                level="warning",
                code="edge_missing_target_port",
                message=f"Edge {edge_id} should target a specific input port on {target.id}.",
                node_id=target.id,
                edge_id=edge_id,
            )
        ]
    return []


def _adjacency(graph: Graph) -> dict[str, list[str]]:
    adjacency: dict[str, list[str]] = {}
    for edge in graph.edges:
        adjacency.setdefault(edge.source, []).append(edge.target)
    return adjacency


def _walk_from(start_id: str, adjacency: dict[str, list[str]]) -> tuple[set[str], list[str]]:
    """
    Three-colour depth-first walk from ``start_id``.

    Returns the reachable node ids and, in discovery order, every node that
    was reached again while still on the stack (a back-edge target).
    """
    reachable: set[str] = set()
    visiting: set[str] = set()
    visited: set[str] = set()
    cycle_nodes: list[str] = []

    def enter(node_id: str, stack: list[tuple[str, Any]]) -> None:
        if node_id in visiting:
            if node_id not in cycle_nodes:
                cycle_nodes.append(node_id)
            return
        if node_id in visited:
            return
        visiting.add(node_id)
        reachable.add(node_id)
        stack.append((node_id, iter(adjacency.get(node_id, []))))

    stack: list[tuple[str, Any]] = []
    enter(start_id, stack)
    while stack:
        node_id, children = stack[-1]
        child = next(children, None)
        if child is None:
            stack.pop()
            visiting.discard(node_id)
            visited.add(node_id)
            continue
        enter(child, stack)

    return reachable, cycle_nodes
