"""
Run Planner - a dry-run traversal for previewing a graph.

No executor runs. The planner walks from Start with a depth-first stack over
every outgoing edge, visiting each node once, and folds the validator's issues
into the result so both can be shown together.
"""

import sys
from dataclasses import dataclass, field
from typing import Any

from flowgraph.graph.registry import get_node_definition, get_output_ports
from flowgraph.graph.types import Graph, GraphEdge, GraphNode
from flowgraph.graph.validation import ValidationIssue, validate_graph


@dataclass
class RunStep:
    node_id: str
    node_type: str
    title: str
    description: str | None = None


@dataclass
class RunPlan:
    steps: list[RunStep] = field(default_factory=list)
    issues: list[ValidationIssue] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": [
                {
                    "node_id": step.node_id,
                    "node_type": step.node_type,
                    "title": step.title,
                    "description": step.description,
                }
                for step in self.steps
            ],
            "issues": [issue.to_dict() for issue in self.issues],
        }


def sort_outgoing_edges(node: GraphNode, edges: list[GraphEdge]) -> list[GraphEdge]:
    """
    Order a node's outgoing edges deterministically.

    By the index of ``source_port`` in the node's resolved output ports
    (unknown or omitted ports last), then target id, then edge id.
    """
    order = {port.id: index for index, port in enumerate(get_output_ports(node))}
    return sorted(
        edges,
        key=lambda edge: (order.get(edge.source_port or "", sys.maxsize), edge.target, edge.id),
    )


def create_run_plan(graph: Graph) -> RunPlan:
    issues = validate_graph(graph)
    start = graph.get_start_node()
    if start is None:
        issues.append(
            ValidationIssue(level="error", code="missing_start", message="No Start node found to build a run plan.")
        )
        return RunPlan(steps=[], issues=issues)

    nodes = graph.nodes_by_id()
    outgoing = graph.edges_by_source()
    steps: list[RunStep] = []
    visited: set[str] = set()
    stack: list[GraphNode] = [start]

    while stack:
        node = stack.pop()
        if node.id in visited:
            continue
        visited.add(node.id)

        definition = get_node_definition(node.type)
        steps.append(
            RunStep(
                node_id=node.id,
                node_type=str(node.type),
                title=node.data.label.strip() or node.data.title.strip() or definition.label,
                description=definition.description,
            )
        )

        # Reverse push so the first-ordered edge is popped first.
        for edge in reversed(sort_outgoing_edges(node, outgoing.get(node.id, []))):
            target = nodes.get(edge.target)
            if target is not None and target.id not in visited:
                stack.append(target)

    return RunPlan(steps=steps, issues=issues)
