"""
Node Registry - static lookup of node definitions, ports and executors.

The table is built once at import time and is read-only afterwards, so it is
safe to share between concurrent runs.
"""

from typing import Any

from flowgraph.graph.nodes import ALL_DEFINITIONS
from flowgraph.graph.nodes.base import (
    AttributeDefinition,
    NodeDefinition,
    NodeExecutor,
    PortDefinition,
    PortResolver,
    node_title,
)
from flowgraph.graph.nodes.control import clamp_switch_cases, get_switch_case_labels, resolve_switch_port
from flowgraph.graph.types import GraphNode, NodeData, NodeType

_DEFINITIONS: dict[NodeType, NodeDefinition] = {NodeType(d.type): d for d in ALL_DEFINITIONS}

if set(NodeType) - set(_DEFINITIONS):
    raise RuntimeError(f"Node types without a definition: {sorted(set(NodeType) - set(_DEFINITIONS))}")


def get_node_definition(node_type: NodeType | str) -> NodeDefinition:
    """
    Look up the definition for a node type.

    Raises:
        ValueError: the type is not registered
    """
    try:
        return _DEFINITIONS[NodeType(node_type)]
    except ValueError:
        raise ValueError(f"Unknown node type: {node_type!r}") from None


def list_node_definitions() -> list[NodeDefinition]:
    return list(_DEFINITIONS.values())


def list_palette_nodes() -> list[NodeDefinition]:
    """Node types a user may create, ordered by label."""
    return sorted((d for d in _DEFINITIONS.values() if d.allow_user_create), key=lambda d: d.label)


def list_required_node_types() -> list[NodeDefinition]:
    """Node types with a required instance count (e.g. exactly one Start)."""
    return [d for d in _DEFINITIONS.values() if d.required_count is not None]


def resolve_ports(resolver: PortResolver, data: Any) -> list[PortDefinition]:
    """Evaluate a static port list or a data-dependent resolver."""
    if callable(resolver):
        return list(resolver(data))
    return list(resolver)


def get_input_ports(node: GraphNode) -> list[PortDefinition]:
    return resolve_ports(get_node_definition(node.type).input_ports, node.data)


def get_output_ports(node: GraphNode) -> list[PortDefinition]:
    return resolve_ports(get_node_definition(node.type).output_ports, node.data)


def get_node_executor(node_type: NodeType | str) -> NodeExecutor:
    return get_node_definition(node_type).executor


def create_node_data(node_type: NodeType | str) -> NodeData:
    """Fresh default data for a new node of ``node_type``."""
    return get_node_definition(node_type).create_data()


def get_node_title(node: GraphNode) -> str:
    """Label, then the selected tool label (Tool nodes), then title, then node id."""
    return node_title(node)


def get_exposed_attributes(node: GraphNode) -> list[AttributeDefinition]:
    """Attributes visible for the node's current data."""
    return [a for a in get_node_definition(node.type).attributes if a.is_exposed(node.data)]


__all__ = [
    "AttributeDefinition",
    "NodeDefinition",
    "PortDefinition",
    "clamp_switch_cases",
    "create_node_data",
    "get_exposed_attributes",
    "get_input_ports",
    "get_node_definition",
    "get_node_executor",
    "get_node_title",
    "get_output_ports",
    "get_switch_case_labels",
    "list_node_definitions",
    "list_palette_nodes",
    "list_required_node_types",
    "resolve_ports",
    "resolve_switch_port",
]
