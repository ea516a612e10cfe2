"""
Node definition schema and the executor contract.

A ``NodeDefinition`` is the static description of one node type: palette
metadata, editable attributes, ports and a default-data factory. Output
ports are either a fixed list or a pure function of the node's data.

Executors are plain async callables::

    async def execute(context: NodeExecutionContext, data: SomeNodeData) -> NodeExecutionResult | None
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from flowgraph.graph.dataflow import EvaluationContext
from flowgraph.graph.expression import ExpressionScope
from flowgraph.graph.runtime import ExecutionRuntime
from flowgraph.graph.state import ContextMessage, ExecutionState
from flowgraph.graph.types import (
    TOOL_KEY_LABELS,
    AttributeKind,
    GraphNode,
    NodeCategory,
    NodeData,
    PortDirection,
    ToolNodeData,
)


@dataclass(frozen=True)
class PortDefinition:
    id: str
    label: str
    direction: PortDirection


@dataclass(frozen=True)
class AttributeOption:
    label: str
    value: str


@dataclass(frozen=True)
class AttributeDefinition:
    """An editable field of a node's data."""

    key: str
    label: str
    kind: AttributeKind
    description: str = ""
    placeholder: str = ""
    multiline: bool = False
    # Bool or predicate over the node's own data.
    exposed: bool | Callable[[Any], bool] = True
    editable: bool = True
    min: float | None = None
    max: float | None = None
    options: tuple[AttributeOption, ...] = ()

    def is_exposed(self, data: Any) -> bool:
        if callable(self.exposed):
            return bool(self.exposed(data))
        return self.exposed


PortResolver = list[PortDefinition] | Callable[[Any], list[PortDefinition]]


@dataclass
class NodeExecutionResult:
    """``next_port`` selects the outgoing edge; ``stop`` ends the run here."""

    next_port: str | None = None
    stop: bool = False


@dataclass
class NodeExecutionContext:
    """Everything an executor may read or mutate while running one node."""

    node: GraphNode
    state: ExecutionState
    scope: ExpressionScope
    context_messages: list[ContextMessage]
    evaluation: EvaluationContext
    runtime: ExecutionRuntime

    @property
    def node_id(self) -> str:
        return self.node.id

    @property
    def node_type(self) -> str:
        return str(self.node.type)

    def trace(self, message: str) -> None:
        self.runtime.trace(message)


NodeExecutor = Callable[[NodeExecutionContext, Any], Awaitable[NodeExecutionResult | None]]


@dataclass
class NodeDefinition:
    """Static schema for one node type."""

    type: str
    label: str
    category: NodeCategory
    create_data: Callable[[], NodeData]
    executor: NodeExecutor
    description: str = ""
    attributes: list[AttributeDefinition] = field(default_factory=list)
    input_ports: list[PortDefinition] = field(default_factory=list)
    output_ports: PortResolver = field(default_factory=list)
    allow_user_create: bool = True
    # Exact number of instances a graph must hold; None means unconstrained.
    required_count: int | None = None
    # Executor awaits an LLM or retrieval collaborator; cancellation is checked before dispatch.
    external_call: bool = False


def input_port(port_id: str, label: str) -> PortDefinition:
    return PortDefinition(id=port_id, label=label, direction=PortDirection.INPUT)


def output_port(port_id: str, label: str) -> PortDefinition:
    return PortDefinition(id=port_id, label=label, direction=PortDirection.OUTPUT)


LABEL_ATTRIBUTE = AttributeDefinition(
    key="label",
    label="Label",
    kind=AttributeKind.TEXT,
    description="Optional label for this node.",
)

IN_PORT = input_port("in", "In")
OUT_PORT = output_port("out", "Out")
PROVIDER_INPUT_PORTS = [input_port("trigger", "Trigger"), input_port("enable", "Enable")]


def node_title(node: GraphNode) -> str:
    """Display title: label, then the selected tool's label, then title, then id."""
    data = node.data
    label = data.label.strip()
    if label:
        return label
    if isinstance(data, ToolNodeData):
        tool_label = TOOL_KEY_LABELS.get(data.tool_key)
        if tool_label:
            return tool_label
    return data.title.strip() or node.id


async def trace_only(context: NodeExecutionContext, data: NodeData) -> NodeExecutionResult | None:
    """Executor for provider nodes that appear directly in the control flow."""
    context.trace(f"Executing: {node_title(context.node)}")
    return None
