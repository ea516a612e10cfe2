"""Node definitions and executors, one module per node family."""

from flowgraph.graph.nodes.base import (
    AttributeDefinition,
    AttributeOption,
    NodeDefinition,
    NodeExecutionContext,
    NodeExecutionResult,
    NodeExecutor,
    PortDefinition,
    node_title,
)
from flowgraph.graph.nodes.completion import COMPLETION_DEFINITION
from flowgraph.graph.nodes.control import (
    END_DEFINITION,
    IF_ELSE_DEFINITION,
    START_DEFINITION,
    SWITCH_DEFINITION,
)
from flowgraph.graph.nodes.guardrails import GUARDRAILS_DEFINITION
from flowgraph.graph.nodes.message import MESSAGE_DEFINITION
from flowgraph.graph.nodes.providers import (
    COIN_FLIP_DEFINITION,
    DICE_ROLL_DEFINITION,
    GLOBAL_STATE_DEFINITION,
    RAG_DEFINITION,
    READ_DOCUMENT_DEFINITION,
    TOOL_DEFINITION,
)
from flowgraph.graph.nodes.redact import REDACT_DEFINITION
from flowgraph.graph.nodes.variables import (
    GET_VARIABLE_DEFINITION,
    SET_VARIABLE_DEFINITION,
    TRANSFORM_DEFINITION,
)

ALL_DEFINITIONS: list[NodeDefinition] = [
    START_DEFINITION,
    END_DEFINITION,
    COMPLETION_DEFINITION,
    GUARDRAILS_DEFINITION,
    MESSAGE_DEFINITION,
    TOOL_DEFINITION,
    RAG_DEFINITION,
    COIN_FLIP_DEFINITION,
    DICE_ROLL_DEFINITION,
    READ_DOCUMENT_DEFINITION,
    TRANSFORM_DEFINITION,
    REDACT_DEFINITION,
    IF_ELSE_DEFINITION,
    SWITCH_DEFINITION,
    SET_VARIABLE_DEFINITION,
    GET_VARIABLE_DEFINITION,
    GLOBAL_STATE_DEFINITION,
]

__all__ = [
    "ALL_DEFINITIONS",
    "AttributeDefinition",
    "AttributeOption",
    "NodeDefinition",
    "NodeExecutionContext",
    "NodeExecutionResult",
    "NodeExecutor",
    "PortDefinition",
    "node_title",
]
