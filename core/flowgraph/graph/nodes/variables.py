"""Nodes that read or write the run's variable store: Set/Get Variable and Transform."""

import json
import logging
from typing import Any

from flowgraph.graph.dataflow import evaluate_input_port_value
from flowgraph.graph.errors import NodeExecutionError
from flowgraph.graph.expression import evaluate_function_body
from flowgraph.graph.nodes.base import (
    IN_PORT,
    LABEL_ATTRIBUTE,
    OUT_PORT,
    AttributeDefinition,
    NodeDefinition,
    NodeExecutionContext,
    input_port,
    node_title,
)
from flowgraph.graph.state import get_nested_value, set_nested_value
from flowgraph.graph.types import (
    AttributeKind,
    GetVariableNodeData,
    NodeCategory,
    NodeType,
    SetVariableNodeData,
    TransformNodeData,
)

logger = logging.getLogger(__name__)

PATH_ATTRIBUTE = AttributeDefinition(
    key="path",
    label="Path",
    kind=AttributeKind.TEXT,
    description="Dot-notation path to the variable (e.g., 'world.user.name').",
    placeholder="world.user.name",
)


def to_json_text(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return repr(value)


def _format_log_value(value: Any) -> str:
    if value is None:
        return "None"
    if isinstance(value, str):
        return value
    return to_json_text(value)


def _resolve_path(context: NodeExecutionContext, fallback: str) -> str:
    path_input = evaluate_input_port_value(context.node_id, "path", context.evaluation)
    if isinstance(path_input, str):
        return path_input.strip()
    return (fallback or "").strip()


# ---------------------------------------------------------------------------
# Set Variable
# ---------------------------------------------------------------------------


async def execute_set_variable(context: NodeExecutionContext, data: SetVariableNodeData) -> None:
    context.trace(f"Executing: {node_title(context.node)}")

    path = _resolve_path(context, data.path)
    if not path:
        raise NodeExecutionError(
            f"Set Variable node ({context.node_id}) requires a path.",
            node_id=context.node_id,
            node_type=context.node_type,
        )

    value_input = evaluate_input_port_value(context.node_id, "value", context.evaluation)
    value = value_input if value_input is not None else data.value

    try:
        set_nested_value(context.state.vars, path, value)
    except ValueError as e:
        raise NodeExecutionError(
            f"Set Variable failed ({context.node_id}): {e}",
            node_id=context.node_id,
            node_type=context.node_type,
        ) from e

    context.evaluation.invalidate()
    context.trace(f'Set variable "{path}" = {to_json_text(value)}')


SET_VARIABLE_DEFINITION = NodeDefinition(
    type=NodeType.SET_VARIABLE,
    label="Set Variable",
    description="Set a variable value using a dot-notation path.",
    category=NodeCategory.FUNCTION,
    create_data=SetVariableNodeData,
    executor=execute_set_variable,
    attributes=[
        LABEL_ATTRIBUTE,
        PATH_ATTRIBUTE,
        AttributeDefinition(
            key="value",
            label="Value",
            kind=AttributeKind.TEXT,
            description="Value to set (fallback if not connected via input port).",
            multiline=True,
        ),
    ],
    input_ports=[IN_PORT, input_port("path", "Path"), input_port("value", "Value")],
    output_ports=[OUT_PORT],
)


# ---------------------------------------------------------------------------
# Get Variable
# ---------------------------------------------------------------------------


async def execute_get_variable(context: NodeExecutionContext, data: GetVariableNodeData) -> None:
    context.trace(f"Executing: {node_title(context.node)}")

    path = _resolve_path(context, data.path)
    if not path:
        raise NodeExecutionError(
            f"Get Variable node ({context.node_id}) requires a path.",
            node_id=context.node_id,
            node_type=context.node_type,
        )

    value = get_nested_value(context.state.vars, path)
    context.trace(f'Get variable "{path}" = {to_json_text(value)}')
    context.state.payload = value


GET_VARIABLE_DEFINITION = NodeDefinition(
    type=NodeType.GET_VARIABLE,
    label="Get Variable",
    description="Read a variable value using a dot-notation path.",
    category=NodeCategory.FUNCTION,
    create_data=GetVariableNodeData,
    executor=execute_get_variable,
    attributes=[LABEL_ATTRIBUTE, PATH_ATTRIBUTE],
    input_ports=[IN_PORT, input_port("path", "Path")],
    output_ports=[OUT_PORT],
)


# ---------------------------------------------------------------------------
# Transform
# ---------------------------------------------------------------------------


async def execute_transform(context: NodeExecutionContext, data: TransformNodeData) -> None:
    context.trace(f"Executing: {node_title(context.node)}")

    def log(*values: Any) -> None:
        message = " ".join(_format_log_value(value) for value in values)
        context.trace(f"Transform log ({context.node_id}): {message}")

    def set_var(path: str, value: Any) -> None:
        set_nested_value(context.state.vars, path, value)

    def get_var(path: str) -> Any:
        return get_nested_value(context.state.vars, path)

    result = evaluate_function_body(
        data.expression or "",
        context.scope,
        log=log,
        extras={"set_var": set_var, "get_var": get_var},
    )
    if result.error:
        raise NodeExecutionError(
            f"Transform function failed ({context.node_id}): {result.error}",
            node_id=context.node_id,
            node_type=context.node_type,
        )

    context.state.payload = result.value
    context.evaluation.invalidate()


TRANSFORM_DEFINITION = NodeDefinition(
    type=NodeType.TRANSFORM,
    label="Transform",
    description="Run a function body over the current payload and return the new payload.",
    category=NodeCategory.FUNCTION,
    create_data=TransformNodeData,
    executor=execute_transform,
    attributes=[
        LABEL_ATTRIBUTE,
        AttributeDefinition(
            key="expression",
            label="Function body",
            kind=AttributeKind.EXPRESSION,
            description="Statements ending in `return`; `input`, `vars`, `messages` and `log()` are in scope.",
            placeholder="return input",
            multiline=True,
        ),
    ],
    input_ports=[IN_PORT],
    output_ports=[OUT_PORT],
)
