"""Boundary and branching nodes: Start, End, If/Else, Switch."""

import logging
import math
import re
from typing import Any

from flowgraph.graph.errors import NodeExecutionError
from flowgraph.graph.expression import evaluate_expression
from flowgraph.graph.nodes.base import (
    IN_PORT,
    LABEL_ATTRIBUTE,
    OUT_PORT,
    AttributeDefinition,
    NodeDefinition,
    NodeExecutionContext,
    NodeExecutionResult,
    PortDefinition,
    node_title,
    output_port,
)
from flowgraph.graph.types import (
    AttributeKind,
    EndNodeData,
    IfElseNodeData,
    NodeCategory,
    NodeType,
    StartNodeData,
    SwitchNodeData,
)

logger = logging.getLogger(__name__)

MIN_SWITCH_CASES = 2
MAX_SWITCH_CASES = 8
DEFAULT_SWITCH_CASES = 3

_CASE_LITERAL = re.compile(r"^case-\d+$")


# ---------------------------------------------------------------------------
# Start / End
# ---------------------------------------------------------------------------


async def execute_start(context: NodeExecutionContext, data: StartNodeData) -> NodeExecutionResult | None:
    context.trace(f"Executing: {node_title(context.node)}")
    return None


async def execute_end(context: NodeExecutionContext, data: EndNodeData) -> NodeExecutionResult:
    context.trace(f"Executing: {node_title(context.node)}")
    return NodeExecutionResult(stop=True)


START_DEFINITION = NodeDefinition(
    type=NodeType.START,
    label="Start",
    description="Entry point of the graph. Receives the user message.",
    category=NodeCategory.BOUNDARIES,
    create_data=StartNodeData,
    executor=execute_start,
    attributes=[
        LABEL_ATTRIBUTE,
        AttributeDefinition(
            key="default_user_prompt",
            label="Default user prompt",
            kind=AttributeKind.TEXT,
            description="Used as the payload when a run starts without a user message.",
            multiline=True,
        ),
    ],
    output_ports=[OUT_PORT],
    allow_user_create=False,
    required_count=1,
)

END_DEFINITION = NodeDefinition(
    type=NodeType.END,
    label="End",
    description="Terminates the run.",
    category=NodeCategory.BOUNDARIES,
    create_data=EndNodeData,
    executor=execute_end,
    attributes=[LABEL_ATTRIBUTE],
    input_ports=[IN_PORT],
)


# ---------------------------------------------------------------------------
# If / Else
# ---------------------------------------------------------------------------


async def execute_if_else(context: NodeExecutionContext, data: IfElseNodeData) -> NodeExecutionResult:
    context.trace(f"Executing: {node_title(context.node)}")

    result = evaluate_expression(data.condition or "", context.scope)
    if result.error:
        raise NodeExecutionError(
            f"If/Else condition failed ({context.node_id}): {result.error}",
            node_id=context.node_id,
            node_type=context.node_type,
        )
    if not isinstance(result.value, bool):
        raise NodeExecutionError(
            f"If/Else condition must return a boolean ({context.node_id}).",
            node_id=context.node_id,
            node_type=context.node_type,
        )

    port = "then" if result.value else "else"
    logger.info(f"   → Branch: {port}", extra={"node_id": context.node_id})
    return NodeExecutionResult(next_port=port)


IF_ELSE_DEFINITION = NodeDefinition(
    type=NodeType.IF_ELSE,
    label="If/Else",
    description="Route to then/else based on a boolean condition.",
    category=NodeCategory.CONTROL,
    create_data=IfElseNodeData,
    executor=execute_if_else,
    attributes=[
        LABEL_ATTRIBUTE,
        AttributeDefinition(
            key="condition",
            label="Condition",
            kind=AttributeKind.EXPRESSION,
            description="Expression that must evaluate to True or False.",
            placeholder="input.score > 0.5",
        ),
    ],
    input_ports=[IN_PORT],
    output_ports=[output_port("then", "Then"), output_port("else", "Else")],
)


# ---------------------------------------------------------------------------
# Switch
# ---------------------------------------------------------------------------


def _clamp(value: float, low: int, high: int) -> int:
    # Half rounds up, as in JavaScript Math.round.
    return max(low, min(high, math.floor(value + 0.5)))


def clamp_switch_cases(value: Any) -> int:
    """Round into [2, 8]; anything non-numeric gives the default of 3."""
    if isinstance(value, bool):
        return DEFAULT_SWITCH_CASES
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return DEFAULT_SWITCH_CASES
    if not isinstance(value, int | float) or not math.isfinite(value):
        return DEFAULT_SWITCH_CASES
    return _clamp(value, MIN_SWITCH_CASES, MAX_SWITCH_CASES)


def get_switch_case_labels(data: SwitchNodeData) -> list[str]:
    """One label per case; blank lines are dropped and missing labels become ``Case N``."""
    total = clamp_switch_cases(data.cases)
    labels = [label.strip() for label in (data.case_labels or "").split("\n")]
    labels = [label for label in labels if label]
    return [labels[index] if index < len(labels) else f"Case {index + 1}" for index in range(total)]


def get_switch_output_ports(data: SwitchNodeData) -> list[PortDefinition]:
    return [output_port(f"case-{index}", label) for index, label in enumerate(get_switch_case_labels(data))]


def resolve_switch_port(value: Any, total_cases: int, case_labels: list[str]) -> str:
    """
    Map a selector result to a ``case-N`` port.

    Raises:
        ValueError: the result cannot be mapped to a case
    """
    last = total_cases - 1

    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Switch expression returned an empty string.")

        lowered = trimmed.lower()
        for index, label in enumerate(case_labels):
            if label.lower() == lowered:
                return f"case-{index}"

        if _CASE_LITERAL.match(trimmed) and int(trimmed[5:]) <= last:
            return trimmed

        try:
            numeric = float(trimmed)
        except ValueError:
            numeric = math.nan
        if math.isfinite(numeric):
            return f"case-{_clamp(math.floor(numeric), 0, last)}"

        raise ValueError(f'Switch expression returned an unrecognized case label: "{trimmed}".')

    if isinstance(value, int | float) and not isinstance(value, bool) and math.isfinite(value):
        return f"case-{_clamp(math.floor(value), 0, last)}"

    raise ValueError("Switch expression must return a string or number.")


async def execute_switch(context: NodeExecutionContext, data: SwitchNodeData) -> NodeExecutionResult:
    context.trace(f"Executing: {node_title(context.node)}")

    total = clamp_switch_cases(data.cases)
    labels = get_switch_case_labels(data)
    result = evaluate_expression(data.expression or "", context.scope)
    if result.error:
        raise NodeExecutionError(
            f"Switch expression failed ({context.node_id}): {result.error}",
            node_id=context.node_id,
            node_type=context.node_type,
        )

    try:
        port = resolve_switch_port(result.value, total, labels)
    except ValueError as e:
        raise NodeExecutionError(
            f"{e} ({context.node_id})",
            node_id=context.node_id,
            node_type=context.node_type,
        ) from e

    logger.info(f"   → Case: {port}", extra={"node_id": context.node_id})
    return NodeExecutionResult(next_port=port)


SWITCH_DEFINITION = NodeDefinition(
    type=NodeType.SWITCH,
    label="Switch",
    description="Route to multiple outputs based on a selector expression.",
    category=NodeCategory.CONTROL,
    create_data=SwitchNodeData,
    executor=execute_switch,
    attributes=[
        LABEL_ATTRIBUTE,
        AttributeDefinition(
            key="expression",
            label="Expression",
            kind=AttributeKind.EXPRESSION,
            description="Expression whose result decides the output case.",
            placeholder="input.category",
        ),
        AttributeDefinition(
            key="cases",
            label="Cases",
            kind=AttributeKind.NUMBER,
            description="Number of output cases.",
            min=MIN_SWITCH_CASES,
            max=MAX_SWITCH_CASES,
        ),
        AttributeDefinition(
            key="case_labels",
            label="Case labels",
            kind=AttributeKind.TEXT,
            description="Optional labels, one per line (top to bottom).",
            placeholder="Case 1\nCase 2\nCase 3",
            multiline=True,
        ),
    ],
    input_ports=[IN_PORT],
    output_ports=get_switch_output_ports,
)
