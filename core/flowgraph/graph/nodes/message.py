"""Message node - a role-tagged text fragment for completion requests."""

from flowgraph.graph.dataflow import EvaluationContext, evaluate_boolean_input_port
from flowgraph.graph.nodes.base import (
    LABEL_ATTRIBUTE,
    OUT_PORT,
    PROVIDER_INPUT_PORTS,
    AttributeDefinition,
    AttributeOption,
    NodeDefinition,
    NodeExecutionContext,
    node_title,
)
from flowgraph.graph.state import ContextMessage
from flowgraph.graph.types import AttributeKind, LLMRole, MessageNodeData, NodeCategory, NodeType


def collect_message_inputs(node_id: str, evaluation: EvaluationContext) -> list[ContextMessage]:
    """
    Message nodes wired directly into ``node_id``, ordered by (source id, edge id).

    Muted nodes, nodes whose ``enable`` port resolves false and blank texts
    are skipped.
    """
    incoming = sorted(evaluation.edges_by_target.get(node_id, []), key=lambda edge: (edge.source, edge.id))
    messages: list[ContextMessage] = []
    for edge in incoming:
        source = evaluation.nodes_by_id.get(edge.source)
        if source is None or source.type != NodeType.MESSAGE:
            continue
        enabled = evaluate_boolean_input_port(source.id, "enable", evaluation, True)
        if source.data.muted or not enabled:
            continue
        content = (source.data.text or "").strip()
        if not content:
            continue
        messages.append(
            ContextMessage(
                role=source.data.role,
                content=content,
                priority=source.data.priority,
                source_node_id=source.id,
            )
        )
    return messages


async def execute_message(context: NodeExecutionContext, data: MessageNodeData) -> None:
    context.trace(f"Executing: {node_title(context.node)}")

    content = (data.text or "").strip()
    if not content:
        return
    context.state.context_messages.append(
        ContextMessage(role=data.role, content=content, priority=data.priority, source_node_id=context.node_id)
    )


MESSAGE_DEFINITION = NodeDefinition(
    type=NodeType.MESSAGE,
    label="Message",
    description="Append a message to a completion node.",
    category=NodeCategory.CONSTANT,
    create_data=MessageNodeData,
    executor=execute_message,
    attributes=[
        LABEL_ATTRIBUTE,
        AttributeDefinition(
            key="priority",
            label="Priority",
            kind=AttributeKind.NUMBER,
            description="Lower values are inserted earlier in the messages list.",
            min=-100,
            max=100,
        ),
        AttributeDefinition(
            key="role",
            label="Role",
            kind=AttributeKind.SELECT,
            description="Role for this message.",
            options=(
                AttributeOption(label="System", value=LLMRole.SYSTEM),
                AttributeOption(label="User", value=LLMRole.USER),
                AttributeOption(label="Assistant", value=LLMRole.ASSISTANT),
            ),
        ),
        AttributeDefinition(
            key="text",
            label="Text",
            kind=AttributeKind.TEXT,
            description="Message content appended into the completion messages.",
            placeholder="Enter message...",
            multiline=True,
        ),
    ],
    input_ports=list(PROVIDER_INPUT_PORTS),
    output_ports=[OUT_PORT],
)
