"""
Tool provider nodes.

Providers are wired into a Completion node and expose a developer tool to
it (see ``flowgraph.graph.tools``). When one is placed in the control flow
it only emits a trace and passes the payload through.
"""

from flowgraph.graph.nodes.base import (
    LABEL_ATTRIBUTE,
    OUT_PORT,
    PROVIDER_INPUT_PORTS,
    AttributeDefinition,
    AttributeOption,
    NodeDefinition,
    trace_only,
)
from flowgraph.graph.types import (
    TOOL_KEY_LABELS,
    AttributeKind,
    CoinFlipNodeData,
    DiceRollNodeData,
    GlobalStateNodeData,
    NodeCategory,
    NodeType,
    RagNodeData,
    ReadDocumentNodeData,
    ToolNodeData,
)


def _uses_rag(data: ToolNodeData) -> bool:
    return data.tool_key == "rag"


def _provider(node_type: NodeType, label: str, description: str, create_data, attributes=None, **kwargs):
    return NodeDefinition(
        type=node_type,
        label=label,
        description=description,
        category=NodeCategory.TOOL,
        create_data=create_data,
        executor=trace_only,
        attributes=[LABEL_ATTRIBUTE, *(attributes or [])],
        input_ports=list(PROVIDER_INPUT_PORTS),
        output_ports=[OUT_PORT],
        **kwargs,
    )


TOOL_DEFINITION = _provider(
    NodeType.TOOL,
    "Tool",
    "Expose a developer tool to a connected Completion node.",
    ToolNodeData,
    [
        AttributeDefinition(
            key="tool_key",
            label="Tool",
            kind=AttributeKind.SELECT,
            description="Developer tool provided by this node.",
            options=tuple(AttributeOption(label=label, value=key) for key, label in TOOL_KEY_LABELS.items()),
        ),
        AttributeDefinition(
            key="rag_store_id", label="Store", kind=AttributeKind.TEXT, exposed=_uses_rag, placeholder="default"
        ),
        AttributeDefinition(key="rag_embedding_model", label="Embedding model", kind=AttributeKind.TEXT, exposed=_uses_rag),
        AttributeDefinition(
            key="rag_max_queries", label="Max queries", kind=AttributeKind.NUMBER, exposed=_uses_rag, min=1, max=8
        ),
        AttributeDefinition(key="rag_top_k", label="Top K", kind=AttributeKind.NUMBER, exposed=_uses_rag, min=1, max=5),
        AttributeDefinition(
            key="rag_min_score", label="Min score", kind=AttributeKind.NUMBER, exposed=_uses_rag, min=0, max=1
        ),
    ],
    allow_user_create=False,
)

RAG_DEFINITION = _provider(
    NodeType.RAG,
    "RAG",
    "Let a Completion node search a vector store.",
    RagNodeData,
    [
        AttributeDefinition(
            key="store_id",
            label="Store",
            kind=AttributeKind.TEXT,
            description="Vector store identifier.",
            placeholder="default",
        ),
        AttributeDefinition(
            key="embedding_model",
            label="Embedding model",
            kind=AttributeKind.TEXT,
            description="Optional embedding model override.",
        ),
        AttributeDefinition(
            key="max_queries",
            label="Max queries",
            kind=AttributeKind.NUMBER,
            description="Maximum number of queries per search call.",
            min=1,
            max=8,
        ),
        AttributeDefinition(
            key="top_k", label="Top K", kind=AttributeKind.NUMBER, description="Results per query.", min=1, max=5
        ),
        AttributeDefinition(
            key="min_score",
            label="Min score",
            kind=AttributeKind.NUMBER,
            description="Results scoring below this are dropped.",
            min=0,
            max=1,
        ),
        AttributeDefinition(
            key="query_guidance",
            label="Query guidance",
            kind=AttributeKind.TEXT,
            description="System guidance on writing search queries.",
            multiline=True,
        ),
    ],
)

COIN_FLIP_DEFINITION = _provider(
    NodeType.COIN_FLIP, "Coin Flip", "Let a Completion node flip a fair coin.", CoinFlipNodeData
)

DICE_ROLL_DEFINITION = _provider(
    NodeType.DICE_ROLL, "Dice Roll", "Let a Completion node roll dice.", DiceRollNodeData
)

READ_DOCUMENT_DEFINITION = _provider(
    NodeType.READ_DOCUMENT,
    "Read File",
    "Let a Completion node read documents from the vector store.",
    ReadDocumentNodeData,
)

GLOBAL_STATE_DEFINITION = _provider(
    NodeType.GLOBAL_STATE,
    "Global State",
    "Let a Completion node read and write run variables.",
    GlobalStateNodeData,
    [
        AttributeDefinition(
            key="instructions",
            label="Instructions",
            kind=AttributeKind.TEXT,
            description="Appended to the tool description.",
            multiline=True,
        ),
    ],
)
