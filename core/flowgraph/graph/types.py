"""
Graph data model - node types, node data variants, edges and graphs.

Node data is a closed, type-tagged union: every variant carries a literal
``type`` that must equal the owning node's type. Field names are snake_case
in Python; camelCase aliases are accepted so graphs exported by editors that
use camelCase keys (``sourcePort``, ``defaultUserPrompt``) load unchanged.

Example:
    Graph(
        nodes=[
            GraphNode(id="start", type=NodeType.START),
            GraphNode(id="gate", type=NodeType.IF_ELSE, data={"condition": "input > 1"}),
            GraphNode(id="end", type=NodeType.END),
        ],
        edges=[
            GraphEdge(id="e1", source="start", target="gate"),
            GraphEdge(id="e2", source="gate", target="end", source_port="then"),
        ],
    )
"""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel


class NodeType(StrEnum):
    """Every node type known to the registry."""

    START = "start"
    END = "end"
    COMPLETION = "completion"
    GUARDRAILS = "guardrails"
    MESSAGE = "message"
    TOOL = "tool"
    RAG = "rag"
    COIN_FLIP = "coinFlip"
    DICE_ROLL = "diceRoll"
    READ_DOCUMENT = "readDocument"
    TRANSFORM = "transform"
    REDACT = "redact"
    IF_ELSE = "ifElse"
    SWITCH = "switch"
    SET_VARIABLE = "setVariable"
    GET_VARIABLE = "getVariable"
    GLOBAL_STATE = "globalState"


# Node types that can back a developer tool (the Tool node's ``tool_key``).
ToolKey = Literal["coinFlip", "diceRoll", "rag", "readDocument", "globalState"]

TOOL_KEY_LABELS: dict[str, str] = {
    "coinFlip": "Coin Flip",
    "diceRoll": "Dice Roll",
    "rag": "RAG Search",
    "readDocument": "Read Document",
    "globalState": "Global State",
}


class NodeCategory(StrEnum):
    BOUNDARIES = "boundaries"
    CONTROL = "control"
    CONSTANT = "constant"
    FUNCTION = "function"
    AGENT = "agent"
    TOOL = "tool"


class LLMRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class PortDirection(StrEnum):
    INPUT = "input"
    OUTPUT = "output"


class AttributeKind(StrEnum):
    TEXT = "text"
    NUMBER = "number"
    TOGGLE = "toggle"
    SELECT = "select"
    EXPRESSION = "expression"
    JSON = "json"


class RedactionPlaceholderFormat(StrEnum):
    GENERIC = "generic"
    TYPED = "typed"


DEFAULT_RAG_QUERY_GUIDANCE = (
    "When searching, write short, specific queries that name the entities, "
    "terms or identifiers you need. Prefer several focused queries over one "
    "broad query, and rephrase with synonyms when a first search returns "
    "nothing relevant. Cite the documents you rely on."
)


class _Model(BaseModel):
    model_config = {
        "extra": "allow",
        "populate_by_name": True,
        "alias_generator": to_camel,
    }


class NodeData(_Model):
    """Fields shared by every node data variant."""

    title: str = ""
    label: str = ""
    muted: bool = False


class StartNodeData(NodeData):
    type: Literal["start"] = "start"
    title: str = "Start"
    default_user_prompt: str = ""


class EndNodeData(NodeData):
    type: Literal["end"] = "end"
    title: str = "End"


class CompletionNodeData(NodeData):
    type: Literal["completion"] = "completion"
    title: str = "Completion"
    model: str = "openai/gpt-4o-mini"
    temperature: float | None = 0.4
    include_conversation: bool = False
    system_prompt: str = ""
    use_tools: bool = False
    tools_json: str = ""
    tool_choice_json: str = ""


class GuardrailsNodeData(NodeData):
    type: Literal["guardrails"] = "guardrails"
    title: str = "Guardrails"
    guardrails_harm_to_others: bool = True
    guardrails_harm_to_self: bool = True
    guardrails_harm_to_system: bool = True


class MessageNodeData(NodeData):
    type: Literal["message"] = "message"
    title: str = "Message"
    priority: float = 0
    role: LLMRole = LLMRole.SYSTEM
    text: str = ""


class ToolNodeData(NodeData):
    type: Literal["tool"] = "tool"
    title: str = "Tool"
    tool_key: ToolKey = "coinFlip"
    rag_store_id: str = "default"
    rag_embedding_model: str = ""
    rag_max_queries: float | None = 4
    rag_top_k: float | None = 4
    rag_min_score: float | None = 0.4


class RagNodeData(NodeData):
    type: Literal["rag"] = "rag"
    title: str = "RAG"
    store_id: str = "default"
    embedding_model: str = ""
    max_queries: float | None = 4
    top_k: float | None = 4
    min_score: float | None = 0.4
    query_guidance: str = DEFAULT_RAG_QUERY_GUIDANCE


class CoinFlipNodeData(NodeData):
    type: Literal["coinFlip"] = "coinFlip"
    title: str = "Coin Flip"


class DiceRollNodeData(NodeData):
    type: Literal["diceRoll"] = "diceRoll"
    title: str = "Dice Roll"


class ReadDocumentNodeData(NodeData):
    type: Literal["readDocument"] = "readDocument"
    title: str = "Read File"


class TransformNodeData(NodeData):
    type: Literal["transform"] = "transform"
    title: str = "Transform"
    expression: str = "return input"


class RedactNodeData(NodeData):
    type: Literal["redact"] = "redact"
    title: str = "Redact"
    redact_emails: bool = True
    redact_api_keys: bool = True
    redact_sdk_keys: bool = True
    placeholder_format: RedactionPlaceholderFormat = RedactionPlaceholderFormat.TYPED
    replacement: str = "[REDACTED]"


class IfElseNodeData(NodeData):
    type: Literal["ifElse"] = "ifElse"
    title: str = "Boolean"
    condition: str = "input.score > 0.5"


class SwitchNodeData(NodeData):
    type: Literal["switch"] = "switch"
    title: str = "Switch"
    expression: str = "input.category"
    # Kept loose; the registry clamps it when resolving ports.
    cases: Any = 3
    case_labels: str = "Case 1\nCase 2\nCase 3"


class SetVariableNodeData(NodeData):
    type: Literal["setVariable"] = "setVariable"
    title: str = "Set Variable"
    path: str = ""
    value: Any = ""


class GetVariableNodeData(NodeData):
    type: Literal["getVariable"] = "getVariable"
    title: str = "Get Variable"
    path: str = ""


class GlobalStateNodeData(NodeData):
    type: Literal["globalState"] = "globalState"
    title: str = "Global State"
    instructions: str = ""


AnyNodeData = Annotated[
    StartNodeData
    | EndNodeData
    | CompletionNodeData
    | GuardrailsNodeData
    | MessageNodeData
    | ToolNodeData
    | RagNodeData
    | CoinFlipNodeData
    | DiceRollNodeData
    | ReadDocumentNodeData
    | TransformNodeData
    | RedactNodeData
    | IfElseNodeData
    | SwitchNodeData
    | SetVariableNodeData
    | GetVariableNodeData
    | GlobalStateNodeData,
    Field(discriminator="type"),
]


class GraphNode(_Model):
    """A node instance: id, type and type-tagged data."""

    id: str
    type: NodeType
    data: AnyNodeData

    @model_validator(mode="before")
    @classmethod
    def _fill_data_tag(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        node_type = values.get("type")
        data = values.get("data")
        if data is None:
            values = {**values, "data": {"type": str(node_type)}}
        elif isinstance(data, dict) and "type" not in data:
            values = {**values, "data": {**data, "type": str(node_type)}}
        return values

    @model_validator(mode="after")
    def _check_data_tag(self) -> "GraphNode":
        if self.data.type != self.type:
            raise ValueError(
                f"Node '{self.id}' has type '{self.type}' but its data is tagged '{self.data.type}'"
            )
        return self


class GraphEdge(_Model):
    """A directed connection between two node ports."""

    id: str
    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")
    source_port: str | None = Field(
        default=None, description="Output port on the source; omitted means its default port"
    )
    target_port: str | None = Field(
        default=None, description="Input port on the target; omitted means its default port"
    )


class Graph(_Model):
    """A complete graph snapshot handed to the core for one run."""

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_node_ids(self) -> "Graph":
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id '{node.id}'")
            seen.add(node.id)
        return self

    def get_node(self, node_id: str) -> GraphNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_start_node(self) -> GraphNode | None:
        for node in self.nodes:
            if node.type == NodeType.START:
                return node
        return None

    def nodes_by_id(self) -> dict[str, GraphNode]:
        return {node.id: node for node in self.nodes}

    def edges_by_source(self) -> dict[str, list[GraphEdge]]:
        grouped: dict[str, list[GraphEdge]] = {}
        for edge in self.edges:
            grouped.setdefault(edge.source, []).append(edge)
        return grouped

    def edges_by_target(self) -> dict[str, list[GraphEdge]]:
        grouped: dict[str, list[GraphEdge]] = {}
        for edge in self.edges:
            grouped.setdefault(edge.target, []).append(edge)
        return grouped
