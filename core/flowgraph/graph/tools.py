"""
Developer tools and the provider aggregation protocol.

Provider nodes (Tool, RAG, Coin Flip, Dice Roll, Read Document, Global
State) never run in the control flow; they are wired into a Completion node
through its ``in``/``tools`` ports and contribute a callable tool, and for
RAG nodes a system context fragment, to that node's LLM request.

Every tool call returns a ``ToolResult(message, value)``. The tool message
sent back to the model is ``message`` for ``rag_search`` and the JSON of
``value`` for every other tool.
"""

import json
import logging
import math
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import jsonschema

from flowgraph.graph.dataflow import EvaluationContext, evaluate_boolean_input_port
from flowgraph.graph.errors import NodeExecutionError
from flowgraph.graph.runtime import ExecutionRuntime
from flowgraph.graph.state import ContextMessage, get_nested_value, set_nested_value
from flowgraph.graph.types import (
    DEFAULT_RAG_QUERY_GUIDANCE,
    GlobalStateNodeData,
    LLMRole,
    NodeData,
    NodeType,
    RagNodeData,
    ToolNodeData,
)
from flowgraph.llm.provider import Tool

logger = logging.getLogger(__name__)

TOOL_INPUT_PORTS = frozenset({"in", "tools"})
RAG_GUIDANCE_PRIORITY = -50

RAG_DEFAULT_MAX_QUERIES = 4
RAG_MAX_QUERIES_CAP = 8
RAG_DEFAULT_MIN_SCORE = 0.4
RAG_DEFAULT_TOP_K = 5
RAG_TOP_K_CAP = 5


@dataclass
class ToolResult:
    message: str
    value: Any = None


@dataclass
class ToolInvocation:
    """One tool call routed to the provider node that contributed the tool."""

    node_id: str
    data: NodeData
    arguments: dict[str, Any]
    runtime: ExecutionRuntime
    evaluation: EvaluationContext


ToolHandler = Callable[[ToolInvocation], Awaitable[ToolResult]]


@dataclass
class DeveloperTool:
    """A tool a provider node can expose to a Completion node."""

    key: str
    label: str
    tool: Tool
    handler: ToolHandler
    # Optional per-node schema builder (RAG parameterises maxItems).
    build: Callable[[NodeData], Tool] | None = None

    @property
    def name(self) -> str:
        return self.tool.name

    def tool_for(self, data: NodeData) -> Tool:
        return self.build(data) if self.build else self.tool


@dataclass
class ToolContribution:
    node_id: str
    data: NodeData
    definition: DeveloperTool


@dataclass
class ToolCollection:
    tools: list[Tool] = field(default_factory=list)
    contributions: list[ToolContribution] = field(default_factory=list)
    context_messages: list[ContextMessage] = field(default_factory=list)

    def find(self, tool_name: str) -> ToolContribution | None:
        for contribution in self.contributions:
            if contribution.definition.name == tool_name:
                return contribution
        return None


def parse_tool_arguments(raw: str | None) -> dict[str, Any]:
    """Tool arguments arrive as JSON text; anything unparseable is kept as ``{"__raw": text}``."""
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {"__raw": raw}
    return parsed if isinstance(parsed, dict) else {"__raw": raw}


def tool_message_content(tool_name: str, result: ToolResult) -> str:
    if tool_name == RAG_SEARCH_TOOL.name:
        return result.message
    try:
        return json.dumps(result.value)
    except (TypeError, ValueError):
        return json.dumps(str(result.value))


# ---------------------------------------------------------------------------
# coin_flip
# ---------------------------------------------------------------------------


async def _flip_coin(invocation: ToolInvocation) -> ToolResult:
    outcome = "heads" if random.random() < 0.5 else "tails"
    return ToolResult(message=f"Coin flip result: {outcome}.", value={"outcome": outcome})


COIN_FLIP_TOOL = DeveloperTool(
    key=NodeType.COIN_FLIP,
    label="Coin flip",
    tool=Tool(
        name="coin_flip",
        description="Flip a fair coin and return heads or tails.",
        parameters={"type": "object", "properties": {}},
    ),
    handler=_flip_coin,
)


# ---------------------------------------------------------------------------
# dice_roll
# ---------------------------------------------------------------------------

DICE_ROLL_PARAMETERS = {
    "type": "object",
    "properties": {
        "die_count": {
            "type": "integer",
            "description": "Number of dice to roll (e.g., 4 for '4d21').",
            "minimum": 1,
        },
        "faces": {
            "type": "integer",
            "description": "Number of faces on each die (e.g., 21 for '4d21'). Must be at least 2.",
            "minimum": 2,
        },
    },
    "required": ["die_count", "faces"],
}


def validate_arguments(arguments: dict[str, Any], schema: dict[str, Any]) -> list[str]:
    """Return JSON Schema validation messages, empty when valid."""
    validator = jsonschema.Draft7Validator(schema)
    return [error.message for error in validator.iter_errors(arguments)]


async def _roll_dice(invocation: ToolInvocation) -> ToolResult:
    errors = validate_arguments(invocation.arguments, DICE_ROLL_PARAMETERS)
    if errors:
        raise ValueError(f"Invalid dice_roll arguments: {'; '.join(errors)}")

    die_count = invocation.arguments["die_count"]
    faces = invocation.arguments["faces"]
    rolls = [random.randint(1, faces) for _ in range(die_count)]
    total = sum(rolls)

    if die_count == 1:
        message = f"Rolled 1d{faces}: {rolls[0]}"
    else:
        message = f"Rolled {die_count}d{faces}: [{', '.join(str(roll) for roll in rolls)}] (total: {total})"
    return ToolResult(
        message=message,
        value={"die_count": die_count, "faces": faces, "rolls": rolls, "total": total},
    )


DICE_ROLL_TOOL = DeveloperTool(
    key=NodeType.DICE_ROLL,
    label="Dice roll",
    tool=Tool(
        name="dice_roll",
        description=(
            "Roll one or more dice with a specified number of faces. "
            "For example, '4d21' means roll 4 dice with 21 faces each."
        ),
        parameters=DICE_ROLL_PARAMETERS,
    ),
    handler=_roll_dice,
)


# ---------------------------------------------------------------------------
# read_document
# ---------------------------------------------------------------------------


def _optional_str(arguments: dict[str, Any], key: str) -> str | None:
    value = arguments.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _optional_int(arguments: dict[str, Any], key: str) -> int | None:
    value = arguments.get(key)
    if isinstance(value, int | float) and not isinstance(value, bool):
        return int(value)
    return None


async def _read_document(invocation: ToolInvocation) -> ToolResult:
    arguments = invocation.arguments
    doc_id = _optional_str(arguments, "doc_id")
    source_uri = _optional_str(arguments, "source_uri")
    if not doc_id and not source_uri:
        return ToolResult(
            message=(
                "read_document requires either doc_id (preferred, from rag_search citation) "
                "or source_uri (original filename)."
            ),
            value={"error": "Missing doc_id or source_uri. Use doc_id from rag_search citation."},
        )

    retrieval = invocation.runtime.require_retrieval()
    document = await invocation.runtime.guard(
        retrieval.read_document(
            doc_id=doc_id,
            source_uri=source_uri,
            section=_optional_str(arguments, "section"),
            version=_optional_str(arguments, "version"),
            start_line=_optional_int(arguments, "start_line"),
            end_line=_optional_int(arguments, "end_line"),
        )
    )

    section = f" (section: {document.section})" if document.section else ""
    return ToolResult(
        message=f'Read document "{document.source_uri}"{section}.',
        value={
            "doc_id": document.doc_id,
            "version": document.version,
            "source_uri": document.source_uri,
            "content": document.content,
            "section": document.section,
        },
    )


READ_DOCUMENT_TOOL = DeveloperTool(
    key=NodeType.READ_DOCUMENT,
    label="Read document",
    tool=Tool(
        name="read_document",
        description=(
            "Read a full document or specific section from the vector store. Use this after "
            "rag_search to get full context for cited sections. Use doc_id from the citation "
            "(preferred) or source_uri (original filename) to identify the document."
        ),
        parameters={
            "type": "object",
            "properties": {
                "doc_id": {"type": "string", "description": "Document identifier from a rag_search citation."},
                "source_uri": {"type": "string", "description": "Original filename, used when doc_id is unknown."},
                "section": {"type": "string", "description": "Optional heading path or section identifier."},
                "version": {"type": "string", "description": "Optional document version (defaults to latest)."},
                "start_line": {"type": "number", "description": "Optional 0-indexed start line."},
                "end_line": {"type": "number", "description": "Optional 0-indexed end line."},
            },
            "required": [],
        },
    ),
    handler=_read_document,
)


# ---------------------------------------------------------------------------
# rag_search
# ---------------------------------------------------------------------------


@dataclass
class RagSettings:
    store_id: str
    embedding_model: str | None
    max_queries: int
    top_k: int
    min_score: float


def _finite(value: Any) -> float | None:
    if isinstance(value, int | float) and not isinstance(value, bool) and math.isfinite(value):
        return float(value)
    return None


def rag_settings(data: NodeData) -> RagSettings:
    """Read RAG options from a RAG node or from a Tool node's ``rag_*`` fields."""
    if isinstance(data, ToolNodeData):
        store_id, model = data.rag_store_id, data.rag_embedding_model
        max_queries, top_k, min_score = data.rag_max_queries, data.rag_top_k, data.rag_min_score
    elif isinstance(data, RagNodeData):
        store_id, model = data.store_id, data.embedding_model
        max_queries, top_k, min_score = data.max_queries, data.top_k, data.min_score
    else:
        store_id, model, max_queries, top_k, min_score = "", "", None, None, None

    max_queries = _finite(max_queries)
    top_k = _finite(top_k)
    min_score = _finite(min_score)
    return RagSettings(
        store_id=(store_id or "").strip() or "default",
        embedding_model=(model or "").strip() or None,
        max_queries=(
            RAG_DEFAULT_MAX_QUERIES if max_queries is None else int(max(1, min(RAG_MAX_QUERIES_CAP, max_queries)))
        ),
        top_k=int(max(1, min(RAG_TOP_K_CAP, RAG_DEFAULT_TOP_K if top_k is None else top_k))),
        min_score=RAG_DEFAULT_MIN_SCORE if min_score is None else max(0.0, min(1.0, min_score)),
    )


def build_rag_search_tool(data: NodeData) -> Tool:
    max_queries = rag_settings(data).max_queries
    limit = f"up to {max_queries}"
    return Tool(
        name="rag_search",
        description=(
            f"Search a vector store for relevant context using {limit} natural-language queries."
            f"\n\n{DEFAULT_RAG_QUERY_GUIDANCE}"
        ),
        parameters={
            "type": "object",
            "properties": {
                "queries": {
                    "type": "array",
                    "items": {"type": "string"},
                    "maxItems": max_queries,
                    "description": f"{limit} natural-language search queries.",
                },
            },
            "required": ["queries"],
        },
    )


def _citation(metadata: dict[str, Any]) -> dict[str, Any]:
    heading_path = metadata.get("heading_path")
    if isinstance(heading_path, list):
        heading_path = " / ".join(str(part) for part in heading_path)
    elif not isinstance(heading_path, str):
        heading_path = ""

    def text(key: str) -> str:
        value = metadata.get(key)
        return value if isinstance(value, str) else ""

    def number(key: str) -> int | None:
        value = metadata.get(key)
        return value if isinstance(value, int) and not isinstance(value, bool) else None

    return {
        "doc_id": text("doc_id"),
        "source_uri": text("source_uri"),
        "version": text("version"),
        "heading_path": heading_path,
        "start_line": number("start_line"),
        "end_line": number("end_line"),
        "content_type": text("content_type") or None,
    }


def format_rag_results(queries: list[str], results: list[dict[str, Any]]) -> str:
    """Markdown summary of ranked results for the model and the chat transcript."""
    plural = "" if len(results) == 1 else "s"
    lines = [
        f"## RAG Search Results ({len(results)} result{plural})",
        "",
        "**Queries:** " + ", ".join(f'"{query}"' for query in queries),
        "",
    ]
    if not results:
        lines.append("No results found.")
        return "\n".join(lines)

    for result in results:
        citation = result["citation"]
        lines.append(f"### Result {result['rank']} ({result['score'] * 100:.1f}% relevance)")
        lines.append("")
        lines.append(f"**Source:** {citation['source_uri'] or 'unknown'}")
        if citation["heading_path"]:
            lines.append(f"**Section:** {citation['heading_path']}")
        if citation["doc_id"]:
            lines.append(f"**Document ID:** `{citation['doc_id']}`")
        if citation["start_line"] is not None and citation["end_line"] is not None:
            lines.append(f"**Lines:** {citation['start_line'] + 1}-{citation['end_line'] + 1}")
        if citation["content_type"]:
            lines.append(f"**Type:** {citation['content_type']}")
        lines.append("")
        lines.extend(["**Content:**", "```", result["text"], "```", ""])
    return "\n".join(lines)


async def _rag_search(invocation: ToolInvocation) -> ToolResult:
    arguments = invocation.arguments
    settings = rag_settings(invocation.data)

    raw_queries = arguments.get("queries")
    if not isinstance(raw_queries, list):
        raw_queries = [arguments["query"]] if isinstance(arguments.get("query"), str) else []
    queries = [entry.strip() for entry in raw_queries if isinstance(entry, str) and entry.strip()]
    queries = queries[: settings.max_queries]
    if not queries:
        return ToolResult(
            message="RAG search requires at least one query (provide `queries`).",
            value={"error": "Missing queries."},
        )

    retrieval = invocation.runtime.require_retrieval()
    hits = await invocation.runtime.guard(
        retrieval.query(queries, settings.store_id, settings.top_k, model=settings.embedding_model)
    )

    results = []
    for hit in hits:
        score = hit.similarity_score if hit.similarity_score is not None else hit.score
        if score is None or score < settings.min_score:
            continue
        results.append(
            {
                "id": hit.id,
                "text": hit.text,
                "score": hit.score,
                "similarity_score": hit.similarity_score,
                "metadata": dict(hit.metadata),
                "rank": len(results) + 1,
                "citation": _citation(hit.metadata),
            }
        )

    logger.info(f"   RAG search returned {len(results)}/{len(hits)} results above {settings.min_score}")
    return ToolResult(message=format_rag_results(queries, results), value={"queries": queries, "results": results})


RAG_SEARCH_TOOL = DeveloperTool(
    key=NodeType.RAG,
    label="RAG search",
    tool=build_rag_search_tool(RagNodeData()),
    handler=_rag_search,
    build=build_rag_search_tool,
)


# ---------------------------------------------------------------------------
# global_state
# ---------------------------------------------------------------------------


async def _global_state(invocation: ToolInvocation) -> ToolResult:
    arguments = invocation.arguments
    action, path = arguments.get("action"), arguments.get("path")
    if not isinstance(action, str) or not isinstance(path, str):
        return ToolResult(
            message="Error: 'action' and 'path' are required parameters.",
            value={"error": "Missing required parameters"},
        )
    if action not in ("set", "get"):
        return ToolResult(
            message=f"Error: Invalid action \"{action}\". Must be 'set' or 'get'.",
            value={"error": "Invalid action"},
        )

    state = invocation.evaluation.state
    try:
        if action == "set":
            value = arguments.get("value")
            set_nested_value(state.vars, path, value)
            invocation.evaluation.invalidate()
            return ToolResult(
                message=f'Set variable "{path}" successfully.',
                value={"success": True, "path": path, "value": value},
            )
        value = get_nested_value(state.vars, path)
        return ToolResult(message=f'Retrieved variable "{path}".', value={"path": path, "value": value})
    except ValueError as e:
        return ToolResult(message=f"Error: {e}", value={"error": str(e)})


_GLOBAL_STATE_BASE = Tool(
    name="global_state",
    description="Set or get a global variable value using a dot-notation path (e.g., 'world.user.name').",
    parameters={
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ["set", "get"],
                "description": "Action to perform: 'set' to set a value, 'get' to retrieve a value.",
            },
            "path": {
                "type": "string",
                "description": "Dot-notation path to the variable (e.g., 'world.user.name').",
            },
            "value": {"description": "Value to set (required for 'set', ignored for 'get')."},
        },
        "required": ["action", "path"],
    },
)


def _build_global_state_tool(data: NodeData) -> Tool:
    base = _GLOBAL_STATE_BASE
    instructions = data.instructions.strip() if isinstance(data, GlobalStateNodeData) else ""
    if not instructions:
        return base
    return Tool(
        name=base.name,
        description=f"{base.description}\n\nGraph-specific instructions:\n{instructions}",
        parameters=base.parameters,
    )


GLOBAL_STATE_TOOL = DeveloperTool(
    key=NodeType.GLOBAL_STATE,
    label="Global State",
    tool=_GLOBAL_STATE_BASE,
    handler=_global_state,
    build=_build_global_state_tool,
)


DEVELOPER_TOOLS: dict[str, DeveloperTool] = {
    tool.key: tool for tool in (COIN_FLIP_TOOL, DICE_ROLL_TOOL, RAG_SEARCH_TOOL, READ_DOCUMENT_TOOL, GLOBAL_STATE_TOOL)
}


def get_developer_tool(key: str) -> DeveloperTool | None:
    return DEVELOPER_TOOLS.get(key)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

_PROVIDER_TYPES = {
    NodeType.TOOL,
    NodeType.RAG,
    NodeType.COIN_FLIP,
    NodeType.DICE_ROLL,
    NodeType.READ_DOCUMENT,
    NodeType.GLOBAL_STATE,
}


def collect_tool_contributions(node_id: str, evaluation: EvaluationContext) -> ToolCollection:
    """
    Discover the tool providers wired into ``node_id``.

    Candidates are edges into the ``in``/``tools`` ports (or unported),
    ordered by (source id, edge id). Muted providers and providers whose
    ``enable`` port resolves false are skipped. Tools are de-duplicated by
    name, first occurrence wins.

    Raises:
        NodeExecutionError: an unknown tool key, or more than one RAG node
    """
    incoming = [
        edge
        for edge in evaluation.edges_by_target.get(node_id, [])
        if edge.target_port is None or edge.target_port in TOOL_INPUT_PORTS
    ]
    incoming.sort(key=lambda edge: (edge.source, edge.id))

    collection = ToolCollection()
    tools_by_name: dict[str, Tool] = {}
    errors: list[str] = []
    rag_nodes: list[str] = []

    for edge in incoming:
        source = evaluation.nodes_by_id.get(edge.source)
        if source is None or source.type not in _PROVIDER_TYPES:
            continue
        enabled = evaluate_boolean_input_port(source.id, "enable", evaluation, True)
        if source.data.muted or not enabled:
            continue

        key = source.data.tool_key if source.type == NodeType.TOOL else str(source.type)
        definition = get_developer_tool(key)
        if definition is None:
            errors.append(f'Unknown developer tool "{key}" on node {source.id}.')
            continue

        if source.type == NodeType.RAG:
            rag_nodes.append(source.id)
            guidance = (source.data.query_guidance or "").strip()
            if guidance:
                collection.context_messages.append(
                    ContextMessage(
                        role=LLMRole.SYSTEM,
                        content=guidance,
                        priority=RAG_GUIDANCE_PRIORITY,
                        source_node_id=source.id,
                        is_rag_fragment=True,
                    )
                )

        tool = definition.tool_for(source.data)
        tools_by_name.setdefault(tool.name, tool)
        collection.contributions.append(ToolContribution(node_id=source.id, data=source.data, definition=definition))

    if len(rag_nodes) > 1:
        errors.append("Multiple RAG nodes are connected to the same Completion node (only one is supported).")
    if errors:
        raise NodeExecutionError("\n".join(errors), node_id=node_id)

    collection.tools = list(tools_by_name.values())
    return collection
