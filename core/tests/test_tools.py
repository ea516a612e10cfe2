"""
Tests for developer tools and provider aggregation.
"""

import math

import pytest

import flowgraph.graph.tools as tools
from flowgraph.graph.dataflow import EvaluationContext
from flowgraph.graph.errors import NodeExecutionError
from flowgraph.graph.runtime import ExecutionRuntime
from flowgraph.graph.state import ExecutionState
from flowgraph.graph.tools import (
    COIN_FLIP_TOOL,
    DICE_ROLL_PARAMETERS,
    DICE_ROLL_TOOL,
    GLOBAL_STATE_TOOL,
    RAG_GUIDANCE_PRIORITY,
    RAG_SEARCH_TOOL,
    READ_DOCUMENT_TOOL,
    ToolInvocation,
    ToolResult,
    build_rag_search_tool,
    collect_tool_contributions,
    parse_tool_arguments,
    rag_settings,
    tool_message_content,
    validate_arguments,
)
from flowgraph.graph.types import (
    DiceRollNodeData,
    GlobalStateNodeData,
    Graph,
    GraphEdge,
    GraphNode,
    NodeType,
    RagNodeData,
    ToolNodeData,
)
from flowgraph.llm.provider import DocumentContent, RetrievalHit, RetrievalProvider


# ---- Fake retrieval backend ----
class FakeRetrieval(RetrievalProvider):
    def __init__(self, hits=None):
        self.hits = hits or []
        self.queries = []
        self.reads = []

    async def query(self, queries, store_id, top_k, model=None):
        self.queries.append((queries, store_id, top_k, model))
        return self.hits

    async def read_document(self, **kwargs):
        self.reads.append(kwargs)
        return DocumentContent(doc_id="doc-1", source_uri="refunds.md", content="Full text", version="v2")


def invocation(data, arguments, retrieval=None, state=None) -> ToolInvocation:
    evaluation = EvaluationContext.for_graph(Graph(), state or ExecutionState())
    return ToolInvocation(
        node_id="provider",
        data=data,
        arguments=arguments,
        runtime=ExecutionRuntime(retrieval=retrieval),
        evaluation=evaluation,
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, {}),
        ("  ", {}),
        ('{"a": 1}', {"a": 1}),
        ("not json", {"__raw": "not json"}),
        ("[1, 2]", {"__raw": "[1, 2]"}),
    ],
)
def test_parse_tool_arguments(raw, expected):
    assert parse_tool_arguments(raw) == expected


def test_tool_message_content():
    result = ToolResult(message="## RAG Search Results", value={"results": []})

    assert tool_message_content("rag_search", result) == "## RAG Search Results"
    assert tool_message_content("coin_flip", ToolResult(message="m", value={"outcome": "heads"})) == (
        '{"outcome": "heads"}'
    )


class TestDiceRoll:
    def test_schema_errors(self):
        errors = validate_arguments({"die_count": 0, "faces": 6}, DICE_ROLL_PARAMETERS)

        assert errors == ["0 is less than the minimum of 1"]
        assert validate_arguments({"die_count": 2, "faces": 6}, DICE_ROLL_PARAMETERS) == []

    @pytest.mark.asyncio
    async def test_rolls(self):
        result = await DICE_ROLL_TOOL.handler(invocation(DiceRollNodeData(), {"die_count": 3, "faces": 6}))

        rolls = result.value["rolls"]
        assert len(rolls) == 3
        assert all(1 <= roll <= 6 for roll in rolls)
        assert result.value["total"] == sum(rolls)
        assert result.message.startswith("Rolled 3d6: [")

    @pytest.mark.asyncio
    async def test_single_die_message(self, monkeypatch):
        monkeypatch.setattr(tools.random, "randint", lambda low, high: 17)

        result = await DICE_ROLL_TOOL.handler(invocation(DiceRollNodeData(), {"die_count": 1, "faces": 20}))

        assert result.message == "Rolled 1d20: 17"

    @pytest.mark.asyncio
    async def test_invalid_arguments_raise(self):
        with pytest.raises(ValueError, match="Invalid dice_roll arguments: 'faces' is a required property"):
            await DICE_ROLL_TOOL.handler(invocation(DiceRollNodeData(), {"die_count": 2}))


@pytest.mark.asyncio
async def test_coin_flip(monkeypatch):
    monkeypatch.setattr(tools.random, "random", lambda: 0.1)

    result = await COIN_FLIP_TOOL.handler(invocation(None, {}))

    assert result.value == {"outcome": "heads"}
    assert result.message == "Coin flip result: heads."


class TestGlobalState:
    @pytest.mark.asyncio
    async def test_set_then_get(self):
        state = ExecutionState()
        set_call = invocation(GlobalStateNodeData(), {"action": "set", "path": "world.user", "value": "Ada"}, state=state)

        result = await GLOBAL_STATE_TOOL.handler(set_call)

        assert result.value == {"success": True, "path": "world.user", "value": "Ada"}
        assert state.vars == {"world": {"user": "Ada"}}
        assert set_call.evaluation.vars_generation == 1

        got = await GLOBAL_STATE_TOOL.handler(
            invocation(GlobalStateNodeData(), {"action": "get", "path": "world.user"}, state=state)
        )
        assert got.value == {"path": "world.user", "value": "Ada"}

    @pytest.mark.asyncio
    async def test_invalid_action(self):
        result = await GLOBAL_STATE_TOOL.handler(invocation(GlobalStateNodeData(), {"action": "drop", "path": "a"}))

        assert result.value == {"error": "Invalid action"}
        assert result.message.startswith("Error: Invalid action")

    @pytest.mark.asyncio
    async def test_missing_parameters(self):
        result = await GLOBAL_STATE_TOOL.handler(invocation(GlobalStateNodeData(), {"action": "get"}))

        assert result.value == {"error": "Missing required parameters"}

    @pytest.mark.asyncio
    async def test_bad_path(self):
        result = await GLOBAL_STATE_TOOL.handler(
            invocation(GlobalStateNodeData(), {"action": "set", "path": "a..b", "value": 1})
        )

        assert "empty segment" in result.value["error"]

    def test_instructions_extend_description(self):
        tool = GLOBAL_STATE_TOOL.tool_for(GlobalStateNodeData(instructions="Only touch world.*"))

        assert tool.description.endswith("Graph-specific instructions:\nOnly touch world.*")
        assert GLOBAL_STATE_TOOL.tool_for(GlobalStateNodeData()).description == GLOBAL_STATE_TOOL.tool.description


class TestRagSettings:
    def test_rag_node_defaults(self):
        settings = rag_settings(RagNodeData())

        assert settings.store_id == "default"
        assert settings.embedding_model is None
        assert settings.max_queries == 4
        assert settings.top_k == 4
        assert settings.min_score == 0.4

    def test_tool_node_fields_are_clamped(self):
        data = ToolNodeData(tool_key="rag", rag_max_queries=20, rag_top_k=None, rag_min_score=2)

        settings = rag_settings(data)

        assert settings.max_queries == 8
        assert settings.top_k == 5
        assert settings.min_score == 1.0

    def test_non_finite_values_fall_back(self):
        settings = rag_settings(RagNodeData(store_id="  ", max_queries=math.nan, top_k=0, min_score=None))

        assert settings.store_id == "default"
        assert settings.max_queries == 4
        assert settings.top_k == 1
        assert settings.min_score == 0.4

    def test_search_tool_limits_queries(self):
        tool = build_rag_search_tool(RagNodeData(max_queries=2))

        assert tool.name == "rag_search"
        assert tool.parameters["properties"]["queries"]["maxItems"] == 2
        assert "up to 2" in tool.description


class TestRagSearch:
    def hits(self):
        return [
            RetrievalHit(
                id="h1",
                text="Refunds are issued within 14 days.",
                score=0.91,
                metadata={
                    "doc_id": "doc-1",
                    "source_uri": "refunds.md",
                    "heading_path": ["Policies", "Refunds"],
                    "start_line": 2,
                    "end_line": 4,
                },
            ),
            RetrievalHit(id="h2", text="Unrelated", score=0.2),
            RetrievalHit(id="h3", text="Scored by similarity", score=0.9, similarity_score=0.1),
        ]

    @pytest.mark.asyncio
    async def test_search_filters_and_formats(self):
        retrieval = FakeRetrieval(self.hits())
        data = RagNodeData(store_id="docs", max_queries=2, top_k=3)

        result = await RAG_SEARCH_TOOL.handler(
            invocation(data, {"queries": [" refunds ", "", "policy", "extra"]}, retrieval=retrieval)
        )

        assert retrieval.queries == [(["refunds", "policy"], "docs", 3, None)]
        assert [entry["id"] for entry in result.value["results"]] == ["h1"]
        assert result.value["results"][0]["citation"]["heading_path"] == "Policies / Refunds"
        assert result.message.startswith("## RAG Search Results (1 result)")
        assert '**Queries:** "refunds", "policy"' in result.message
        assert "### Result 1 (91.0% relevance)" in result.message
        assert "**Document ID:** `doc-1`" in result.message
        assert "**Lines:** 3-5" in result.message

    @pytest.mark.asyncio
    async def test_single_query_fallback(self):
        retrieval = FakeRetrieval()

        result = await RAG_SEARCH_TOOL.handler(invocation(RagNodeData(), {"query": "refunds"}, retrieval=retrieval))

        assert retrieval.queries[0][0] == ["refunds"]
        assert "No results found." in result.message

    @pytest.mark.asyncio
    async def test_missing_queries(self):
        retrieval = FakeRetrieval()

        result = await RAG_SEARCH_TOOL.handler(invocation(RagNodeData(), {}, retrieval=retrieval))

        assert result.value == {"error": "Missing queries."}
        assert retrieval.queries == []


class TestReadDocument:
    @pytest.mark.asyncio
    async def test_requires_an_identifier(self):
        result = await READ_DOCUMENT_TOOL.handler(invocation(None, {}, retrieval=FakeRetrieval()))

        assert result.message.startswith("read_document requires either doc_id")
        assert "error" in result.value

    @pytest.mark.asyncio
    async def test_reads_document(self):
        retrieval = FakeRetrieval()

        result = await READ_DOCUMENT_TOOL.handler(
            invocation(None, {"doc_id": "doc-1", "start_line": 3.0, "section": " "}, retrieval=retrieval)
        )

        assert retrieval.reads == [
            {
                "doc_id": "doc-1",
                "source_uri": None,
                "section": None,
                "version": None,
                "start_line": 3,
                "end_line": None,
            }
        ]
        assert result.value["content"] == "Full text"
        assert result.message == 'Read document "refunds.md".'

    @pytest.mark.asyncio
    async def test_without_retrieval_provider(self):
        with pytest.raises(RuntimeError, match="No retrieval provider is configured."):
            await READ_DOCUMENT_TOOL.handler(invocation(None, {"doc_id": "doc-1"}))


# ---- Aggregation ----


def provider_graph(*providers: GraphNode, extra_edges=()) -> Graph:
    nodes = [GraphNode(id="start", type=NodeType.START), GraphNode(id="llm", type=NodeType.COMPLETION)]
    edges = [
        GraphEdge(id=f"t-{provider.id}", source=provider.id, target="llm", target_port="tools")
        for provider in providers
    ]
    return Graph(nodes=nodes + list(providers), edges=edges + list(extra_edges))


def collect(graph: Graph, **state):
    return collect_tool_contributions("llm", EvaluationContext.for_graph(graph, ExecutionState(**state)))


def test_collects_in_source_order_and_dedupes_by_name():
    graph = provider_graph(
        GraphNode(id="c_tool", type=NodeType.TOOL, data={"tool_key": "coinFlip"}),
        GraphNode(id="b_dice", type=NodeType.DICE_ROLL),
        GraphNode(id="a_coin", type=NodeType.COIN_FLIP),
    )

    collection = collect(graph)

    assert [tool.name for tool in collection.tools] == ["coin_flip", "dice_roll"]
    assert [entry.node_id for entry in collection.contributions] == ["a_coin", "b_dice", "c_tool"]
    assert collection.find("coin_flip").node_id == "a_coin"
    assert collection.find("rag_search") is None


def test_unported_edges_count_as_provider_inputs():
    graph = Graph(
        nodes=[GraphNode(id="llm", type=NodeType.COMPLETION), GraphNode(id="dice", type=NodeType.DICE_ROLL)],
        edges=[GraphEdge(id="e1", source="dice", target="llm")],
    )

    assert [tool.name for tool in collect(graph).tools] == ["dice_roll"]


def test_muted_and_disabled_providers_are_skipped():
    graph = provider_graph(
        GraphNode(id="coin", type=NodeType.COIN_FLIP, data={"muted": True}),
        GraphNode(id="dice", type=NodeType.DICE_ROLL),
        GraphNode(id="state", type=NodeType.GLOBAL_STATE),
        extra_edges=[GraphEdge(id="en", source="start", target="dice", target_port="enable")],
    )

    collection = collect(graph, node_outputs={"start": "off"})

    assert [tool.name for tool in collection.tools] == ["global_state"]


def test_rag_provider_adds_guidance():
    graph = provider_graph(GraphNode(id="rag", type=NodeType.RAG, data={"query_guidance": " Be specific. "}))

    collection = collect(graph)

    assert [tool.name for tool in collection.tools] == ["rag_search"]
    [guidance] = collection.context_messages
    assert guidance.content == "Be specific."
    assert guidance.priority == RAG_GUIDANCE_PRIORITY
    assert guidance.is_rag_fragment
    assert guidance.source_node_id == "rag"


def test_multiple_rag_nodes_are_rejected():
    graph = provider_graph(
        GraphNode(id="rag1", type=NodeType.RAG),
        GraphNode(id="rag2", type=NodeType.TOOL, data={"tool_key": "rag"}),
        GraphNode(id="rag3", type=NodeType.RAG),
    )

    with pytest.raises(NodeExecutionError, match="Multiple RAG nodes are connected"):
        collect(graph)


def test_non_provider_sources_are_ignored():
    graph = provider_graph(
        GraphNode(id="note", type=NodeType.MESSAGE, data={"text": "hi"}),
        GraphNode(id="dice", type=NodeType.DICE_ROLL),
    )

    assert [tool.name for tool in collect(graph).tools] == ["dice_roll"]
