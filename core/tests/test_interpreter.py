"""
Tests for the graph interpreter: traversal, callbacks, muting, resume,
cancellation and run isolation.
"""

import asyncio

import pytest

from flowgraph.config import RuntimeConfig
from flowgraph.graph.errors import FlowGraphError, GraphValidationError
from flowgraph.graph.interpreter import (
    GraphInterpreter,
    RunEndReason,
    RunStatus,
    run_graph,
    select_next_edge,
)
from flowgraph.graph.runtime import RunCallbacks
from flowgraph.graph.state import ExecutionState
from flowgraph.graph.types import Graph, GraphEdge, GraphNode, NodeType
from flowgraph.llm.provider import CompletionResponse, LLMProvider
from flowgraph.observability import get_trace_context

CONFIG = RuntimeConfig(default_model="test/default", guardrails_model="test/guard", max_tool_iterations=4)


# ---- Fake LLMs ----
class EchoLLM(LLMProvider):
    """Replies with the user message; remembers the trace context of each call."""

    def __init__(self, delay: float = 0):
        self.delay = delay
        self.calls = 0
        self.contexts = []

    async def complete(self, request, on_delta=None):
        self.calls += 1
        self.contexts.append(get_trace_context())
        if self.delay:
            await asyncio.sleep(self.delay)
        return CompletionResponse(content=f"echo: {request.messages[-1].content}")


class HangingLLM(LLMProvider):
    """Never answers until cancelled."""

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False

    async def complete(self, request, on_delta=None):
        self.started.set()
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return CompletionResponse(content="too late")


# ---- Graph builders ----


def node(node_id: str, node_type: NodeType, **data) -> GraphNode:
    return GraphNode(id=node_id, type=node_type, data=data or None)


def edge(edge_id: str, source: str, target: str, source_port=None, target_port=None) -> GraphEdge:
    return GraphEdge(id=edge_id, source=source, target=target, source_port=source_port, target_port=target_port)


def scored_graph() -> Graph:
    """Start -> If/Else -> (then: Completion | else: Transform) -> End."""
    return Graph(
        nodes=[
            node("start", NodeType.START),
            node("gate", NodeType.IF_ELSE, condition="input.score > 0.5"),
            node("llm", NodeType.COMPLETION, model="test/model"),
            node("fallback", NodeType.TRANSFORM, expression="return 'low score'"),
            node("end", NodeType.END),
        ],
        edges=[
            edge("e1", "start", "gate"),
            edge("e2", "gate", "llm", source_port="then"),
            edge("e3", "gate", "fallback", source_port="else"),
            edge("e4", "llm", "end"),
            edge("e5", "fallback", "end"),
        ],
    )


def linear_graph(*middle: GraphNode) -> Graph:
    """Start -> middle... -> End."""
    nodes = [node("start", NodeType.START), *middle, node("end", NodeType.END)]
    edges = [edge(f"e{index}", nodes[index].id, nodes[index + 1].id) for index in range(len(nodes) - 1)]
    return Graph(nodes=nodes, edges=edges)


class TestTraversal:
    @pytest.mark.asyncio
    async def test_then_branch_calls_the_llm(self):
        llm = EchoLLM()

        outcome = await run_graph(
            scored_graph(), initial_state=ExecutionState(payload={"score": 0.7}), llm=llm, config=CONFIG
        )

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.succeeded
        assert outcome.reason == RunEndReason.END_REACHED
        assert outcome.path == ["start", "gate", "llm", "end"]
        assert outcome.output == 'echo: {"score": 0.7}'
        assert llm.calls == 1

    @pytest.mark.asyncio
    async def test_else_branch_skips_the_llm(self):
        llm = EchoLLM()

        outcome = await run_graph(
            scored_graph(), initial_state=ExecutionState(payload={"score": 0.2}), llm=llm, config=CONFIG
        )

        assert outcome.path == ["start", "gate", "fallback", "end"]
        assert outcome.output == "low score"
        assert llm.calls == 0

    @pytest.mark.asyncio
    async def test_node_outputs_are_recorded(self):
        outcome = await run_graph(
            linear_graph(node("t", NodeType.TRANSFORM, expression="return input + '!'")), "hey"
        )

        assert outcome.state.node_outputs == {"start": "hey", "t": "hey!", "end": "hey!"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [None, ""])
    async def test_default_user_prompt(self, message):
        graph = Graph(
            nodes=[node("start", NodeType.START, default_user_prompt="Tell me a joke"), node("end", NodeType.END)],
            edges=[edge("e1", "start", "end")],
        )

        outcome = await run_graph(graph, message)

        assert outcome.output == "Tell me a joke"

    @pytest.mark.asyncio
    async def test_dead_end_completes_without_end_node(self):
        graph = Graph(
            nodes=[
                node("start", NodeType.START),
                node("gate", NodeType.IF_ELSE, condition="input == 'go'"),
                node("end", NodeType.END),
            ],
            edges=[edge("e1", "start", "gate"), edge("e2", "gate", "end", source_port="then")],
        )

        outcome = await run_graph(graph, "stop")

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.reason == RunEndReason.NO_FURTHER_NODES
        assert outcome.path == ["start", "gate"]

    @pytest.mark.asyncio
    async def test_start_edge_selects_the_branch(self):
        graph = Graph(
            nodes=[
                node("start", NodeType.START),
                node("a", NodeType.TRANSFORM, expression="return 'a'"),
                node("b", NodeType.TRANSFORM, expression="return 'b'"),
                node("end", NodeType.END),
            ],
            edges=[
                edge("e_b", "start", "b"),
                edge("e_a", "start", "a"),
                edge("e3", "a", "end"),
                edge("e4", "b", "end"),
            ],
        )

        default = await run_graph(graph, "x")
        chosen = await run_graph(graph, "x", start_edge_id="e_b")

        assert default.path == ["start", "a", "end"]
        assert chosen.path == ["start", "b", "end"]

    @pytest.mark.asyncio
    async def test_runs_get_distinct_ids(self):
        interpreter = GraphInterpreter(linear_graph())

        first = await interpreter.run("one")
        second = await interpreter.run("two")

        assert first.run_id != second.run_id
        assert (first.output, second.output) == ("one", "two")


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_start_and_finish_events(self):
        events = []
        callbacks = RunCallbacks(
            on_node_start=lambda event: events.append(("start", event.node_id, event.node_type)),
            on_node_finish=lambda event: events.append(
                ("finish", event.node_id, event.next_node_id, event.stop, event.next_port)
            ),
        )

        await run_graph(scored_graph(), initial_state=ExecutionState(payload={"score": 0.1}), callbacks=callbacks)

        assert events == [
            ("start", "start", "start"),
            ("finish", "start", "gate", False, None),
            ("start", "gate", "ifElse"),
            ("finish", "gate", "fallback", False, "else"),
            ("start", "fallback", "transform"),
            ("finish", "fallback", "end", False, None),
            ("start", "end", "end"),
            ("finish", "end", None, True, None),
        ]

    @pytest.mark.asyncio
    async def test_finish_events_carry_snapshots(self):
        snapshots = {}
        graph = linear_graph(
            node("set_a", NodeType.SET_VARIABLE, path="a", value=1),
            node("set_b", NodeType.SET_VARIABLE, path="b", value=2),
        )

        outcome = await run_graph(
            graph, "x", callbacks=RunCallbacks(on_node_finish=lambda event: snapshots.update({event.node_id: event.state}))
        )

        assert snapshots["set_a"].vars == {"a": 1}
        assert snapshots["set_b"].vars == {"a": 1, "b": 2}
        assert outcome.state.vars == {"a": 1, "b": 2}
        assert snapshots["set_a"] is not outcome.state


class TestMuting:
    @pytest.mark.asyncio
    async def test_muted_node_passes_payload_through(self):
        finished = []
        graph = linear_graph(node("boom", NodeType.TRANSFORM, expression="return 1 / 0", muted=True))

        outcome = await run_graph(
            graph, "keep me", callbacks=RunCallbacks(on_node_finish=lambda event: finished.append(event.node_id))
        )

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.output == "keep me"
        assert outcome.path == ["start", "boom", "end"]
        assert finished == ["start", "boom", "end"]
        assert "boom" not in outcome.state.node_outputs

    @pytest.mark.asyncio
    async def test_enable_port_false_mutes(self):
        graph = Graph(
            nodes=[
                node("start", NodeType.START),
                node("note", NodeType.MESSAGE, text="Answer in French."),
                node("flag", NodeType.GET_VARIABLE, path="flags.french"),
                node("end", NodeType.END),
            ],
            edges=[
                edge("e1", "start", "note", target_port="trigger"),
                edge("e2", "note", "end"),
                edge("en", "flag", "note", target_port="enable"),
            ],
        )

        off = await run_graph(graph, "hello", initial_vars={"flags": {"french": "off"}})
        on = await run_graph(graph, "hello", initial_vars={"flags": {"french": True}})

        assert off.path == ["start", "note", "end"]
        assert off.state.context_messages == []
        assert [message.content for message in on.state.context_messages] == ["Answer in French."]

    @pytest.mark.asyncio
    async def test_muted_branch_follows_first_edge(self):
        graph = Graph(
            nodes=[
                node("start", NodeType.START),
                node("gate", NodeType.IF_ELSE, condition="False", muted=True),
                node("yes", NodeType.TRANSFORM, expression="return 'then'"),
                node("no", NodeType.TRANSFORM, expression="return 'else'"),
                node("end", NodeType.END),
            ],
            edges=[
                edge("e1", "start", "gate"),
                edge("e2", "gate", "no", source_port="else"),
                edge("e3", "gate", "yes", source_port="then"),
                edge("e4", "yes", "end"),
                edge("e5", "no", "end"),
            ],
        )

        outcome = await run_graph(graph, "x")

        assert outcome.path == ["start", "gate", "yes", "end"]


class TestFailures:
    @pytest.mark.asyncio
    async def test_node_error_stops_the_run(self):
        graph = linear_graph(
            node("boom", NodeType.TRANSFORM, expression="return 1 / 0"),
            node("after", NodeType.SET_VARIABLE, path="reached", value=True),
        )

        outcome = await run_graph(graph, "x")

        assert outcome.status == RunStatus.FAILED
        assert not outcome.succeeded
        assert outcome.failed_node_id == "boom"
        assert outcome.error == "Transform function failed (boom): ZeroDivisionError: division by zero"
        assert outcome.path == ["start", "boom"]
        assert outcome.state.vars == {}

    @pytest.mark.asyncio
    async def test_invalid_graph_raises_before_running(self):
        started = []
        graph = Graph(
            nodes=[node("start", NodeType.START), node("t", NodeType.TRANSFORM)],
            edges=[edge("e1", "start", "t")],
        )

        with pytest.raises(GraphValidationError) as excinfo:
            await run_graph(graph, "x", callbacks=RunCallbacks(on_node_start=started.append))

        assert [issue.code for issue in excinfo.value.issues] == ["missing_reachable_end"]
        assert "No End node is reachable" in str(excinfo.value)
        assert started == []


class TestResume:
    @pytest.mark.asyncio
    async def test_unknown_start_node(self):
        with pytest.raises(FlowGraphError, match="Start node ghost not found."):
            await run_graph(linear_graph(), start_node_id="ghost", initial_state=ExecutionState())

    @pytest.mark.asyncio
    async def test_resume_requires_state(self):
        graph = linear_graph(node("t", NodeType.TRANSFORM))

        with pytest.raises(FlowGraphError, match="Execution resume requires an initial_state snapshot."):
            await run_graph(graph, "x", start_node_id="t")

    @pytest.mark.asyncio
    async def test_start_edge_must_leave_start(self):
        graph = linear_graph(node("t", NodeType.TRANSFORM))

        with pytest.raises(FlowGraphError, match="Start edge e1 is not connected to the Start node."):
            await run_graph(graph, "x", start_edge_id="e1")

    @pytest.mark.asyncio
    async def test_resume_from_a_node(self):
        graph = linear_graph(
            node("first", NodeType.SET_VARIABLE, path="first", value=True),
            node("second", NodeType.TRANSFORM, expression="return input + ' again'"),
        )
        snapshot = ExecutionState(payload="resumed", vars={"k": 1})

        outcome = await run_graph(graph, start_node_id="second", initial_state=snapshot)

        assert outcome.path == ["second", "end"]
        assert outcome.output == "resumed again"
        assert outcome.state.vars == {"k": 1}
        assert snapshot.payload == "resumed"

    @pytest.mark.asyncio
    async def test_initial_vars_are_copied(self):
        initial = {"counter": {"value": 1}}
        graph = linear_graph(node("set", NodeType.SET_VARIABLE, path="counter.value", value=2))

        outcome = await run_graph(graph, "x", initial_vars=initial)

        assert outcome.state.vars == {"counter": {"value": 2}}
        assert initial == {"counter": {"value": 1}}


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        event = asyncio.Event()
        event.set()

        outcome = await run_graph(linear_graph(), "x", cancel_event=event)

        assert outcome.status == RunStatus.CANCELLED
        assert outcome.path == []

    @pytest.mark.asyncio
    async def test_cancel_at_node_boundary_skips_the_llm(self):
        event = asyncio.Event()
        llm = EchoLLM()

        def on_finish(finish_event):
            if finish_event.node_id == "start":
                event.set()

        outcome = await run_graph(
            linear_graph(node("llm", NodeType.COMPLETION)),
            "x",
            llm=llm,
            callbacks=RunCallbacks(on_node_finish=on_finish),
            cancel_event=event,
            config=CONFIG,
        )

        assert outcome.status == RunStatus.CANCELLED
        assert outcome.path == ["start"]
        assert llm.calls == 0

    @pytest.mark.asyncio
    async def test_cancel_before_dispatching_an_external_call_node(self):
        event = asyncio.Event()
        llm = EchoLLM()
        starts = []

        def on_start(start_event):
            if start_event.node_id == "llm":
                event.set()

        outcome = await run_graph(
            linear_graph(node("llm", NodeType.COMPLETION)),
            "x",
            llm=llm,
            callbacks=RunCallbacks(
                on_node_start=on_start,
                on_assistant_start=lambda **kwargs: starts.append(kwargs) or "msg",
            ),
            cancel_event=event,
            config=CONFIG,
        )

        assert outcome.status == RunStatus.CANCELLED
        assert outcome.path == ["start", "llm"]
        assert llm.calls == 0
        assert starts == []
        assert "llm" not in outcome.state.node_outputs

    @pytest.mark.asyncio
    async def test_cancel_interrupts_an_external_call(self):
        event = asyncio.Event()
        llm = HangingLLM()

        async def cancel_when_called():
            await llm.started.wait()
            event.set()

        canceller = asyncio.create_task(cancel_when_called())
        outcome = await asyncio.wait_for(
            run_graph(linear_graph(node("llm", NodeType.COMPLETION)), "x", llm=llm, cancel_event=event, config=CONFIG),
            timeout=5,
        )
        await canceller

        assert outcome.status == RunStatus.CANCELLED
        assert outcome.path == ["start", "llm"]
        assert llm.cancelled
        assert outcome.state.conversation == []


class TestIsolation:
    @pytest.mark.asyncio
    async def test_trace_context_tags_node_execution(self):
        llm = EchoLLM()

        outcome = await run_graph(linear_graph(node("llm", NodeType.COMPLETION)), "x", llm=llm, config=CONFIG)

        [context] = llm.contexts
        assert context["run_id"] == outcome.run_id
        assert context["node_id"] == "llm"
        assert context["node_type"] == "completion"

    @pytest.mark.asyncio
    async def test_concurrent_runs_do_not_share_state(self):
        llm = EchoLLM(delay=0.01)
        interpreter = GraphInterpreter(linear_graph(node("llm", NodeType.COMPLETION)), llm=llm, config=CONFIG)

        first, second = await asyncio.gather(interpreter.run("one"), interpreter.run("two"))

        assert (first.output, second.output) == ("echo: one", "echo: two")
        assert [entry.content for entry in first.state.conversation] == ["one", "echo: one"]
        assert [entry.content for entry in second.state.conversation] == ["two", "echo: two"]
        assert {context["run_id"] for context in llm.contexts} == {first.run_id, second.run_id}


class TestSelectNextEdge:
    def setup_method(self):
        self.gate = node("gate", NodeType.IF_ELSE)
        self.edges = [
            edge("e_else", "gate", "b", source_port="else"),
            edge("e_then", "gate", "a", source_port="then"),
        ]

    def test_matches_port(self):
        assert select_next_edge(self.gate, self.edges, "else").id == "e_else"

    def test_unmatched_port_ends_the_run(self):
        assert select_next_edge(self.gate, self.edges[:1], "then") is None

    def test_without_port_prefers_unported_edges(self):
        edges = [*self.edges, edge("e_plain", "gate", "z")]

        assert select_next_edge(self.gate, edges, None).id == "e_plain"
        assert select_next_edge(self.gate, self.edges, None).id == "e_then"

    def test_preferred_edge_wins(self):
        assert select_next_edge(self.gate, self.edges, "then", preferred_edge_id="e_else").id == "e_else"

    def test_no_outgoing_edges(self):
        assert select_next_edge(self.gate, [], None) is None
