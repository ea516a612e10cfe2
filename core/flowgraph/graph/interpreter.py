"""
Execution Interpreter - runs a graph from its Start node.

The interpreter:
1. Validates the graph (any issue aborts the run before a node executes)
2. Builds or restores the execution state
3. Executes one node at a time, following the edge selected by the
   executor's ``next_port``
4. Reports progress through ``RunCallbacks``
5. Returns a ``RunOutcome``: completed, failed at a node, or cancelled

Execution within a run is strictly sequential. The only suspension points
are the external calls made by agent executors, and those go through
``ExecutionRuntime.guard`` so cancellation interrupts them.
"""

import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from flowgraph.config import RuntimeConfig
from flowgraph.graph.dataflow import EvaluationContext, evaluate_boolean_input_port
from flowgraph.graph.errors import FlowGraphError, GraphValidationError, NodeExecutionError, RunCancelledError
from flowgraph.graph.expression import ExpressionScope
from flowgraph.graph.nodes.base import NodeExecutionContext, NodeExecutionResult, node_title
from flowgraph.graph.nodes.message import collect_message_inputs
from flowgraph.graph.planner import sort_outgoing_edges
from flowgraph.graph.registry import get_node_definition
from flowgraph.graph.runtime import ExecutionRuntime, NodeFinishEvent, NodeStartEvent, RunCallbacks
from flowgraph.graph.state import ConversationEntry, ExecutionState, merge_context_messages
from flowgraph.graph.types import Graph, GraphEdge, GraphNode, StartNodeData
from flowgraph.graph.validation import validate_graph
from flowgraph.llm.provider import LLMProvider, RetrievalProvider, UsageSink
from flowgraph.observability import set_trace_context

logger = logging.getLogger(__name__)


class RunStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunEndReason(StrEnum):
    """Why a completed run stopped."""

    END_REACHED = "end_reached"
    NO_FURTHER_NODES = "no_further_nodes"


@dataclass
class RunOutcome:
    """Result of one run."""

    status: RunStatus
    state: ExecutionState
    run_id: str
    reason: RunEndReason | None = None
    failed_node_id: str | None = None
    error: str | None = None
    path: list[str] = field(default_factory=list)  # Node IDs executed, in order

    @property
    def output(self) -> Any:
        return self.state.payload

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED


class GraphInterpreter:
    """
    Drives one graph through its control-flow chain.

    A single instance may serve several runs; each ``run`` call owns its own
    state and dataflow cache.
    """

    def __init__(
        self,
        graph: Graph,
        callbacks: RunCallbacks | None = None,
        llm: LLMProvider | None = None,
        retrieval: RetrievalProvider | None = None,
        usage_sink: UsageSink | None = None,
        config: RuntimeConfig | None = None,
    ):
        self.graph = graph
        self.callbacks = callbacks or RunCallbacks()
        self.llm = llm
        self.retrieval = retrieval
        self.usage_sink = usage_sink
        self.config = config or RuntimeConfig()
        self.logger = logger

        self._nodes = graph.nodes_by_id()
        self._outgoing = graph.edges_by_source()

    async def run(
        self,
        user_message: str | None = None,
        conversation: list[ConversationEntry] | None = None,
        initial_vars: dict[str, Any] | None = None,
        start_node_id: str | None = None,
        start_edge_id: str | None = None,
        initial_state: ExecutionState | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunOutcome:
        """
        Execute the graph.

        Args:
            user_message: Initial payload; falls back to the Start node's
                default user prompt
            conversation: Prior turns made available to agent nodes
            initial_vars: Starting ``vars`` tree (copied)
            start_node_id: Resume from this node instead of Start
            start_edge_id: Leave Start along this edge
            initial_state: State snapshot to resume from (copied)
            cancel_event: Cooperative cancellation signal

        Returns:
            RunOutcome describing how the run ended

        Raises:
            GraphValidationError: the graph has validation issues
            FlowGraphError: the resume arguments are inconsistent
        """
        issues = validate_graph(self.graph)
        if issues:
            raise GraphValidationError(issues)

        start = self.graph.get_start_node()
        if start is None:
            raise FlowGraphError("No Start node found.")
        first = self._resolve_first_node(start, start_node_id, start_edge_id, initial_state)
        preferred_edge_id = start_edge_id if first.id == start.id else None

        state = self._initial_state(start, user_message, conversation, initial_vars, initial_state)
        evaluation = EvaluationContext.for_graph(self.graph, state)
        runtime = ExecutionRuntime(
            callbacks=self.callbacks,
            config=self.config,
            llm=self.llm,
            retrieval=self.retrieval,
            usage_sink=self.usage_sink,
            cancel_event=cancel_event,
        )

        run_id = str(uuid.uuid4())
        set_trace_context(run_id=run_id, node_id=None, node_type=None)
        self.logger.info(f"🚀 Starting run {run_id}")
        self.logger.info(f"   Entry node: {first.id}")
        if first.id != start.id:
            self.logger.info(f"🔄 Resuming from: {first.id}")

        path: list[str] = []

        def outcome(status: RunStatus, **kwargs: Any) -> RunOutcome:
            return RunOutcome(status=status, state=state, run_id=run_id, path=path, **kwargs)

        current: GraphNode | None = first
        while current is not None:
            if runtime.cancelled:
                self.logger.info("⏹ Run cancelled at node boundary")
                return outcome(RunStatus.CANCELLED)

            if current.id in path:
                error = f"Cycle detected during execution at node {current.id}."
                self.logger.error(f"✗ {error}")
                return outcome(RunStatus.FAILED, failed_node_id=current.id, error=error)
            path.append(current.id)

            set_trace_context(node_id=current.id, node_type=str(current.type))
            self.logger.info(f"▶ Step {len(path)}: {node_title(current)} ({current.type})")
            if self.callbacks.on_node_start:
                self.callbacks.on_node_start(NodeStartEvent(node_id=current.id, node_type=str(current.type)))

            edge_hint = preferred_edge_id if current.id == start.id else None

            if self._is_muted(current, evaluation):
                self.logger.info("   ⏭ Muted, passing through")
                next_node = self._next_node(current, None, edge_hint)
                self._finish(current, next_node, None, False, state)
                current = next_node
                continue

            try:
                result = await self._execute_node(current, state, evaluation, runtime)
            except RunCancelledError:
                self.logger.info(f"⏹ Run cancelled during {current.id}")
                return outcome(RunStatus.CANCELLED)
            except NodeExecutionError as e:
                self.logger.error(f"   ✗ Failed: {e.message}")
                return outcome(RunStatus.FAILED, failed_node_id=e.node_id or current.id, error=e.message)
            except Exception as e:
                self.logger.error(f"   ✗ Failed: {e}", exc_info=True)
                return outcome(RunStatus.FAILED, failed_node_id=current.id, error=str(e))

            state.node_outputs[current.id] = state.payload

            if result.stop:
                self._finish(current, None, result.next_port, True, state)
                self.logger.info(f"✓ Reached terminal node: {node_title(current)}")
                return outcome(RunStatus.COMPLETED, reason=RunEndReason.END_REACHED)

            next_node = self._next_node(current, result.next_port, edge_hint)
            self._finish(current, next_node, result.next_port, False, state)

            if runtime.cancelled:
                self.logger.info("⏹ Run cancelled at node boundary")
                return outcome(RunStatus.CANCELLED)

            if next_node is None:
                self.logger.info("   → No more edges, ending execution")
            else:
                self.logger.info(f"   → Next: {next_node.id}")
            current = next_node

        return outcome(RunStatus.COMPLETED, reason=RunEndReason.NO_FURTHER_NODES)

    def _resolve_first_node(
        self,
        start: GraphNode,
        start_node_id: str | None,
        start_edge_id: str | None,
        initial_state: ExecutionState | None,
    ) -> GraphNode:
        first = start
        if start_node_id:
            first = self._nodes.get(start_node_id)
            if first is None:
                raise FlowGraphError(f"Start node {start_node_id} not found.")
        if first.id != start.id and initial_state is None:
            raise FlowGraphError("Execution resume requires an initial_state snapshot.")
        if start_edge_id and first.id == start.id:
            edge = next((e for e in self.graph.edges if e.id == start_edge_id), None)
            if edge is None or edge.source != start.id:
                raise FlowGraphError(f"Start edge {start_edge_id} is not connected to the Start node.")
        return first

    def _initial_state(
        self,
        start: GraphNode,
        user_message: str | None,
        conversation: list[ConversationEntry] | None,
        initial_vars: dict[str, Any] | None,
        initial_state: ExecutionState | None,
    ) -> ExecutionState:
        if initial_state is not None:
            return initial_state.snapshot()

        default_prompt = start.data.default_user_prompt if isinstance(start.data, StartNodeData) else ""
        return ExecutionState(
            payload=user_message or default_prompt or "",
            vars=copy.deepcopy(initial_vars or {}),
            conversation=list(conversation or []),
        )

    def _is_muted(self, node: GraphNode, evaluation: EvaluationContext) -> bool:
        enabled = evaluate_boolean_input_port(node.id, "enable", evaluation, True)
        return node.data.muted or not enabled

    async def _execute_node(
        self,
        node: GraphNode,
        state: ExecutionState,
        evaluation: EvaluationContext,
        runtime: ExecutionRuntime,
    ) -> NodeExecutionResult:
        context_messages = merge_context_messages(
            state.context_messages, collect_message_inputs(node.id, evaluation)
        )
        scope = ExpressionScope(
            input=state.payload,
            vars=state.vars,
            messages=context_messages,
            context_messages=context_messages,
        )
        context = NodeExecutionContext(
            node=node,
            state=state,
            scope=scope,
            context_messages=context_messages,
            evaluation=evaluation,
            runtime=runtime,
        )
        definition = get_node_definition(node.type)
        if definition.external_call:
            runtime.check_cancelled()
        result = await definition.executor(context, node.data)
        return result or NodeExecutionResult()

    def _next_node(self, node: GraphNode, next_port: str | None, preferred_edge_id: str | None) -> GraphNode | None:
        edge = select_next_edge(node, self._outgoing.get(node.id, []), next_port, preferred_edge_id)
        if edge is None:
            return None
        return self._nodes.get(edge.target)

    def _finish(
        self,
        node: GraphNode,
        next_node: GraphNode | None,
        next_port: str | None,
        stop: bool,
        state: ExecutionState,
    ) -> None:
        if not self.callbacks.on_node_finish:
            return
        self.callbacks.on_node_finish(
            NodeFinishEvent(
                node_id=node.id,
                node_type=str(node.type),
                next_node_id=next_node.id if next_node else None,
                stop=stop,
                state=state.snapshot(),
                next_port=next_port,
            )
        )


def select_next_edge(
    node: GraphNode,
    outgoing: list[GraphEdge],
    next_port: str | None,
    preferred_edge_id: str | None = None,
) -> GraphEdge | None:
    """
    Pick the edge to follow after ``node`` ran.

    A preferred edge (resume from Start) wins. Otherwise the first edge, in
    port order, whose ``source_port`` equals ``next_port``; without a
    ``next_port`` the first unported edge, else the first edge. ``None``
    ends the run.
    """
    if not outgoing:
        return None
    ordered = sort_outgoing_edges(node, outgoing)

    if preferred_edge_id:
        preferred = next((edge for edge in ordered if edge.id == preferred_edge_id), None)
        if preferred is not None:
            return preferred

    if next_port:
        return next((edge for edge in ordered if edge.source_port == next_port), None)
    return next((edge for edge in ordered if not edge.source_port), ordered[0])


async def run_graph(
    graph: Graph,
    user_message: str | None = None,
    *,
    conversation: list[ConversationEntry] | None = None,
    initial_vars: dict[str, Any] | None = None,
    start_node_id: str | None = None,
    start_edge_id: str | None = None,
    initial_state: ExecutionState | None = None,
    callbacks: RunCallbacks | None = None,
    llm: LLMProvider | None = None,
    retrieval: RetrievalProvider | None = None,
    usage_sink: UsageSink | None = None,
    cancel_event: asyncio.Event | None = None,
    config: RuntimeConfig | None = None,
) -> RunOutcome:
    """Validate and execute ``graph`` once. See ``GraphInterpreter.run``."""
    interpreter = GraphInterpreter(
        graph,
        callbacks=callbacks,
        llm=llm,
        retrieval=retrieval,
        usage_sink=usage_sink,
        config=config,
    )
    return await interpreter.run(
        user_message=user_message,
        conversation=conversation,
        initial_vars=initial_vars,
        start_node_id=start_node_id,
        start_edge_id=start_edge_id,
        initial_state=initial_state,
        cancel_event=cancel_event,
    )


__all__ = [
    "GraphInterpreter",
    "RunCallbacks",
    "RunEndReason",
    "RunOutcome",
    "RunStatus",
    "run_graph",
    "select_next_edge",
]
