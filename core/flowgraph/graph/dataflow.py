"""
Dataflow Resolver - lazy, memoized reads of values wired into data ports.

Two regimes:
- Control-flow nodes: their output is whatever the interpreter recorded in
  ``state.node_outputs`` after running them.
- Pure nodes (Get Variable, Transform): computed on demand whenever an edge
  into a data port is read, independent of traversal order.

Pure results are cached per node. The cache key combines the node's own
configuration, its resolved upstream input and the ``vars`` generation, a
counter bumped by ``EvaluationContext.invalidate()`` whenever a control-flow
node writes ``vars``.

Data-port wiring may form cycles the validator never sees; a per-call
visited set makes a revisited node resolve to ``None``.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from flowgraph.graph.expression import ExpressionScope, evaluate_function_body
from flowgraph.graph.state import ExecutionState, get_nested_value, set_nested_value
from flowgraph.graph.types import (
    GetVariableNodeData,
    Graph,
    GraphEdge,
    GraphNode,
    NodeType,
    TransformNodeData,
)

logger = logging.getLogger(__name__)

PURE_NODE_TYPES = frozenset({NodeType.GET_VARIABLE, NodeType.TRANSFORM})

FALSE_STRINGS = frozenset({"false", "0", "no", "off"})
TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})


@dataclass
class CacheEntry:
    key: str
    value: Any


@dataclass
class EvaluationContext:
    """Per-run resolution context shared by the interpreter and executors."""

    state: ExecutionState
    nodes_by_id: dict[str, GraphNode]
    edges_by_target: dict[str, list[GraphEdge]]
    cache: dict[str, CacheEntry] = field(default_factory=dict)
    vars_generation: int = 0

    @classmethod
    def for_graph(cls, graph: Graph, state: ExecutionState) -> "EvaluationContext":
        return cls(
            state=state,
            nodes_by_id=graph.nodes_by_id(),
            edges_by_target=graph.edges_by_target(),
        )

    def invalidate(self) -> None:
        """Drop every memoized pure-node value after ``vars`` changed."""
        self.vars_generation += 1
        self.cache.clear()
        logger.debug(f"Dataflow cache invalidated (generation {self.vars_generation})")


def evaluate_node_output(node_id: str, context: EvaluationContext) -> Any:
    """Resolve a node's output value; ``None`` when unknown or cyclic."""
    return _resolve(node_id, context, set())


def evaluate_input_port_value(node_id: str, port_id: str, context: EvaluationContext) -> Any:
    """Resolve the value wired into ``node_id``'s input port; ``None`` if unwired."""
    return _resolve_input(node_id, port_id, context, set())


def evaluate_boolean_input_port(
    node_id: str,
    port_id: str,
    context: EvaluationContext,
    default: bool,
) -> bool:
    """
    Resolve an input port as a boolean.

    Unwired or ``None`` gives ``default``. Strings in {"false", "0", "no",
    "off"} are False and {"true", "1", "yes", "on"} are True (case and
    whitespace insensitive); anything else falls back to truthiness.
    """
    value = evaluate_input_port_value(node_id, port_id, context)
    return coerce_boolean(value, default)


def coerce_boolean(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in FALSE_STRINGS:
            return False
        if normalized in TRUE_STRINGS:
            return True
    return bool(value)


def find_input_edge(node_id: str, port_id: str, context: EvaluationContext) -> GraphEdge | None:
    """First edge into ``port_id``; an unported edge counts as the ``in`` port."""
    for edge in context.edges_by_target.get(node_id, []):
        if edge.target_port == port_id:
            return edge
        if port_id == "in" and edge.target_port is None:
            return edge
    return None


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _resolve_input(node_id: str, port_id: str, context: EvaluationContext, visited: set[str]) -> Any:
    edge = find_input_edge(node_id, port_id, context)
    if edge is None:
        return None
    return _resolve(edge.source, context, visited)


def _resolve(node_id: str, context: EvaluationContext, visited: set[str]) -> Any:
    if node_id in visited:
        logger.debug(f"Dataflow cycle at node {node_id}; resolving to None")
        return None
    visited.add(node_id)

    node = context.nodes_by_id.get(node_id)
    if node is None:
        return None

    if node.type not in PURE_NODE_TYPES:
        return context.state.node_outputs.get(node_id)

    if node.type == NodeType.GET_VARIABLE:
        return _resolve_get_variable(node, node.data, context, visited)
    return _resolve_transform(node, node.data, context, visited)


def _cache_key(node_id: str, context: EvaluationContext, payload: dict[str, Any]) -> str:
    try:
        serialized = json.dumps(payload, sort_keys=True, default=repr)
    except (TypeError, ValueError):
        serialized = repr(payload)
    return f"{node_id}:{context.vars_generation}:{serialized}"


def _cached(node_id: str, key: str, context: EvaluationContext) -> tuple[bool, Any]:
    entry = context.cache.get(node_id)
    if entry is not None and entry.key == key:
        logger.debug(f"Dataflow cache hit for node {node_id}")
        return True, entry.value
    return False, None


def _resolve_get_variable(
    node: GraphNode,
    data: GetVariableNodeData,
    context: EvaluationContext,
    visited: set[str],
) -> Any:
    path_input = _resolve_input(node.id, "path", context, visited)
    path = path_input.strip() if isinstance(path_input, str) else (data.path or "").strip()
    if not path:
        return None

    key = _cache_key(node.id, context, {"type": "get-variable", "path": path})
    hit, value = _cached(node.id, key, context)
    if hit:
        return value

    value = get_nested_value(context.state.vars, path)
    context.cache[node.id] = CacheEntry(key=key, value=value)
    return value


def _resolve_transform(
    node: GraphNode,
    data: TransformNodeData,
    context: EvaluationContext,
    visited: set[str],
) -> Any:
    input_value = _resolve_input(node.id, "in", context, visited)
    if input_value is None:
        return None

    expression = data.expression or ""
    key = _cache_key(node.id, context, {"type": "transform", "expression": expression, "input": input_value})
    hit, value = _cached(node.id, key, context)
    if hit:
        return value

    # get_var/set_var work on a throwaway copy; run vars only change in control flow.
    vars_snapshot = copy.deepcopy(context.state.vars)
    result = evaluate_function_body(
        expression,
        ExpressionScope(input=input_value, vars=vars_snapshot),
        extras={
            "get_var": lambda path: get_nested_value(vars_snapshot, path),
            "set_var": lambda path, value: set_nested_value(vars_snapshot, path, value),
        },
    )
    if result.error:
        logger.warning(
            f"⚠ Transform {node.id} failed during dataflow resolution: {result.error}",
            extra={"node_id": node.id, "node_type": str(node.type)},
        )
        value = None
    else:
        value = result.value
    context.cache[node.id] = CacheEntry(key=key, value=value)
    return value
