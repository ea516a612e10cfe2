"""Graph interpretation: data model, registry, validation, planning and execution."""

from flowgraph.graph.dataflow import (
    EvaluationContext,
    evaluate_boolean_input_port,
    evaluate_input_port_value,
    evaluate_node_output,
)
from flowgraph.graph.errors import (
    FlowGraphError,
    GraphValidationError,
    NodeExecutionError,
    RunCancelledError,
)
from flowgraph.graph.expression import (
    EvaluationResult,
    ExpressionEngine,
    ExpressionScope,
    SandboxEngine,
    evaluate_expression,
    evaluate_function_body,
    evaluate_template,
)
from flowgraph.graph.interpreter import (
    GraphInterpreter,
    RunEndReason,
    RunOutcome,
    RunStatus,
    run_graph,
)
from flowgraph.graph.planner import RunPlan, RunStep, create_run_plan
from flowgraph.graph.registry import (
    create_node_data,
    get_node_definition,
    get_node_executor,
    get_node_title,
    list_node_definitions,
    list_palette_nodes,
    list_required_node_types,
    resolve_ports,
)
from flowgraph.graph.runtime import (
    AssistantVariant,
    ExecutionRuntime,
    NodeFinishEvent,
    NodeStartEvent,
    RunCallbacks,
)
from flowgraph.graph.state import ContextMessage, ConversationEntry, ExecutionState
from flowgraph.graph.types import Graph, GraphEdge, GraphNode, NodeType
from flowgraph.graph.validation import ValidationIssue, validate_graph

__all__ = [
    # Data model
    "Graph",
    "GraphEdge",
    "GraphNode",
    "NodeType",
    "ContextMessage",
    "ConversationEntry",
    "ExecutionState",
    # Registry
    "create_node_data",
    "get_node_definition",
    "get_node_executor",
    "get_node_title",
    "list_node_definitions",
    "list_palette_nodes",
    "list_required_node_types",
    "resolve_ports",
    # Analysis
    "ValidationIssue",
    "validate_graph",
    "RunPlan",
    "RunStep",
    "create_run_plan",
    # Expressions and dataflow
    "EvaluationResult",
    "ExpressionEngine",
    "ExpressionScope",
    "SandboxEngine",
    "evaluate_expression",
    "evaluate_function_body",
    "evaluate_template",
    "EvaluationContext",
    "evaluate_boolean_input_port",
    "evaluate_input_port_value",
    "evaluate_node_output",
    # Execution
    "AssistantVariant",
    "ExecutionRuntime",
    "GraphInterpreter",
    "NodeFinishEvent",
    "NodeStartEvent",
    "RunCallbacks",
    "RunEndReason",
    "RunOutcome",
    "RunStatus",
    "run_graph",
    # Errors
    "FlowGraphError",
    "GraphValidationError",
    "NodeExecutionError",
    "RunCancelledError",
]
