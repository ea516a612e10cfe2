"""flowgraph - an interpreter for node-based LLM workflow graphs."""

from flowgraph.graph import (
    Graph,
    GraphInterpreter,
    RunCallbacks,
    RunOutcome,
    RunStatus,
    create_run_plan,
    run_graph,
    validate_graph,
)

__version__ = "0.1.0"

__all__ = [
    "Graph",
    "GraphInterpreter",
    "RunCallbacks",
    "RunOutcome",
    "RunStatus",
    "create_run_plan",
    "run_graph",
    "validate_graph",
]
