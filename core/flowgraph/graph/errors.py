"""Exception types raised by the graph interpreter.

Structural problems are reported as validation issues and only become an
exception when a run is requested on an invalid graph. Expression faults are
never raised; they are returned by the evaluator and turned into a
``NodeExecutionError`` by the node that owns the expression.
"""

from typing import Any


class FlowGraphError(Exception):
    """Base class for interpreter errors."""

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class GraphValidationError(FlowGraphError):
    """A run was requested on a graph with validation issues."""

    def __init__(self, issues: list[Any]) -> None:
        summary = "\n".join(f"{issue.level.upper()}: {issue.message}" for issue in issues)
        super().__init__(summary or "Graph is invalid.")
        self.issues = list(issues)


class NodeExecutionError(FlowGraphError):
    """A node executor failed; fatal to the current run."""

    def __init__(
        self,
        message: str,
        *,
        node_id: str | None = None,
        node_type: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.node_id = node_id
        self.node_type = node_type


class RunCancelledError(FlowGraphError):
    """The cancellation signal fired while a node was running."""

    def __init__(self, message: str = "Run cancelled.") -> None:
        super().__init__(message)
