"""Run state threaded through one graph execution.

``ExecutionState`` is created once per run and mutated in place by the node
executors. ``vars`` is a nested dict addressed with dot-notation paths.
"""

import copy
import json
from dataclasses import dataclass, field
from typing import Any

from flowgraph.graph.types import LLMRole
from flowgraph.llm.provider import ToolCall


@dataclass
class ContextMessage:
    """A role-tagged fragment injected into completion requests, ordered by priority."""

    role: LLMRole | str
    content: str
    priority: float = 0
    source_node_id: str | None = None
    fragment_id: str | None = None
    is_rag_fragment: bool = False
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None


@dataclass
class ConversationEntry:
    """One turn of the running conversation."""

    role: LLMRole | str
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None


@dataclass
class ExecutionState:
    """Mutable state for a single run."""

    payload: Any = None
    context_messages: list[ContextMessage] = field(default_factory=list)
    vars: dict[str, Any] = field(default_factory=dict)
    conversation: list[ConversationEntry] = field(default_factory=list)
    node_outputs: dict[str, Any] = field(default_factory=dict)

    def snapshot(self) -> "ExecutionState":
        """Deep copy for callbacks, persistence and resume."""
        try:
            return copy.deepcopy(self)
        except (TypeError, copy.Error):
            # Payloads holding uncopyable objects fall back to a shallow copy.
            return ExecutionState(
                payload=self.payload,
                context_messages=list(self.context_messages),
                vars=dict(self.vars),
                conversation=list(self.conversation),
                node_outputs=dict(self.node_outputs),
            )


# ---------------------------------------------------------------------------
# Dot-notation paths
# ---------------------------------------------------------------------------


def _split_path(path: str) -> list[str]:
    if not isinstance(path, str) or not path.strip():
        raise ValueError("Path must be a non-empty string.")
    parts = [part.strip() for part in path.strip().split(".")]
    if any(not part for part in parts):
        raise ValueError(f"Path '{path}' contains an empty segment.")
    return parts


def get_nested_value(target: Any, path: str) -> Any:
    """Read ``a.b.c`` from nested dicts (and list indices); missing -> None."""
    try:
        parts = _split_path(path)
    except ValueError:
        return None

    current = target
    for part in parts:
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, list) and part.lstrip("-").isdigit():
            index = int(part)
            if not -len(current) <= index < len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def set_nested_value(target: dict[str, Any], path: str, value: Any) -> None:
    """Write ``a.b.c``; missing or non-dict intermediates are replaced by ``{}``."""
    parts = _split_path(path)
    current = target
    for part in parts[:-1]:
        next_value = current.get(part)
        if not isinstance(next_value, dict):
            next_value = {}
            current[part] = next_value
        current = next_value
    current[parts[-1]] = value


# ---------------------------------------------------------------------------
# Context messages
# ---------------------------------------------------------------------------


def merge_context_messages(
    base: list[ContextMessage],
    scoped: list[ContextMessage],
) -> list[ContextMessage]:
    """Append ``scoped`` to ``base`` without repeating the same source node."""
    if not scoped:
        return base

    seen = {entry.source_node_id for entry in base if entry.source_node_id}
    merged = list(base)
    for entry in scoped:
        if entry.source_node_id and entry.source_node_id in seen:
            continue
        if entry.source_node_id:
            seen.add(entry.source_node_id)
        merged.append(entry)
    return merged


def sort_context_messages(messages: list[ContextMessage]) -> list[ContextMessage]:
    """Ascending priority; insertion order within a priority."""
    return sorted(messages, key=lambda entry: entry.priority)


def to_user_message(payload: Any) -> str:
    """Render the current payload as the user turn of a completion request."""
    if isinstance(payload, str):
        return payload
    if payload is None:
        return ""
    try:
        return json.dumps(payload)
    except (TypeError, ValueError):
        return str(payload)
