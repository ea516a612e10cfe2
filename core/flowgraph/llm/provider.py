"""Collaborator contracts for completion, retrieval and usage accounting.

The interpreter never talks to a network service directly. Agent nodes call
an ``LLMProvider``, retrieval tools call a ``RetrievalProvider`` and token
usage is handed to a ``UsageSink``. Embedding applications plug concrete
backends in behind these interfaces.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class Tool:
    """A tool the LLM can call."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_function(self) -> dict[str, Any]:
        """Render as an OpenAI-style function tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters or {"type": "object", "properties": {}},
            },
        }

    @classmethod
    def from_function(cls, payload: dict[str, Any]) -> "Tool":
        """Parse an OpenAI-style ``{"type": "function", "function": {...}}`` entry."""
        function = payload.get("function", payload)
        name = function.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("tool definition is missing a function name")
        return cls(
            name=name.strip(),
            description=function.get("description") or "",
            parameters=function.get("parameters") or {},
        )


@dataclass
class ToolCall:
    """A tool call requested by the LLM. ``arguments`` is raw JSON text."""

    id: str
    name: str
    arguments: str = ""


@dataclass
class CompletionMessage:
    """One chat message sent to the provider."""

    role: str
    content: str | None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None


@dataclass
class CompletionUsage:
    """Token accounting reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float | None = None


@dataclass
class CompletionRequest:
    """A single completion call."""

    model: str
    messages: list[CompletionMessage]
    temperature: float | None = None
    tools: list[Tool] = field(default_factory=list)
    tool_choice: Any = None
    stream: bool = True


@dataclass
class CompletionResponse:
    """Result of a completion call."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: CompletionUsage | None = None
    model: str = ""


@dataclass
class UsageRecord:
    """Usage entry handed to the usage sink after every external call."""

    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float | None = None
    node_id: str | None = None


@dataclass
class RetrievalHit:
    """One ranked retrieval result."""

    id: str
    text: str
    score: float
    similarity_score: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DocumentContent:
    """A document (or a section of one) read from the store."""

    doc_id: str
    source_uri: str
    content: str
    version: str = ""
    section: str | None = None


class LLMProvider(ABC):
    """
    Abstract completion backend.

    Implementations handle transport, authentication, retries and the
    provider's streaming format. Errors raised here fail the calling node.
    """

    @abstractmethod
    async def complete(
        self,
        request: CompletionRequest,
        on_delta: Callable[[str], None] | None = None,
    ) -> CompletionResponse:
        """
        Run one completion.

        Args:
            request: Model, messages, temperature and optional tools
            on_delta: Called with each streamed text chunk when streaming

        Returns:
            CompletionResponse with the final text, tool calls and usage
        """


class RetrievalProvider(ABC):
    """Abstract vector-store backend used by the retrieval tools."""

    @abstractmethod
    async def query(
        self,
        queries: list[str],
        store_id: str,
        top_k: int,
        model: str | None = None,
    ) -> list[RetrievalHit]:
        """Return hits for the queries, best first."""

    @abstractmethod
    async def read_document(
        self,
        doc_id: str | None = None,
        source_uri: str | None = None,
        section: str | None = None,
        version: str | None = None,
        start_line: int | None = None,
        end_line: int | None = None,
    ) -> DocumentContent:
        """Return a full document or the requested slice of it."""


class UsageSink(Protocol):
    """Receives one record per external call."""

    def __call__(self, record: UsageRecord) -> None: ...
