"""
Runtime services handed to node executors.

``ExecutionRuntime`` bundles the collaborators (LLM, retrieval, usage sink),
the callback set, the runtime configuration and the cooperative cancellation
signal. Executors reach every external service through it so cancellation
is honoured uniformly.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeVar

from flowgraph.config import RuntimeConfig
from flowgraph.graph.errors import NodeExecutionError, RunCancelledError
from flowgraph.llm.provider import (
    CompletionUsage,
    LLMProvider,
    RetrievalProvider,
    UsageRecord,
    UsageSink,
)

if TYPE_CHECKING:
    from flowgraph.graph.state import ExecutionState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AssistantVariant(StrEnum):
    """How a streamed assistant message should be presented."""

    STANDARD = "standard"
    TRACE = "trace"
    INTERNAL = "internal"


@dataclass
class NodeStartEvent:
    node_id: str
    node_type: str


@dataclass
class NodeFinishEvent:
    node_id: str
    node_type: str
    next_node_id: str | None
    stop: bool
    state: "ExecutionState"
    next_port: str | None = None


@dataclass
class RunCallbacks:
    """
    Observer hooks for a run. Every hook is optional.

    ``on_assistant_start`` returns the message id used by the later
    ``on_assistant_update`` / ``on_assistant_usage`` calls; when absent a
    random id is generated.
    """

    on_trace: Callable[[str], None] | None = None
    on_node_start: Callable[[NodeStartEvent], None] | None = None
    on_node_finish: Callable[[NodeFinishEvent], None] | None = None
    on_assistant_start: Callable[..., str] | None = None
    on_assistant_update: Callable[[str, str], None] | None = None
    on_assistant_usage: Callable[[str, CompletionUsage], None] | None = None

    def trace(self, message: str) -> None:
        logger.info(message)
        if self.on_trace:
            self.on_trace(message)

    def assistant_start(
        self,
        name: str,
        node_id: str,
        variant: AssistantVariant = AssistantVariant.STANDARD,
        model_id: str | None = None,
    ) -> str:
        if self.on_assistant_start:
            return self.on_assistant_start(
                name=name, variant=variant, node_id=node_id, model_id=model_id
            )
        return str(uuid.uuid4())

    def assistant_update(self, message_id: str, content: str) -> None:
        if self.on_assistant_update:
            self.on_assistant_update(message_id, content)

    def assistant_usage(self, message_id: str, usage: CompletionUsage) -> None:
        if self.on_assistant_usage:
            self.on_assistant_usage(message_id, usage)


@dataclass
class ExecutionRuntime:
    """Collaborators and signals shared by every executor in one run."""

    callbacks: RunCallbacks = field(default_factory=RunCallbacks)
    config: RuntimeConfig = field(default_factory=RuntimeConfig)
    llm: LLMProvider | None = None
    retrieval: RetrievalProvider | None = None
    usage_sink: UsageSink | None = None
    cancel_event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError()

    def trace(self, message: str) -> None:
        self.callbacks.trace(message)

    def require_llm(self, node_id: str, node_type: str) -> LLMProvider:
        if self.llm is None:
            raise NodeExecutionError(
                f"No LLM provider is configured ({node_id}).",
                node_id=node_id,
                node_type=node_type,
            )
        return self.llm

    def require_retrieval(self) -> RetrievalProvider:
        if self.retrieval is None:
            raise RuntimeError("No retrieval provider is configured.")
        return self.retrieval

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await an external call, abandoning it if the run is cancelled.

        Raises:
            RunCancelledError: the signal was already set or fired mid-call
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RunCancelledError()
        if self.cancel_event is None:
            return await awaitable

        call = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.cancel_event.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if call in done:
            return call.result()

        call.cancel()
        try:
            await call
        except (asyncio.CancelledError, Exception):
            # The call is being abandoned; its outcome no longer matters.
            pass
        logger.info("⏹ External call cancelled")
        raise RunCancelledError()

    def record_usage(
        self,
        message_id: str,
        model: str,
        usage: CompletionUsage | None,
        node_id: str | None = None,
    ) -> None:
        if usage is None:
            return
        self.callbacks.assistant_usage(message_id, usage)
        logger.info(
            f"   Tokens: {usage.total_tokens} ({usage.prompt_tokens} in / {usage.completion_tokens} out)",
            extra={"model": model, "tokens_used": usage.total_tokens, "node_id": node_id},
        )
        if self.usage_sink is not None:
            self.usage_sink(
                UsageRecord(
                    model=model,
                    prompt_tokens=usage.prompt_tokens,
                    completion_tokens=usage.completion_tokens,
                    total_tokens=usage.total_tokens,
                    cost=usage.cost,
                    node_id=node_id,
                )
            )


def describe_payload(value: Any, limit: int = 200) -> str:
    """Short printable rendering for traces."""
    text = value if isinstance(value, str) else repr(value)
    if len(text) > limit:
        return text[:limit] + "..."
    return text
