"""Collaborator contracts for LLM completion and retrieval backends."""

from flowgraph.llm.provider import (
    CompletionMessage,
    CompletionRequest,
    CompletionResponse,
    CompletionUsage,
    DocumentContent,
    LLMProvider,
    RetrievalHit,
    RetrievalProvider,
    Tool,
    ToolCall,
    UsageRecord,
    UsageSink,
)

__all__ = [
    "CompletionMessage",
    "CompletionRequest",
    "CompletionResponse",
    "CompletionUsage",
    "DocumentContent",
    "LLMProvider",
    "RetrievalHit",
    "RetrievalProvider",
    "Tool",
    "ToolCall",
    "UsageRecord",
    "UsageSink",
]
