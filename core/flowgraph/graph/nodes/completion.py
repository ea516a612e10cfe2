"""
Completion node - one LLM turn, optionally with a tool-calling loop.

Request messages are assembled as: system prompt, context messages (stable
sort by ascending priority), the conversation when ``include_conversation``
is set, then the user message rendered from the payload.

When tools are in play (``use_tools`` or any provider wired in), the node
loops up to ``RuntimeConfig.max_tool_iterations`` rounds. Provider inputs
are collected again on every round so ``global_state`` writes made by one
round are visible to the next.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from flowgraph.graph.errors import FlowGraphError, NodeExecutionError, RunCancelledError
from flowgraph.graph.nodes.base import (
    LABEL_ATTRIBUTE,
    OUT_PORT,
    AttributeDefinition,
    NodeDefinition,
    NodeExecutionContext,
    input_port,
    node_title,
)
from flowgraph.graph.nodes.message import collect_message_inputs
from flowgraph.graph.runtime import AssistantVariant
from flowgraph.graph.state import (
    ContextMessage,
    ConversationEntry,
    merge_context_messages,
    sort_context_messages,
    to_user_message,
)
from flowgraph.graph.tools import (
    ToolCollection,
    ToolInvocation,
    collect_tool_contributions,
    parse_tool_arguments,
    tool_message_content,
)
from flowgraph.graph.types import AttributeKind, CompletionNodeData, LLMRole, NodeCategory, NodeType
from flowgraph.llm.provider import (
    CompletionMessage,
    CompletionRequest,
    CompletionResponse,
    Tool,
    ToolCall,
)

logger = logging.getLogger(__name__)

EMPTY_COMPLETION = "Completion returned no content."


def build_completion_messages(
    system_prompt: str,
    context_messages: list[ContextMessage],
    conversation: list[ConversationEntry],
    include_conversation: bool,
    user_message: str,
) -> list[CompletionMessage]:
    messages: list[CompletionMessage] = []
    if system_prompt and system_prompt.strip():
        messages.append(CompletionMessage(role=LLMRole.SYSTEM, content=system_prompt))
    for entry in sort_context_messages(context_messages):
        messages.append(
            CompletionMessage(
                role=str(entry.role),
                content=entry.content,
                tool_calls=list(entry.tool_calls),
                tool_call_id=entry.tool_call_id,
            )
        )
    if include_conversation:
        for turn in conversation:
            messages.append(
                CompletionMessage(
                    role=str(turn.role),
                    content=turn.content,
                    tool_calls=list(turn.tool_calls),
                    tool_call_id=turn.tool_call_id,
                )
            )
    messages.append(CompletionMessage(role=LLMRole.USER, content=user_message))
    return messages


@dataclass
class ToolConfig:
    """Extra tools and tool choice declared on the node itself."""

    tools: list[Tool]
    tool_choice: Any = None


def parse_tool_config(data: CompletionNodeData) -> ToolConfig:
    """
    Parse ``tools_json`` and ``tool_choice_json``.

    Raises:
        ValueError: either field holds invalid JSON or a malformed tool
    """
    tools: list[Tool] = []
    if data.tools_json and data.tools_json.strip():
        try:
            parsed = json.loads(data.tools_json)
        except json.JSONDecodeError as e:
            raise ValueError(f"Tools JSON is invalid: {e.msg}") from e
        if not isinstance(parsed, list):
            raise ValueError("Tools JSON is invalid: expected an array of tool definitions.")
        for entry in parsed:
            if not isinstance(entry, dict):
                raise ValueError("Tools JSON is invalid: every tool must be an object.")
            tools.append(Tool.from_function(entry))

    tool_choice = None
    if data.tool_choice_json and data.tool_choice_json.strip():
        try:
            tool_choice = json.loads(data.tool_choice_json)
        except json.JSONDecodeError as e:
            raise ValueError(f"Tool choice JSON is invalid: {e.msg}") from e
    return ToolConfig(tools=tools, tool_choice=tool_choice)


def _merge_tools(provided: list[Tool], declared: list[Tool]) -> list[Tool]:
    # Provider tools win on name collisions.
    names = {tool.name for tool in provided}
    return provided + [tool for tool in declared if tool.name not in names]


class _Streamer:
    """Accumulates streamed deltas and forwards the running text."""

    def __init__(self, context: NodeExecutionContext, message_id: str):
        self.context = context
        self.message_id = message_id
        self.chunks: list[str] = []

    def __call__(self, delta: str) -> None:
        self.chunks.append(delta)
        self.context.runtime.callbacks.assistant_update(self.message_id, "".join(self.chunks))

    def text(self, response: CompletionResponse) -> str:
        return response.content or "".join(self.chunks)


def _collect_tools(context: NodeExecutionContext) -> ToolCollection:
    try:
        return collect_tool_contributions(context.node_id, context.evaluation)
    except NodeExecutionError as e:
        raise NodeExecutionError(
            f"Completion tool nodes failed ({context.node_id}): {e.message}",
            node_id=context.node_id,
            node_type=context.node_type,
        ) from e


def _current_context_messages(context: NodeExecutionContext, collection: ToolCollection) -> list[ContextMessage]:
    scoped = collect_message_inputs(context.node_id, context.evaluation)
    merged = merge_context_messages(context.state.context_messages, scoped)
    return merge_context_messages(merged, collection.context_messages)


async def _request(
    context: NodeExecutionContext,
    request: CompletionRequest,
    title: str,
) -> tuple[str, CompletionResponse, str]:
    """Run one streamed completion; returns (message id, response, text)."""
    runtime = context.runtime
    llm = runtime.require_llm(context.node_id, context.node_type)
    message_id = runtime.callbacks.assistant_start(
        name=title, node_id=context.node_id, variant=AssistantVariant.STANDARD, model_id=request.model
    )
    streamer = _Streamer(context, message_id)
    logger.info(
        f"   Calling {request.model} ({len(request.messages)} messages, {len(request.tools)} tools)",
        extra={"model": request.model, "node_id": context.node_id},
    )
    response = await runtime.guard(llm.complete(request, on_delta=streamer))
    runtime.record_usage(message_id, response.model or request.model, response.usage, context.node_id)
    return message_id, response, streamer.text(response)


async def execute_completion(context: NodeExecutionContext, data: CompletionNodeData) -> None:
    runtime = context.runtime
    title = node_title(context.node)
    model = (data.model or "").strip() or runtime.config.default_model
    user_message = to_user_message(context.state.payload)

    collection = _collect_tools(context)
    uses_tools = data.use_tools or bool(collection.contributions)

    tool_config = ToolConfig(tools=[])
    if uses_tools:
        try:
            tool_config = parse_tool_config(data)
        except ValueError as e:
            raise NodeExecutionError(
                f"Completion tools config failed ({context.node_id}): {e}",
                node_id=context.node_id,
                node_type=context.node_type,
            ) from e

    if not uses_tools:
        request = CompletionRequest(
            model=model,
            messages=build_completion_messages(
                data.system_prompt,
                _current_context_messages(context, collection),
                context.state.conversation,
                data.include_conversation,
                user_message,
            ),
            temperature=data.temperature,
        )
        message_id, _, text = await _request(context, request, title)
        content = text if text.strip() else EMPTY_COMPLETION
        runtime.callbacks.assistant_update(message_id, content)
        context.state.conversation.append(ConversationEntry(role=LLMRole.USER, content=user_message))
        context.state.conversation.append(ConversationEntry(role=LLMRole.ASSISTANT, content=content))
        context.state.payload = content
        return

    await _run_tool_loop(context, data, model, user_message, tool_config, title)


async def _run_tool_loop(
    context: NodeExecutionContext,
    data: CompletionNodeData,
    model: str,
    user_message: str,
    tool_config: ToolConfig,
    title: str,
) -> None:
    runtime = context.runtime
    max_iterations = runtime.config.max_tool_iterations
    turns: list[ConversationEntry] = []
    final_content = ""

    for iteration in range(max_iterations):
        runtime.check_cancelled()
        collection = _collect_tools(context)
        base_messages = build_completion_messages(
            data.system_prompt,
            _current_context_messages(context, collection),
            context.state.conversation,
            data.include_conversation,
            user_message,
        )
        transcript = [
            CompletionMessage(
                role=str(turn.role), content=turn.content, tool_calls=turn.tool_calls, tool_call_id=turn.tool_call_id
            )
            for turn in turns
        ]
        request = CompletionRequest(
            model=model,
            messages=base_messages + transcript,
            temperature=data.temperature,
            tools=_merge_tools(collection.tools, tool_config.tools),
            tool_choice=tool_config.tool_choice if iteration == 0 else None,
        )

        message_id, response, text = await _request(context, request, title)

        if not response.tool_calls:
            final_content = text
            break

        calls = [
            ToolCall(
                id=call.id or f"{context.node_id}-toolcall-{iteration}-{index + 1}",
                name=call.name,
                arguments=call.arguments,
            )
            for index, call in enumerate(response.tool_calls)
        ]
        context.trace(f"Completion requested tool(s): {', '.join(call.name for call in calls)}")
        turns.append(ConversationEntry(role=LLMRole.ASSISTANT, content=text, tool_calls=calls))

        for call in calls:
            result_content = await _execute_tool_call(context, collection, call)
            turns.append(ConversationEntry(role=LLMRole.TOOL, content=result_content, tool_call_id=call.id))
    else:
        context.trace(f"Completion reached max tool iterations ({max_iterations})")

    content = final_content if final_content.strip() else EMPTY_COMPLETION
    final_id = runtime.callbacks.assistant_start(
        name=title, node_id=context.node_id, variant=AssistantVariant.STANDARD, model_id=model
    )
    runtime.callbacks.assistant_update(final_id, content)

    context.state.conversation.append(ConversationEntry(role=LLMRole.USER, content=user_message))
    context.state.conversation.extend(turns)
    context.state.conversation.append(ConversationEntry(role=LLMRole.ASSISTANT, content=content))
    context.state.payload = content


async def _execute_tool_call(context: NodeExecutionContext, collection: ToolCollection, call: ToolCall) -> str:
    contribution = collection.find(call.name)
    if contribution is None:
        raise NodeExecutionError(
            f'Tool call "{call.name}" cannot be executed ({context.node_id}): '
            "no matching developer tool is connected.",
            node_id=context.node_id,
            node_type=context.node_type,
        )

    context.runtime.check_cancelled()
    invocation = ToolInvocation(
        node_id=contribution.node_id,
        data=contribution.data,
        arguments=parse_tool_arguments(call.arguments),
        runtime=context.runtime,
        evaluation=context.evaluation,
    )
    try:
        result = await contribution.definition.handler(invocation)
    except (RunCancelledError, FlowGraphError):
        raise
    except Exception as e:
        raise NodeExecutionError(
            f'Tool "{call.name}" failed ({context.node_id}): {e}',
            node_id=context.node_id,
            node_type=context.node_type,
        ) from e

    context.trace(f"Tool {call.name} ({contribution.node_id}): {result.message}")
    return tool_message_content(call.name, result)


COMPLETION_DEFINITION = NodeDefinition(
    type=NodeType.COMPLETION,
    label="Completion",
    description="Generate a response using an LLM.",
    category=NodeCategory.AGENT,
    create_data=CompletionNodeData,
    executor=execute_completion,
    attributes=[
        LABEL_ATTRIBUTE,
        AttributeDefinition(key="model", label="Model", kind=AttributeKind.TEXT, placeholder="openai/gpt-4o-mini"),
        AttributeDefinition(key="temperature", label="Temperature", kind=AttributeKind.NUMBER, min=0, max=2),
        AttributeDefinition(
            key="include_conversation",
            label="Include conversation",
            kind=AttributeKind.TOGGLE,
            description="Send earlier turns of the conversation with the request.",
        ),
        AttributeDefinition(
            key="system_prompt", label="System prompt", kind=AttributeKind.TEXT, multiline=True
        ),
        AttributeDefinition(
            key="use_tools",
            label="Use tools",
            kind=AttributeKind.TOGGLE,
            description="Enable tool calling even when no provider node is connected.",
        ),
        AttributeDefinition(
            key="tools_json",
            label="Tools (JSON)",
            kind=AttributeKind.JSON,
            description="Extra function tool definitions.",
            multiline=True,
            exposed=lambda data: data.use_tools,
        ),
        AttributeDefinition(
            key="tool_choice_json",
            label="Tool choice (JSON)",
            kind=AttributeKind.JSON,
            exposed=lambda data: data.use_tools,
        ),
    ],
    input_ports=[input_port("in", "In"), input_port("tools", "Tools")],
    output_ports=[OUT_PORT],
    external_call=True,
)
