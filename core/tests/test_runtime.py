"""
Tests for ExecutionRuntime: cancellation guard, usage accounting and
collaborator lookup.
"""

import asyncio

import pytest

from flowgraph.graph.errors import NodeExecutionError, RunCancelledError
from flowgraph.graph.runtime import ExecutionRuntime, RunCallbacks, describe_payload
from flowgraph.llm.provider import CompletionUsage


async def answer(value, delay=0.0):
    await asyncio.sleep(delay)
    return value


class TestGuard:
    @pytest.mark.asyncio
    async def test_without_signal(self):
        runtime = ExecutionRuntime()

        assert await runtime.guard(answer(42)) == 42

    @pytest.mark.asyncio
    async def test_signal_not_fired(self):
        runtime = ExecutionRuntime(cancel_event=asyncio.Event())

        assert await runtime.guard(answer("ok", 0.01)) == "ok"

    @pytest.mark.asyncio
    async def test_already_cancelled(self):
        event = asyncio.Event()
        event.set()
        runtime = ExecutionRuntime(cancel_event=event)

        with pytest.raises(RunCancelledError):
            await runtime.guard(answer(1))

    @pytest.mark.asyncio
    async def test_cancelled_mid_call(self):
        event = asyncio.Event()
        runtime = ExecutionRuntime(cancel_event=event)
        asyncio.get_running_loop().call_later(0.01, event.set)

        with pytest.raises(RunCancelledError):
            await runtime.guard(answer("late", 10))

    @pytest.mark.asyncio
    async def test_call_errors_propagate(self):
        async def fail():
            raise ConnectionError("boom")

        runtime = ExecutionRuntime(cancel_event=asyncio.Event())

        with pytest.raises(ConnectionError, match="boom"):
            await runtime.guard(fail())


def test_record_usage_reports_to_callbacks_and_sink():
    usages, records = [], []
    runtime = ExecutionRuntime(
        callbacks=RunCallbacks(on_assistant_usage=lambda message_id, usage: usages.append((message_id, usage))),
        usage_sink=records.append,
    )
    usage = CompletionUsage(prompt_tokens=10, completion_tokens=4, total_tokens=14, cost=0.02)

    runtime.record_usage("m1", "test/model", usage, node_id="llm")
    runtime.record_usage("m2", "test/model", None, node_id="llm")

    assert usages == [("m1", usage)]
    [record] = records
    assert (record.model, record.prompt_tokens, record.completion_tokens, record.total_tokens) == (
        "test/model",
        10,
        4,
        14,
    )
    assert (record.cost, record.node_id) == (0.02, "llm")


def test_missing_collaborators():
    runtime = ExecutionRuntime()

    with pytest.raises(NodeExecutionError, match=r"No LLM provider is configured \(n1\)\.") as excinfo:
        runtime.require_llm("n1", "completion")
    assert excinfo.value.node_id == "n1"

    with pytest.raises(RuntimeError, match="No retrieval provider"):
        runtime.require_retrieval()


def test_callbacks_are_optional():
    traces = []
    callbacks = RunCallbacks(on_trace=traces.append)

    message_id = callbacks.assistant_start(name="Completion", node_id="llm")
    callbacks.assistant_update(message_id, "text")
    callbacks.trace("hello")

    assert isinstance(message_id, str) and message_id
    assert traces == ["hello"]


def test_describe_payload():
    assert describe_payload("short") == "short"
    assert describe_payload({"a": 1}) == "{'a': 1}"
    assert describe_payload("x" * 10, limit=4) == "xxxx..."
