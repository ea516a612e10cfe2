"""
Tests for execution state, dot-path helpers and context message ordering.
"""

import pytest

from flowgraph.graph.state import (
    ContextMessage,
    ExecutionState,
    get_nested_value,
    merge_context_messages,
    set_nested_value,
    sort_context_messages,
    to_user_message,
)


class TestNestedValues:
    def test_get_reads_nested_dicts_and_list_indices(self):
        data = {"world": {"users": [{"name": "Ada"}, {"name": "Lin"}]}}

        assert get_nested_value(data, "world.users.1.name") == "Lin"
        assert get_nested_value(data, "world.users.-1.name") == "Lin"
        assert get_nested_value(data, "world.missing.name") is None
        assert get_nested_value(data, "world.users.9") is None
        assert get_nested_value(data, "") is None

    def test_set_creates_missing_intermediates(self):
        data: dict = {}

        set_nested_value(data, "world.user.name", "Ada")

        assert data == {"world": {"user": {"name": "Ada"}}}

    def test_set_replaces_non_dict_intermediates(self):
        data = {"world": "flat"}

        set_nested_value(data, "world.user", 1)

        assert data == {"world": {"user": 1}}

    @pytest.mark.parametrize("path", ["", "   ", "a..b"])
    def test_set_rejects_empty_paths(self, path):
        with pytest.raises(ValueError):
            set_nested_value({}, path, 1)


class TestContextMessages:
    def test_merge_skips_sources_already_present(self):
        base = [ContextMessage(role="system", content="one", source_node_id="m1")]
        scoped = [
            ContextMessage(role="system", content="dup", source_node_id="m1"),
            ContextMessage(role="system", content="two", source_node_id="m2"),
        ]

        merged = merge_context_messages(base, scoped)

        assert [entry.content for entry in merged] == ["one", "two"]
        assert [entry.content for entry in base] == ["one"]

    def test_sort_is_stable_within_a_priority(self):
        messages = [
            ContextMessage(role="system", content="b", priority=5),
            ContextMessage(role="system", content="a1", priority=0),
            ContextMessage(role="system", content="rag", priority=-50),
            ContextMessage(role="system", content="a2", priority=0),
        ]

        assert [entry.content for entry in sort_context_messages(messages)] == ["rag", "a1", "a2", "b"]


def test_to_user_message_renders_payloads():
    assert to_user_message("hi") == "hi"
    assert to_user_message(None) == ""
    assert to_user_message({"score": 1}) == '{"score": 1}'


def test_snapshot_is_independent():
    state = ExecutionState(payload={"a": 1}, vars={"x": {"y": 1}})

    snapshot = state.snapshot()
    state.vars["x"]["y"] = 2
    state.payload["a"] = 2

    assert snapshot.vars == {"x": {"y": 1}}
    assert snapshot.payload == {"a": 1}
