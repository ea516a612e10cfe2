"""
Tests for the Redact node and its masking helpers.
"""

import pytest

from flowgraph.graph.interpreter import RunStatus, run_graph
from flowgraph.graph.nodes.redact import RedactionOptions, mask_key_like_value, redact_text
from flowgraph.graph.state import ExecutionState
from flowgraph.graph.types import Graph, GraphEdge, GraphNode, NodeType, RedactionPlaceholderFormat

GENERIC = RedactionPlaceholderFormat.GENERIC


class TestTypedPlaceholders:
    def test_email(self):
        assert redact_text("Contact ada@example.com now", RedactionOptions()) == "Contact xxxx@xxxx.com now"

    def test_prefixed_api_key_keeps_prefix(self):
        text = "key sk-proj-abcdEFGH12345678wxyz"

        assert redact_text(text, RedactionOptions()) == "key sk-proj-" + "x" * 20

    def test_github_token(self):
        token = "ghp_" + "A1b2C3d4E5" * 3 + "abcdef"

        assert redact_text(f"token {token}", RedactionOptions()) == "token ghp_" + "x" * 36

    def test_quoted_assignment(self):
        text = 'api_key="abcd1234efgh5678"'

        assert redact_text(text, RedactionOptions()) == 'api_key="xxxxxxxxxxxxxxxx"'

    def test_assignment_keeps_short_prefix(self):
        assert redact_text("token: live_abcdefgh1234", RedactionOptions()) == "token: live_xxxxxxxxxxxx"

    def test_sdk_key_assignment(self):
        assert redact_text("sdk_key=abc123def456", RedactionOptions()) == "sdk_key=xxxxxxxxxxxx"


class TestGenericPlaceholders:
    def test_replaces_every_match(self):
        text = "mail ada@example.com and sk-abcdefghijklmnopqrstu"

        result = redact_text(text, RedactionOptions(placeholder_format=GENERIC, replacement="[GONE]"))

        assert result == "mail [GONE] and [GONE]"

    def test_blank_replacement_falls_back(self):
        result = redact_text("ada@example.com", RedactionOptions(placeholder_format=GENERIC, replacement="  "))

        assert result == "[REDACTED]"

    def test_assignment_value_only(self):
        result = redact_text("secret = hunter2hunter2", RedactionOptions(placeholder_format=GENERIC))

        assert result == "secret = [REDACTED]"


def test_toggles_disable_categories():
    text = "ada@example.com sdk_key=abc123def456"
    options = RedactionOptions(redact_emails=False, redact_sdk_keys=False)

    assert redact_text(text, options) == text


def test_text_without_secrets_is_unchanged():
    text = "Nothing to see here, just a sentence."

    assert redact_text(text, RedactionOptions()) == text


def test_mask_key_like_value_preserves_delimiters():
    assert mask_key_like_value("sk-proj-ab12-cd34efgh5678ijkl") == "sk-proj-xxxx-" + "x" * 16
    assert mask_key_like_value("abc.def/123") == "xxx.xxx/xxx"


def redact_graph() -> Graph:
    return Graph(
        nodes=[
            GraphNode(id="start", type=NodeType.START),
            GraphNode(id="red", type=NodeType.REDACT),
            GraphNode(id="end", type=NodeType.END),
        ],
        edges=[
            GraphEdge(id="e1", source="start", target="red"),
            GraphEdge(id="e2", source="red", target="end"),
        ],
    )


@pytest.mark.asyncio
async def test_redact_node_rewrites_payload():
    outcome = await run_graph(redact_graph(), "reach me at ada@example.com")

    assert outcome.status == RunStatus.COMPLETED
    assert outcome.output == "reach me at xxxx@xxxx.com"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload, kind", [({"a": 1}, "dict"), (None, "null"), (3, "int")])
async def test_redact_node_rejects_non_string_payload(payload, kind):
    outcome = await run_graph(redact_graph(), initial_state=ExecutionState(payload=payload))

    assert outcome.status == RunStatus.FAILED
    assert outcome.failed_node_id == "red"
    assert outcome.error == f"Redact node expects string input (red), got {kind}."
