"""
Redact node - masks e-mail addresses, API keys and SDK keys in a string payload.

Two placeholder styles:
- generic: every match becomes ``replacement`` (default ``[REDACTED]``)
- typed: e-mails become ``xxxx@xxxx.com`` and key material is masked with
  ``x`` while keeping recognisable prefixes and delimiters, e.g.
  ``sk-proj-abcd-1234...`` -> ``sk-proj-xxxx-xxxx...``
"""

import re
from collections.abc import Callable
from dataclasses import dataclass

from flowgraph.graph.errors import NodeExecutionError
from flowgraph.graph.nodes.base import (
    IN_PORT,
    LABEL_ATTRIBUTE,
    OUT_PORT,
    AttributeDefinition,
    AttributeOption,
    NodeDefinition,
    NodeExecutionContext,
    node_title,
)
from flowgraph.graph.types import (
    AttributeKind,
    NodeCategory,
    NodeType,
    RedactionPlaceholderFormat,
    RedactNodeData,
)

EMAIL_PATTERN = re.compile(r"\b[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@(?:[a-zA-Z0-9-]+\.)+[a-zA-Z]{2,}\b")
EMAIL_TYPED_REPLACEMENT = "xxxx@xxxx.com"

# (prefix, secret) groups for well-known key formats.
API_KEY_PATTERNS = [
    re.compile(r"\b((?:sk|rk|pk)-(?:proj-)?)([A-Za-z0-9-]{16,})\b"),
    re.compile(r"\b((?:sk|pk|rk)_(?:test|live)_)([A-Za-z0-9]{10,})\b"),
    re.compile(r"\b(gh[pousr]_)([A-Za-z0-9]{20,})\b"),
    re.compile(r"\b(xox[baprs]-)([A-Za-z0-9-]{10,})\b"),
    re.compile(r"\b(AIza)([0-9A-Za-z\-_]{35})\b"),
    re.compile(r"\b((?:AKIA|ASIA))([0-9A-Z]{16})\b"),
]

_ASSIGNMENT_TAIL = r"""\b(\s*[:=]\s*)(["']?)([A-Za-z0-9_\-./+=]{8,})(\3)"""
API_KEY_ASSIGNMENT_PATTERN = re.compile(
    r"\b(api[_-]?key|access[_-]?token|refresh[_-]?token|token|secret|bearer)" + _ASSIGNMENT_TAIL,
    re.IGNORECASE,
)
SDK_KEY_ASSIGNMENT_PATTERN = re.compile(r"\b(sdk[_-]?key|sdkKey|sdk_key)" + _ASSIGNMENT_TAIL, re.IGNORECASE)

_ALNUM = re.compile(r"[A-Za-z0-9]")
_GENERIC_PREFIX = re.compile(r"^([A-Za-z]{2,10}[-_])(.*)$", re.DOTALL)


@dataclass
class RedactionOptions:
    redact_emails: bool = True
    redact_api_keys: bool = True
    redact_sdk_keys: bool = True
    placeholder_format: RedactionPlaceholderFormat = RedactionPlaceholderFormat.TYPED
    replacement: str = "[REDACTED]"

    @classmethod
    def from_data(cls, data: RedactNodeData) -> "RedactionOptions":
        return cls(
            redact_emails=data.redact_emails,
            redact_api_keys=data.redact_api_keys,
            redact_sdk_keys=data.redact_sdk_keys,
            placeholder_format=data.placeholder_format,
            replacement=data.replacement,
        )


def mask_preserving_delimiters(value: str, mask_char: str = "x") -> str:
    return _ALNUM.sub(mask_char, value)


def _mask_prefixed(match: re.Match) -> str:
    return match.group(1) + mask_preserving_delimiters(match.group(2))


def mask_key_like_value(value: str) -> str:
    """Mask a secret, keeping a known or short alphabetic prefix readable."""
    for pattern in API_KEY_PATTERNS:
        if pattern.search(value):
            return pattern.sub(_mask_prefixed, value)

    prefixed = _GENERIC_PREFIX.match(value)
    if prefixed:
        return prefixed.group(1) + mask_preserving_delimiters(prefixed.group(2))
    return mask_preserving_delimiters(value)


def _assignment_replacer(replace_value: Callable[[str], str]) -> Callable[[re.Match], str]:
    def replace(match: re.Match) -> str:
        label, separator, quote, value = match.group(1, 2, 3, 4)
        return f"{label}{separator}{quote}{replace_value(value)}{quote}"

    return replace


def redact_text(text: str, options: RedactionOptions) -> str:
    """Apply the enabled redactions in order: e-mails, API keys, SDK keys."""
    generic = (options.replacement or "").strip() or "[REDACTED]"
    typed = options.placeholder_format == RedactionPlaceholderFormat.TYPED
    result = text

    if options.redact_emails:
        result = EMAIL_PATTERN.sub(EMAIL_TYPED_REPLACEMENT if typed else generic, result)

    if options.redact_api_keys:
        for pattern in API_KEY_PATTERNS:
            result = pattern.sub(_mask_prefixed if typed else (lambda _m: generic), result)
        result = API_KEY_ASSIGNMENT_PATTERN.sub(
            _assignment_replacer(mask_key_like_value if typed else (lambda _v: generic)),
            result,
        )

    if options.redact_sdk_keys:
        result = SDK_KEY_ASSIGNMENT_PATTERN.sub(
            _assignment_replacer(mask_key_like_value if typed else (lambda _v: generic)),
            result,
        )

    return result


async def execute_redact(context: NodeExecutionContext, data: RedactNodeData) -> None:
    context.trace(f"Executing: {node_title(context.node)}")

    payload = context.state.payload
    if not isinstance(payload, str):
        kind = "null" if payload is None else type(payload).__name__
        raise NodeExecutionError(
            f"Redact node expects string input ({context.node_id}), got {kind}.",
            node_id=context.node_id,
            node_type=context.node_type,
        )

    context.state.payload = redact_text(payload, RedactionOptions.from_data(data))


def _toggle(key: str, label: str, description: str) -> AttributeDefinition:
    return AttributeDefinition(key=key, label=label, kind=AttributeKind.TOGGLE, description=description)


REDACT_DEFINITION = NodeDefinition(
    type=NodeType.REDACT,
    label="Redact",
    description="Mask e-mail addresses and secrets in the payload.",
    category=NodeCategory.FUNCTION,
    create_data=RedactNodeData,
    executor=execute_redact,
    attributes=[
        LABEL_ATTRIBUTE,
        _toggle("redact_emails", "Emails", "Replace e-mail addresses."),
        _toggle("redact_api_keys", "API keys", "Replace API keys and tokens."),
        _toggle("redact_sdk_keys", "SDK keys", "Replace SDK key assignments."),
        AttributeDefinition(
            key="placeholder_format",
            label="Placeholder",
            kind=AttributeKind.SELECT,
            description="Typed placeholders keep the shape of the redacted value.",
            options=(
                AttributeOption(label="Typed", value=RedactionPlaceholderFormat.TYPED),
                AttributeOption(label="Generic", value=RedactionPlaceholderFormat.GENERIC),
            ),
        ),
        AttributeDefinition(
            key="replacement",
            label="Replacement",
            kind=AttributeKind.TEXT,
            description="Replacement text for generic placeholders.",
            placeholder="[REDACTED]",
            exposed=lambda data: data.placeholder_format == RedactionPlaceholderFormat.GENERIC,
        ),
    ],
    input_ports=[IN_PORT],
    output_ports=[OUT_PORT],
)
