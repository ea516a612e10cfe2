"""Shared flowgraph configuration utilities.

Centralises reading of ~/.flowgraph/configuration.json so the interpreter,
the CLI and embedding applications resolve defaults the same way.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MODEL = "openai/gpt-4o-mini"
DEFAULT_GUARDRAILS_MODEL = "openai/gpt-4o-mini"
DEFAULT_MAX_TOOL_ITERATIONS = 10

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWGRAPH_CONFIG_FILE = Path.home() / ".flowgraph" / "configuration.json"


def get_flowgraph_config() -> dict[str, Any]:
    """Load configuration from ~/.flowgraph/configuration.json."""
    if not FLOWGRAPH_CONFIG_FILE.exists():
        return {}
    try:
        with open(FLOWGRAPH_CONFIG_FILE, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_default_model() -> str:
    """Return the model used by new Completion nodes (e.g. 'openai/gpt-4o-mini')."""
    return get_flowgraph_config().get("llm", {}).get("model") or DEFAULT_MODEL


def get_guardrails_model() -> str:
    """Return the model used by Guardrails nodes."""
    return get_flowgraph_config().get("guardrails", {}).get("model") or DEFAULT_GUARDRAILS_MODEL


def get_max_tool_iterations() -> int:
    """Return the tool-calling round limit, falling back to DEFAULT_MAX_TOOL_ITERATIONS."""
    value = get_flowgraph_config().get("llm", {}).get("max_tool_iterations")
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return DEFAULT_MAX_TOOL_ITERATIONS


# ---------------------------------------------------------------------------
# RuntimeConfig - passed to the interpreter
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Interpreter runtime configuration loaded from ~/.flowgraph/configuration.json."""

    default_model: str = field(default_factory=get_default_model)
    guardrails_model: str = field(default_factory=get_guardrails_model)
    guardrails_temperature: float = 0.0
    max_tool_iterations: int = field(default_factory=get_max_tool_iterations)
    log_level: str = "INFO"
