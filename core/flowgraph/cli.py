"""
Command-line interface for flowgraph.

Usage:
    flowgraph validate graph.json
    flowgraph plan graph.json
    flowgraph run graph.json --message "hello" --vars '{"user": {"name": "Ada"}}'
    flowgraph nodes
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError


def _load_graph(path: str):
    from flowgraph.graph.types import Graph

    text = Path(path).read_text(encoding="utf-8-sig")
    return Graph.model_validate_json(text)


def _print_issues(issues) -> None:
    for issue in issues:
        location = issue.node_id or issue.edge_id
        suffix = f" [{location}]" if location else ""
        print(f"{issue.level.upper()} {issue.code}: {issue.message}{suffix}")


def cmd_validate(args: argparse.Namespace) -> int:
    from flowgraph.graph.validation import validate_graph

    graph = _load_graph(args.graph)
    issues = validate_graph(graph)
    if args.json:
        print(json.dumps([issue.to_dict() for issue in issues], indent=2))
    elif issues:
        _print_issues(issues)
    else:
        print("✓ Graph is valid")
    return 1 if any(issue.is_error for issue in issues) else 0


def cmd_plan(args: argparse.Namespace) -> int:
    from flowgraph.graph.planner import create_run_plan

    plan = create_run_plan(_load_graph(args.graph))
    if args.json:
        print(json.dumps(plan.to_dict(), indent=2))
        return 0

    for index, step in enumerate(plan.steps, start=1):
        print(f"{index}. {step.title} ({step.node_type})")
    if plan.issues:
        print()
        _print_issues(plan.issues)
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    from flowgraph.graph.errors import FlowGraphError
    from flowgraph.graph.interpreter import RunCallbacks, RunStatus, run_graph

    graph = _load_graph(args.graph)
    initial_vars: dict[str, Any] = {}
    if args.vars:
        initial_vars = json.loads(args.vars)
        if not isinstance(initial_vars, dict):
            print("--vars must be a JSON object", file=sys.stderr)
            return 2

    callbacks = RunCallbacks(on_trace=lambda message: print(f"· {message}"))
    try:
        outcome = asyncio.run(
            run_graph(graph, args.message, initial_vars=initial_vars, callbacks=callbacks)
        )
    except FlowGraphError as e:
        print(e.message, file=sys.stderr)
        return 1

    if outcome.status == RunStatus.COMPLETED:
        print(f"✓ Completed ({outcome.reason})")
        print(json.dumps(outcome.output, indent=2, default=str))
        return 0
    if outcome.status == RunStatus.CANCELLED:
        print("⏹ Cancelled")
        return 130
    print(f"✗ Failed at {outcome.failed_node_id}: {outcome.error}", file=sys.stderr)
    return 1


def cmd_nodes(args: argparse.Namespace) -> int:
    from flowgraph.graph.registry import list_palette_nodes

    for definition in list_palette_nodes():
        print(f"{definition.type:<14} {definition.label:<14} {definition.description}")
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    validate_parser = subparsers.add_parser("validate", help="Check a graph for structural issues")
    validate_parser.add_argument("graph", help="Path to a graph JSON file")
    validate_parser.add_argument("--json", action="store_true", help="Print issues as JSON")
    validate_parser.set_defaults(func=cmd_validate)

    plan_parser = subparsers.add_parser("plan", help="Preview the steps a run would take")
    plan_parser.add_argument("graph", help="Path to a graph JSON file")
    plan_parser.add_argument("--json", action="store_true", help="Print the plan as JSON")
    plan_parser.set_defaults(func=cmd_plan)

    run_parser = subparsers.add_parser("run", help="Run a graph that needs no external services")
    run_parser.add_argument("graph", help="Path to a graph JSON file")
    run_parser.add_argument("--message", "-m", default=None, help="Initial user message")
    run_parser.add_argument("--vars", default=None, help="Initial vars as a JSON object")
    run_parser.set_defaults(func=cmd_run)

    nodes_parser = subparsers.add_parser("nodes", help="List the node types that can be created")
    nodes_parser.set_defaults(func=cmd_nodes)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="flowgraph",
        description="flowgraph - validate, preview and run node-based LLM workflows",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default from configuration)")
    parser.add_argument("--log-format", default="auto", choices=["auto", "json", "human"])

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args(argv)

    from flowgraph.config import RuntimeConfig
    from flowgraph.observability import configure_logging

    configure_logging(level=args.log_level or RuntimeConfig().log_level, format=args.log_format)

    try:
        code = args.func(args)
    except (OSError, ValidationError, json.JSONDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
