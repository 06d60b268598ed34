#!/usr/bin/env python3
"""
Command-line access to flow documents.

Usage:
  flowdesigner graph flow.json --format dot > flow.dot
  flowdesigner graph flow.json --level group_detail --group <gid> --format table
  flowdesigner validate flow.json --schema trancode.schema.json
  flowdesigner sessions flow.json
  flowdesigner serve --port 5010
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .document import SchemaResolver
from .errors import FlowDesignerError
from .flow import SYSTEM_SESSIONS, EditingLevel, FlowGraphModel, GraphPayload, user_sessions

logger = logging.getLogger(__name__)


def _load_json(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))


def _dot_id(value: str) -> str:
    return '"' + value.replace('"', '\\"') + '"'


def emit_dot(payload: GraphPayload) -> str:
    """Emit Graphviz DOT format."""
    lines: List[str] = []
    lines.append("digraph flow {")
    lines.append("  rankdir=LR;")
    lines.append("  node [shape=box];")
    for node in payload.nodes:
        shape = ", shape=circle" if node.type == "Start" else ""
        lines.append(f"  {_dot_id(node.id)} [label={_dot_id(node.name)}{shape}];")
    for link in payload.links:
        label = f" [label={_dot_id(link.label)}]" if link.label else ""
        lines.append(f"  {_dot_id(link.source)} -> {_dot_id(link.target)}{label};")
    lines.append("}")
    return "\n".join(lines)


def emit_json(payload: GraphPayload) -> str:
    return json.dumps(payload.to_dict(), indent=2, ensure_ascii=False)


def emit_table(payload: GraphPayload) -> str:
    """Emit simple table format."""
    names = {node.id: node.name for node in payload.nodes}
    lines: List[str] = []
    lines.append("Source               | Target               | Label")
    lines.append("---------------------|----------------------|------------------")
    for link in payload.links:
        lines.append(f"{names.get(link.source, link.source):20} | {names.get(link.target, link.target):20} | {link.label}")
    return "\n".join(lines)


def cmd_graph(args: argparse.Namespace) -> int:
    model = FlowGraphModel.from_document(_load_json(args.file))
    if args.level:
        model.switch_level(EditingLevel(args.level), args.group)
    payload = model.payload()
    if args.format == "json":
        print(emit_json(payload))
    elif args.format == "table":
        print(emit_table(payload))
    else:  # dot
        print(emit_dot(payload))
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    issues = SchemaResolver(_load_json(args.schema)).validate(_load_json(args.file))
    if not issues:
        print(f"{args.file}: valid")
        return 0
    for issue in issues:
        print(f"{args.file}: {issue}")
    return 1


def cmd_sessions(args: argparse.Namespace) -> int:
    document = _load_json(args.file)
    print("System sessions: " + ", ".join(SYSTEM_SESSIONS))
    print("User sessions:   " + (", ".join(user_sessions(document)) or "(none)"))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .api import create_app
    from .config import DesignerConfig, get_default_config

    config = DesignerConfig.from_yaml(args.config) if args.config else get_default_config()
    uvicorn.run(create_app(config), host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flowdesigner", description="Inspect and serve flow documents.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    graph = sub.add_parser("graph", help="Print the graph of a flow document")
    graph.add_argument("file", type=Path)
    graph.add_argument("--level", choices=[level.value for level in EditingLevel], default=None)
    graph.add_argument("--group", default=None, help="Group id for the group_detail level")
    graph.add_argument("--format", choices=["dot", "json", "table"], default="dot",
                       help="Output format (default: dot)")
    graph.set_defaults(func=cmd_graph)

    validate = sub.add_parser("validate", help="Validate a document against a JSON schema")
    validate.add_argument("file", type=Path)
    validate.add_argument("--schema", type=Path, required=True)
    validate.set_defaults(func=cmd_validate)

    sessions = sub.add_parser("sessions", help="List session variables a flow uses")
    sessions.add_argument("file", type=Path)
    sessions.set_defaults(func=cmd_sessions)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5010)
    serve.add_argument("--config", type=Path, default=None)
    serve.set_defaults(func=cmd_serve)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        return args.func(args)
    except (FlowDesignerError, OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
