from __future__ import annotations

import argparse
import asyncio
import sys

from .images import estimated_decoded_size
from .logs import configure_logging
from .mcp_server import _DISPATCH, _call_tool, _get_config
from .mcp_server import main as mcp_main


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="serpmcp",
        description="ValueSerp search tools over the Model Context Protocol.",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser(
        "mcp",
        help=(
            "Run the MCP (Model Context Protocol) server over stdio. "
            "Hook this up to any MCP client."
        ),
    )

    search_parser = subparsers.add_parser("search", help="Run one search tool and print the result")
    search_parser.add_argument("tool", choices=sorted(_DISPATCH), help="Tool to call")
    search_parser.add_argument(
        "params",
        nargs="*",
        metavar="KEY=VALUE",
        help="Tool arguments, e.g. q='coffee shops' output=json num=5",
    )
    search_parser.set_defaults(func=search_command)

    return parser


def parse_params(pairs: list[str]) -> dict[str, object]:
    params: dict[str, object] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"expected KEY=VALUE, got {pair!r}")
        if key == "q":
            params[key] = value
        elif value.lower() in {"true", "false"}:
            params[key] = value.lower() == "true"
        elif value.isdigit():
            params[key] = int(value)
        elif key == "fields":
            params[key] = [part for part in value.split(",") if part]
        else:
            params[key] = value
    return params


def search_command(args: argparse.Namespace) -> int:
    try:
        params = parse_params(args.params)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    configure_logging(_get_config()["log_level"])
    result = asyncio.run(_call_tool(args.tool, params))
    for block in result["content"]:
        if block["type"] == "text":
            print(block["text"])
        else:
            print(f"[image {block['mimeType']}, {estimated_decoded_size(block['data'])} bytes]")
    return 1 if result["isError"] else 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    if args.command == "mcp":
        mcp_main()
        return
    if hasattr(args, "func"):
        sys.exit(args.func(args))
    parser.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
