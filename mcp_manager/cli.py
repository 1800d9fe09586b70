"""
Command-line front end: start the configured MCP servers and use them.

Usage:
    # Write an empty config to fill in
    mcp-manager init ~/.config/mcp-manager/mcp_config.json

    # Start every server and show which came up
    mcp-manager --config mcp_config.json servers

    # List discovered tools with their owning server
    mcp-manager tools

    # Call a tool
    mcp-manager call echo --arguments '{"message": "hello"}'
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys

from mcp_manager.bridge import render_result, tool_prompt_block
from mcp_manager.config import ServerRegistry, create_default_config, resolve_config_path
from mcp_manager.errors import MCPServerError
from mcp_manager.manager import ToolServerManager


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-manager",
        description="Start local MCP tool servers and call their tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcp-manager init ./mcp_config.json
  mcp-manager --config ./mcp_config.json tools
  mcp-manager call echo --arguments '{"message": "hi"}'
        """,
    )
    parser.add_argument("--config", "-c", type=str, default=None,
                        help="Config file (default: $MCP_CONFIG_PATH or ~/.config/mcp-manager/mcp_config.json)")
    parser.add_argument("--timeout", type=float, default=5.0, help="Per-request timeout in seconds")
    parser.add_argument("--stagger", type=float, default=1.0, help="Delay between server launches in seconds")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("servers", help="Start all servers and report their status")
    tools = sub.add_parser("tools", help="List tools of all running servers")
    tools.add_argument("--describe", action="store_true", help="Show parameters of each tool")
    call = sub.add_parser("call", help="Call a tool by name")
    call.add_argument("name", help="Tool name")
    call.add_argument("--arguments", "-a", type=str, default="{}", help="Tool arguments as a JSON object")
    init = sub.add_parser("init", help="Write an empty config file")
    init.add_argument("path", nargs="?", default=None, help="Where to write it")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command == "init":
        path = create_default_config(resolve_config_path(args.path or args.config))
        print(f"Config: {path}")
        return 0

    arguments = {}
    if args.command == "call":
        try:
            arguments = json.loads(args.arguments)
        except json.JSONDecodeError as e:
            parser.error(f"--arguments is not valid JSON: {e}")
        if not isinstance(arguments, dict):
            parser.error("--arguments must be a JSON object")

    try:
        registry = ServerRegistry.load(args.config)
    except MCPServerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    manager = ToolServerManager(registry, request_timeout=args.timeout, stagger=args.stagger)

    # Graceful shutdown on Ctrl+C
    def shutdown(sig, frame):
        print("\nShutting down MCP servers...", file=sys.stderr)
        manager.stop_all()
        sys.exit(130)
    previous_handler = signal.signal(signal.SIGINT, shutdown)

    try:
        manager.start_all()
        if args.command == "servers":
            return _print_servers(manager)
        if args.command == "tools":
            return _print_tools(manager, args.describe)
        return _call(manager, args.name, arguments)
    finally:
        manager.stop_all()
        signal.signal(signal.SIGINT, previous_handler)


def _print_servers(manager: ToolServerManager) -> int:
    statuses = manager.list_servers()
    for name in manager.registry.names():
        running = statuses.get(name, False)
        count = len(manager.list_tools(name))
        state = "running" if running else "failed"
        print(f"  {name:<30} {state:<8} {count} tool(s)")
    for name, error in manager.registry.errors.items():
        print(f"  {name:<30} invalid  {error.detail}")
    return 0 if statuses and all(statuses.values()) else 1


def _print_tools(manager: ToolServerManager, describe: bool) -> int:
    entries = manager.get_tools_with_servers()
    print(f"\nAvailable tools ({len(entries)}):\n")
    for owner, tool in entries:
        if describe:
            print(tool_prompt_block(tool))
            print(f"  (server: {owner})\n")
        else:
            print(f"  {tool.name:<35} [{owner}] {tool.description.splitlines()[0] if tool.description else ''}")
    return 0


def _call(manager: ToolServerManager, name: str, arguments: dict) -> int:
    try:
        result = manager.call_tool_by_name(name, arguments)
    except MCPServerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(render_result(result))
    return 1 if result.is_error else 0


if __name__ == "__main__":
    sys.exit(main())
