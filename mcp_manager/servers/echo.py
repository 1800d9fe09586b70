"""
Echo MCP Tool Server — minimal reference implementation.

Use this as a template for building new tool servers.
It implements a single tool that echoes back its input,
useful for checking a config and the transport end to end.

Launch:
    python -m mcp_manager.servers.echo

Config entry:
    "echo": {"command": "python", "args": ["-m", "mcp_manager.servers.echo"]}

Test:
    printf '%s\\n' '{"jsonrpc":"2.0","id":1,"method":"tools/call","params":{"name":"echo","arguments":{"message":"hi"}}}' \\
        | python -m mcp_manager.servers.echo
"""

import logging

from mcp_manager.server import StdioToolServer, ToolHandler


class EchoTool(ToolHandler):
    name = "echo"
    description = "Echoes back the input message. Useful for testing."
    parameters = {
        "message": {
            "type": "string",
            "description": "The message to echo back",
        },
    }
    required = ["message"]

    def handle(self, params: dict) -> str:
        return params.get("message", "")


def main() -> None:
    # stdout carries the protocol, logs go to stderr
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    server = StdioToolServer("echo")
    server.register(EchoTool())
    server.run()


if __name__ == "__main__":
    main()
