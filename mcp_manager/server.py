"""
MCP Tool Server base class.

A tool server is a standalone process that:
1. Reads JSON-RPC messages from stdin, one per line
2. Answers the MCP handshake and tool discovery
3. Dispatches tools/call to registered ToolHandlers
4. Writes JSON-RPC responses to stdout

To create a tool server:

    from mcp_manager.server import StdioToolServer, ToolHandler

    class MyTool(ToolHandler):
        name = "my_tool"
        description = "Does something useful"
        parameters = {
            "input": {"type": "string", "description": "The input"},
        }
        required = ["input"]

        def handle(self, params: dict) -> str:
            return f"processed: {params['input']}"

    if __name__ == "__main__":
        server = StdioToolServer("my-server")
        server.register(MyTool())
        server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import IO, Any

from mcp_manager.handshake import PROTOCOL_VERSION

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class ToolHandler(ABC):
    """
    Base class for a tool implementation.

    Subclasses define what a tool does. The server handles transport.
    """

    # Subclasses must set these
    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """
        Execute the tool with the given parameters.

        Returns:
            A string (sent as one text block), a list of MCP content
            blocks, or any JSON value (sent as JSON text).
        """
        ...

    def get_schema(self) -> dict:
        """Return the tool description for tools/list."""
        schema: dict[str, Any] = {"type": "object", "properties": self.parameters}
        if self.required:
            schema["required"] = list(self.required)
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": schema,
        }


def to_content(result: Any) -> list[dict[str, Any]]:
    """Turn a handler's return value into MCP content blocks."""
    if isinstance(result, str):
        return [{"type": "text", "text": result}]
    if isinstance(result, list) and all(isinstance(b, dict) and "type" in b for b in result):
        return result
    return [{"type": "text", "text": json.dumps(result)}]


class StdioToolServer:
    """
    MCP tool server that communicates via stdin/stdout.

    Protocol:
    - One JSON-RPC message per line
    - Supports methods:
        - "initialize"   → protocol version, server info, capabilities
        - "ping"         → empty result
        - "tools/list"   → registered tool descriptions
        - "tools/call"   → calls a tool by name with arguments
    - Notifications (no id) are accepted and never answered
    """

    def __init__(
        self,
        name: str = "mcp-manager-tools",
        version: str = "0.1.0",
        stdin: IO[str] | None = None,
        stdout: IO[str] | None = None,
    ):
        self.name = name
        self.version = version
        self.initialized = False
        self._handlers: dict[str, ToolHandler] = {}
        self._stdin = stdin
        self._stdout = stdout

    def register(self, handler: ToolHandler) -> None:
        """Register a tool handler."""
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def run(self) -> None:
        """
        Main loop: read messages from stdin, answer on stdout.

        This blocks until stdin is closed (parent process terminates).
        """
        logger.info(f"Tool server {self.name} starting with {len(self._handlers)} tools: "
                    f"{list(self._handlers.keys())}")

        for line in self._stdin or sys.stdin:
            line = line.strip()
            if not line:
                continue

            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                self.write(self.error_response(None, PARSE_ERROR, f"Parse error: {e}"))
                continue

            response = self.handle_message(message)
            if response is not None:
                self.write(response)

    def handle_message(self, message: Any) -> dict[str, Any] | None:
        """Answer one decoded message. None means no reply is due."""
        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            return self.error_response(
                message.get("id") if isinstance(message, dict) else None,
                INVALID_REQUEST,
                "Invalid request",
            )

        method = message["method"]
        if "id" not in message:
            self.handle_notification(method, message.get("params") or {})
            return None

        request_id = message["id"]
        params = message.get("params") or {}
        try:
            return self.result_response(request_id, self.dispatch(method, params))
        except LookupError as e:
            code = INVALID_PARAMS if method == "tools/call" else METHOD_NOT_FOUND
            return self.error_response(request_id, code, str(e))
        except Exception as e:
            logger.exception(f"Error handling {method}")
            return self.error_response(request_id, INTERNAL_ERROR, str(e))

    def handle_notification(self, method: str, params: dict[str, Any]) -> None:
        if method == "notifications/initialized":
            self.initialized = True
        logger.debug(f"Notification: {method}")

    def dispatch(self, method: str, params: dict) -> Any:
        """Route a method call to the appropriate handler."""

        if method == "initialize":
            return {
                "protocolVersion": params.get("protocolVersion") or PROTOCOL_VERSION,
                "serverInfo": {"name": self.name, "version": self.version},
                "capabilities": {"tools": {"listChanged": False}},
            }

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": [h.get_schema() for h in self._handlers.values()]}

        if method == "tools/call":
            tool_name = params.get("name", "")
            tool_params = params.get("arguments") or {}

            handler = self._handlers.get(tool_name)
            if not handler:
                raise LookupError(
                    f"Unknown tool: '{tool_name}'. "
                    f"Available: {list(self._handlers.keys())}"
                )

            # tool failures are results, not protocol errors
            try:
                return {"content": to_content(handler.handle(tool_params)), "isError": False}
            except Exception as e:
                logger.warning(f"Tool {tool_name} failed: {e}")
                return {"content": [{"type": "text", "text": str(e)}], "isError": True}

        raise LookupError(f"Unknown method: '{method}'")

    def result_response(self, request_id: Any, result: Any) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    def error_response(self, request_id: Any, code: int, message: str) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": code, "message": message},
        }

    def write(self, message: dict[str, Any]) -> None:
        """Write one JSON-RPC message to stdout."""
        out = self._stdout or sys.stdout
        out.write(json.dumps(message) + "\n")
        out.flush()
