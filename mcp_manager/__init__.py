"""
MCP Manager — local tool-server process manager.

Architecture:
    ┌──────────────┐     stdio      ┌──────────────┐
    │ ToolServer   │ ──────────── │  Tool Server  │
    │  Manager     │  JSON-RPC    │  (subprocess) │
    └──────────────┘   one/line   └──────────────┘

Each tool server is a standalone process that communicates via
stdin/stdout using newline-delimited JSON-RPC 2.0 messages (the MCP
stdio transport).

ToolServerManager spawns the configured servers, performs the MCP
handshake, discovers their tools and routes calls by tool name.
Responses are correlated by request id, so several calls to one
server can be in flight at once.

StdioToolServer is a small base class for writing such servers.
"""

__version__ = "0.1.0"

from mcp_manager.config import ServerConfig, ServerRegistry
from mcp_manager.errors import (
    ConfigNotFound,
    InvalidConfig,
    MalformedMessage,
    MCPServerError,
    ProcessSpawnError,
    RequestTimedOut,
    ServerInitializationFailed,
    ServerNotFound,
    ServerReportedError,
    ServerStopped,
    ToolNotFound,
)
from mcp_manager.manager import ToolServerManager
from mcp_manager.models import CallToolResult, ImageContent, TextContent, Tool
from mcp_manager.server import StdioToolServer, ToolHandler


# Bridge requires langchain, imported lazily so tool servers stay standalone
def mcp_to_langchain_tool(*args, **kwargs):
    from mcp_manager.bridge import mcp_to_langchain_tool as _impl
    return _impl(*args, **kwargs)


def load_langchain_tools(*args, **kwargs):
    from mcp_manager.bridge import load_langchain_tools as _impl
    return _impl(*args, **kwargs)


__all__ = [
    "CallToolResult",
    "ConfigNotFound",
    "ImageContent",
    "InvalidConfig",
    "MCPServerError",
    "MalformedMessage",
    "ProcessSpawnError",
    "RequestTimedOut",
    "ServerConfig",
    "ServerInitializationFailed",
    "ServerNotFound",
    "ServerRegistry",
    "ServerReportedError",
    "ServerStopped",
    "StdioToolServer",
    "TextContent",
    "Tool",
    "ToolHandler",
    "ToolNotFound",
    "ToolServerManager",
    "load_langchain_tools",
    "mcp_to_langchain_tool",
]
