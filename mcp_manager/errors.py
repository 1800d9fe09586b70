"""
Error taxonomy for the MCP server manager.

Every error is scoped: config errors to one config file or entry,
process/handshake/transport errors to one server, lookup errors to
the caller. Nothing raised for one server is ever delivered to
callers of another.
"""

from __future__ import annotations

from typing import Any


class MCPServerError(Exception):
    """Base class for everything the manager raises."""


class ConfigNotFound(MCPServerError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Configuration file not found: {path}")


class InvalidConfig(MCPServerError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid configuration: {detail}")


class ProcessSpawnError(MCPServerError):
    def __init__(self, name: str, cause: Any):
        self.name = name
        self.cause = cause
        super().__init__(f"Failed to spawn server '{name}': {cause}")


class ServerInitializationFailed(MCPServerError):
    def __init__(self, name: str, cause: BaseException):
        self.name = name
        self.cause = cause
        super().__init__(f"Server '{name}' failed to initialize: {cause}")


class ServerNotFound(MCPServerError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown server: {name}")


class ToolNotFound(MCPServerError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Tool not found: {name}")


class MalformedMessage(MCPServerError):
    """A frame or payload that could not be decoded."""

    def __init__(self, raw: bytes | str | Any, detail: str = ""):
        self.raw = raw
        self.detail = detail
        preview = raw[:200] if isinstance(raw, (bytes, str)) else raw
        message = f"Malformed message: {preview!r}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class RequestTimedOut(MCPServerError):
    def __init__(self, server: str, method: str, timeout: float):
        self.server = server
        self.method = method
        self.timeout = timeout
        super().__init__(
            f"Request '{method}' to server '{server}' timed out after {timeout:g}s"
        )


class ServerReportedError(MCPServerError):
    """The server answered with a JSON-RPC ``error`` object."""

    def __init__(self, server: str, payload: Any):
        self.server = server
        self.payload = payload
        super().__init__(f"Server '{server}' returned an error: {payload}")

    @property
    def code(self) -> int | None:
        if isinstance(self.payload, dict):
            return self.payload.get("code")
        return None

    @property
    def message(self) -> str | None:
        if isinstance(self.payload, dict):
            return self.payload.get("message")
        return None


class ServerStopped(MCPServerError):
    def __init__(self, server: str, reason: str = "server stopped"):
        self.server = server
        self.reason = reason
        super().__init__(f"Server '{server}' is not available: {reason}")
