"""
Tool discovery cache and call router.

Holds the ``tools/list`` result of every running server, in the order
the servers were started, and routes ``tools/call`` to whichever
server declared the tool first.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from mcp_manager.correlator import RequestCorrelator
from mcp_manager.errors import MalformedMessage, ServerNotFound, ToolNotFound
from mcp_manager.models import CallToolResult, Tool

logger = logging.getLogger(__name__)

# Guards against servers that hand back the same cursor forever
MAX_LIST_PAGES = 100


class ToolCatalog:
    """
    Per-server tool cache.

    Args:
        correlator_for: Returns the correlator of a server by name,
            raising ServerNotFound if there is none.
        lock: Lock shared with the owning manager's server map.
    """

    def __init__(
        self,
        correlator_for: Callable[[str], RequestCorrelator],
        lock: threading.RLock | None = None,
    ):
        self._correlator_for = correlator_for
        self._lock = lock or threading.RLock()
        self._tools: dict[str, list[Tool]] = {}

    def register(self, server_name: str) -> None:
        """Reserve a slot so lookup order follows start order."""
        with self._lock:
            self._tools.setdefault(server_name, [])

    def remove(self, server_name: str) -> None:
        with self._lock:
            self._tools.pop(server_name, None)

    def refresh(self, server_name: str, timeout: float | None = None) -> list[Tool]:
        """Re-discover the tools of one server and replace its cache."""
        correlator = self._correlator_for(server_name)
        tools: list[Tool] = []
        cursor = None
        for _ in range(MAX_LIST_PAGES):
            params = {"cursor": cursor} if cursor else {}
            result = correlator.call("tools/list", params, timeout=timeout)
            if not isinstance(result, dict) or not isinstance(result.get("tools"), list):
                raise MalformedMessage(result, "tools/list result needs a 'tools' list")
            tools.extend(Tool.from_dict(entry) for entry in result["tools"])
            cursor = result.get("nextCursor")
            if not cursor:
                break
        else:
            logger.warning(f"{server_name}: stopped paging tools/list after {MAX_LIST_PAGES} pages")

        with self._lock:
            if server_name not in self._tools:
                # stopped while we were listing
                raise ServerNotFound(server_name)
            self._tools[server_name] = tools
        logger.info(f"Discovered {len(tools)} tool(s) on {server_name}: {[t.name for t in tools]}")
        return tools

    def find_owner(self, tool_name: str) -> str | None:
        """Name of the first server that declares ``tool_name``."""
        with self._lock:
            for server_name, tools in self._tools.items():
                if any(t.name == tool_name for t in tools):
                    return server_name
        return None

    def get_tool(self, tool_name: str) -> Tool | None:
        with self._lock:
            for tools in self._tools.values():
                for tool in tools:
                    if tool.name == tool_name:
                        return tool
        return None

    def has_tool(self, tool_name: str) -> bool:
        return self.find_owner(tool_name) is not None

    def tools(self) -> list[Tool]:
        """All cached tools, flattened in server start order."""
        with self._lock:
            return [tool for tools in self._tools.values() for tool in tools]

    def entries(self) -> list[tuple[str, Tool]]:
        """(server, tool) for every cached tool, duplicates included."""
        with self._lock:
            return [(server, tool) for server, tools in self._tools.items() for tool in tools]

    def tools_for(self, server_name: str) -> list[Tool]:
        with self._lock:
            return list(self._tools.get(server_name, []))

    def servers(self) -> list[str]:
        with self._lock:
            return list(self._tools)

    def call(
        self,
        server_name: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> CallToolResult:
        """Invoke a tool on a specific server."""
        correlator = self._correlator_for(server_name)
        result = correlator.call(
            "tools/call",
            {"name": tool_name, "arguments": arguments or {}},
            timeout=timeout,
        )
        return CallToolResult.from_dict(result)

    def call_by_name(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> CallToolResult:
        """Invoke a tool on whichever server owns it."""
        server_name = self.find_owner(tool_name)
        if server_name is None:
            raise ToolNotFound(tool_name)
        logger.debug(f"Routing {tool_name} to {server_name}")
        return self.call(server_name, tool_name, arguments, timeout=timeout)
