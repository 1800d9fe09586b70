"""
Tool Server Manager — launches and manages MCP tool server processes.

The manager owns every running server (process, transport, correlator)
and the shared tool catalog. Callers only ever see tool descriptions
and call results, never the per-server state.

Usage:
    registry = ServerRegistry.load("mcp_config.json")
    manager = ToolServerManager(registry)

    # Start everything in the config
    manager.start_all()

    # Call a tool, wherever it lives
    result = manager.call_tool_by_name("read_file", {"path": "/tmp/x"})

    # Stop everything
    manager.stop_all()
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from mcp_manager.catalog import ToolCatalog
from mcp_manager.config import ServerConfig, ServerRegistry
from mcp_manager.correlator import DEFAULT_TIMEOUT, RequestCorrelator
from mcp_manager.errors import (
    MCPServerError,
    ProcessSpawnError,
    ServerInitializationFailed,
    ServerNotFound,
    ServerStopped,
)
from mcp_manager.handshake import CLIENT_INFO, PROTOCOL_VERSION, HandshakeCoordinator
from mcp_manager.models import CallToolResult, Tool
from mcp_manager.process import ProcessHandle
from mcp_manager.transport import StdioFrameTransport

logger = logging.getLogger(__name__)


@dataclass
class ServerContext:
    """Everything belonging to one running server."""
    name: str
    config: ServerConfig
    process: ProcessHandle
    transport: StdioFrameTransport
    correlator: RequestCorrelator
    handshake: HandshakeCoordinator
    is_running: bool = False


class ToolServerManager:
    """
    Manages the lifecycle of MCP tool server processes.

    Responsibilities:
    - Launch tool servers as subprocesses (stdio transport)
    - Perform the MCP handshake and discover tools
    - Route tool calls to the server that owns the tool
    - Fail outstanding calls when a server stops or dies
    - Graceful shutdown
    """

    def __init__(
        self,
        registry: ServerRegistry | None = None,
        *,
        request_timeout: float = DEFAULT_TIMEOUT,
        startup_timeout: float | None = None,
        stagger: float = 1.0,
        protocol_version: str = PROTOCOL_VERSION,
        client_name: str | None = None,
    ):
        self.registry = registry or ServerRegistry()
        self.request_timeout = request_timeout
        self.startup_timeout = startup_timeout if startup_timeout is not None else request_timeout
        self.stagger = stagger
        self.protocol_version = protocol_version
        self.client_info = dict(CLIENT_INFO)
        if client_name:
            self.client_info["name"] = client_name

        self._lock = threading.RLock()
        self._servers: dict[str, ServerContext] = {}
        self._statuses: dict[str, bool] = {}
        self._started = False
        self.catalog = ToolCatalog(self._correlator_for, lock=self._lock)

    def __enter__(self) -> "ToolServerManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop_all()

    # ── Registration ──────────────────────────────────────

    def register_server(
        self,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ) -> ServerConfig:
        """Add a server to the registry (does not start it yet)."""
        config = ServerConfig(name=name, command=command, args=tuple(args or ()), env=env)
        self.registry.add(config)
        logger.info(f"Registered server: {name} ({command} {' '.join(config.args)})")
        return config

    # ── Lifecycle ─────────────────────────────────────────

    def start_all(self) -> dict[str, list[Tool]]:
        """
        Start all registered servers.

        Processes are spawned one after another, ``stagger`` seconds
        apart; each handshake then runs on its own thread. Returns
        {server_name: [tools]} once every handshake has finished, with
        an empty list for servers that failed to start.
        """
        if self._started:
            logger.warning("Servers already started, stopping first")
            self.stop_all()

        for name, error in self.registry.errors.items():
            logger.error(f"Not starting {name}: {error}")

        configs = list(self.registry)
        results: dict[str, list[Tool]] = {c.name: [] for c in configs}
        futures = {}
        with ThreadPoolExecutor(
            max_workers=max(1, len(configs)), thread_name_prefix="mcp-handshake"
        ) as pool:
            for i, config in enumerate(configs):
                if i and self.stagger > 0:
                    time.sleep(self.stagger)
                try:
                    context = self._spawn(config)
                except ProcessSpawnError as e:
                    logger.error(f"Failed to start {config.name}: {e}")
                    continue
                futures[config.name] = pool.submit(self._initialize, context)

            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except ServerInitializationFailed as e:
                    logger.error(f"Failed to start {name}: {e}")

        self._started = True
        running = [name for name in results if self.is_running(name)]
        logger.info(f"Started {len(running)}/{len(configs)} server(s): {running}")
        return results

    def start_server(self, name: str) -> list[Tool]:
        """
        Start one registered server and discover its tools.

        Raises:
            ServerNotFound: no config for ``name``.
            ProcessSpawnError: the process could not be launched.
            ServerInitializationFailed: the handshake failed.
        """
        config = self.registry.get(name)
        if name in self._servers:
            logger.warning(f"Server {name} already running, restarting")
            self.stop_server(name)
        return self._initialize(self._spawn(config))

    def stop_server(self, name: str) -> None:
        """Stop a server; its pending calls fail with ServerStopped."""
        with self._lock:
            context = self._servers.get(name)
            if context is None:
                raise ServerNotFound(name)
        self._teardown(context, "server stopped")
        logger.info(f"Stopped {name}")

    def stop_all(self) -> None:
        """Stop all running servers."""
        with self._lock:
            contexts = list(self._servers.values())
        for context in contexts:
            self._teardown(context, "server stopped")
        with self._lock:
            self._statuses.clear()
        self._started = False
        if contexts:
            logger.info(f"Stopped {len(contexts)} server(s)")

    # ── Queries ───────────────────────────────────────────

    def get_tools(self) -> list[Tool]:
        """All tools of all running servers."""
        return self.catalog.tools()

    def list_tools(self, name: str) -> list[Tool]:
        """Tools discovered on one server."""
        return self.catalog.tools_for(name)

    def get_tools_with_servers(self) -> list[tuple[str, Tool]]:
        """Every tool paired with the server that declared it."""
        return self.catalog.entries()

    def get_tools_dictionary(self) -> list[dict[str, Any]]:
        """Tools as plain dicts, each tagged with its "server"."""
        return [tool.to_dict(server_name=server) for server, tool in self.catalog.entries()]

    def has_tool(self, name: str) -> bool:
        return self.catalog.has_tool(name)

    def get_tool(self, name: str) -> Tool | None:
        return self.catalog.get_tool(name)

    def get_server_for_tool(self, name: str) -> str | None:
        return self.catalog.find_owner(name)

    def list_servers(self) -> dict[str, bool]:
        """Every server that was started, and whether it is running."""
        with self._lock:
            return dict(self._statuses)

    def is_running(self, name: str) -> bool:
        with self._lock:
            context = self._servers.get(name)
            return context is not None and context.is_running

    def server_info(self, name: str) -> dict[str, Any]:
        """What the server reported about itself during the handshake."""
        with self._lock:
            context = self._servers.get(name)
            if context is None:
                raise ServerNotFound(name)
            handshake = context.handshake
        return {
            "serverInfo": handshake.server_info,
            "capabilities": handshake.server_capabilities,
            "protocolVersion": handshake.negotiated_version,
            "state": handshake.state.value,
        }

    # ── Calls ─────────────────────────────────────────────

    def call_tool_by_name(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> CallToolResult:
        """
        Call a tool by name on whichever server provides it.

        Raises:
            ToolNotFound: no running server declares ``name``.
            RequestTimedOut, ServerReportedError, ServerStopped,
            MalformedMessage: see RequestCorrelator.call.
        """
        return self.catalog.call_by_name(name, arguments, timeout=timeout)

    def call_tool(
        self,
        server: str,
        name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> CallToolResult:
        """Call a tool on a specific server."""
        return self.catalog.call(server, name, arguments, timeout=timeout)

    def refresh_tools(self, name: str) -> list[Tool]:
        return self.catalog.refresh(name)

    def refresh_all_tools(self) -> dict[str, list[Tool]]:
        """Re-list tools on every running server; failures keep the old cache."""
        with self._lock:
            names = [n for n, c in self._servers.items() if c.is_running]
        results = {}
        for name in names:
            try:
                results[name] = self.catalog.refresh(name)
            except MCPServerError as e:
                logger.error(f"Failed to refresh tools for {name}: {e}")
                results[name] = self.catalog.tools_for(name)
        return results

    # ── Internals ─────────────────────────────────────────

    def _correlator_for(self, name: str) -> RequestCorrelator:
        with self._lock:
            context = self._servers.get(name)
            if context is None:
                raise ServerNotFound(name)
            return context.correlator

    def _spawn(self, config: ServerConfig) -> ServerContext:
        holder: dict[str, ServerContext] = {}

        def on_exit(returncode: int) -> None:
            context = holder.get("context")
            if context is not None:
                self._teardown(context, f"process exited with status {returncode}")

        def on_close() -> None:
            context = holder.get("context")
            if context is not None:
                self._teardown(context, "server closed its output")

        process = ProcessHandle.spawn(config, on_exit=on_exit)
        transport = StdioFrameTransport(config.name, process.stdin, process.stdout)
        correlator = RequestCorrelator(config.name, transport, default_timeout=self.request_timeout)
        handshake = HandshakeCoordinator(
            config.name,
            correlator,
            self.catalog,
            timeout=self.startup_timeout,
            protocol_version=self.protocol_version,
            client_info=self.client_info,
        )
        context = ServerContext(
            name=config.name,
            config=config,
            process=process,
            transport=transport,
            correlator=correlator,
            handshake=handshake,
        )

        with self._lock:
            self._servers[config.name] = context
            self._statuses[config.name] = False
            self.catalog.register(config.name)
        holder["context"] = context

        transport.start(
            on_message=correlator.dispatch,
            on_malformed=correlator.report_malformed,
            on_close=on_close,
        )
        if not process.is_alive():
            # died before the exit watcher could see the context
            self._teardown(context, f"process exited with status {process.returncode}")
        return context

    def _initialize(self, context: ServerContext) -> list[Tool]:
        try:
            context.handshake.run()
        except ServerInitializationFailed:
            self._teardown(context, "initialization failed")
            raise

        with self._lock:
            if self._servers.get(context.name) is not context:
                raise ServerInitializationFailed(
                    context.name, ServerStopped(context.name, "stopped during startup")
                )
            context.is_running = True
            self._statuses[context.name] = True
        logger.info(f"Server {context.name} initialized successfully")
        return self.catalog.tools_for(context.name)

    def _teardown(self, context: ServerContext, reason: str) -> None:
        with self._lock:
            if self._servers.get(context.name) is context:
                del self._servers[context.name]
                self.catalog.remove(context.name)
            context.is_running = False
            if context.name in self._statuses:
                self._statuses[context.name] = False

        context.correlator.close(reason)
        context.transport.close()
        context.process.terminate()
        if not context.transport.join(timeout=1.0):
            # e.g. a grandchild spawned by npx still holds the pipe
            logger.warning(f"Output pipe of {context.name} still open after stop, leaving its reader behind")
