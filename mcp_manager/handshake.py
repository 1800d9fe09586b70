"""
MCP initialization handshake.

    SPAWNED -> INITIALIZE_SENT -> INITIALIZED_ACK_SENT -> READY

Any error or timeout before READY moves the state to FAILED.

A server is only usable once READY. Reaching READY triggers exactly one
tools/list so the catalog knows what the server offers.
"""

from __future__ import annotations

import enum
import logging
from typing import Any

from mcp_manager.catalog import ToolCatalog
from mcp_manager.correlator import RequestCorrelator
from mcp_manager.errors import MCPServerError, ServerInitializationFailed

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "mcp-manager", "version": "0.1.0"}
CLIENT_CAPABILITIES = {"roots": {"listChanged": True}}


class HandshakeState(enum.Enum):
    SPAWNED = "spawned"
    INITIALIZE_SENT = "initialize_sent"
    INITIALIZED_ACK_SENT = "initialized_ack_sent"
    READY = "ready"
    FAILED = "failed"


class HandshakeCoordinator:
    """Drives one freshly spawned server to READY."""

    def __init__(
        self,
        server_name: str,
        correlator: RequestCorrelator,
        catalog: ToolCatalog,
        timeout: float | None = None,
        protocol_version: str = PROTOCOL_VERSION,
        client_info: dict[str, str] | None = None,
    ):
        self.server_name = server_name
        self.state = HandshakeState.SPAWNED
        self.timeout = timeout
        self.protocol_version = protocol_version
        self.client_info = client_info or dict(CLIENT_INFO)
        self.server_info: dict[str, Any] = {}
        self.server_capabilities: dict[str, Any] = {}
        self.negotiated_version: str | None = None
        self.error: BaseException | None = None
        self._correlator = correlator
        self._catalog = catalog

    @property
    def ready(self) -> bool:
        return self.state is HandshakeState.READY

    def run(self) -> HandshakeState:
        """
        Perform the handshake and the initial tool discovery.

        Raises:
            ServerInitializationFailed: if initialize or the initialized
                notification fails. The state is then FAILED.
        """
        if self.state is not HandshakeState.SPAWNED:
            raise RuntimeError(f"Handshake for {self.server_name} already ran ({self.state.value})")

        try:
            self.state = HandshakeState.INITIALIZE_SENT
            result = self._correlator.call(
                "initialize",
                {
                    "protocolVersion": self.protocol_version,
                    "capabilities": CLIENT_CAPABILITIES,
                    "clientInfo": self.client_info,
                },
                timeout=self.timeout,
            )
            self._record(result)

            self._correlator.notify("notifications/initialized")
            self.state = HandshakeState.INITIALIZED_ACK_SENT
        except MCPServerError as e:
            self.state = HandshakeState.FAILED
            self.error = e
            logger.error(f"Handshake with {self.server_name} failed: {e}")
            raise ServerInitializationFailed(self.server_name, e) from e

        self.state = HandshakeState.READY
        name = self.server_info.get("name", "?")
        logger.info(f"Server {self.server_name} ready ({name}, protocol {self.negotiated_version})")

        try:
            self._catalog.refresh(self.server_name, timeout=self.timeout)
        except MCPServerError as e:
            logger.error(f"Initial tool discovery for {self.server_name} failed: {e}")
        return self.state

    def _record(self, result: Any) -> None:
        if not isinstance(result, dict):
            logger.warning(f"{self.server_name}: unexpected initialize result {result!r}")
            return
        self.negotiated_version = result.get("protocolVersion")
        self.server_info = result.get("serverInfo") or {}
        self.server_capabilities = result.get("capabilities") or {}
        if self.negotiated_version and self.negotiated_version != self.protocol_version:
            logger.info(
                f"{self.server_name} negotiated protocol {self.negotiated_version} "
                f"(requested {self.protocol_version})"
            )
