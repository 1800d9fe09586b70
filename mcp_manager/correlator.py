"""
Request/response correlation for one server.

Every outgoing request gets a fresh integer id and a Future. The
transport's read loop calls ``dispatch`` for each inbound message,
which resolves the matching Future; the caller blocks on it with a
timeout. Several calls to the same server can be in flight at once.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any

from mcp_manager.errors import (
    MalformedMessage,
    RequestTimedOut,
    ServerReportedError,
    ServerStopped,
)
from mcp_manager.transport import JsonRpcNotification, JsonRpcRequest, JsonRpcResponse, Transport

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


@dataclass
class PendingRequest:
    id: int
    server_name: str
    method: str
    created_at: float
    future: Future = field(default_factory=Future, repr=False)


class RequestCorrelator:
    """Matches responses from one server to the calls that issued them."""

    def __init__(
        self,
        server_name: str,
        transport: Transport,
        default_timeout: float = DEFAULT_TIMEOUT,
    ):
        self.server_name = server_name
        self.default_timeout = default_timeout
        self.malformed_count = 0
        self._transport = transport
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingRequest] = {}
        self._lock = threading.Lock()
        self._closed_reason: str | None = None

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed_reason is not None

    def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Send a request and wait for its result.

        Raises:
            RequestTimedOut: no response within ``timeout`` seconds.
            ServerReportedError: the server answered with an error object.
            ServerStopped: the server was stopped or died before answering.
        """
        timeout = self.default_timeout if timeout is None else timeout
        with self._lock:
            if self._closed_reason is not None:
                raise ServerStopped(self.server_name, self._closed_reason)
            pending = PendingRequest(
                id=next(self._ids),
                server_name=self.server_name,
                method=method,
                created_at=time.monotonic(),
            )
            self._pending[pending.id] = pending

        request = JsonRpcRequest(method=method, params=params or {}, id=pending.id)
        try:
            self._transport.send(request.to_dict())
        except Exception:
            self._forget(pending.id)
            raise

        try:
            return pending.future.result(timeout=timeout)
        except FutureTimeoutError:
            if self._forget(pending.id) is None:
                # dispatch claimed it between the timeout and now
                return pending.future.result()
            logger.warning(
                f"{self.server_name}: '{method}' (id {pending.id}) timed out after {timeout:g}s"
            )
            raise RequestTimedOut(self.server_name, method, timeout) from None

    def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification. No response is expected."""
        if self._closed_reason is not None:
            raise ServerStopped(self.server_name, self._closed_reason)
        self._transport.send(JsonRpcNotification(method=method, params=params).to_dict())

    def dispatch(self, message: dict[str, Any]) -> None:
        """Route one inbound message. Called from the read loop."""
        response = JsonRpcResponse.from_message(message)
        if response is None:
            logger.debug(f"{self.server_name}: ignoring {message.get('method', 'message')!r}")
            return

        with self._lock:
            pending = self._pending.pop(response.id, None) if _hashable(response.id) else None
            if pending is None:
                logger.debug(f"{self.server_name}: dropping response with unknown id {response.id!r}")
                return
            if response.is_error:
                pending.future.set_exception(ServerReportedError(self.server_name, response.error))
            else:
                pending.future.set_result(response.result)

        elapsed = time.monotonic() - pending.created_at
        logger.debug(f"{self.server_name}: '{pending.method}' (id {pending.id}) answered in {elapsed:.3f}s")

    def report_malformed(self, error: MalformedMessage) -> None:
        """Record an undecodable frame. Pending requests are left alone."""
        with self._lock:
            self.malformed_count += 1
        logger.warning(f"{self.server_name}: skipped malformed message: {error}")

    def close(self, reason: str = "server stopped") -> None:
        """Fail every pending request and refuse new ones."""
        with self._lock:
            if self._closed_reason is None:
                self._closed_reason = reason
            pending = list(self._pending.values())
            self._pending.clear()
            for request in pending:
                request.future.set_exception(ServerStopped(self.server_name, reason))
        if pending:
            logger.info(f"{self.server_name}: failed {len(pending)} pending request(s): {reason}")

    def _forget(self, request_id: int) -> PendingRequest | None:
        with self._lock:
            return self._pending.pop(request_id, None)


def _hashable(value: Any) -> bool:
    return isinstance(value, (int, str)) and not isinstance(value, bool)
