"""
Transport layer for MCP tool communication.

Tool servers speak JSON-RPC 2.0 over their stdin/stdout, one JSON
object per line. StdioFrameTransport owns both directions for one
server:

  - outbound: serialize, append "\\n", write whole under a lock
  - inbound:  a dedicated read thread reassembles lines from raw pipe
              reads (messages may be split across reads, or several may
              arrive in one) and hands each decoded message on in order
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import IO, Any, Callable

from mcp_manager.errors import MalformedMessage, ServerStopped

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request."""
    method: str
    params: dict[str, Any]
    id: int | str

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }


@dataclass
class JsonRpcNotification:
    """JSON-RPC 2.0 notification (no id, no response)."""
    method: str
    params: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: Any = None
    is_error: bool = False

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "JsonRpcResponse | None":
        """Return the response in ``message``, or None if it is not one."""
        if "result" in message:
            return cls(id=message.get("id"), result=message["result"])
        # "error": null is not an error
        if message.get("error") is not None:
            return cls(id=message.get("id"), error=message["error"], is_error=True)
        return None


def encode_message(message: dict[str, Any]) -> bytes:
    """Compact JSON plus the line delimiter."""
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8") + b"\n"


def decode_frame(frame: bytes) -> dict[str, Any]:
    try:
        message = json.loads(frame.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedMessage(frame, str(e)) from e
    if not isinstance(message, dict):
        raise MalformedMessage(frame, "expected a JSON object")
    return message


class FrameBuffer:
    """
    Newline framing over an append-only byte buffer.

    Only bytes appended since the last feed are scanned for the
    delimiter, and consumed bytes are dropped once per feed, so a
    message trickling in over many small reads is never rescanned.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._scanned = 0

    def feed(self, chunk: bytes) -> list[bytes]:
        """Append ``chunk`` and return every complete line, oldest first."""
        self._buffer += chunk
        frames: list[bytes] = []
        start = 0
        while True:
            end = self._buffer.find(b"\n", max(start, self._scanned))
            if end < 0:
                break
            frame = bytes(self._buffer[start:end]).rstrip(b"\r")
            if frame.strip():
                frames.append(frame)
            start = end + 1
        if start:
            del self._buffer[:start]
        self._scanned = len(self._buffer)
        return frames

    @property
    def pending(self) -> bytes:
        """Bytes received but not yet terminated by a newline."""
        return bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)


class Transport(ABC):
    """Abstract message transport for one server."""

    @abstractmethod
    def send(self, message: dict[str, Any]) -> None:
        """Write one message."""
        ...

    @abstractmethod
    def start(
        self,
        on_message: Callable[[dict[str, Any]], None],
        on_malformed: Callable[[MalformedMessage], None] | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        """Begin delivering inbound messages."""
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        ...


class StdioFrameTransport(Transport):
    """
    Newline-delimited JSON over a server's stdin/stdout pipes.

    This is MCP's native local transport. ``stdin`` and ``stdout`` are
    binary streams; normally the pipes of a ProcessHandle.
    """

    def __init__(self, server_name: str, stdin: IO[bytes], stdout: IO[bytes]):
        self.server_name = server_name
        self._stdin = stdin
        self._stdout = stdout
        self._frames = FrameBuffer()
        self._write_lock = threading.Lock()
        self._reader: threading.Thread | None = None
        self._closed = False

    def send(self, message: dict[str, Any]) -> None:
        data = encode_message(message)
        with self._write_lock:
            if self._closed:
                raise ServerStopped(self.server_name, "transport closed")
            try:
                view = memoryview(data)
                while view:
                    written = self._stdin.write(view)
                    if written is None:
                        written = 0
                    view = view[written:]
                self._stdin.flush()
            except (OSError, ValueError) as e:
                raise ServerStopped(self.server_name, f"write failed: {e}") from e
        logger.debug(f"-> {self.server_name}: {data[:500]!r}")

    def start(
        self,
        on_message: Callable[[dict[str, Any]], None],
        on_malformed: Callable[[MalformedMessage], None] | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        if self._reader is not None:
            raise RuntimeError(f"Transport for {self.server_name} already started")
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(on_message, on_malformed, on_close),
            name=f"mcp-{self.server_name}-reader",
            daemon=True,
        )
        self._reader.start()

    def close(self) -> None:
        with self._write_lock:
            self._closed = True

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the read loop to end. False if it is still reading."""
        if self._reader is None:
            return True
        if self._reader is not threading.current_thread():
            self._reader.join(timeout)
            return not self._reader.is_alive()
        return True

    def is_alive(self) -> bool:
        return not self._closed and self._reader is not None and self._reader.is_alive()

    @property
    def buffered(self) -> bytes:
        return self._frames.pending

    def _read_loop(self, on_message, on_malformed, on_close) -> None:
        try:
            while True:
                try:
                    chunk = self._stdout.read(READ_CHUNK_SIZE)
                except (OSError, ValueError):
                    break
                if not chunk:
                    break
                for frame in self._frames.feed(chunk):
                    self._deliver(frame, on_message, on_malformed)
        finally:
            try:
                self._stdout.close()
            except OSError:
                pass
            if len(self._frames):
                logger.debug(
                    f"{self.server_name}: discarding {len(self._frames)} unterminated bytes"
                )
            logger.debug(f"Read loop for {self.server_name} finished")
            if on_close is not None:
                on_close()

    def _deliver(self, frame: bytes, on_message, on_malformed) -> None:
        try:
            message = decode_frame(frame)
        except MalformedMessage as e:
            if on_malformed is None:
                logger.warning(f"{self.server_name}: {e}")
            else:
                on_malformed(e)
            return
        logger.debug(f"<- {self.server_name}: {frame[:500]!r}")
        try:
            on_message(message)
        except Exception:
            # a broken consumer must not kill the read loop
            logger.exception(f"{self.server_name}: error handling message")
