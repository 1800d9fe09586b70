"""
Subprocess ownership for a single tool server.

A ProcessHandle spawns the server with three pipes, keeps stderr
drained, and watches for the process exiting on its own so the
manager can fail outstanding requests instead of letting them time out.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Callable, Mapping

from mcp_manager.config import ServerConfig
from mcp_manager.errors import ProcessSpawnError

logger = logging.getLogger(__name__)

# Where package managers (Homebrew, pipx, uv, npm) put executables.
# GUI-launched hosts often start with a minimal PATH that lacks these.
EXTRA_PATH_DIRS = [
    "/opt/homebrew/bin",
    "/usr/local/bin",
    "/usr/bin",
    "/bin",
    "/usr/sbin",
    "/sbin",
    str(Path.home() / ".local" / "bin"),
]

# Ask common server runtimes for stdio transport with unbuffered output
TRANSPORT_ENV = {
    "UV_USE_STDIO": "1",
    "MCP_TRANSPORT": "stdio",
    "PYTHONUNBUFFERED": "1",
    "PORT": "0",
}


def build_environment(
    config: ServerConfig,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """
    Build the child environment for a server.

    Starts from ``base`` (the current environment by default), applies the
    server's own ``env``, makes sure the package-manager directories are on
    PATH, and sets the stdio transport hints.
    """
    env = dict(os.environ if base is None else base)
    if config.env:
        env.update(config.env)

    current = [p for p in env.get("PATH", "").split(os.pathsep) if p]
    missing = [p for p in EXTRA_PATH_DIRS if p not in current]
    env["PATH"] = os.pathsep.join(missing + current)
    env.setdefault("HOME", str(Path.home()))
    env.update(TRANSPORT_ENV)
    return env


class ProcessHandle:
    """
    One spawned tool server process.

    Use ``ProcessHandle.spawn(config)``; the constructor only wraps an
    already-started ``Popen``.
    """

    def __init__(
        self,
        name: str,
        process: subprocess.Popen,
        on_exit: Callable[[int], None] | None = None,
    ):
        self.name = name
        self._process = process
        self._on_exit = on_exit
        self._terminating = False
        self._lock = threading.Lock()

        self._stderr_thread = threading.Thread(
            target=self._drain_stderr, name=f"mcp-{name}-stderr", daemon=True
        )
        self._watch_thread = threading.Thread(
            target=self._watch_exit, name=f"mcp-{name}-watch", daemon=True
        )
        self._stderr_thread.start()
        self._watch_thread.start()

    @classmethod
    def spawn(
        cls,
        config: ServerConfig,
        on_exit: Callable[[int], None] | None = None,
    ) -> "ProcessHandle":
        """Launch the server described by ``config``."""
        env = build_environment(config)
        executable = shutil.which(config.command, path=env["PATH"])
        if executable is None:
            raise ProcessSpawnError(config.name, f"executable not found: {config.command}")

        logger.info(f"Starting server {config.name}: {config.command} {' '.join(config.args)}")
        try:
            process = subprocess.Popen(
                [executable, *config.args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                bufsize=0,  # raw pipes, framing is done by the transport
            )
        except OSError as e:
            raise ProcessSpawnError(config.name, e) from e

        logger.debug(f"Server {config.name} running as pid {process.pid}")
        return cls(config.name, process, on_exit)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.poll()

    @property
    def stdin(self):
        return self._process.stdin

    @property
    def stdout(self):
        return self._process.stdout

    def is_alive(self) -> bool:
        return self._process.poll() is None

    def terminate(self, timeout: float = 5.0) -> None:
        """Stop the process and release its pipes. Safe to call twice."""
        with self._lock:
            if self._terminating:
                return
            self._terminating = True

        if self._process.stdin:
            try:
                self._process.stdin.close()
            except OSError:
                pass

        if self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"Server {self.name} ignored SIGTERM, killing")
                self._process.kill()
                self._process.wait()

        # stdout belongs to the transport's read loop, which closes it at EOF
        self._stderr_thread.join(timeout=1.0)
        if self._process.stderr:
            try:
                self._process.stderr.close()
            except OSError:
                pass
        logger.info(f"Server {self.name} stopped (status {self._process.returncode})")

    def _drain_stderr(self) -> None:
        stream = self._process.stderr
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                if "error" in line.lower():
                    logger.warning(f"[{self.name}] {line}")
                else:
                    logger.debug(f"[{self.name}] {line}")
        except (OSError, ValueError):
            # stream closed under us during terminate()
            pass

    def _watch_exit(self) -> None:
        returncode = self._process.wait()
        with self._lock:
            expected = self._terminating
        if expected:
            return
        logger.warning(f"Server {self.name} exited unexpectedly with status {returncode}")
        if self._on_exit is not None:
            self._on_exit(returncode)
