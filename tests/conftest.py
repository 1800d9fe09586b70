from __future__ import annotations

import sys
from pathlib import Path

import pytest

from mcp_manager.config import ServerConfig, ServerRegistry
from mcp_manager.manager import ToolServerManager

FAKE_SERVER = Path(__file__).parent / "fake_server.py"
PROJECT_ROOT = Path(__file__).parent.parent


def fake_config(name: str, tool_name: str = "echo", mode: str = "normal") -> ServerConfig:
    return ServerConfig(
        name=name,
        command=sys.executable,
        args=(str(FAKE_SERVER), "--tool-name", tool_name, "--mode", mode),
        env={"PYTHONPATH": str(PROJECT_ROOT)},
    )


@pytest.fixture
def make_manager():
    """Build managers over fake servers; all are stopped at teardown."""
    managers: list[ToolServerManager] = []

    def _make(*configs: ServerConfig, **kwargs) -> ToolServerManager:
        kwargs.setdefault("request_timeout", 5.0)
        kwargs.setdefault("stagger", 0)
        manager = ToolServerManager(ServerRegistry(list(configs)), **kwargs)
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        manager.stop_all()
