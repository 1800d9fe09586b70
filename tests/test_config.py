from __future__ import annotations

import json
from pathlib import Path

import pytest

from mcp_manager.config import (
    ServerConfig,
    ServerRegistry,
    create_default_config,
    resolve_config_path,
    save_config,
)
from mcp_manager.errors import ConfigNotFound, InvalidConfig, ServerNotFound


def _write(path: Path, data) -> Path:
    path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
    return path


def test_load_valid_config(tmp_path: Path) -> None:
    path = _write(tmp_path / "mcp.json", {
        "mcpServers": {
            "filesystem": {"command": "npx", "args": ["-y", "server-fs", "/tmp"]},
            "calendar": {"command": "uvx", "args": [], "env": {"TZ": "UTC"}},
        }
    })
    registry = ServerRegistry.load(path)

    assert registry.names() == ["filesystem", "calendar"]
    fs = registry.get("filesystem")
    assert fs == ServerConfig(name="filesystem", command="npx", args=("-y", "server-fs", "/tmp"))
    assert fs.env is None
    assert registry.get("calendar").env == {"TZ": "UTC"}
    assert registry.errors == {}


def test_missing_file_raises_config_not_found(tmp_path: Path) -> None:
    with pytest.raises(ConfigNotFound) as info:
        ServerRegistry.load(tmp_path / "absent.json")
    assert info.value.path.endswith("absent.json")


@pytest.mark.parametrize("content", ["{not json", "[]", json.dumps({"mcpServers": []})])
def test_unusable_file_raises_invalid_config(tmp_path: Path, content: str) -> None:
    path = _write(tmp_path / "mcp.json", content)
    with pytest.raises(InvalidConfig):
        ServerRegistry.load(path)


def test_bad_entry_only_affects_that_server(tmp_path: Path) -> None:
    path = _write(tmp_path / "mcp.json", {
        "mcpServers": {
            "good": {"command": "echo"},
            "no_command": {"args": []},
            "bad_args": {"command": "x", "args": "not-a-list"},
            "bad_env": {"command": "x", "env": {"A": 1}},
        }
    })
    registry = ServerRegistry.load(path)

    assert registry.names() == ["good"]
    assert set(registry.errors) == {"no_command", "bad_args", "bad_env"}
    assert all(isinstance(e, InvalidConfig) for e in registry.errors.values())


def test_env_placeholders_are_interpolated(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("MY_TOKEN", "s3cret")
    monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
    registry = ServerRegistry.from_dict({
        "mcpServers": {
            "api": {
                "command": "node",
                "env": {"TOKEN": "${env:MY_TOKEN}", "OTHER": "${env:NOT_SET_ANYWHERE}", "PLAIN": "x"},
            }
        }
    })
    assert registry.get("api").env == {
        "TOKEN": "s3cret",
        "OTHER": "${env:NOT_SET_ANYWHERE}",
        "PLAIN": "x",
    }


def test_unknown_server_lookup() -> None:
    with pytest.raises(ServerNotFound):
        ServerRegistry().get("nope")


def test_config_path_resolution(tmp_path: Path, monkeypatch) -> None:
    explicit = tmp_path / "a.json"
    from_env = tmp_path / "b.json"
    monkeypatch.setenv("MCP_CONFIG_PATH", str(from_env))
    assert resolve_config_path(explicit) == explicit
    assert resolve_config_path() == from_env

    monkeypatch.delenv("MCP_CONFIG_PATH")
    assert resolve_config_path().name == "mcp_config.json"


def test_save_and_reload_round_trip(tmp_path: Path) -> None:
    registry = ServerRegistry([
        ServerConfig(name="fs", command="npx", args=("server-fs",), env={"A": "1"}),
    ])
    path = save_config(registry, tmp_path / "nested" / "mcp.json")

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == {"mcpServers": {"fs": {"command": "npx", "args": ["server-fs"], "env": {"A": "1"}}}}
    assert ServerRegistry.load(path).get("fs").env == {"A": "1"}


def test_create_default_config_does_not_overwrite(tmp_path: Path) -> None:
    path = tmp_path / "mcp.json"
    create_default_config(path)
    assert json.loads(path.read_text(encoding="utf-8")) == {"mcpServers": {}}

    _write(path, {"mcpServers": {"keep": {"command": "x"}}})
    create_default_config(path)
    assert ServerRegistry.load(path).names() == ["keep"]
