"""
Server configuration: which tool servers exist and how to launch them.

The config file is JSON in the common MCP client layout:

    {
      "mcpServers": {
        "filesystem": {
          "command": "npx",
          "args": ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
          "env": {"API_KEY": "${env:MY_API_KEY}"}
        }
      }
    }

Lookup order for the file: explicit path, then $MCP_CONFIG_PATH, then
~/.config/mcp-manager/mcp_config.json.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from mcp_manager.errors import ConfigNotFound, InvalidConfig, ServerNotFound

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MCP_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "mcp-manager" / "mcp_config.json"


@dataclass(frozen=True)
class ServerConfig:
    """Static description of one tool server."""
    name: str
    command: str
    args: tuple[str, ...] = ()
    env: dict[str, str] | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        entry: dict[str, Any] = {"command": self.command, "args": list(self.args)}
        if self.env:
            entry["env"] = dict(self.env)
        return entry


def _interpolate_env(value: str) -> str:
    # format: ${env:VAR}
    if value.startswith("${env:") and value.endswith("}"):
        var_name = value[len("${env:"):-1]
        return os.environ.get(var_name, value)
    return value


def parse_server(name: str, entry: Any) -> ServerConfig:
    """Validate one ``mcpServers`` entry."""
    if not isinstance(entry, dict):
        raise InvalidConfig(f"server '{name}' must be an object")

    command = entry.get("command")
    if not isinstance(command, str) or not command.strip():
        raise InvalidConfig(f"server '{name}' requires a non-empty 'command'")

    args = entry.get("args", [])
    if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
        raise InvalidConfig(f"'args' for server '{name}' must be a list of strings")

    env = entry.get("env")
    if env is not None:
        if not isinstance(env, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in env.items()
        ):
            raise InvalidConfig(f"'env' for server '{name}' must map strings to strings")
        env = {k: _interpolate_env(v) for k, v in env.items()}

    return ServerConfig(name=name, command=command.strip(), args=tuple(args), env=env)


class ServerRegistry:
    """
    Ordered collection of server configs.

    Entries that fail validation are kept out of the registry and
    recorded in ``errors`` so that one bad entry never prevents the
    others from starting.
    """

    def __init__(self, servers: list[ServerConfig] | None = None):
        self._servers: dict[str, ServerConfig] = {}
        self.errors: dict[str, InvalidConfig] = {}
        for config in servers or []:
            self.add(config)

    @classmethod
    def from_dict(cls, data: Any) -> "ServerRegistry":
        if not isinstance(data, dict):
            raise InvalidConfig("config root must be an object")
        servers = data.get("mcpServers", {})
        if not isinstance(servers, dict):
            raise InvalidConfig("'mcpServers' must be an object")

        registry = cls()
        for name, entry in servers.items():
            try:
                registry.add(parse_server(name, entry))
            except InvalidConfig as e:
                logger.error(f"Skipping server '{name}': {e}")
                registry.errors[name] = e
        return registry

    @classmethod
    def load(cls, path: str | os.PathLike | None = None) -> "ServerRegistry":
        """Read and validate a config file."""
        config_path = resolve_config_path(path)
        if not config_path.is_file():
            raise ConfigNotFound(str(config_path))

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidConfig(f"failed to read {config_path}: {e}") from e

        registry = cls.from_dict(data)
        logger.info(
            f"Loaded {len(registry)} server(s) from {config_path}: {registry.names()}"
        )
        return registry

    def add(self, config: ServerConfig) -> None:
        if config.name in self._servers:
            logger.warning(f"Replacing config for server '{config.name}'")
        self._servers[config.name] = config
        self.errors.pop(config.name, None)

    def get(self, name: str) -> ServerConfig:
        try:
            return self._servers[name]
        except KeyError:
            raise ServerNotFound(name) from None

    def names(self) -> list[str]:
        return list(self._servers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mcpServers": {name: c.to_dict() for name, c in self._servers.items()}
        }

    def __contains__(self, name: object) -> bool:
        return name in self._servers

    def __iter__(self) -> Iterator[ServerConfig]:
        return iter(list(self._servers.values()))

    def __len__(self) -> int:
        return len(self._servers)


def resolve_config_path(path: str | os.PathLike | None = None) -> Path:
    if path:
        return Path(path).expanduser()
    explicit = os.getenv(CONFIG_ENV_VAR)
    if explicit:
        return Path(explicit).expanduser()
    return DEFAULT_CONFIG_PATH


def save_config(registry: ServerRegistry, path: str | os.PathLike) -> Path:
    """Write the registry back out as pretty-printed JSON."""
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        json.dump(registry.to_dict(), f, indent=2, sort_keys=True)
        f.write("\n")
    logger.info(f"Saved config with {len(registry)} server(s) to {target}")
    return target


def create_default_config(path: str | os.PathLike) -> Path:
    """Create an empty config file. Existing files are left alone."""
    target = Path(path).expanduser()
    if target.exists():
        logger.info(f"Config already exists at {target}")
        return target
    return save_config(ServerRegistry(), target)
