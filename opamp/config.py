"""The supervisor's configuration file."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import yaml


@dataclass
class ServerConfig:
    """Where the OpAMP server is."""

    endpoint: str = ""


@dataclass
class AgentConfig:
    """How to run the supervised agent."""

    executable: str = ""


@dataclass
class SupervisorConfig:
    """The supervisor config file format; absent sections are None."""

    server: ServerConfig | None = None
    agent: AgentConfig | None = None


def _lookup(section: dict[Any, Any], name: str) -> Any:
    for key, value in section.items():
        if isinstance(key, str) and key.lower() == name:
            return value
    return None


def _mapping(data: dict[Any, Any], name: str) -> dict[Any, Any] | None:
    value = _lookup(data, name)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be a mapping")
    return value


def _string(section: dict[Any, Any], where: str, name: str) -> str:
    value = _lookup(section, name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{where}.{name} must be a string")
    return value


def load_supervisor_config(path: str = "supervisor.yaml") -> SupervisorConfig:
    """Read a supervisor config from a YAML file. Keys match case-insensitively."""
    with open(path, encoding="utf-8") as config_file:
        text = config_file.read()
    try:
        data = yaml.safe_load(text)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError("top level must be a mapping")
        server = _mapping(data, "server")
        agent = _mapping(data, "agent")
        return SupervisorConfig(
            server=None if server is None else ServerConfig(_string(server, "server", "endpoint")),
            agent=None if agent is None else AgentConfig(_string(agent, "agent", "executable")),
        )
    except (yaml.YAMLError, ValueError) as exc:
        raise ValueError(f"cannot parse {path}: {exc}") from exc