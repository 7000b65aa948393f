"""OpAMP message types exchanged between agents and the server."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, NewType

from opamp.anyvalue import KeyValue

InstanceId = NewType("InstanceId", str)


class AgentCapabilities(enum.IntFlag):
    """Capabilities an agent reports in ``AgentToServer.capabilities``."""

    UNSPECIFIED = 0
    REPORTS_STATUS = 0x1
    ACCEPTS_REMOTE_CONFIG = 0x2
    REPORTS_EFFECTIVE_CONFIG = 0x4
    ACCEPTS_PACKAGES = 0x8
    REPORTS_PACKAGE_STATUSES = 0x10
    REPORTS_OWN_TRACES = 0x20
    REPORTS_OWN_METRICS = 0x40
    REPORTS_OWN_LOGS = 0x80
    ACCEPTS_OPAMP_CONNECTION_SETTINGS = 0x100
    ACCEPTS_OTHER_CONNECTION_SETTINGS = 0x200
    ACCEPTS_RESTART_COMMAND = 0x400
    REPORTS_HEALTH = 0x800
    REPORTS_REMOTE_CONFIG = 0x1000


class ServerToAgentFlags(enum.IntFlag):
    """Flags the server sets in ``ServerToAgent.flags``."""

    UNSPECIFIED = 0
    REPORT_FULL_STATE = 0x1


class RemoteConfigStatuses(enum.IntEnum):
    """The state of a remote config on the agent."""

    UNSET = 0
    APPLIED = 1
    APPLYING = 2
    FAILED = 3


@dataclass
class AgentConfigFile:
    """One named config file."""

    body: bytes = b""
    content_type: str = ""


@dataclass
class AgentConfigMap:
    """Config files keyed by name; the empty name is the instance config."""

    config_map: dict[str, AgentConfigFile] = field(default_factory=dict)


@dataclass
class AgentRemoteConfig:
    """A config offered by the server, with its hash."""

    config: AgentConfigMap | None = None
    config_hash: bytes = b""


@dataclass
class EffectiveConfig:
    """The config the agent is actually running with."""

    config_map: AgentConfigMap | None = None


@dataclass
class RemoteConfigStatus:
    """The agent's report on the last remote config it received."""

    last_remote_config_hash: bytes = b""
    status: RemoteConfigStatuses = RemoteConfigStatuses.UNSET
    error_message: str = ""


@dataclass
class AgentHealth:
    """The agent's health report."""

    healthy: bool = False
    start_time_unix_nano: int = 0
    last_error: str = ""


@dataclass
class AgentDescription:
    """Attributes that identify and describe an agent."""

    identifying_attributes: list[KeyValue] = field(default_factory=list)
    non_identifying_attributes: list[KeyValue] = field(default_factory=list)


@dataclass
class TelemetryConnectionSettings:
    """Where the agent sends its own telemetry."""

    destination_endpoint: str = ""
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class TLSCertificate:
    """A PEM-encoded certificate, its private key and the signing CA."""

    public_key: bytes = b""
    private_key: bytes = b""
    ca_public_key: bytes = b""


@dataclass
class OpAMPConnectionSettings:
    """Settings for the agent's connection to the OpAMP server."""

    destination_endpoint: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    certificate: TLSCertificate | None = None


@dataclass
class ConnectionSettingsOffers:
    """Connection settings offered by the server."""

    hash: bytes = b""
    opamp: OpAMPConnectionSettings | None = None
    own_metrics: TelemetryConnectionSettings | None = None
    own_traces: TelemetryConnectionSettings | None = None
    own_logs: TelemetryConnectionSettings | None = None
    other_connections: dict[str, Any] | None = None


@dataclass
class AgentToServer:
    """A status report sent by an agent."""

    instance_uid: str = ""
    sequence_num: int = 0
    agent_description: AgentDescription | None = None
    capabilities: int = 0
    health: AgentHealth | None = None
    effective_config: EffectiveConfig | None = None
    remote_config_status: RemoteConfigStatus | None = None
    package_statuses: Any = None


@dataclass
class ServerToAgent:
    """A message sent by the server to an agent."""

    instance_uid: str = ""
    remote_config: AgentRemoteConfig | None = None
    connection_settings: ConnectionSettingsOffers | None = None
    flags: int = 0
    capabilities: int = 0


def is_equal_config_file(f1: AgentConfigFile | None, f2: AgentConfigFile | None) -> bool:
    """Compare two config files by body and content type."""
    if f1 is f2:
        return True
    if f1 is None or f2 is None:
        return False
    return f1.body == f2.body and f1.content_type == f2.content_type


def is_equal_config_set(c1: AgentConfigMap | None, c2: AgentConfigMap | None) -> bool:
    """Compare two config maps file by file."""
    if c1 is c2:
        return True
    if c1 is None or c2 is None:
        return False
    if len(c1.config_map) != len(c2.config_map):
        return False
    for name, file1 in c1.config_map.items():
        if name not in c2.config_map:
            return False
        if not is_equal_config_file(file1, c2.config_map[name]):
            return False
    return True


def is_equal_remote_config(c1: AgentRemoteConfig | None, c2: AgentRemoteConfig | None) -> bool:
    """Compare two remote configs by their content; the hash is not compared."""
    if c1 is c2:
        return True
    if c1 is None or c2 is None:
        return False
    return is_equal_config_set(c1.config, c2.config)