"""Server-side state of one connected agent."""

from __future__ import annotations

import copy
import hashlib
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from opamp.connection import Connection
from opamp.messages import (
    AgentCapabilities,
    AgentConfigFile,
    AgentConfigMap,
    AgentRemoteConfig,
    AgentToServer,
    ConnectionSettingsOffers,
    InstanceId,
    ServerToAgent,
    ServerToAgentFlags,
    TelemetryConnectionSettings,
    is_equal_remote_config,
)

OWN_METRICS_ENDPOINT = "http://localhost:4318/v1/metrics"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

Watcher = Callable[[], None]


def _notify_status_watchers(watchers: list[Watcher]) -> None:
    for notify in watchers:
        notify()


class Agent:
    """A connected agent: its last reported status and the config it should run."""

    def __init__(self, instance_id: InstanceId, conn: Connection | None = None) -> None:
        self.instance_id = instance_id
        self._conn = conn
        self._lock = threading.RLock()

        self.status: AgentToServer | None = None
        # Valid only while the reported health is healthy.
        self.started_at: datetime | None = None
        self.effective_config = ""
        self.custom_instance_config = ""

        self.client_cert: bytes | None = None
        self.client_cert_sha256_fingerprint = ""
        self.client_cert_offer_error = ""

        self._remote_config: AgentRemoteConfig | None = None
        self._status_update_watchers: list[Watcher] = []

        if conn is not None:
            self._read_client_cert(conn.connection)

    @property
    def remote_config(self) -> AgentRemoteConfig | None:
        """The remote config this agent is expected to run."""
        return self._remote_config

    def _read_client_cert(self, transport: Any) -> None:
        get_extra_info = getattr(transport, "get_extra_info", None)
        if get_extra_info is None:
            return
        ssl_object = get_extra_info("ssl_object")
        if ssl_object is None:
            return
        der = ssl_object.getpeercert(binary_form=True)
        if der:
            self.client_cert = der
            self.client_cert_sha256_fingerprint = hashlib.sha256(der).hexdigest().upper()

    def clone_readonly(self) -> Agent:
        """Return a copy that is safe to read; it has no connection."""
        with self._lock:
            clone = Agent(self.instance_id)
            clone.status = copy.deepcopy(self.status)
            clone.effective_config = self.effective_config
            clone.custom_instance_config = self.custom_instance_config
            clone._remote_config = copy.deepcopy(self._remote_config)
            clone.started_at = self.started_at
            clone.client_cert = self.client_cert
            clone.client_cert_offer_error = self.client_cert_offer_error
            clone.client_cert_sha256_fingerprint = self.client_cert_sha256_fingerprint
            return clone

    def update_status(self, status_msg: AgentToServer, response: ServerToAgent) -> None:
        """Apply a status report and fill in the response to send to the agent."""
        with self._lock:
            self._process_status_update(status_msg, response)
            watchers, self._status_update_watchers = self._status_update_watchers, []
        _notify_status_watchers(watchers)

    def _update_agent_description(self, new_status: AgentToServer) -> bool:
        prev_status = self.status
        if self.status is None:
            self.status = new_status
            return True

        self.status.sequence_num = new_status.sequence_num

        if new_status.agent_description is not None:
            if (
                prev_status is not None
                and prev_status.agent_description == new_status.agent_description
            ):
                changed = False
            else:
                self.status.agent_description = new_status.agent_description
                changed = True
        else:
            changed = False

        if (
            new_status.remote_config_status is not None
            and self.status.remote_config_status != new_status.remote_config_status
        ):
            self.status.remote_config_status = new_status.remote_config_status
        return changed

    def _update_health(self, new_status: AgentToServer) -> None:
        if new_status.health is None:
            return
        self.status.health = new_status.health
        if self.status.health.healthy:
            nanos = self.status.health.start_time_unix_nano
            self.started_at = _EPOCH + timedelta(microseconds=nanos // 1000)

    def _update_remote_config_status(self, new_status: AgentToServer) -> None:
        if new_status.remote_config_status is not None:
            self.status.remote_config_status = new_status.remote_config_status

    def _update_status_field(self, new_status: AgentToServer) -> bool:
        changed = False
        if self.status is None:
            self.status = new_status
            changed = True
        changed = self._update_agent_description(new_status) or changed
        self._update_remote_config_status(new_status)
        self._update_health(new_status)
        return changed

    def _update_effective_config(self, new_status: AgentToServer) -> None:
        effective = new_status.effective_config
        if effective is None or effective.config_map is None:
            return
        self.status.effective_config = effective
        # Parts are shown as a single concatenated blob.
        self.effective_config = "".join(
            cfg.body.decode("utf-8", errors="replace")
            for cfg in effective.config_map.config_map.values()
        )

    def _has_capability(self, capability: AgentCapabilities) -> bool:
        return bool(self.status.capabilities & capability)

    def _process_status_update(self, new_status: AgentToServer, response: ServerToAgent) -> None:
        lost_previous_update = (
            self.status is None or self.status.sequence_num + 1 != new_status.sequence_num
        )

        agent_descr_changed = self._update_status_field(new_status)

        status_is_compressed = (
            (new_status.effective_config is None
             and self._has_capability(AgentCapabilities.REPORTS_EFFECTIVE_CONFIG))
            or (new_status.package_statuses is None
                and self._has_capability(AgentCapabilities.REPORTS_PACKAGE_STATUSES))
            or (new_status.remote_config_status is None
                and self._has_capability(AgentCapabilities.REPORTS_REMOTE_CONFIG))
            or (new_status.health is None
                and self._has_capability(AgentCapabilities.REPORTS_HEALTH))
        )

        if status_is_compressed and lost_previous_update:
            response.flags |= int(ServerToAgentFlags.REPORT_FULL_STATE)

        config_changed = False
        if agent_descr_changed:
            config_changed = self._calc_remote_config()
            self._calc_connection_settings(response)

        current_hash = self._remote_config.config_hash if self._remote_config else b""
        rc_status = self.status.remote_config_status
        if config_changed or (
            rc_status is not None and rc_status.last_remote_config_hash != current_hash
        ):
            response.remote_config = self._remote_config

        self._update_effective_config(new_status)

    async def set_custom_config(
        self,
        config: AgentConfigMap,
        notify_when_config_is_applied: Watcher | None = None,
    ) -> None:
        """Set the instance-specific config and send it to the agent if it changed.

        The notifier is called after the agent's next status report, or at
        once if the config did not change.
        """
        with self._lock:
            self.custom_instance_config = config.config_map[""].body.decode(
                "utf-8", errors="replace"
            )
            config_changed = self._calc_remote_config()
            if config_changed:
                if notify_when_config_is_applied is not None:
                    self._status_update_watchers.append(notify_when_config_is_applied)
                msg = ServerToAgent(remote_config=self._remote_config)

        if config_changed:
            await self.send_to_agent(msg)
        elif notify_when_config_is_applied is not None:
            notify_when_config_is_applied()

    def _calc_remote_config(self) -> bool:
        cfg = AgentRemoteConfig(
            config=AgentConfigMap(
                {"": AgentConfigFile(body=self.custom_instance_config.encode("utf-8"))}
            )
        )
        digest = hashlib.sha256()
        for name, file in cfg.config.config_map.items():
            digest.update(name.encode("utf-8"))
            digest.update(file.body)
            digest.update(file.content_type.encode("utf-8"))
        cfg.config_hash = digest.digest()

        changed = not is_equal_remote_config(self._remote_config, cfg)
        self._remote_config = cfg
        return changed

    @staticmethod
    def _calc_connection_settings(response: ServerToAgent) -> None:
        response.connection_settings = ConnectionSettingsOffers(
            own_metrics=TelemetryConnectionSettings(destination_endpoint=OWN_METRICS_ENDPOINT),
        )

    async def send_to_agent(self, msg: ServerToAgent) -> None:
        """Send a message over the agent's connection."""
        if self._conn is None:
            raise RuntimeError("agent has no connection")
        await self._conn.send(msg)

    async def offer_connection_settings(self, offers: ConnectionSettingsOffers) -> None:
        """Send connection settings offers to the agent."""
        await self.send_to_agent(ServerToAgent(connection_settings=offers))