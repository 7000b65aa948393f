"""Registry of the agents connected to the server."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from opamp.agent import Agent, Watcher
from opamp.anyvalue import KeyValue, is_equal_key_value
from opamp.connection import Connection
from opamp.messages import AgentConfigMap, AgentDescription, ConnectionSettingsOffers, InstanceId

_log = logging.getLogger(__name__)
_PREFIX = "[AGENTS] "


class Agents:
    """Thread-safe collection of agents, indexed by id and by connection."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._agents_by_id: dict[InstanceId, Agent] = {}
        self._connections: dict[Connection, set[InstanceId]] = {}

    def remove_connection(self, conn: Connection) -> None:
        """Forget the connection and every agent associated with it."""
        with self._lock:
            for instance_id in self._connections.pop(conn, set()):
                self._agents_by_id.pop(instance_id, None)

    async def set_custom_config_for_agent(
        self,
        agent_id: InstanceId,
        config: AgentConfigMap,
        notify_next_status_update: Watcher | None = None,
    ) -> None:
        """Set a custom config on the agent, if it is known."""
        agent = self.find_agent(agent_id)
        if agent is not None:
            await agent.set_custom_config(config, notify_next_status_update)

    def find_agent(self, agent_id: InstanceId) -> Agent | None:
        """Return the agent with this id, or None."""
        with self._lock:
            return self._agents_by_id.get(agent_id)

    def find_or_create_agent(self, agent_id: InstanceId, conn: Connection) -> Agent:
        """Return the agent with this id, creating it on this connection if needed."""
        with self._lock:
            agent = self._agents_by_id.get(agent_id)
            if agent is None:
                agent = Agent(agent_id, conn)
                self._agents_by_id[agent_id] = agent
                self._connections.setdefault(conn, set()).add(agent_id)
            return agent

    def get_agent_readonly_clone(self, agent_id: InstanceId) -> Agent | None:
        """Return a read-only copy of the agent, or None if it is unknown."""
        agent = self.find_agent(agent_id)
        if agent is None:
            return None
        return agent.clone_readonly()

    def get_all_agents_readonly_clone(self) -> dict[InstanceId, Agent]:
        """Return read-only copies of all agents keyed by id."""
        with self._lock:
            snapshot = dict(self._agents_by_id)
        return {agent_id: agent.clone_readonly() for agent_id, agent in snapshot.items()}

    async def offer_agent_connection_settings(
        self, agent_id: InstanceId, offers: ConnectionSettingsOffers
    ) -> None:
        """Send connection settings offers to the agent, if it is known."""
        _log.info("%sBegin rotate client certificate for %s", _PREFIX, agent_id)
        with self._lock:
            agent = self._agents_by_id.get(agent_id)
        if agent is None:
            _log.info("%sAgent %s not found", _PREFIX, agent_id)
            return
        await agent.offer_connection_settings(offers)
        _log.info("%sClient certificate offers sent to %s", _PREFIX, agent_id)


def is_equal_attrs(attrs1: Sequence[KeyValue | None], attrs2: Sequence[KeyValue | None]) -> bool:
    """Compare two attribute lists element by element."""
    if len(attrs1) != len(attrs2):
        return False
    return all(is_equal_key_value(a1, a2) for a1, a2 in zip(attrs1, attrs2))


def is_equal_agent_descr(d1: AgentDescription | None, d2: AgentDescription | None) -> bool:
    """Compare two agent descriptions attribute by attribute."""
    if d1 is d2:
        return True
    if d1 is None or d2 is None:
        return False
    return is_equal_attrs(d1.identifying_attributes, d2.identifying_attributes) and is_equal_attrs(
        d1.non_identifying_attributes, d2.non_identifying_attributes
    )


ALL_AGENTS = Agents()