import hashlib

import pytest

from opamp.agent import OWN_METRICS_ENDPOINT, Agent
from opamp.anyvalue import AnyValue, KeyValue
from opamp.connection import Connection
from opamp.messages import (
    AgentCapabilities,
    AgentConfigFile,
    AgentConfigMap,
    AgentDescription,
    AgentHealth,
    AgentToServer,
    ConnectionSettingsOffers,
    EffectiveConfig,
    InstanceId,
    OpAMPConnectionSettings,
    RemoteConfigStatus,
    ServerToAgent,
    ServerToAgentFlags,
    TLSCertificate,
)


class FakeConnection(Connection):
    def __init__(self, transport=None):
        self.sent = []
        self._transport = transport

    @property
    def connection(self):
        return self._transport

    async def send(self, message):
        self.sent.append(message)

    async def disconnect(self):
        pass


class FakeSSLObject:
    def __init__(self, der):
        self._der = der

    def getpeercert(self, binary_form=False):
        return self._der


class FakeTransport:
    def __init__(self, ssl_object):
        self._ssl_object = ssl_object

    def get_extra_info(self, name, default=None):
        return self._ssl_object if name == "ssl_object" else default


def describe(name):
    return AgentDescription(identifying_attributes=[KeyValue("service.name", AnyValue(name))])


def first_status(agent, **kwargs):
    msg = AgentToServer(instance_uid="abcd", sequence_num=0,
                        agent_description=describe("svc"), **kwargs)
    response = ServerToAgent()
    agent.update_status(msg, response)
    return response


FULL_STATE = int(ServerToAgentFlags.REPORT_FULL_STATE)


def test_first_status_sends_config_and_connection_settings():
    agent = Agent(InstanceId("abcd"), FakeConnection())
    response = first_status(agent)
    assert agent.status is not None
    assert response.remote_config is agent.remote_config
    assert len(agent.remote_config.config_hash) == 32
    assert response.connection_settings.own_metrics.destination_endpoint == OWN_METRICS_ENDPOINT


def test_omitted_fields_after_lost_update_request_full_state():
    agent = Agent(InstanceId("abcd"), FakeConnection())
    response = first_status(
        agent, capabilities=int(AgentCapabilities.REPORTS_EFFECTIVE_CONFIG)
    )
    assert (response.flags & FULL_STATE) == FULL_STATE


def test_consecutive_compressed_status_does_not_request_full_state():
    agent = Agent(InstanceId("abcd"), FakeConnection())
    caps = int(AgentCapabilities.REPORTS_EFFECTIVE_CONFIG)
    effective = EffectiveConfig(AgentConfigMap({"": AgentConfigFile(b"x")}))
    response = first_status(agent, capabilities=caps, effective_config=effective)
    assert response.flags == 0

    response = ServerToAgent()
    agent.update_status(AgentToServer(instance_uid="abcd", sequence_num=1, capabilities=caps), response)
    assert response.flags == 0

    response = ServerToAgent()
    agent.update_status(AgentToServer(instance_uid="abcd", sequence_num=5, capabilities=caps), response)
    assert (response.flags & FULL_STATE) == FULL_STATE


def test_unchanged_description_gets_no_connection_settings():
    agent = Agent(InstanceId("abcd"), FakeConnection())
    first_status(agent)
    response = ServerToAgent()
    agent.update_status(
        AgentToServer(instance_uid="abcd", sequence_num=1, agent_description=describe("svc")),
        response,
    )
    assert response.connection_settings is None
    assert response.remote_config is None

    response = ServerToAgent()
    agent.update_status(
        AgentToServer(instance_uid="abcd", sequence_num=2, agent_description=describe("other")),
        response,
    )
    assert response.connection_settings is not None
    assert agent.status.agent_description == describe("other")


def test_remote_config_resent_when_agent_hash_differs():
    agent = Agent(InstanceId("abcd"), FakeConnection())
    first_status(agent)

    response = ServerToAgent()
    agent.update_status(
        AgentToServer(sequence_num=1,
                      remote_config_status=RemoteConfigStatus(last_remote_config_hash=b"stale")),
        response,
    )
    assert response.remote_config == agent.remote_config

    response = ServerToAgent()
    current = agent.remote_config.config_hash
    agent.update_status(
        AgentToServer(sequence_num=2,
                      remote_config_status=RemoteConfigStatus(last_remote_config_hash=current)),
        response,
    )
    assert response.remote_config is None
    assert agent.status.remote_config_status.last_remote_config_hash == current


def test_effective_config_is_concatenated():
    agent = Agent(InstanceId("abcd"), FakeConnection())
    effective = EffectiveConfig(
        AgentConfigMap({"a": AgentConfigFile(b"x"), "b": AgentConfigFile(b"y")})
    )
    first_status(agent, effective_config=effective)
    assert agent.effective_config == "xy"
    assert agent.status.effective_config == effective


def test_healthy_report_sets_start_time():
    agent = Agent(InstanceId("abcd"), FakeConnection())
    nanos = 1_500_000_000 * 1_000_000_000
    first_status(agent, health=AgentHealth(healthy=True, start_time_unix_nano=nanos))
    assert agent.started_at.timestamp() == nanos / 1_000_000_000

    other = Agent(InstanceId("efgh"), FakeConnection())
    first_status(other, health=AgentHealth(healthy=False, start_time_unix_nano=nanos))
    assert other.started_at is None


@pytest.mark.asyncio
async def test_set_custom_config_sends_and_notifies_on_next_status():
    conn = FakeConnection()
    agent = Agent(InstanceId("abcd"), conn)
    first_status(agent)
    calls = []

    def notify():
        calls.append(True)

    config = AgentConfigMap({"": AgentConfigFile(b"x: 1")})
    await agent.set_custom_config(config, notify)
    assert agent.custom_instance_config == "x: 1"
    assert len(conn.sent) == 1
    assert conn.sent[0].remote_config == agent.remote_config
    assert calls == []

    agent.update_status(AgentToServer(sequence_num=1), ServerToAgent())
    assert calls == [True]

    await agent.set_custom_config(AgentConfigMap({"": AgentConfigFile(b"x: 1")}), notify)
    assert len(conn.sent) == 1
    assert calls == [True, True]


@pytest.mark.asyncio
async def test_set_custom_config_requires_instance_entry():
    agent = Agent(InstanceId("abcd"), FakeConnection())
    with pytest.raises(KeyError):
        await agent.set_custom_config(AgentConfigMap({"other": AgentConfigFile(b"x")}))


def test_clone_readonly_is_independent():
    agent = Agent(InstanceId("abcd"), FakeConnection())
    first_status(agent)
    clone = agent.clone_readonly()
    assert clone.instance_id == agent.instance_id
    assert clone.status == agent.status
    assert clone.remote_config == agent.remote_config
    clone.status.instance_uid = "changed"
    assert agent.status.instance_uid == "abcd"


@pytest.mark.asyncio
async def test_clone_cannot_send():
    agent = Agent(InstanceId("abcd"), FakeConnection())
    clone = agent.clone_readonly()
    with pytest.raises(RuntimeError):
        await clone.send_to_agent(ServerToAgent())


@pytest.mark.asyncio
async def test_offer_connection_settings_sends_offer():
    conn = FakeConnection()
    agent = Agent(InstanceId("abcd"), conn)
    offers = ConnectionSettingsOffers(
        opamp=OpAMPConnectionSettings(certificate=TLSCertificate(public_key=b"cert"))
    )
    await agent.offer_connection_settings(offers)
    assert conn.sent == [ServerToAgent(connection_settings=offers)]


def test_client_certificate_fingerprint():
    der = b"der-encoded-certificate"
    agent = Agent(InstanceId("abcd"), FakeConnection(FakeTransport(FakeSSLObject(der))))
    assert agent.client_cert == der
    assert agent.client_cert_sha256_fingerprint == hashlib.sha256(der).hexdigest().upper()

    plain = Agent(InstanceId("efgh"), FakeConnection(FakeTransport(None)))
    assert plain.client_cert is None
    assert plain.client_cert_sha256_fingerprint == ""