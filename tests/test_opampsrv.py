import asyncio
import json
import logging

import aiohttp
import pytest

from opamp.agent import OWN_METRICS_ENDPOINT
from opamp.agents import Agents
from opamp.messages import InstanceId
from opamp.netutil import get_available_local_address
from opamp.opampsrv import AgentManagementServer, PrefixLogger, create_server_tls_config, main
from opamp.wsmessage import decode_ws_message, encode_ws_message


class RecordingLogger:
    def __init__(self):
        self.debugs = []
        self.errors = []

    def debug(self, msg, *args):
        self.debugs.append(msg % args)

    def error(self, msg, *args):
        self.errors.append(msg % args)


def test_prefix_logger(caplog):
    logger = PrefixLogger("[OPAMP] ", logging.getLogger("opamp.test"))
    with caplog.at_level(logging.DEBUG, logger="opamp.test"):
        logger.debug("hello %s", "there")
        logger.error("bad %d", 7)
    messages = [record.getMessage() for record in caplog.records]
    assert messages == ["[OPAMP] hello there", "[OPAMP] bad 7"]
    assert caplog.records[1].levelno == logging.ERROR


def test_tls_config_missing_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        create_server_tls_config(str(tmp_path))


def test_tls_config_bad_ca(tmp_path):
    (tmp_path / "certs").mkdir()
    (tmp_path / "certs" / "ca.cert.pem").write_text("not a certificate")
    with pytest.raises(ValueError, match="cannot append ca.cert.pem"):
        create_server_tls_config(str(tmp_path))


def test_main_help():
    with pytest.raises(SystemExit) as exc:
        main(["--help"])
    assert exc.value.code == 0


@pytest.mark.asyncio
async def test_plain_http_status_report(tmp_path):
    agents = Agents()
    endpoint = get_available_local_address()
    logger = RecordingLogger()
    server = AgentManagementServer(agents, endpoint, str(tmp_path), logger)
    await server.start()
    try:
        body = json.dumps({"instance_uid": "http-agent", "sequence_num": 1}).encode()
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"http://{endpoint}/v1/opamp",
                data=body,
                headers={"Content-Type": "application/x-protobuf"},
            ) as resp:
                assert resp.status == 200
                reply = json.loads(await resp.read())
    finally:
        await server.stop()

    assert reply["instance_uid"] == "http-agent"
    assert reply["connection_settings"]["own_metrics"]["destination_endpoint"] == OWN_METRICS_ENDPOINT
    assert reply["remote_config"]["config"]["config_map"][""]["body"] == ""
    # The plain HTTP connection closes after the response, removing the agent.
    assert agents.find_agent(InstanceId("http-agent")) is None
    assert any(m.startswith("Could not load TLS config") for m in logger.debugs)


@pytest.mark.asyncio
async def test_plain_http_bad_body(tmp_path):
    endpoint = get_available_local_address()
    server = AgentManagementServer(Agents(), endpoint, str(tmp_path), RecordingLogger())
    await server.start()
    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"http://{endpoint}/v1/opamp",
                data=b"[1, 2",
                headers={"Content-Type": "application/x-protobuf"},
            ) as resp:
                status = resp.status
    finally:
        await server.stop()
    assert status == 400


@pytest.mark.asyncio
async def test_websocket_agent_registered_and_removed(tmp_path):
    agents = Agents()
    endpoint = get_available_local_address()
    server = AgentManagementServer(agents, endpoint, str(tmp_path), RecordingLogger())
    await server.start()
    try:
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(f"http://{endpoint}/v1/opamp") as ws:
                payload = json.dumps({"instance_uid": "ws-agent", "sequence_num": 1}).encode()
                await ws.send_bytes(encode_ws_message(payload))
                msg = await asyncio.wait_for(ws.receive(), 5)
                reply = decode_ws_message(msg.data, json.loads)
                assert reply["instance_uid"] == "ws-agent"
                agent = agents.find_agent(InstanceId("ws-agent"))
                assert agent.instance_id == "ws-agent"
                assert agent.status.sequence_num == 1
            for _ in range(500):
                if agents.find_agent(InstanceId("ws-agent")) is None:
                    break
                await asyncio.sleep(0.01)
            assert agents.find_agent(InstanceId("ws-agent")) is None
    finally:
        await server.stop()