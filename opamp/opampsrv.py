"""An OpAMP server that tracks connected agents and the configs they run."""

from __future__ import annotations

import argparse
import asyncio
import base64
import enum
import json
import logging
import os
import ssl
from dataclasses import fields, is_dataclass
from typing import Any, Callable

from opamp.agents import ALL_AGENTS, Agents
from opamp.anyvalue import AnyValue, ArrayValue, KeyValue, KeyValueList
from opamp.callbacks import Callbacks, ConnectionCallbacks, ConnectionResponse, Logger
from opamp.connection import Connection
from opamp.messages import (
    AgentConfigFile,
    AgentConfigMap,
    AgentDescription,
    AgentHealth,
    AgentToServer,
    EffectiveConfig,
    InstanceId,
    RemoteConfigStatus,
    RemoteConfigStatuses,
    ServerToAgent,
)
from opamp.server import OpAMPServer, StartSettings

DEFAULT_LISTEN_ENDPOINT = "127.0.0.1:4320"
DEFAULT_CERTS_DIR = "../certs"


class PrefixLogger:
    """Logs through the logging module with a fixed message prefix."""

    def __init__(self, prefix: str, logger: logging.Logger | None = None) -> None:
        self._prefix = prefix
        self._logger = logger if logger is not None else logging.getLogger("opamp")

    def debug(self, msg: str, *args: Any) -> None:
        self._logger.debug(self._prefix + msg, *args)

    def error(self, msg: str, *args: Any) -> None:
        self._logger.error(self._prefix + msg, *args)


def create_server_tls_config(certs_dir: str) -> ssl.SSLContext:
    """Build a server TLS context from the CA and server certificates in ``certs_dir``.

    Client certificates are verified against the CA when they are given.
    """
    with open(os.path.join(certs_dir, "certs", "ca.cert.pem"), "rb") as ca_file:
        ca_pem = ca_file.read()

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        context.load_verify_locations(cadata=ca_pem.decode("ascii", errors="replace"))
    except (ssl.SSLError, ValueError) as exc:
        raise ValueError("cannot append ca.cert.pem") from exc

    try:
        context.load_cert_chain(
            os.path.join(certs_dir, "server_certs", "server.cert.pem"),
            os.path.join(certs_dir, "server_certs", "server.key.pem"),
        )
    except OSError as exc:
        raise ValueError(f"cannot load server key pair: {exc}") from exc

    context.verify_mode = ssl.CERT_OPTIONAL
    return context


# JSON wire codec for the message dataclasses.

def _any_to_json(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, bool):
        return {"bool": value}
    if isinstance(value, int):
        return {"int": value}
    if isinstance(value, float):
        return {"double": value}
    if isinstance(value, str):
        return {"string": value}
    if isinstance(value, (bytes, bytearray)):
        return {"bytes": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, ArrayValue):
        return {"array": [_to_json(item) for item in value.values]}
    if isinstance(value, KeyValueList):
        return {"kvlist": [_to_json(item) for item in value.values]}
    raise TypeError(f"unsupported attribute value {value!r}")


def _to_json(value: Any) -> Any:
    if isinstance(value, AnyValue):
        return _any_to_json(value.value)
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_json(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, dict):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    return value


def _any_from_json(data: Any) -> AnyValue:
    if not isinstance(data, dict) or len(data) > 1:
        raise ValueError("malformed attribute value")
    if not data:
        return AnyValue()
    (kind, raw), = data.items()
    if kind in ("bool", "int", "double", "string"):
        return AnyValue(raw)
    if kind == "bytes":
        return AnyValue(base64.b64decode(raw))
    if kind == "array":
        return AnyValue(ArrayValue([_any_from_json(item) for item in raw]))
    if kind == "kvlist":
        return AnyValue(KeyValueList([_decode_object(KeyValue, item) for item in raw]))
    raise ValueError(f"unknown attribute value kind {kind!r}")


_Decoder = Callable[[Any], Any]


def _object_of(cls: type) -> _Decoder:
    return lambda data: _decode_object(cls, data)


def _list_of(decode: _Decoder) -> _Decoder:
    return lambda data: [decode(item) for item in data]


def _dict_of(decode: _Decoder) -> _Decoder:
    return lambda data: {str(key): decode(item) for key, item in data.items()}


def _b64(data: Any) -> bytes:
    return base64.b64decode(data)


_KEY_VALUES = _list_of(_object_of(KeyValue))

# Field decoders for the incoming message types; other fields pass through as-is.
_SCHEMA: dict[type, dict[str, _Decoder]] = {
    AgentToServer: {
        "agent_description": _object_of(AgentDescription),
        "health": _object_of(AgentHealth),
        "effective_config": _object_of(EffectiveConfig),
        "remote_config_status": _object_of(RemoteConfigStatus),
    },
    AgentDescription: {
        "identifying_attributes": _KEY_VALUES,
        "non_identifying_attributes": _KEY_VALUES,
    },
    KeyValue: {"value": _any_from_json},
    EffectiveConfig: {"config_map": _object_of(AgentConfigMap)},
    AgentConfigMap: {"config_map": _dict_of(_object_of(AgentConfigFile))},
    AgentConfigFile: {"body": _b64},
    RemoteConfigStatus: {
        "last_remote_config_hash": _b64,
        "status": RemoteConfigStatuses,
    },
}


def _decode_object(cls: type, data: Any) -> Any:
    if not isinstance(data, dict):
        raise ValueError(f"expected an object for {cls.__name__}")
    decoders = _SCHEMA.get(cls, {})
    kwargs = {}
    for field in fields(cls):
        if field.name not in data:
            continue
        raw = data[field.name]
        decode = decoders.get(field.name)
        kwargs[field.name] = decode(raw) if decode is not None and raw is not None else raw
    return cls(**kwargs)


def _encode_message(message: Any) -> bytes:
    return json.dumps(_to_json(message)).encode("utf-8")


def _decode_agent_to_server(data: bytes) -> AgentToServer:
    obj = json.loads(bytes(data).decode("utf-8"))
    if not isinstance(obj, dict):
        raise ValueError("message must be a JSON object")
    return _decode_object(AgentToServer, obj)


class _Encoded:
    """A message that serializes itself with ``bytes()``."""

    __slots__ = ("message",)

    def __init__(self, message: Any) -> None:
        self.message = message

    @property
    def instance_uid(self) -> str:
        return self.message.instance_uid

    @instance_uid.setter
    def instance_uid(self, value: str) -> None:
        self.message.instance_uid = value

    def __bytes__(self) -> bytes:
        return _encode_message(self.message)


class _CodecConnection(Connection):
    """A connection that serializes messages before sending; equal to its inner connection's."""

    def __init__(self, inner: Connection) -> None:
        self._inner = inner

    @property
    def connection(self) -> Any:
        return self._inner.connection

    async def send(self, message: Any) -> None:
        await self._inner.send(_Encoded(message))

    async def disconnect(self) -> None:
        await self._inner.disconnect()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, _CodecConnection):
            return NotImplemented
        return self._inner == other._inner

    def __hash__(self) -> int:
        return hash(self._inner)


class AgentManagementServer:
    """Accepts agents, records their status and answers with their configs."""

    def __init__(
        self,
        agents: Agents,
        listen_endpoint: str = DEFAULT_LISTEN_ENDPOINT,
        certs_dir: str = DEFAULT_CERTS_DIR,
        logger: Logger | None = None,
    ) -> None:
        self._agents = agents
        self._listen_endpoint = listen_endpoint
        self._certs_dir = certs_dir
        self._logger: Logger = logger if logger is not None else PrefixLogger("[OPAMP] ")
        self._server = OpAMPServer(self._logger)

    async def start(self) -> None:
        """Start listening; TLS is used when the certificates can be loaded."""
        settings = StartSettings(
            callbacks=Callbacks(on_connecting_func=self._on_connecting),
            parse_message=_decode_agent_to_server,
            listen_endpoint=self._listen_endpoint,
        )
        try:
            settings.ssl_context = create_server_tls_config(self._certs_dir)
        except (OSError, ValueError) as exc:
            self._logger.debug("Could not load TLS config, working without TLS: %s", exc)
        await self._server.start(settings)

    async def stop(self) -> None:
        """Stop the server."""
        await self._server.stop()

    def _on_connecting(self, request: Any) -> ConnectionResponse:
        return ConnectionResponse(
            accept=True,
            connection_callbacks=ConnectionCallbacks(
                on_message_func=self._on_message,
                on_connection_close_func=self._on_disconnect,
            ),
        )

    def _on_disconnect(self, conn: Connection) -> None:
        self._agents.remove_connection(_CodecConnection(conn))

    def _on_message(self, conn: Connection, msg: AgentToServer) -> _Encoded:
        agent = self._agents.find_or_create_agent(
            InstanceId(msg.instance_uid), _CodecConnection(conn)
        )
        response = ServerToAgent()
        agent.update_status(msg, response)
        return _Encoded(response)


async def _serve() -> None:
    logger = PrefixLogger("[MAIN] ")
    logger.debug("OpAMP Server starting...")
    server = AgentManagementServer(ALL_AGENTS)
    await server.start()
    logger.debug("OpAMP Server running...")
    try:
        await asyncio.Event().wait()
    finally:
        logger.debug("OpAMP Server shutting down...")
        await server.stop()


def main(argv: list[str] | None = None) -> int:
    """Run the server until interrupted."""
    parser = argparse.ArgumentParser(
        prog="opamp-server", description="Run an OpAMP server on 127.0.0.1:4320."
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(message)s")
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        pass
    return 0