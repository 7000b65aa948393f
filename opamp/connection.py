"""OpAMP connections over WebSocket and plain HTTP."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Protocol

from opamp.wsmessage import encode_ws_message


class _WebSocket(Protocol):
    async def send_bytes(self, data: bytes) -> None: ...

    async def close(self) -> Any: ...


class Connection(ABC):
    """One OpAMP connection. Instances are hashable so they can key a dict."""

    @property
    @abstractmethod
    def connection(self) -> Any:
        """The underlying network transport."""

    @abstractmethod
    async def send(self, message: Any) -> None:
        """Send a message; ``bytes(message)`` must give its serialized form."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the network connection."""


class InvalidHTTPConnectionError(Exception):
    """Raised when sending or disconnecting over a plain HTTP connection."""

    def __init__(self) -> None:
        super().__init__("cannot operate over HTTP connection")


class HTTPConnection(Connection):
    """A connection represented by a single plain HTTP request.

    Only one response is possible and it is sent by the request handler after
    the message callback returns, so :meth:`send` and :meth:`disconnect` fail.
    """

    __slots__ = ("_transport",)

    def __init__(self, transport: Any = None) -> None:
        self._transport = transport

    @property
    def connection(self) -> Any:
        return self._transport

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HTTPConnection):
            return NotImplemented
        return self._transport is other._transport

    def __hash__(self) -> int:
        return hash((HTTPConnection, id(self._transport)))

    async def send(self, message: Any) -> None:
        raise InvalidHTTPConnectionError()

    async def disconnect(self) -> None:
        raise InvalidHTTPConnectionError()


class WSConnection(Connection):
    """A persistent connection over a WebSocket.

    Sends are serialized so that only one write is in progress at a time.
    """

    def __init__(self, ws: _WebSocket, transport: Any = None) -> None:
        self._ws = ws
        self._transport = transport
        self._send_lock = asyncio.Lock()

    @property
    def connection(self) -> Any:
        return self._transport

    async def send(self, message: Any) -> None:
        data = encode_ws_message(bytes(message))
        async with self._send_lock:
            await self._ws.send_bytes(data)

    async def disconnect(self) -> None:
        await self._ws.close()