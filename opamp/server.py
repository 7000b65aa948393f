"""OpAMP server accepting agent connections over WebSocket and plain HTTP."""

from __future__ import annotations

import gzip
import inspect
import ssl
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from aiohttp import WSMsgType, web

from opamp.callbacks import Callbacks, ConnectionCallbacks, Logger, NopLogger
from opamp.connection import HTTPConnection, WSConnection
from opamp.netutil import host_port_from_addr
from opamp.wsmessage import decode_ws_message

DEFAULT_OPAMP_PATH = "/v1/opamp"
HEADER_CONTENT_TYPE = "Content-Type"
HEADER_CONTENT_ENCODING = "Content-Encoding"
HEADER_ACCEPT_ENCODING = "Accept-Encoding"
CONTENT_ENCODING_GZIP = "gzip"
CONTENT_TYPE_PROTOBUF = "application/x-protobuf"

_GZIP_MAGIC = b"\x1f\x8b"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@dataclass
class Settings:
    """Settings used by :meth:`OpAMPServer.attach` and :meth:`OpAMPServer.start`.

    ``parse_message`` turns a received payload into a message object and
    ``empty_response`` builds the response sent when a callback returns None.
    Responses are serialized with ``bytes(response)``; a response attribute
    ``instance_uid`` left empty is filled from the request's.
    """

    callbacks: Callbacks | None = None
    enable_compression: bool = False
    parse_message: Callable[[bytes], Any] = bytes
    empty_response: Callable[[], Any] | None = None


@dataclass
class StartSettings(Settings):
    """Settings for a server that runs its own HTTP listener."""

    listen_endpoint: str = ""
    listen_path: str = ""
    ssl_context: ssl.SSLContext | None = None


class AlreadyStartedError(RuntimeError):
    """Raised when starting a server that is already running."""

    def __init__(self) -> None:
        super().__init__("already started")


def compress_gzip(data: bytes) -> bytes:
    """Compress data with gzip."""
    return gzip.compress(data)


def decompress_gzip(data: bytes) -> bytes:
    """Decompress gzip data; raises OSError or EOFError on bad input."""
    return gzip.decompress(data)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class OpAMPServer:
    """Serves OpAMP agents, either standalone or attached to an aiohttp app."""

    def __init__(self, logger: Logger | None = None) -> None:
        self._logger: Logger = logger if logger is not None else NopLogger()
        self._settings = Settings()
        self._runner: web.AppRunner | None = None
        self._websockets: set[web.WebSocketResponse] = set()

    def attach(self, settings: Settings) -> Handler:
        """Prepare to serve requests and return the aiohttp request handler.

        The caller routes the handler in its own application and runs it.
        """
        self._settings = settings
        return self._handle

    async def start(self, settings: StartSettings) -> None:
        """Start an HTTP listener; returns once it accepts connections."""
        if self._runner is not None:
            raise AlreadyStartedError()
        handler = self.attach(settings)

        app = web.Application()
        app.router.add_route("*", settings.listen_path or DEFAULT_OPAMP_PATH, handler)

        host, port = self._listen_address(settings)
        runner = web.AppRunner(app)
        await runner.setup()
        try:
            site = web.TCPSite(runner, host, port, ssl_context=settings.ssl_context)
            await site.start()
        except BaseException:
            await runner.cleanup()
            raise
        self._runner = runner

    async def stop(self) -> None:
        """Stop accepting connections and close the listener."""
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        for ws in list(self._websockets):
            await ws.close()
        await runner.cleanup()

    @staticmethod
    def _listen_address(settings: StartSettings) -> tuple[str | None, int]:
        default_port = 443 if settings.ssl_context is not None else 80
        if not settings.listen_endpoint:
            return None, default_port
        host, port = host_port_from_addr(settings.listen_endpoint)
        host = host.strip("[]")
        return (host or None), port

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        connection_callbacks: ConnectionCallbacks | None = None
        callbacks = self._settings.callbacks
        if callbacks is not None:
            answer = await _resolve(callbacks.on_connecting(request))
            if not answer.accept:
                return web.Response(
                    status=answer.http_status_code,
                    headers=dict(answer.http_response_header),
                )
            connection_callbacks = answer.connection_callbacks

        if request.headers.get(HEADER_CONTENT_TYPE) == CONTENT_TYPE_PROTOBUF:
            return await self._handle_plain_http(request, connection_callbacks)
        return await self._handle_ws(request, connection_callbacks)

    def _complete_response(self, response: Any, request_msg: Any) -> Any:
        if response is None:
            if self._settings.empty_response is None:
                return None
            response = self._settings.empty_response()
        if not getattr(response, "instance_uid", None):
            uid = getattr(request_msg, "instance_uid", None)
            if uid is not None and hasattr(response, "instance_uid"):
                response.instance_uid = uid
        return response

    async def _handle_ws(
        self, request: web.Request, callbacks: ConnectionCallbacks | None
    ) -> web.StreamResponse:
        ws = web.WebSocketResponse(compress=self._settings.enable_compression)
        if not ws.can_prepare(request).ok:
            self._logger.error(
                "Cannot upgrade HTTP connection to WebSocket: %s", "invalid handshake"
            )
            return web.Response(status=400, text="Bad Request")
        await ws.prepare(request)

        conn = WSConnection(ws, request.transport)
        self._websockets.add(ws)
        try:
            if callbacks is not None:
                await _resolve(callbacks.on_connected(conn))
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    self._logger.error(
                        "Cannot read a message from WebSocket: %s", ws.exception()
                    )
                    break
                if msg.type != WSMsgType.BINARY:
                    self._logger.error(
                        "Received unexpected message type from WebSocket: %s", msg.type
                    )
                    continue
                try:
                    request_msg = decode_ws_message(msg.data, self._settings.parse_message)
                except Exception as exc:
                    self._logger.error("Cannot decode message from WebSocket: %s", exc)
                    continue
                if callbacks is None:
                    continue
                response = self._complete_response(
                    await _resolve(callbacks.on_message(conn, request_msg)), request_msg
                )
                if response is None:
                    continue
                try:
                    await conn.send(response)
                except Exception as exc:
                    self._logger.error("Cannot send message to WebSocket: %s", exc)
            self._logger.debug("Agent disconnected: %s", ws.close_code)
        finally:
            self._websockets.discard(ws)
            try:
                if callbacks is not None:
                    await _resolve(callbacks.on_connection_close(conn))
            finally:
                await ws.close()
        return ws

    @staticmethod
    async def _read_body(request: web.Request) -> bytes:
        data = await request.read()
        # The HTTP stack may already have undone the content encoding.
        if (
            request.headers.get(HEADER_CONTENT_ENCODING) == CONTENT_ENCODING_GZIP
            and data[:2] == _GZIP_MAGIC
        ):
            data = decompress_gzip(data)
        return data

    async def _handle_plain_http(
        self, request: web.Request, callbacks: ConnectionCallbacks | None
    ) -> web.StreamResponse:
        try:
            data = await self._read_body(request)
        except Exception as exc:
            self._logger.debug("Cannot read HTTP body: %s", exc)
            return web.Response(status=400)

        try:
            message = self._settings.parse_message(data)
        except Exception as exc:
            self._logger.debug("Cannot decode message from HTTP Body: %s", exc)
            return web.Response(status=400)

        conn = HTTPConnection(request.transport)
        if callbacks is None:
            return web.Response(status=500)

        await _resolve(callbacks.on_connected(conn))
        try:
            response = self._complete_response(
                await _resolve(callbacks.on_message(conn, message)), message
            )
            try:
                body = b"" if response is None else bytes(response)
            except Exception as exc:
                self._logger.error("Cannot serialize response: %s", exc)
                return web.Response(status=500)

            headers = {HEADER_CONTENT_TYPE: CONTENT_TYPE_PROTOBUF}
            if request.headers.get(HEADER_ACCEPT_ENCODING) == CONTENT_ENCODING_GZIP:
                body = compress_gzip(body)
                headers[HEADER_CONTENT_ENCODING] = CONTENT_ENCODING_GZIP
            return web.Response(body=body, headers=headers)
        finally:
            await _resolve(callbacks.on_connection_close(conn))