"""A transparent TCP proxy that counts the bytes passing through it."""

from __future__ import annotations

import logging
import socket
import threading

from opamp.netutil import host_port_from_addr

_log = logging.getLogger(__name__)

_CHUNK = 1024


class TCPProxy:
    """Accepts connections locally and forwards them to a destination endpoint."""

    def __init__(self, dest_host_port: str) -> None:
        self._dest_host_port = dest_host_port
        self._incoming_host_port = ""
        self._listener: socket.socket | None = None
        self._stopped = threading.Event()
        self._lock = threading.Lock()
        self._client_to_server = 0
        self._server_to_client = 0

    def start(self) -> None:
        """Begin listening on a free local port and forwarding connections."""
        listener = socket.create_server(("127.0.0.1", 0))
        host, port = listener.getsockname()[:2]
        self._incoming_host_port = f"{host}:{port}"
        self._listener = listener
        self._stopped.clear()
        threading.Thread(target=self._accept_loop, args=(listener,), daemon=True).start()

    def stop(self) -> None:
        """Stop accepting connections and stop forwarding."""
        self._stopped.set()
        if self._listener is not None:
            self._listener.close()

    def incoming_endpoint(self) -> str:
        """The "host:port" endpoint clients should connect to."""
        return self._incoming_host_port

    def server_to_client_bytes(self) -> int:
        with self._lock:
            return self._server_to_client

    def client_to_server_bytes(self) -> int:
        with self._lock:
            return self._client_to_server

    def _accept_loop(self, listener: socket.socket) -> None:
        with listener:
            while not self._stopped.is_set():
                try:
                    conn, _ = listener.accept()
                except OSError as exc:
                    if not self._stopped.is_set():
                        _log.warning("Failed to accept TCP connection: %s", exc)
                    return
                threading.Thread(target=self._forward_both_ways, args=(conn,), daemon=True).start()

    def _forward_both_ways(self, incoming: socket.socket) -> None:
        host, port = host_port_from_addr(self._dest_host_port)
        try:
            outgoing = socket.create_connection((host, port))
        except OSError:
            incoming.close()
            return

        with outgoing, incoming:
            upstream = threading.Thread(
                target=self._forward, args=(incoming, outgoing, True), daemon=True
            )
            upstream.start()
            self._forward(outgoing, incoming, False)
            for sock in (incoming, outgoing):
                try:
                    sock.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass
            upstream.join()

    def _forward(self, src: socket.socket, dst: socket.socket, to_server: bool) -> None:
        while not self._stopped.is_set():
            try:
                chunk = src.recv(_CHUNK)
                if not chunk:
                    break
                dst.sendall(chunk)
            except OSError:
                return
            with self._lock:
                if to_server:
                    self._client_to_server += len(chunk)
                else:
                    self._server_to_client += len(chunk)
        try:
            dst.shutdown(socket.SHUT_WR)
        except OSError:
            pass