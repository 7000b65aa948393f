"""Small helpers for local TCP endpoints."""

from __future__ import annotations

import re
import socket
import time

_PORT = re.compile(r"[+-]?[0-9]+")

_WAIT_TOTAL = 5.0
_WAIT_STEP = 0.01


def get_available_local_address() -> str:
    """Return a "127.0.0.1:port" endpoint whose port is currently free."""
    with socket.create_server(("127.0.0.1", 0)) as sock:
        host, port = sock.getsockname()[:2]
    return f"{host}:{port}"


def host_port_from_addr(endpoint: str) -> tuple[str, int]:
    """Split "host:port" at the last colon; raise ValueError if it cannot."""
    host, sep, port_text = endpoint.rpartition(":")
    if not sep:
        raise ValueError("failed to parse host:port")
    if not _PORT.fullmatch(port_text):
        raise ValueError(f"invalid port {port_text!r}")
    return host, int(port_text)


def _port_accepts(port: int) -> bool:
    try:
        with socket.create_connection(("127.0.0.1", port), timeout=_WAIT_TOTAL):
            return True
    except OSError:
        return False


def wait_for_endpoint(endpoint: str) -> None:
    """Block until the endpoint's port accepts connections on 127.0.0.1.

    Raises TimeoutError if it does not within five seconds.
    """
    _, port = host_port_from_addr(endpoint)
    deadline = time.monotonic() + _WAIT_TOTAL
    while time.monotonic() < deadline:
        if _port_accepts(port):
            return
        time.sleep(_WAIT_STEP)
    raise TimeoutError(f"failed to wait for port {port}")