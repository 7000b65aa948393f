"""Server-side callback interfaces and their default implementations."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opamp.connection import Connection


_DISCARDING_LOG = logging.getLogger("opamp.discarded")
_DISCARDING_LOG.addHandler(logging.NullHandler())
_DISCARDING_LOG.propagate = False
_DISCARDING_LOG.disabled = True


@runtime_checkable
class Logger(Protocol):
    """Anything that can log debug and error messages in printf style."""

    def debug(self, msg: str, *args: Any) -> None: ...

    def error(self, msg: str, *args: Any) -> None: ...


class NopLogger:
    """A logger that discards every message."""

    def debug(self, msg: str, *args: Any) -> None:
        """Discard a debug message."""
        _DISCARDING_LOG.debug(msg, *args)

    def error(self, msg: str, *args: Any) -> None:
        """Discard an error message."""
        _DISCARDING_LOG.error(msg, *args)


@dataclass
class ConnectionResponse:
    """The answer to an incoming connection attempt.

    To accept, set ``accept`` and provide ``connection_callbacks``; the HTTP
    status and headers are then ignored. To reject, leave ``accept`` false and
    set a non-zero ``http_status_code`` (typically 401, 429 or 503), optionally
    with extra response headers such as ``Retry-After``.
    """

    accept: bool = False
    http_status_code: int = 0
    http_response_header: dict[str, str] = field(default_factory=dict)
    connection_callbacks: ConnectionCallbacks | None = None


@dataclass
class Callbacks:
    """Server-wide callbacks.

    Either pass ``on_connecting_func`` or subclass and override
    :meth:`on_connecting`.
    """

    on_connecting_func: Callable[[Any], ConnectionResponse] | None = None

    def on_connecting(self, request: Any) -> ConnectionResponse:
        """Decide whether to accept a new incoming connection.

        Without a user function every connection is accepted.
        """
        if self.on_connecting_func is not None:
            return self.on_connecting_func(request)
        return ConnectionResponse(accept=True)


@dataclass
class ConnectionCallbacks:
    """Callbacks for one connection; may be shared between connections.

    They are never called concurrently for the same connection.
    """

    on_connected_func: Callable[[Connection], None] | None = None
    on_message_func: Callable[[Connection, Any], Any] | None = None
    on_connection_close_func: Callable[[Connection], None] | None = None

    def on_connected(self, conn: Connection) -> None:
        """Called once the connection is established."""
        if self.on_connected_func is not None:
            self.on_connected_func(conn)

    def on_message(self, conn: Connection, message: Any) -> Any:
        """Handle a message from the agent and return the response to send.

        Without a user function None is returned, which asks the server to
        answer with an empty response carrying the agent's instance uid.
        """
        if self.on_message_func is not None:
            return self.on_message_func(conn, message)
        return None

    def on_connection_close(self, conn: Connection) -> None:
        """Called when the connection is closed."""
        if self.on_connection_close_func is not None:
            self.on_connection_close_func(conn)