"""Framing of protobuf payloads carried in WebSocket binary messages."""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")

# The message header is currently the varint encoding of zero.
WS_MSG_HEADER = 0

_MAX_VARINT_LEN = 10


class WSMessageError(ValueError):
    """Raised when a WebSocket message has an invalid header."""


def _encode_uvarint(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def _decode_uvarint(data: bytes) -> tuple[int, int]:
    result = 0
    for position, byte in enumerate(data[:_MAX_VARINT_LEN]):
        result |= (byte & 0x7F) << (7 * position)
        if byte < 0x80:
            return result, position + 1
    raise WSMessageError("malformed message header")


def decode_ws_message(data: bytes, parse: Callable[[bytes], T]) -> T:
    """Strip the optional zero header from ``data`` and parse the payload.

    Messages without the header (old format) are parsed as they are.
    """
    data = bytes(data)
    if data and data[0] == 0:
        header, length = _decode_uvarint(data)
        if header != WS_MSG_HEADER:
            raise WSMessageError("unexpected non-zero header")
        data = data[length:]
    return parse(data)


def encode_ws_message(payload: bytes) -> bytes:
    """Prefix a serialized payload with the message header."""
    return _encode_uvarint(WS_MSG_HEADER) + bytes(payload)