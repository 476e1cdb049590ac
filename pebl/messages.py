"""Peer wire protocol messages: framing, serialisation and reading."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import BinaryIO, Optional

BLOCK_SIZE = 16384

_LENGTH = struct.Struct(">I")
_REQUEST = struct.Struct(">III")


class MessageId(enum.IntEnum):
    """Identifiers of the peer wire messages."""

    CHOKE = 0
    UNCHOKE = 1
    INTERESTED = 2
    NOT_INTERESTED = 3
    HAVE = 4
    BITFIELD = 5
    REQUEST = 6
    PIECE = 7
    CANCEL = 8


@dataclass(frozen=True)
class Message:
    """A length-prefixed peer wire message."""

    id: int
    payload: bytes = b""

    def serialize(self) -> bytes:
        """Return the message framed with its big-endian length prefix."""
        return _LENGTH.pack(len(self.payload) + 1) + bytes([self.id]) + self.payload


def _read_exactly(stream: BinaryIO, size: int) -> bytes:
    buffer = bytearray()
    while len(buffer) < size:
        chunk = stream.read(size - len(buffer))
        if not chunk:
            raise EOFError("unexpected EOF")
        buffer += chunk
    return bytes(buffer)


def read_message(stream: BinaryIO) -> Optional[Message]:
    """Read one message from a binary stream.

    Returns ``None`` for a keep-alive. Raises ``EOFError`` when the stream
    ends before a whole message has been read.
    """
    (length,) = _LENGTH.unpack(_read_exactly(stream, _LENGTH.size))
    if length == 0:
        return None
    body = _read_exactly(stream, length)
    return Message(id=body[0], payload=body[1:])


def request_message(index: int, begin: int, length: int) -> Message:
    """Build a request for ``length`` bytes at ``begin`` within piece ``index``."""
    return Message(MessageId.REQUEST, _REQUEST.pack(index, begin, length))