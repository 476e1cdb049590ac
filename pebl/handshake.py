"""The BitTorrent handshake and opening connections to peers."""

from __future__ import annotations

import socket
from dataclasses import dataclass

from pebl.metainfo import Torrent
from pebl.peer import PeerConn

PROTOCOL = b"BitTorrent protocol"
RESERVED = bytes(8)
HANDSHAKE_LENGTH = 1 + len(PROTOCOL) + len(RESERVED) + 20 + 20


class HandshakeError(Exception):
    """Raised when a peer cannot be reached or its handshake is invalid."""


@dataclass(frozen=True)
class Handshake:
    """The opening message exchanged with a peer."""

    peer_id: bytes
    info_hash: bytes

    def to_bytes(self) -> bytes:
        """Encode the handshake for the wire."""
        return bytes([len(PROTOCOL)]) + PROTOCOL + RESERVED + self.info_hash + self.peer_id


def handshake_from_bytes(data: bytes) -> Handshake:
    """Decode a handshake; raise ``HandshakeError`` if it has the wrong length."""
    if len(data) != HANDSHAKE_LENGTH:
        raise HandshakeError("invalid handshake from peer")
    return Handshake(peer_id=bytes(data[48:68]), info_hash=bytes(data[28:48]))


def _split_address(peer_addr: str) -> tuple[str, int]:
    host, sep, port = peer_addr.rpartition(":")
    if not sep or not port.isdigit():
        raise HandshakeError(f"error connecting to peer {peer_addr}: invalid address")
    return host.strip("[]"), int(port)


def _recv_exactly(conn: socket.socket, size: int) -> bytes:
    buffer = bytearray()
    while len(buffer) < size:
        chunk = conn.recv(size - len(buffer))
        if not chunk:
            raise ConnectionError("connection closed by peer")
        buffer += chunk
    return bytes(buffer)


def perform_handshake_and_connect(
    torrent: Torrent, peer_addr: str, our_peer_id: bytes
) -> PeerConn:
    """Connect to ``peer_addr``, exchange handshakes and return the connection."""
    host, port = _split_address(peer_addr)
    try:
        conn = socket.create_connection((host, port))
    except OSError as exc:
        raise HandshakeError(f"error connecting to peer {peer_addr}: {exc}") from exc

    try:
        conn.sendall(Handshake(our_peer_id, torrent.info_hash).to_bytes())
    except OSError as exc:
        conn.close()
        raise HandshakeError(f"error writing handshake: {exc}") from exc

    try:
        response = _recv_exactly(conn, HANDSHAKE_LENGTH)
    except OSError as exc:
        conn.close()
        raise HandshakeError(f"error reading handshake response: {exc}") from exc

    try:
        received = handshake_from_bytes(response)
    except HandshakeError:
        conn.close()
        raise

    return PeerConn(conn, peer_id=received.peer_id)