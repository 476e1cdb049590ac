import socket
import struct
import threading

import pytest

from pebl.handshake import (
    HANDSHAKE_LENGTH,
    PROTOCOL,
    Handshake,
    HandshakeError,
    handshake_from_bytes,
    perform_handshake_and_connect,
)
from pebl.messages import BLOCK_SIZE, Message, MessageId, read_message, request_message
from pebl.metainfo import Torrent
from pebl.peer import PeerManager

OUR_PEER_ID = b"-GT0001-123456789012"
REMOTE_PEER_ID = b"-RM0001-abcdefghijkl"
INFO_HASH = bytes(range(20))


def _torrent():
    return Torrent(
        tracker_url="http://tracker.example.com/announce",
        info_hash=INFO_HASH,
        piece_length=40000,
        pieces=[bytes(20)],
        length=40000,
    )


def _serve_peer(script, reply=None):
    listener = socket.create_server(("127.0.0.1", 0))
    port = listener.getsockname()[1]
    received = {}
    answer = reply if reply is not None else Handshake(REMOTE_PEER_ID, INFO_HASH).to_bytes()

    def run():
        conn, _ = listener.accept()
        with conn, conn.makefile("rb") as reader:
            received["handshake"] = reader.read(HANDSHAKE_LENGTH)
            conn.sendall(answer)
            script(conn, reader, received)
        listener.close()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return port, thread, received


def test_handshake_wire_layout():
    wire = Handshake(OUR_PEER_ID, INFO_HASH).to_bytes()
    assert len(wire) == 68
    assert wire[0] == 19
    assert wire[1:20] == PROTOCOL
    assert wire[20:28] == bytes(8)
    assert wire[28:48] == INFO_HASH
    assert wire[48:68] == OUR_PEER_ID


def test_handshake_round_trip():
    original = Handshake(OUR_PEER_ID, INFO_HASH)
    assert handshake_from_bytes(original.to_bytes()) == original


@pytest.mark.parametrize("size", [0, 67, 69])
def test_handshake_wrong_length_rejected(size):
    with pytest.raises(HandshakeError):
        handshake_from_bytes(bytes(size))


def test_connect_exchanges_handshakes():
    port, server, received = _serve_peer(lambda conn, reader, seen: None)
    peer = perform_handshake_and_connect(_torrent(), f"127.0.0.1:{port}", OUR_PEER_ID)
    server.join(5)
    try:
        assert received["handshake"] == Handshake(OUR_PEER_ID, INFO_HASH).to_bytes()
        assert peer.peer_id == REMOTE_PEER_ID
        assert peer.choked is True
        assert peer.bitfield is None
    finally:
        peer.close()


def test_connect_rejects_short_reply():
    port, server, _ = _serve_peer(lambda conn, reader, seen: None, reply=b"\x13short")
    with pytest.raises(HandshakeError):
        perform_handshake_and_connect(_torrent(), f"127.0.0.1:{port}", OUR_PEER_ID)
    server.join(5)


def test_connect_refused():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    with pytest.raises(HandshakeError):
        perform_handshake_and_connect(_torrent(), f"127.0.0.1:{port}", OUR_PEER_ID)


def test_bad_address_rejected():
    with pytest.raises(HandshakeError):
        perform_handshake_and_connect(_torrent(), "no-port-here", OUR_PEER_ID)


def test_handshake_then_unchoke_and_request_first_piece(tmp_path):
    torrent = _torrent()
    requests = []

    def script(conn, reader, seen):
        seen["interested"] = read_message(reader)
        conn.sendall(Message(MessageId.UNCHOKE).serialize())
        total = 0
        while total < torrent.piece_length:
            msg = read_message(reader)
            requests.append(msg)
            total += struct.unpack(">III", msg.payload)[2]

    port, server, received = _serve_peer(script)
    peer = perform_handshake_and_connect(torrent, f"127.0.0.1:{port}", OUR_PEER_ID)

    with PeerManager(torrent, tmp_path) as manager:
        manager.add(peer)
        worker = threading.Thread(target=manager.handle_peer, args=(peer,), daemon=True)
        worker.start()

        peer.send(Message(MessageId.INTERESTED))
        assert peer.wait_unchoked(5) is True

        for begin in range(0, torrent.piece_length, BLOCK_SIZE):
            length = min(BLOCK_SIZE, torrent.piece_length - begin)
            peer.send(request_message(0, begin, length))

        server.join(5)
        worker.join(5)
        assert peer not in manager.peers

    assert received["interested"] == Message(MessageId.INTERESTED)
    assert all(msg.id == MessageId.REQUEST for msg in requests)
    fields = [struct.unpack(">III", msg.payload) for msg in requests]
    assert [index for index, _, _ in fields] == [0] * len(fields)
    assert [begin for _, begin, _ in fields] == list(
        range(0, torrent.piece_length, BLOCK_SIZE)
    )
    assert all(length <= BLOCK_SIZE for _, _, length in fields)
    assert sum(length for _, _, length in fields) == torrent.piece_length