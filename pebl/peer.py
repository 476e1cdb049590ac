"""Peer connections and the manager that downloads pieces from them."""

from __future__ import annotations

import hashlib
import logging
import os
import socket
import struct
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Union

from pebl.messages import BLOCK_SIZE, Message, MessageId, read_message, request_message
from pebl.metainfo import Torrent

log = logging.getLogger(__name__)

_INDEX = struct.Struct(">I")
_PIECE_HEADER = struct.Struct(">II")


def has_piece(bitfield: Optional[bytes], index: int) -> bool:
    """Tell whether ``bitfield`` marks piece ``index`` as available."""
    byte_index, bit_index = divmod(index, 8)
    if not bitfield or byte_index >= len(bitfield):
        return False
    return bool(bitfield[byte_index] & (1 << (7 - bit_index)))


class PeerConn:
    """An open connection to a peer that has completed the handshake."""

    def __init__(self, conn: socket.socket, peer_id: bytes = bytes(20)) -> None:
        self.conn = conn
        self.peer_id = peer_id
        self.bitfield: Optional[bytes] = None
        self.choked = True
        self.reader: BinaryIO = conn.makefile("rb")
        self._unchoked = threading.Event()

    def send(self, msg: Message) -> None:
        """Send one message to the peer."""
        self.conn.sendall(msg.serialize())

    def set_unchoked(self) -> None:
        """Record that the peer has unchoked us, waking any waiter."""
        self._unchoked.set()

    def is_unchoked(self) -> bool:
        """Tell whether the peer has ever unchoked us."""
        return self._unchoked.is_set()

    def wait_unchoked(self, timeout: Optional[float] = None) -> bool:
        """Wait until the peer unchokes us; return False on timeout."""
        return self._unchoked.wait(timeout)

    def close(self) -> None:
        """Shut the connection down and release it."""
        try:
            self.conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.reader.close()
        self.conn.close()


class PieceBuffer:
    """Collects the blocks of one piece and tracks which have arrived."""

    def __init__(self, size: int) -> None:
        self.data = bytearray(size)
        self.bitmap = [False] * -(-size // BLOCK_SIZE)
        self._lock = threading.Lock()

    def write(self, begin: int, block: bytes) -> None:
        """Copy ``block`` into the piece at ``begin``, clipped to the piece."""
        if begin > len(self.data):
            raise ValueError(f"block offset {begin} outside piece")
        chunk = block[: len(self.data) - begin]
        with self._lock:
            self.data[begin : begin + len(chunk)] = chunk

    def mark_block_received(self, begin: int, block_len: int) -> None:
        """Mark every block touched by ``block_len`` bytes at ``begin``."""
        if block_len <= 0:
            return
        first = begin // BLOCK_SIZE
        last = (begin + block_len - 1) // BLOCK_SIZE
        if last >= len(self.bitmap):
            raise ValueError("block extends past end of piece")
        with self._lock:
            self.bitmap[first : last + 1] = [True] * (last - first + 1)

    def is_complete(self) -> bool:
        """Tell whether every block of the piece has arrived."""
        with self._lock:
            return all(self.bitmap)

    def reset(self) -> None:
        """Forget every received block."""
        with self._lock:
            self.bitmap = [False] * len(self.bitmap)


@dataclass
class _FileEntry:
    path: str
    length: int
    handle: BinaryIO


class PeerManager:
    """Tracks connected peers and writes verified pieces into the torrent's files."""

    def __init__(self, torrent: Torrent, root_dir: Union[str, os.PathLike]) -> None:
        self.torrent = torrent
        self.root_dir = Path(root_dir)
        self.peers: list[PeerConn] = []
        self._lock = threading.Lock()
        self._file_lock = threading.Lock()
        self._piece_buffers: dict[int, PieceBuffer] = {}
        self._files: list[_FileEntry] = []
        self._total_length = sum(f.length for f in torrent.get_files())

        self.root_dir.mkdir(parents=True, exist_ok=True)
        try:
            for info in torrent.get_files():
                full_path = self.root_dir.joinpath(*info.path)
                full_path.parent.mkdir(parents=True, exist_ok=True)
                flags = os.O_CREAT | os.O_WRONLY | getattr(os, "O_BINARY", 0)
                fd = os.open(full_path, flags, 0o644)
                handle = os.fdopen(fd, "wb", buffering=0)
                self._files.append(_FileEntry("/".join(info.path), info.length, handle))
        except OSError:
            self.close()
            raise

    def __enter__(self) -> PeerManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _piece_size(self, index: int) -> int:
        if index == len(self.torrent.pieces) - 1:
            return self._total_length - index * self.torrent.piece_length
        return self.torrent.piece_length

    def _piece_buffer(self, index: int) -> PieceBuffer:
        with self._lock:
            buffer = self._piece_buffers.get(index)
            if buffer is None:
                buffer = PieceBuffer(self._piece_size(index))
                self._piece_buffers[index] = buffer
            return buffer

    def add(self, peer: PeerConn) -> None:
        """Start tracking ``peer``."""
        with self._lock:
            self.peers.append(peer)

    def remove(self, peer: PeerConn) -> None:
        """Stop tracking ``peer`` and close its connection."""
        with self._lock:
            if peer in self.peers:
                self.peers.remove(peer)
                peer.close()

    def broadcast(self, msg: Message) -> None:
        """Send ``msg`` to every peer, ignoring peers that fail."""
        with self._lock:
            for peer in self.peers:
                try:
                    peer.send(msg)
                except OSError:
                    pass

    def handle_piece_message(
        self, index: int, begin: int, block: bytes, peer: Optional[PeerConn] = None
    ) -> bool:
        """Store a received block; verify and write the piece once complete.

        Returns True when this block completed a piece that was verified and
        written to disk.
        """
        buffer = self._piece_buffer(index)
        buffer.write(begin, block)
        buffer.mark_block_received(begin, len(block))
        if not buffer.is_complete():
            return False

        if hashlib.sha1(bytes(buffer.data)).digest() != self.torrent.pieces[index]:
            log.warning("Piece %d hash mismatch! Discarding piece.", index)
            buffer.reset()
            return False
        log.info("Piece %d verified, writing directly to files", index)

        try:
            self.write_piece_data_to_files(
                index * self.torrent.piece_length, bytes(buffer.data)
            )
        except (OSError, ValueError) as exc:
            log.error("Error writing piece %d to files: %s", index, exc)
            return False

        with self._lock:
            self._piece_buffers.pop(index, None)
        self.broadcast(Message(MessageId.HAVE, _INDEX.pack(index)))
        return True

    def write_piece_data_to_files(self, offset: int, data: bytes) -> None:
        """Write ``data`` at torrent offset ``offset``, spanning files as needed."""
        remaining = memoryview(data)
        current = offset
        for entry in self._files:
            if not remaining:
                break
            if current >= entry.length:
                current -= entry.length
                continue
            chunk = remaining[: entry.length - current]
            with self._file_lock:
                entry.handle.seek(current)
                written = entry.handle.write(chunk)
            if written != len(chunk):
                raise OSError(f"short write on file {entry.path}")
            remaining = remaining[len(chunk) :]
            current = 0
        if remaining:
            raise ValueError("data exceeds torrent size")

    def handle_peer(self, peer: PeerConn) -> None:
        """Read and act on messages from ``peer`` until its connection ends."""
        try:
            while True:
                try:
                    msg = read_message(peer.reader)
                except (OSError, EOFError, ValueError) as exc:
                    log.info("error reading message: %s", exc)
                    return
                if msg is not None:
                    self._dispatch(peer, msg)
        finally:
            self.remove(peer)

    def _dispatch(self, peer: PeerConn, msg: Message) -> None:
        if msg.id == MessageId.CHOKE:
            peer.choked = True
        elif msg.id == MessageId.UNCHOKE:
            peer.choked = False
            peer.set_unchoked()
            threading.Thread(
                target=self.request_pieces_from_peer, args=(peer,), daemon=True
            ).start()
        elif msg.id == MessageId.BITFIELD:
            peer.bitfield = msg.payload
        elif msg.id == MessageId.HAVE:
            if len(msg.payload) >= _INDEX.size:
                (index,) = _INDEX.unpack_from(msg.payload)
                log.info("Peer has piece %d", index)
        elif msg.id == MessageId.PIECE:
            if len(msg.payload) < _PIECE_HEADER.size:
                log.warning("invalid piece message payload length")
                return
            index, begin = _PIECE_HEADER.unpack_from(msg.payload)
            if index >= len(self.torrent.pieces):
                log.warning("invalid piece index %d", index)
                return
            try:
                self.handle_piece_message(
                    index, begin, msg.payload[_PIECE_HEADER.size :], peer
                )
            except ValueError as exc:
                log.warning("invalid block for piece %d: %s", index, exc)
        else:
            log.info("Received message ID %d", msg.id)

    def request_pieces_from_peer(self, peer: PeerConn) -> None:
        """Request every block of every piece the peer has, while unchoked."""
        for index in range(len(self.torrent.pieces)):
            if peer.choked:
                return
            if not has_piece(peer.bitfield, index):
                continue
            piece_length = self._piece_size(index)
            for begin in range(0, piece_length, BLOCK_SIZE):
                length = min(BLOCK_SIZE, piece_length - begin)
                try:
                    peer.send(request_message(index, begin, length))
                except OSError as exc:
                    log.warning("Failed to send request: %s", exc)
                    return

    def close(self) -> None:
        """Disconnect every peer and close the torrent's files."""
        with self._lock:
            peers, self.peers = self.peers, []
        for peer in peers:
            peer.close()
        for entry in self._files:
            entry.handle.close()