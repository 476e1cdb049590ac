"""Announcing to an HTTP tracker and decoding its list of peers."""

from __future__ import annotations

import ipaddress
import struct
import urllib.error
import urllib.request
from urllib.parse import urlencode, urlsplit

from pebl.bencode import decode
from pebl.metainfo import Torrent

LISTEN_PORT = 6881
_COMPACT_PEER = struct.Struct(">4sH")


class TrackerError(Exception):
    """Raised when the tracker cannot be reached or answers badly."""


def build_announce_url(torrent: Torrent, peer_id: bytes) -> str:
    """Build the tracker announce URL for ``torrent``."""
    try:
        base = urlsplit(torrent.tracker_url)
    except ValueError as exc:
        raise TrackerError(f"invalid tracker URL: {exc}") from exc

    params = {
        "peer_id": bytes(peer_id),
        "port": str(LISTEN_PORT),
        "uploaded": "0",
        "downloaded": "0",
        "left": str(torrent.length),
        "compact": "1",
        "event": "started",
    }
    info_hash = "".join(f"%{byte:02X}" for byte in torrent.info_hash)
    query = f"info_hash={info_hash}&{urlencode(sorted(params.items()))}"
    host = base.netloc.rpartition("@")[2]
    return f"{base.scheme}://{host}{base.path}?{query}"


def parse_tracker_response(body: bytes) -> list[str]:
    """Extract ``ip:port`` peer addresses from a compact tracker response."""
    response = decode(body)
    if not isinstance(response, dict):
        raise TrackerError("tracker response invalid format")
    if "peers" not in response:
        raise TrackerError("tracker response missing peers")
    peers = response["peers"]
    if not isinstance(peers, bytes):
        raise TrackerError("tracker peers not a string")

    usable = len(peers) - len(peers) % _COMPACT_PEER.size
    return [
        f"{ipaddress.IPv4Address(ip)}:{port}"
        for ip, port in _COMPACT_PEER.iter_unpack(peers[:usable])
    ]


def discover_peers(torrent: Torrent, peer_id: bytes) -> list[str]:
    """Announce to the torrent's tracker and return the peers it lists."""
    url = build_announce_url(torrent, peer_id)
    try:
        with urllib.request.urlopen(url) as response:
            body = response.read()
    except urllib.error.HTTPError as exc:
        body = exc.read()
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise TrackerError(f"tracker request failed: {exc}") from exc
    return parse_tracker_response(body)