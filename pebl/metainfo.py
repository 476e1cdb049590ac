"""Reading of torrent metainfo (.torrent) files."""

from __future__ import annotations

from dataclasses import dataclass, field
from os import PathLike
from typing import Any, Union

from pebl.bencode import decode_with_info_hash

PIECE_HASH_SIZE = 20


class MetainfoError(ValueError):
    """Raised when torrent metainfo is missing data or badly formed."""


@dataclass
class FileInfo:
    """One file of a torrent: its length and path components."""

    length: int
    path: list[str]


@dataclass
class Torrent:
    """The parts of a torrent's metainfo needed to download it."""

    tracker_url: str
    info_hash: bytes
    piece_length: int
    pieces: list[bytes]
    length: int = 0
    files: list[FileInfo] = field(default_factory=list)

    def get_files(self) -> list[FileInfo]:
        """Return the torrent's files, or a single file named ``file``."""
        if self.files:
            return self.files
        return [FileInfo(length=self.length, path=["file"])]


def _text(value: bytes) -> str:
    return value.decode("utf-8", errors="surrogateescape")


def extract_tracker_urls(meta: dict[str, Any]) -> list[str]:
    """Collect tracker URLs from ``announce-list``, falling back to ``announce``."""
    trackers: list[str] = []
    tiers = meta.get("announce-list")
    if isinstance(tiers, list):
        for tier in tiers:
            if isinstance(tier, list):
                trackers.extend(_text(url) for url in tier if isinstance(url, bytes))

    if not trackers:
        announce = meta.get("announce")
        if not isinstance(announce, bytes):
            raise MetainfoError("no announce or announce-list found")
        trackers.append(_text(announce))
    return trackers


def _split_pieces(raw: bytes) -> list[bytes]:
    if len(raw) % PIECE_HASH_SIZE:
        raise MetainfoError("invalid pieces length (not divisible by 20)")
    return [raw[i : i + PIECE_HASH_SIZE] for i in range(0, len(raw), PIECE_HASH_SIZE)]


def _parse_file_entry(entry: Any) -> FileInfo:
    if not isinstance(entry, dict):
        raise MetainfoError("invalid file entry")
    length = entry.get("length")
    if not isinstance(length, int):
        raise MetainfoError("file length missing or invalid")
    path = entry.get("path")
    if not isinstance(path, list):
        raise MetainfoError("file path missing or invalid")
    if not all(isinstance(part, bytes) for part in path):
        raise MetainfoError("file path element not string")
    return FileInfo(length=length, path=[_text(part) for part in path])


def parse_metainfo(data: bytes) -> Torrent:
    """Parse the bencoded contents of a .torrent file."""
    meta, _, info_hash = decode_with_info_hash(data)

    info = meta.get("info")
    if not isinstance(info, dict) or info_hash is None:
        raise MetainfoError("no info section")

    raw_pieces = info.get("pieces")
    if not isinstance(raw_pieces, bytes):
        raise MetainfoError("invalid pieces format")
    pieces = _split_pieces(raw_pieces)

    trackers = extract_tracker_urls(meta)

    piece_length = info.get("piece length")
    if not isinstance(piece_length, int):
        raise MetainfoError("piece length missing or invalid")

    torrent = Torrent(
        tracker_url=trackers[0],
        info_hash=info_hash,
        piece_length=piece_length,
        pieces=pieces,
    )

    if "files" in info:
        files = info["files"]
        if not isinstance(files, list):
            raise MetainfoError("invalid files format")
        torrent.files = [_parse_file_entry(entry) for entry in files]
    else:
        length = info.get("length")
        if not isinstance(length, int):
            raise MetainfoError("single file torrent missing length")
        torrent.length = length

    return torrent


def read_metainfo_file(path: Union[str, PathLike]) -> Torrent:
    """Read and parse a .torrent file from disk."""
    with open(path, "rb") as handle:
        return parse_metainfo(handle.read())