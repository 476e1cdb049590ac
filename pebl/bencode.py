"""Decoding of bencoded data, the serialisation format of torrent metainfo."""

from __future__ import annotations

import hashlib
import re
from typing import Any, Optional

_INTEGER = re.compile(rb"[+-]?[0-9]+")


class BencodeError(ValueError):
    """Raised when bencoded data is malformed."""


def decode(data: bytes) -> Any:
    """Decode the first bencoded value in ``data``.

    Byte strings decode to ``bytes``, integers to ``int``, lists to ``list``
    and dictionaries to ``dict`` with ``str`` keys. Data after the first
    value is ignored.
    """
    value, _ = _decode_at(bytes(data), 0)
    return value


def decode_with_info_hash(
    data: bytes,
) -> tuple[dict[str, Any], Optional[bytes], Optional[bytes]]:
    """Decode a top-level dictionary and capture its raw ``info`` value.

    Returns ``(value, info_raw, info_hash)`` where ``info_raw`` is the exact
    encoded bytes of the ``info`` entry and ``info_hash`` its SHA-1 digest.
    Both are ``None`` when the dictionary has no ``info`` key.
    """
    data = bytes(data)
    if not data.startswith(b"d"):
        raise BencodeError("top-level must be a dictionary")
    value, _, info_raw = _decode_dict(data, 0, capture_key="info")
    info_hash = hashlib.sha1(info_raw).digest() if info_raw is not None else None
    return value, info_raw, info_hash


def _parse_int(text: bytes) -> int:
    if not _INTEGER.fullmatch(text):
        raise BencodeError(f"invalid integer: {text!r}")
    return int(text)


def _decode_at(data: bytes, pos: int) -> tuple[Any, int]:
    if pos >= len(data):
        raise BencodeError("unexpected end of data")

    lead = data[pos : pos + 1]
    if lead == b"i":
        end = data.find(b"e", pos + 1)
        if end < 0:
            raise BencodeError("unterminated integer")
        return _parse_int(data[pos + 1 : end]), end + 1

    if lead == b"l":
        return _decode_list(data, pos)

    if lead == b"d":
        value, pos, _ = _decode_dict(data, pos)
        return value, pos

    if not lead.isdigit():
        raise BencodeError("unexpected character: expected digit")
    colon = data.find(b":", pos)
    if colon < 0:
        raise BencodeError("missing ':' in string")
    length = _parse_int(data[pos:colon])
    start = colon + 1
    end = start + length
    if end > len(data):
        raise BencodeError("string out of bounds")
    return data[start:end], end


def _at_end_marker(data: bytes, pos: int) -> bool:
    return data[pos : pos + 1] == b"e"


def _decode_list(data: bytes, pos: int) -> tuple[list[Any], int]:
    pos += 1
    items: list[Any] = []
    while pos < len(data) and not _at_end_marker(data, pos):
        item, pos = _decode_at(data, pos)
        items.append(item)
    if not _at_end_marker(data, pos):
        raise BencodeError("unterminated list")
    return items, pos + 1


def _decode_dict(
    data: bytes, pos: int, capture_key: Optional[str] = None
) -> tuple[dict[str, Any], int, Optional[bytes]]:
    pos += 1
    result: dict[str, Any] = {}
    captured: Optional[bytes] = None
    while pos < len(data) and not _at_end_marker(data, pos):
        raw_key, pos = _decode_at(data, pos)
        if not isinstance(raw_key, bytes):
            raise BencodeError("dictionary key is not a string")
        key = raw_key.decode("utf-8", errors="surrogateescape")
        start = pos
        value, pos = _decode_at(data, pos)
        if capture_key is not None and key == capture_key:
            captured = data[start:pos]
        result[key] = value
    if not _at_end_marker(data, pos):
        raise BencodeError("unterminated dictionary")
    return result, pos + 1, captured