# pebl

A small BitTorrent client library. It covers:

- decoding bencoded data and working out a torrent's info hash (`pebl.bencode`);
- reading `.torrent` metainfo files, single-file and multi-file (`pebl.metainfo`);
- announcing to an HTTP tracker and reading the compact peer list it returns (`pebl.tracker`);
- the peer handshake (`pebl.handshake`) and the length-prefixed peer wire messages (`pebl.messages`);
- a peer manager that requests pieces, checks each one against its SHA-1 hash and writes it into the target files (`pebl.peer`).

The package uses only the standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Decoding bencode

```python
from pebl.bencode import decode, decode_with_info_hash, BencodeError

decode(b"4:spam")                      # b'spam'
decode(b"i42e")                        # 42
decode(b"li1ei2ee")                    # [1, 2]
decode(b"d3:cow3:moo4:spam4:eggse")    # {'cow': b'moo', 'spam': b'eggs'}

value, info_raw, info_hash = decode_with_info_hash(torrent_bytes)
```

Byte strings decode to `bytes`, and dictionary keys to `str`. Anything after
the first value is ignored. `decode_with_info_hash` needs a top-level
dictionary. It returns the decoded dictionary, the exact encoded bytes of its
`info` entry, and the SHA-1 digest of those bytes. The last two are `None`
when there is no `info` key. Malformed input raises `BencodeError`, which is a
`ValueError`.

## Reading a torrent

```python
from pebl.metainfo import read_metainfo_file

torrent = read_metainfo_file("example.torrent")
print(torrent.tracker_url, torrent.piece_length, len(torrent.pieces))
for entry in torrent.get_files():
    print("/".join(entry.path), entry.length)
```

`parse_metainfo(data)` does the same for bytes that are already in memory.

A `Torrent` has these fields:

- `tracker_url`: the first URL in `announce-list`, or `announce` if there is no list;
- `info_hash`;
- `piece_length`;
- `pieces`: the 20-byte hashes;
- `length`: set for single-file torrents;
- `files`: a list of `FileInfo(length, path)`, for multi-file torrents.

`get_files()` returns `files`. For a single-file torrent it returns one entry
named `file`. `extract_tracker_urls(meta)` returns every tracker URL in a
decoded metainfo dictionary. Malformed metainfo raises `MetainfoError`.

## Finding peers and downloading

```python
import threading

from pebl.handshake import HandshakeError, perform_handshake_and_connect
from pebl.messages import Message, MessageId
from pebl.peer import PeerManager
from pebl.tracker import discover_peers

peer_id = b"-PB0001-000000000000"
peers = discover_peers(torrent, peer_id)

with PeerManager(torrent, "downloads") as manager:
    for address in peers:
        try:
            peer = perform_handshake_and_connect(torrent, address, peer_id)
        except HandshakeError as exc:
            print(f"handshake with {address} failed: {exc}")
            continue
        manager.add(peer)
        threading.Thread(target=manager.handle_peer, args=(peer,), daemon=True).start()
        peer.send(Message(MessageId.INTERESTED))
        if peer.wait_unchoked(10):
            print(f"{address} unchoked us")
```

`discover_peers` announces on port 6881 and returns `"ip:port"` strings.
`build_announce_url` and `parse_tracker_response` carry out its two halves on
their own. If the tracker cannot be reached or its answer is malformed,
`TrackerError` is raised.

`PeerManager` creates the torrent's files under the root directory. When a
peer sends `unchoke`, the manager requests, in 16 KiB blocks, every piece that
the peer's bitfield advertises. It stores each `piece` block it receives. Once
a piece is complete it checks the piece against its hash. A piece that fails
the check is discarded. A piece that passes is written at its offset across
the files, and a `have` message goes to every connected peer.
`handle_piece_message` returns `True` when a block completed, verified and
wrote a piece. Progress and errors are reported through the standard
`logging` module, under the logger `pebl.peer`. Leaving the `with` block, or
calling `manager.close()`, disconnects the peers and closes the files.

Lower-level pieces:

- `Message(id, payload).serialize()` frames a message.
- `read_message(stream)` reads one message from a binary stream. It returns `None` for a keep-alive.
- `request_message(index, begin, length)` builds a request.
- `has_piece(bitfield, index)` tests a bitfield.
- `Handshake(peer_id, info_hash).to_bytes()` and `handshake_from_bytes(data)` encode and decode the 68-byte handshake.

## What it does not do

- There is no command-line program. Everything is driven from Python code.
- The package only downloads. It does not answer peers' requests, listen for incoming connections, or seed.
- It does not encode bencode.
- It does not resume partial downloads or re-check existing files.
- It only talks to HTTP trackers with compact peer lists. It does not support UDP trackers, DHT or magnet links.