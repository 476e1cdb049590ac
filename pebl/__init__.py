"""A small BitTorrent client library: bencode decoding, metainfo, HTTP tracker and peer wire protocol."""

__version__ = "0.1.0"