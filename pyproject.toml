[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pebl"
version = "0.1.0"
description = "A small BitTorrent client library: bencode decoding, metainfo parsing, HTTP tracker announces and the peer wire protocol"
requires-python = ">=3.10"
dependencies = []
keywords = ["bittorrent", "bencode", "torrent", "peer-to-peer", "tracker"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: File Sharing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["pebl"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
