"""Mantaray v0.2 manifests.

A manifest is a compacted trie of paths. Every node is serialized and
chunked like ordinary content; forks point at the root reference of their
child node. Obfuscation is not used, so the obfuscation key is all zeros.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

from eth_hash.auto import keccak

from x402_swarm.services.chunks import REFERENCE_SIZE, Chunk, split_bytes

OBFUSCATION_KEY: Final = bytes(32)
VERSION_HASH: Final = keccak(b"mantaray:0.2")[:31]
MAX_PREFIX_SIZE: Final = 30
NULL_REFERENCE: Final = bytes(REFERENCE_SIZE)
PATH_SEPARATOR: Final = ord("/")

TYPE_VALUE: Final = 2
TYPE_EDGE: Final = 4
TYPE_WITH_PATH_SEPARATOR: Final = 8
TYPE_WITH_METADATA: Final = 16

_METADATA_ALIGNMENT = 32
_METADATA_SIZE_BYTES = 2


@dataclass
class Fork:
    prefix: bytes
    node: ManifestNode


class ManifestNode:
    """One node of a Mantaray trie."""

    def __init__(self) -> None:
        self.node_type = 0
        self.entry = NULL_REFERENCE
        self.metadata: dict[str, str] = {}
        self.forks: dict[int, Fork] = {}

    def _set_value(self, entry: bytes, metadata: Mapping[str, str] | None) -> None:
        self.entry = entry
        if metadata:
            self.metadata = dict(metadata)
            self.node_type |= TYPE_WITH_METADATA

    def _update_path_separator(self, path: bytes) -> None:
        if PATH_SEPARATOR in path[1:]:
            self.node_type |= TYPE_WITH_PATH_SEPARATOR
        else:
            self.node_type &= ~TYPE_WITH_PATH_SEPARATOR

    def add(self, path: bytes, entry: bytes, metadata: Mapping[str, str] | None = None) -> None:
        """Store ``entry`` (a 32-byte reference) and ``metadata`` under ``path``."""
        if len(entry) != REFERENCE_SIZE:
            raise ValueError(f"Manifest entries must be {REFERENCE_SIZE} bytes")
        if not path:
            self._set_value(entry, metadata)
            return

        fork = self.forks.get(path[0])
        if fork is None:
            child = ManifestNode()
            if len(path) > MAX_PREFIX_SIZE:
                prefix = path[:MAX_PREFIX_SIZE]
                child.add(path[MAX_PREFIX_SIZE:], entry, metadata)
            else:
                prefix = path
                child._set_value(entry, metadata)
                child.node_type |= TYPE_VALUE
            child._update_path_separator(prefix)
            self.forks[path[0]] = Fork(prefix, child)
            self.node_type |= TYPE_EDGE
            return

        common = _common_prefix(fork.prefix, path)
        rest = fork.prefix[len(common) :]
        child = fork.node
        if rest:
            # Split the existing fork at the end of the shared prefix.
            child = ManifestNode()
            fork.node._update_path_separator(rest)
            child.forks[rest[0]] = Fork(rest, fork.node)
            child.node_type |= TYPE_EDGE
            if len(path) == len(common):
                child.node_type |= TYPE_VALUE
        child._update_path_separator(path)
        child.add(path[len(common) :], entry, metadata)
        self.forks[path[0]] = Fork(common, child)
        self.node_type |= TYPE_EDGE

    def save(self, sink: dict[bytes, Chunk]) -> bytes:
        """Serialize this node and its subtree into ``sink``; return its reference."""
        bitmap = bytearray(32)
        forks = bytearray()
        for key in sorted(self.forks):
            fork = self.forks[key]
            bitmap[key // 8] |= 1 << (key % 8)
            forks += _fork_bytes(fork, fork.node.save(sink))

        data = (
            OBFUSCATION_KEY
            + VERSION_HASH
            + bytes([REFERENCE_SIZE])
            + self.entry
            + bytes(bitmap)
            + bytes(forks)
        )
        reference, chunks = split_bytes(data)
        for chunk in chunks:
            sink.setdefault(chunk.address, chunk)
        return reference


def _common_prefix(left: bytes, right: bytes) -> bytes:
    size = 0
    for a, b in zip(left, right):
        if a != b:
            break
        size += 1
    return left[:size]


def _fork_bytes(fork: Fork, reference: bytes) -> bytes:
    node = fork.node
    out = (
        bytes([node.node_type, len(fork.prefix)])
        + fork.prefix.ljust(MAX_PREFIX_SIZE, b"\x00")
        + reference
    )
    if node.node_type & TYPE_WITH_METADATA:
        encoded = json.dumps(
            node.metadata, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        ).encode()
        sized = len(encoded) + _METADATA_SIZE_BYTES
        if sized < _METADATA_ALIGNMENT:
            encoded += b"\n" * (_METADATA_ALIGNMENT - sized)
        elif sized > _METADATA_ALIGNMENT:
            encoded += b"\n" * (_METADATA_ALIGNMENT - sized % _METADATA_ALIGNMENT)
        out += len(encoded).to_bytes(_METADATA_SIZE_BYTES, "big") + encoded
    return out
