"""Swarm content chunking.

Content is cut into 4 KiB chunks addressed by their binary Merkle tree (BMT)
hash. Content longer than one chunk is indexed by intermediate chunks of up
to 128 references until a single root reference remains.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from eth_hash.auto import keccak

CHUNK_SIZE: Final = 4096
SEGMENT_SIZE: Final = 32
SPAN_SIZE: Final = 8
REFERENCE_SIZE: Final = 32
BRANCHES: Final = CHUNK_SIZE // REFERENCE_SIZE


@dataclass(frozen=True)
class Chunk:
    """A content-addressed chunk ready for upload."""

    address: bytes
    span: int
    payload: bytes

    @property
    def data(self) -> bytes:
        """Wire form: little-endian span followed by the payload."""
        return self.span.to_bytes(SPAN_SIZE, "little") + self.payload


def bmt_root(payload: bytes) -> bytes:
    """Return the BMT root of ``payload`` zero-padded to a full chunk."""
    if len(payload) > CHUNK_SIZE:
        raise ValueError(f"Chunk payload exceeds {CHUNK_SIZE} bytes")
    level = payload.ljust(CHUNK_SIZE, b"\x00")
    while len(level) > SEGMENT_SIZE:
        level = b"".join(
            keccak(level[i : i + 2 * SEGMENT_SIZE]) for i in range(0, len(level), 2 * SEGMENT_SIZE)
        )
    return level


def make_chunk(span: int, payload: bytes) -> Chunk:
    address = keccak(span.to_bytes(SPAN_SIZE, "little") + bmt_root(payload))
    return Chunk(address=address, span=span, payload=payload)


def split_bytes(data: bytes) -> tuple[bytes, list[Chunk]]:
    """Chunk ``data`` into a Swarm file tree.

    Returns:
        The root address and every chunk of the tree, leaves first.
        An empty input yields a single chunk with a zero span.
    """
    chunks = [
        make_chunk(len(data[i : i + CHUNK_SIZE]), data[i : i + CHUNK_SIZE])
        for i in range(0, max(len(data), 1), CHUNK_SIZE)
    ]
    level = [(chunk.address, chunk.span) for chunk in chunks]

    while len(level) > 1:
        parents: list[tuple[bytes, int]] = []
        for start in range(0, len(level), BRANCHES):
            group = level[start : start + BRANCHES]
            # A lone trailing reference moves up a level unwrapped.
            if len(group) == 1:
                parents.append(group[0])
                continue
            parent = make_chunk(sum(span for _, span in group), b"".join(ref for ref, _ in group))
            chunks.append(parent)
            parents.append((parent.address, parent.span))
        level = parents

    return level[0][0], chunks
