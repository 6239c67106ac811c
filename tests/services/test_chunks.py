"""Tests for Swarm content chunking."""

import pytest
from eth_hash.auto import keccak

from x402_swarm.services.chunks import (
    BRANCHES,
    CHUNK_SIZE,
    bmt_root,
    make_chunk,
    split_bytes,
)


def test_empty_payload_root_is_the_zero_hash_chain() -> None:
    expected = bytes(32)
    for _ in range(7):
        expected = keccak(expected + expected)

    assert bmt_root(b"") == expected


def test_trailing_zeros_share_a_root_but_not_an_address() -> None:
    assert bmt_root(b"swarm") == bmt_root(b"swarm\x00")
    assert make_chunk(5, b"swarm").address != make_chunk(6, b"swarm\x00").address


def test_address_covers_span_and_root() -> None:
    chunk = make_chunk(5, b"hello")

    assert chunk.address == keccak((5).to_bytes(8, "little") + bmt_root(b"hello"))
    assert chunk.data == b"\x05" + bytes(7) + b"hello"


def test_oversized_payload_is_rejected() -> None:
    with pytest.raises(ValueError):
        bmt_root(bytes(CHUNK_SIZE + 1))


def test_small_content_is_a_single_chunk() -> None:
    root, chunks = split_bytes(b"hello")

    assert len(chunks) == 1
    assert root == chunks[0].address == make_chunk(5, b"hello").address


def test_empty_content_is_one_zero_span_chunk() -> None:
    root, chunks = split_bytes(b"")

    assert [chunk.span for chunk in chunks] == [0]
    assert root == make_chunk(0, b"").address


def test_intermediate_chunk_lists_children_and_sums_spans() -> None:
    data = b"".join(i.to_bytes(4, "big") for i in range(CHUNK_SIZE // 4 * 3))

    root, chunks = split_bytes(data)

    leaves, parent = chunks[:3], chunks[3]
    assert len(chunks) == 4
    assert parent.address == root
    assert parent.span == len(data)
    assert parent.payload == b"".join(leaf.address for leaf in leaves)


def test_lone_trailing_reference_is_carried_up() -> None:
    data = bytes(CHUNK_SIZE * BRANCHES + 1)

    root, chunks = split_bytes(data)

    leaves = chunks[: BRANCHES + 1]
    full_parent, top = chunks[BRANCHES + 1 :]
    assert len(chunks) == BRANCHES + 3
    assert full_parent.span == CHUNK_SIZE * BRANCHES
    assert top.address == root
    assert top.span == len(data)
    assert top.payload == full_parent.address + leaves[-1].address
