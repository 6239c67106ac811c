"""Client-side postage stamps.

A stamp binds a chunk address to a slot of a postage batch and is signed by
the batch owner, so any Bee node or gateway accepts the chunk without owning
the batch itself.

Layout (113 bytes)::

    batch id (32) | bucket (4, BE) | position (4, BE) | timestamp ns (8, BE) | signature (65)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Final

from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_hash.auto import keccak

from x402_swarm.services.postage import BUCKET_DEPTH

STAMP_SIZE: Final = 113


class BucketFullError(RuntimeError):
    """Raised when a chunk maps to a bucket with no free slot left."""

    def __init__(self, bucket: int, capacity: int) -> None:
        super().__init__(f"Postage bucket {bucket} is full ({capacity} chunks)")
        self.bucket = bucket
        self.capacity = capacity


def bucket_of(address: bytes, bucket_depth: int = BUCKET_DEPTH) -> int:
    """Return the collision bucket of a chunk address."""
    return int.from_bytes(address[:4], "big") >> (32 - bucket_depth)


class BatchStamper:
    """Issues stamps for one batch, filling each bucket in order."""

    def __init__(
        self,
        account: LocalAccount,
        batch_id: str,
        depth: int,
        *,
        bucket_depth: int = BUCKET_DEPTH,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        self.batch_id = bytes.fromhex(batch_id.removeprefix("0x"))
        if len(self.batch_id) != 32:
            raise ValueError("Batch ids must be 32 bytes")
        if depth <= bucket_depth:
            raise ValueError(f"Batch depth {depth} must exceed bucket depth {bucket_depth}")
        self.account = account
        self.bucket_depth = bucket_depth
        self.bucket_capacity = 1 << (depth - bucket_depth)
        self._clock = clock
        self._used: dict[int, int] = {}

    def stamp(self, address: bytes) -> bytes:
        bucket = bucket_of(address, self.bucket_depth)
        position = self._used.get(bucket, 0)
        if position >= self.bucket_capacity:
            raise BucketFullError(bucket, self.bucket_capacity)
        self._used[bucket] = position + 1

        index = bucket.to_bytes(4, "big") + position.to_bytes(4, "big")
        timestamp = self._clock().to_bytes(8, "big")
        digest = keccak(address + self.batch_id + index + timestamp)
        signed = self.account.sign_message(encode_defunct(primitive=digest))
        return self.batch_id + index + timestamp + bytes(signed.signature)
