"""Swarm upload client.

Files are chunked, gathered under a Mantaray website manifest and stamped on
this side with the server wallet, which owns the postage batch. Stamped
chunks are pushed to the Bee ``/chunks`` endpoint, so the gateway does not
need to hold the batch.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import httpx
from eth_account.signers.local import LocalAccount

from x402_swarm.services.chunks import Chunk, split_bytes
from x402_swarm.services.manifest import NULL_REFERENCE, ManifestNode
from x402_swarm.services.stamper import BatchStamper, BucketFullError

logger = logging.getLogger(__name__)

HTTP_CREATED = 201
HTTP_OK = 200
REFERENCE_HEX_LENGTH = 64
DEFAULT_CONCURRENCY = 16

# CIDv1 header for a Swarm manifest: version 1, codec swarm-manifest (0xfa,
# varint encoded) and a 32-byte keccak-256 multihash (0x1b).
_SWARM_MANIFEST_CID_PREFIX = bytes([0x01, 0xFA, 0x01, 0x1B, 0x20])


class StorageUploadError(RuntimeError):
    """Raised when the Swarm gateway rejects or fails an upload."""


@dataclass(frozen=True)
class UploadedFile:
    """A file received from the client, held in memory."""

    name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadResult:
    """Public locators for uploaded content."""

    url: str
    reference: str
    cid: str


class StorageUploader(Protocol):
    """Interface of the storage network upload client."""

    async def upload_files(
        self, files: Sequence[UploadedFile], *, batch_id: str, depth: int
    ) -> UploadResult: ...


def reference_to_cid(reference: str) -> str:
    """Return the base32 CIDv1 form of a Swarm manifest reference."""
    digest = bytes.fromhex(reference.removeprefix("0x"))
    if len(digest) != REFERENCE_HEX_LENGTH // 2:
        raise ValueError("Swarm references must be 32 bytes")
    encoded = base64.b32encode(_SWARM_MANIFEST_CID_PREFIX + digest).decode()
    return "b" + encoded.lower().rstrip("=")


@dataclass(frozen=True)
class Collection:
    """A manifest reference and every distinct chunk behind it."""

    reference: bytes
    chunks: list[Chunk]


def build_collection(files: Sequence[UploadedFile]) -> Collection:
    """Chunk ``files`` and index them in a website manifest.

    Each file is served under its name; the first file is the index document.
    """
    sink: dict[bytes, Chunk] = {}
    manifest = ManifestNode()
    for item in files:
        root, chunks = split_bytes(item.data)
        for chunk in chunks:
            sink.setdefault(chunk.address, chunk)
        metadata = {
            "Content-Type": item.content_type or "application/octet-stream",
            "Filename": item.name,
        }
        manifest.add(item.name.encode(), root, metadata)
    manifest.add(b"/", NULL_REFERENCE, {"website-index-document": files[0].name})
    reference = manifest.save(sink)
    return Collection(reference=reference, chunks=list(sink.values()))


def stamp_collection(
    files: Sequence[UploadedFile], stamper: BatchStamper
) -> tuple[bytes, list[tuple[Chunk, bytes]]]:
    collection = build_collection(files)
    stamped = [(chunk, stamper.stamp(chunk.address)) for chunk in collection.chunks]
    return collection.reference, stamped


class BeeUploader:
    """Uploads stamped chunks to a Bee node or gateway."""

    def __init__(
        self,
        gateway_url: str,
        account: LocalAccount,
        *,
        timeout_seconds: float = 30.0,
        concurrency: int = DEFAULT_CONCURRENCY,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.gateway_url = gateway_url.rstrip("/")
        self.account = account
        self.timeout_seconds = timeout_seconds
        self.concurrency = concurrency
        self._client = client
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.gateway_url,
                    timeout=httpx.Timeout(self.timeout_seconds),
                )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _push_chunk(self, client: httpx.AsyncClient, chunk: Chunk, stamp: bytes) -> None:
        try:
            response = await client.post(
                "/chunks",
                content=chunk.data,
                headers={
                    "Content-Type": "application/octet-stream",
                    "swarm-postage-stamp": stamp.hex(),
                },
            )
        except httpx.HTTPError as exc:
            raise StorageUploadError(f"Swarm upload request failed: {exc}") from exc

        if response.status_code not in (HTTP_OK, HTTP_CREATED):
            raise StorageUploadError(
                f"Swarm gateway responded with {response.status_code}: {response.text[:200]}"
            )
        try:
            returned = response.json().get("reference")
        except (ValueError, AttributeError):
            returned = None
        if returned is not None and returned != chunk.address.hex():
            raise StorageUploadError(
                f"Swarm gateway stored chunk {chunk.address.hex()} as {returned}"
            )

    async def upload_files(
        self, files: Sequence[UploadedFile], *, batch_id: str, depth: int
    ) -> UploadResult:
        """Upload ``files`` stamped against ``batch_id``.

        Args:
            files: Files to upload; at least one.
            batch_id: Postage batch id (0x-prefixed hex) owned by the server wallet.
            depth: Depth of the batch; bounds the slots of each stamp bucket.

        Returns:
            Gateway URL, Swarm reference and CID of the uploaded manifest
        """
        if not files:
            raise StorageUploadError("No files to upload")

        stamper = BatchStamper(self.account, batch_id, depth)
        try:
            root, stamped = await asyncio.to_thread(stamp_collection, files, stamper)
        except BucketFullError as exc:
            raise StorageUploadError(str(exc)) from exc

        logger.info(
            "Uploading %d file(s), %d bytes in %d chunks, batch %s (depth %d)",
            len(files),
            sum(item.size for item in files),
            len(stamped),
            batch_id,
            depth,
        )

        client = await self._ensure_client()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _push(chunk: Chunk, stamp: bytes) -> None:
            async with semaphore:
                await self._push_chunk(client, chunk, stamp)

        await asyncio.gather(*(_push(chunk, stamp) for chunk, stamp in stamped))

        reference = root.hex()
        return UploadResult(
            url=f"{self.gateway_url}/bzz/{reference}/",
            reference=reference,
            cid=reference_to_cid(reference),
        )
