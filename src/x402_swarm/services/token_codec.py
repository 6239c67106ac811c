"""Sealed upload tokens.

An upload token is the JSON form of :class:`UploadToken` encrypted with
AES-256-GCM under the server's token secret. The wire format is
``base64url(iv || tag || ciphertext)`` without padding.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, ConfigDict, Field, ValidationError

IV_BYTES = 12
TAG_BYTES = 16
HEADER_BYTES = IV_BYTES + TAG_BYTES
KEY_BYTES = 32


class UploadToken(BaseModel):
    """Capability binding a purchased postage batch to one future upload."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    batch_id: str = Field(alias="batchId", pattern=r"^0x[0-9a-fA-F]{64}$")
    depth: int = Field(ge=17, le=255)
    duration: str
    nonce: str = Field(min_length=1)
    # Unix epoch milliseconds
    expiry: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expiry


def _encode_b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def _decode_b64(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


class TokenCodec:
    """Encrypts and authenticates upload tokens under a process-wide key."""

    def __init__(self, secret: bytes) -> None:
        if len(secret) != KEY_BYTES:
            raise ValueError("Token secret must be 32 bytes")
        self._aead = AESGCM(secret)

    def encode(self, record: UploadToken) -> str:
        """Seal ``record`` into an opaque URL-safe string."""
        iv = os.urandom(IV_BYTES)
        plaintext = record.model_dump_json(by_alias=True).encode()
        sealed = self._aead.encrypt(iv, plaintext, None)
        # AESGCM appends the tag; the wire format carries it in front.
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return _encode_b64(iv + tag + ciphertext)

    def decode(self, token: str) -> UploadToken | None:
        """Open a sealed token.

        Returns:
            The token record, or None when the token is malformed, was tampered
            with or was sealed under another key
        """
        try:
            data = _decode_b64(token)
        except (binascii.Error, ValueError):
            return None
        if len(data) <= HEADER_BYTES:
            return None

        iv = data[:IV_BYTES]
        tag = data[IV_BYTES:HEADER_BYTES]
        ciphertext = data[HEADER_BYTES:]
        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            return None

        try:
            return UploadToken.model_validate_json(plaintext)
        except ValidationError:
            return None
