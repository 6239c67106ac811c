"""Exceptions raised by the prepare and upload workflows.

Every error knows the HTTP status it maps to and how to render its JSON body;
the application registers a single handler for ``StorageServiceError``.
"""

from __future__ import annotations

from typing import Any

from fastapi import status


class StorageServiceError(RuntimeError):
    """Base exception for all service failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    headers: dict[str, str] | None = None

    def to_body(self) -> dict[str, Any]:
        return {"error": str(self)}


# --- Client faults ---------------------------------------------------------------


class InvalidTierError(StorageServiceError):
    """Raised when the requested duration tier is not offered."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, available_tiers: list[str]) -> None:
        super().__init__(f"Invalid duration. Must be one of: {', '.join(available_tiers)}")
        self.available_tiers = available_tiers

    def to_body(self) -> dict[str, Any]:
        return {"error": str(self), "availableTiers": self.available_tiers}


class MissingUploadFieldError(StorageServiceError):
    """Raised when the upload form lacks the token or the files."""

    status_code = status.HTTP_400_BAD_REQUEST


class PayloadTooLargeError(StorageServiceError):
    """Raised when submitted files exceed the advertised size cap."""

    status_code = status.HTTP_400_BAD_REQUEST


class InvalidTokenError(StorageServiceError):
    """Raised when an upload token cannot be decoded or authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Invalid or corrupted upload token") -> None:
        super().__init__(message)


class TokenExpiredError(StorageServiceError):
    """Raised when an upload token is used after its expiry."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Upload token has expired") -> None:
        super().__init__(message)


class TokenAlreadyUsedError(StorageServiceError):
    """Raised when an upload token's nonce was already consumed."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Upload token has already been used") -> None:
        super().__init__(message)


# --- Server faults ---------------------------------------------------------------


class PostageError(StorageServiceError):
    """Base exception for postage batch acquisition failures.

    These happen after the payment was accepted, so they are always reported
    to the caller as a failed prepare and never retried here.
    """

    def to_body(self) -> dict[str, Any]:
        return {"error": "Failed to prepare upload", "details": str(self)}


class ChainReadError(PostageError):
    """Raised when a read-only chain query fails."""


class InsufficientFundsError(PostageError):
    """Raised when the server wallet cannot pay for a postage batch."""

    def __init__(self, have: int, need: int) -> None:
        super().__init__(f"Insufficient BZZ balance. Have {have}, need {need}")
        self.have = have
        self.need = need


class ChainTransactionFailedError(PostageError):
    """Raised when an approval or batch creation transaction does not confirm."""


class AllocationEventMissingError(PostageError):
    """Raised when a confirmed batch creation has no ``BatchCreated`` event.

    The transaction went through, so retrying would buy a second batch.
    """

    def __init__(self, tx_hash: str) -> None:
        super().__init__(f"BatchCreated event not found in transaction {tx_hash}")
        self.tx_hash = tx_hash


class UploadFailedError(StorageServiceError):
    """Raised when the storage network rejects or fails an upload."""

    def to_body(self) -> dict[str, Any]:
        return {"error": "Upload failed", "details": str(self)}
