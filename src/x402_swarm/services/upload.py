"""Upload workflow: redeem an upload token and push files to Swarm.

Checks run in a fixed order: decode, expiry, replay, size. Expiry is checked
before replay, so an expired token that was never used reports expiry. The
nonce is burned as soon as the replay check passes, even if the upload later
fails; a failed upload needs a fresh prepare.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Final

from x402_swarm.core import pricing
from x402_swarm.core.time import to_epoch_ms, utcnow
from x402_swarm.services.errors import (
    InvalidTokenError,
    MissingUploadFieldError,
    PayloadTooLargeError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    UploadFailedError,
)
from x402_swarm.services.replay import ReplayGuard
from x402_swarm.services.storage import StorageUploader, UploadedFile
from x402_swarm.services.token_codec import TokenCodec

logger = logging.getLogger(__name__)

MEGABYTE: Final[int] = 1024 * 1024
# Advertised limit on the sum of all files in one upload.
MAX_TOTAL_SIZE: Final[int] = 100 * MEGABYTE
MAX_TOTAL_SIZE_LABEL: Final[str] = "100MB"
# Theoretical per-file ceiling for a depth 19 batch.
INTERNAL_MAX_FILE_SIZE: Final[int] = int(112.06 * MEGABYTE)


@dataclass(frozen=True)
class CompletedUpload:
    """Result of a successful upload."""

    url: str
    reference: str
    cid: str
    expires_at: datetime
    duration: str
    files_uploaded: int


class UploadWorkflow:
    """Redeems upload tokens against the storage network."""

    def __init__(
        self,
        codec: TokenCodec,
        replay_guard: ReplayGuard,
        uploader: StorageUploader,
        *,
        max_total_size: int = MAX_TOTAL_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if max_total_size > INTERNAL_MAX_FILE_SIZE:
            raise ValueError("max_total_size cannot exceed the batch capacity ceiling")
        self.codec = codec
        self.replay_guard = replay_guard
        self.uploader = uploader
        self.max_total_size = max_total_size
        self.clock = clock

    async def upload(
        self, upload_token: str | None, files: Sequence[UploadedFile]
    ) -> CompletedUpload:
        """Validate ``upload_token`` and upload ``files`` into its batch.

        Raises:
            MissingUploadFieldError: If the token or the files are missing.
            InvalidTokenError: If the token cannot be decoded.
            TokenExpiredError: If the token is past its expiry.
            TokenAlreadyUsedError: If the token was already redeemed.
            PayloadTooLargeError: If the files exceed the size cap.
            UploadFailedError: If the storage network upload fails.
        """
        if not upload_token:
            raise MissingUploadFieldError("uploadToken is required in form data")

        record = self.codec.decode(upload_token)
        if record is None:
            raise InvalidTokenError()
        try:
            tier = pricing.lookup(record.duration)
        except pricing.UnknownTierError as err:
            raise InvalidTokenError() from err

        if record.is_expired(to_epoch_ms(self.clock())):
            raise TokenExpiredError()

        if not await self.replay_guard.consume(record.nonce):
            raise TokenAlreadyUsedError()

        if not files:
            raise MissingUploadFieldError(
                "No files provided. Send files as multipart/form-data with field name 'files'"
            )

        total_size = sum(item.size for item in files)
        if total_size > self.max_total_size:
            raise PayloadTooLargeError(
                f"Total upload size exceeds limit of {self.max_total_size // MEGABYTE}MB "
                f"(got {total_size / MEGABYTE:.2f}MB)"
            )

        try:
            result = await self.uploader.upload_files(
                files, batch_id=record.batch_id, depth=record.depth
            )
        except Exception as exc:
            logger.exception("[%s] Upload failed", record.duration)
            raise UploadFailedError(str(exc) or type(exc).__name__) from exc

        # Content lives as long as the tier recorded in the token.
        expires_at = self.clock() + timedelta(hours=tier.hours)
        logger.info("[%s] Uploaded %d file(s): %s", record.duration, len(files), result.reference)
        return CompletedUpload(
            url=result.url,
            reference=result.reference,
            cid=result.cid,
            expires_at=expires_at,
            duration=record.duration,
            files_uploaded=len(files),
        )
