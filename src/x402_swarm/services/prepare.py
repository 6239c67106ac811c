"""Prepare workflow: buy a postage batch and mint an upload token.

Runs after the payment gate accepted payment for the requested tier:

1. Validate the tier (also done by the gate, before any payment is asked for)
2. Buy a postage batch sized for the tier's retention period
3. Mint a sealed, single-use upload token bound to the batch
4. Report when the batch should be usable and when the token expires
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from x402_swarm.core import pricing
from x402_swarm.core.time import to_epoch_ms, utcnow
from x402_swarm.services.errors import InvalidTierError
from x402_swarm.services.postage import PostageService
from x402_swarm.services.token_codec import TokenCodec, UploadToken

logger = logging.getLogger(__name__)

NONCE_BYTES = 16
DEFAULT_TOKEN_LIFETIME = timedelta(minutes=10)
DEFAULT_PROPAGATION_DELAY = timedelta(minutes=2)


@dataclass(frozen=True)
class PreparedUpload:
    """Result of a successful prepare call."""

    upload_token: str
    ready_at: datetime
    expires_at: datetime
    duration: str


class PrepareWorkflow:
    """Turns a paid duration tier into an upload token."""

    def __init__(
        self,
        postage: PostageService,
        codec: TokenCodec,
        *,
        token_lifetime: timedelta = DEFAULT_TOKEN_LIFETIME,
        propagation_delay: timedelta = DEFAULT_PROPAGATION_DELAY,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.postage = postage
        self.codec = codec
        self.token_lifetime = token_lifetime
        self.propagation_delay = propagation_delay
        self.clock = clock

    async def prepare(self, duration: str) -> PreparedUpload:
        """Buy a batch for ``duration`` and return a token for uploading into it.

        Raises:
            InvalidTierError: If ``duration`` is not a known tier; nothing is bought.
            PostageError: If the batch purchase fails. Payment was already taken,
                so the failure is reported, not retried.
        """
        try:
            tier = pricing.lookup(duration)
        except pricing.UnknownTierError as err:
            raise InvalidTierError(pricing.available_tiers()) from err

        allocation = await self.postage.buy_stamp(tier.days, label=duration)

        now = self.clock()
        expires_at = now + self.token_lifetime
        record = UploadToken(
            batch_id=allocation.batch_id,
            depth=allocation.depth,
            duration=duration,
            nonce=secrets.token_hex(NONCE_BYTES),
            expiry=to_epoch_ms(expires_at),
        )
        logger.info("[%s] Minted upload token for batch %s", duration, allocation.batch_id)

        return PreparedUpload(
            upload_token=self.codec.encode(record),
            ready_at=now + self.propagation_delay,
            expires_at=expires_at,
            duration=duration,
        )
