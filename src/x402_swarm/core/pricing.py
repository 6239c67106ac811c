"""Duration tiers offered for Swarm storage.

Prices are in USD. The minimum tier is two days because of the postage
contract's ``minimumInitialBalancePerChunk``.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Final

USDC_DECIMALS: Final[int] = 6


class UnknownTierError(LookupError):
    """Raised when a duration tier is not part of the pricing table."""

    def __init__(self, tier: object) -> None:
        super().__init__(f"Unknown duration tier: {tier!r}")
        self.tier = tier


@dataclass(frozen=True)
class PricingTier:
    """Price and retention period of a single duration tier."""

    price: str
    hours: int
    days: int

    @property
    def price_atomic(self) -> int:
        """Return the price in USDC atomic units (6 decimals)."""
        return int(Decimal(self.price).scaleb(USDC_DECIMALS))


PRICING_TIERS: Final[dict[str, PricingTier]] = {
    "2d": PricingTier(price="0.01", hours=48, days=2),
    "7d": PricingTier(price="0.03", hours=24 * 7, days=7),
    "30d": PricingTier(price="0.10", hours=24 * 30, days=30),
}


def available_tiers() -> list[str]:
    """Return the tier names in display order."""
    return list(PRICING_TIERS)


def lookup(tier: object) -> PricingTier:
    """Return the pricing entry for ``tier``.

    Raises:
        UnknownTierError: If the tier is not offered
    """
    if not isinstance(tier, str) or tier not in PRICING_TIERS:
        raise UnknownTierError(tier)
    return PRICING_TIERS[tier]
