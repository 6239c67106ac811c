"""Pricing endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from x402_swarm.api.dependencies import ServerWalletDep
from x402_swarm.core.pricing import PRICING_TIERS
from x402_swarm.schemas.storage import PricingResponse, TierInfo
from x402_swarm.services.upload import MAX_TOTAL_SIZE_LABEL

router = APIRouter(tags=["pricing"])


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing(server_wallet: ServerWalletDep) -> PricingResponse:
    """Return the available duration tiers and their prices in USD."""
    return PricingResponse(
        tiers=[
            TierInfo(tier=name, price=tier.price, duration=f"{tier.hours} hours")
            for name, tier in PRICING_TIERS.items()
        ],
        maxTotalSize=MAX_TOTAL_SIZE_LABEL,
        serverWallet=server_wallet,
    )
