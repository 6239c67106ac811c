"""Response schemas of the storage API.

Field names are camelCase because they are part of the public JSON contract.
"""
from __future__ import annotations

from pydantic import BaseModel


class TierInfo(BaseModel):
    """A single purchasable duration tier."""

    tier: str
    price: str
    duration: str


class PricingResponse(BaseModel):
    """Available tiers, upload size cap and the wallet that buys postage."""

    tiers: list[TierInfo]
    maxTotalSize: str
    serverWallet: str


class PrepareResponse(BaseModel):
    """Upload token issued after a paid prepare call."""

    success: bool = True
    uploadToken: str
    readyAt: str
    expiresAt: str
    duration: str


class UploadResponse(BaseModel):
    """Public locators of uploaded content."""

    success: bool = True
    url: str
    reference: str
    cid: str
    expiresAt: str
    duration: str
    filesUploaded: int
