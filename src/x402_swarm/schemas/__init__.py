# src/x402_swarm/schemas/__init__.py
"""
Pydantic schemas for API response models.
"""

from .storage import PrepareResponse, PricingResponse, TierInfo, UploadResponse

__all__ = [
    "PrepareResponse",
    "PricingResponse",
    "TierInfo",
    "UploadResponse",
]
