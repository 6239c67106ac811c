"""HTTP API of the storage service."""

from .endpoints import prepare_router, pricing_router, upload_router

__all__ = [
    "pricing_router",
    "prepare_router",
    "upload_router",
]
