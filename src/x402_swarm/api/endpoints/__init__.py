"""API endpoint modules."""

from .prepare import router as prepare_router
from .pricing import router as pricing_router
from .upload import router as upload_router

__all__ = [
    "pricing_router",
    "prepare_router",
    "upload_router",
]
