"""Business logic services for the x402 Swarm storage service."""

from .postage import PostageService
from .prepare import PrepareWorkflow
from .replay import MemoryReplayGuard, RedisReplayGuard
from .token_codec import TokenCodec, UploadToken
from .upload import UploadWorkflow

__all__ = [
    "MemoryReplayGuard",
    "PostageService",
    "PrepareWorkflow",
    "RedisReplayGuard",
    "TokenCodec",
    "UploadToken",
    "UploadWorkflow",
]
