"""Single-use tracking for upload token nonces.

The in-memory guard keeps two generations of consumed nonces. Every clear
tick drops the older generation and starts a new one, so a nonce is remembered
for at least one full clear interval. With the interval longer than the token
lifetime a token can never be replayed while it is still valid, and memory
stays bounded.
"""

from __future__ import annotations

import asyncio
import logging
from threading import Lock
from typing import Any, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class ReplayGuard(Protocol):
    """Interface shared by replay guard backends."""

    async def consume(self, nonce: str) -> bool: ...

    async def clear(self) -> None: ...


class MemoryReplayGuard:
    """Process-wide set of consumed nonces."""

    def __init__(self) -> None:
        self._current: set[str] = set()
        self._previous: set[str] = set()
        self._lock = Lock()

    async def consume(self, nonce: str) -> bool:
        """Mark ``nonce`` as used.

        Returns:
            True if the nonce had not been seen before; False otherwise
        """
        with self._lock:
            if nonce in self._current or nonce in self._previous:
                return False
            self._current.add(nonce)
            return True

    async def clear(self) -> None:
        """Forget nonces consumed before the previous clear."""
        with self._lock:
            self._previous = self._current
            self._current = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._current) + len(self._previous)


class RedisReplayGuard:
    """Replay guard shared between processes through Redis.

    Each nonce is stored with ``SET NX EX`` so concurrent consumers race on a
    single atomic command; keys expire on their own.
    """

    def __init__(self, client: Any, *, ttl_seconds: int, prefix: str = "upload-nonce:") -> None:
        self._redis = client
        self._ttl_seconds = ttl_seconds
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, ttl_seconds: int) -> RedisReplayGuard:
        return cls(redis.from_url(url), ttl_seconds=ttl_seconds)

    async def consume(self, nonce: str) -> bool:
        created = await self._redis.set(
            f"{self._prefix}{nonce}", "1", nx=True, ex=self._ttl_seconds
        )
        return bool(created)

    async def clear(self) -> None:
        # Keys carry their own TTL.
        return None

    async def close(self) -> None:
        await self._redis.aclose()


class ReplayClearWorker:
    """Periodically clears the replay guard in the background."""

    def __init__(self, guard: ReplayGuard, interval_seconds: float) -> None:
        self.guard = guard
        self.interval_seconds = max(0.1, float(interval_seconds))
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the background clearing loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background clearing loop."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                await self.guard.clear()
                logger.debug("Rotated replay guard generation")
