"""Tests for upload nonce replay protection."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock

import pytest

from x402_swarm.services.replay import MemoryReplayGuard, RedisReplayGuard, ReplayClearWorker


@pytest.mark.asyncio
async def test_consume_is_single_use() -> None:
    guard = MemoryReplayGuard()
    assert await guard.consume("nonce-1") is True
    assert await guard.consume("nonce-1") is False
    assert await guard.consume("nonce-2") is True


@pytest.mark.asyncio
async def test_concurrent_consume_has_one_winner() -> None:
    guard = MemoryReplayGuard()
    results = await asyncio.gather(*(guard.consume("shared") for _ in range(50)))
    assert results.count(True) == 1


def test_consume_from_threads_has_one_winner() -> None:
    guard = MemoryReplayGuard()

    def _consume() -> bool:
        return asyncio.run(guard.consume("shared"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: _consume(), range(32)))

    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_clear_keeps_nonces_for_one_full_interval() -> None:
    guard = MemoryReplayGuard()
    await guard.consume("old")

    await guard.clear()
    # Still remembered right after a clear.
    assert await guard.consume("old") is False
    assert await guard.consume("new") is True

    await guard.clear()
    assert await guard.consume("new") is False
    assert await guard.consume("old") is True


@pytest.mark.asyncio
async def test_memory_is_bounded_by_two_generations() -> None:
    guard = MemoryReplayGuard()
    for index in range(10):
        await guard.consume(f"nonce-{index}")
    assert len(guard) == 10

    await guard.clear()
    await guard.clear()
    assert len(guard) == 0


@pytest.mark.asyncio
async def test_clear_worker_rotates_guard() -> None:
    guard = AsyncMock()
    worker = ReplayClearWorker(guard, 0.1)

    await worker.start()
    await asyncio.sleep(0.35)
    await worker.stop()

    assert guard.clear.await_count >= 2


@pytest.mark.asyncio
async def test_clear_worker_stops_promptly() -> None:
    guard = AsyncMock()
    worker = ReplayClearWorker(guard, 3600)

    await worker.start()
    await asyncio.wait_for(worker.stop(), timeout=1.0)

    guard.clear.assert_not_awaited()


@pytest.mark.asyncio
async def test_redis_guard_uses_set_nx_with_ttl() -> None:
    client = AsyncMock()
    client.set.side_effect = [True, None]
    guard = RedisReplayGuard(client, ttl_seconds=900)

    assert await guard.consume("abc") is True
    assert await guard.consume("abc") is False

    client.set.assert_awaited_with("upload-nonce:abc", "1", nx=True, ex=900)


@pytest.mark.asyncio
async def test_redis_guard_clear_is_noop() -> None:
    client = AsyncMock()
    guard = RedisReplayGuard(client, ttl_seconds=900)

    await guard.clear()

    client.delete.assert_not_called()
    client.flushdb.assert_not_called()
