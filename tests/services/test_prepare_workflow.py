"""Tests for the prepare workflow."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from tests.conftest import BATCH_ID, FIXED_NOW
from x402_swarm.core.time import to_epoch_ms
from x402_swarm.services.errors import InsufficientFundsError, InvalidTierError
from x402_swarm.services.prepare import PrepareWorkflow
from x402_swarm.services.token_codec import TokenCodec


@pytest.mark.asyncio
@pytest.mark.parametrize(("duration", "days"), [("2d", 2), ("7d", 7), ("30d", 30)])
async def test_prepare_mints_token_for_every_tier(
    prepare_workflow: PrepareWorkflow,
    codec: TokenCodec,
    chain: AsyncMock,
    duration: str,
    days: int,
) -> None:
    prepared = await prepare_workflow.prepare(duration)

    record = codec.decode(prepared.upload_token)
    assert record is not None
    assert record.batch_id == BATCH_ID
    assert record.depth == 19
    assert record.duration == duration
    assert record.expiry == to_epoch_ms(FIXED_NOW + timedelta(minutes=10))
    assert prepared.duration == duration

    # Sized from the tier's day count.
    balance = chain.create_batch.await_args.kwargs["initial_balance_per_chunk"]
    assert balance == (days * 17280 * 100) * 120 // 100 + 1


@pytest.mark.asyncio
async def test_prepare_reports_ready_and_expiry_times(prepare_workflow: PrepareWorkflow) -> None:
    prepared = await prepare_workflow.prepare("7d")

    assert prepared.ready_at == FIXED_NOW + timedelta(minutes=2)
    assert prepared.expires_at == FIXED_NOW + timedelta(minutes=10)


@pytest.mark.asyncio
async def test_each_token_gets_a_fresh_nonce(
    prepare_workflow: PrepareWorkflow, codec: TokenCodec
) -> None:
    first = codec.decode((await prepare_workflow.prepare("2d")).upload_token)
    second = codec.decode((await prepare_workflow.prepare("2d")).upload_token)

    assert first is not None and second is not None
    assert first.nonce != second.nonce
    assert len(first.nonce) == 32


@pytest.mark.asyncio
async def test_unknown_tier_touches_no_chain(
    prepare_workflow: PrepareWorkflow, chain: AsyncMock
) -> None:
    with pytest.raises(InvalidTierError) as excinfo:
        await prepare_workflow.prepare("3d")

    assert excinfo.value.available_tiers == ["2d", "7d", "30d"]
    assert chain.mock_calls == []


@pytest.mark.asyncio
async def test_custom_lifetimes(postage, codec: TokenCodec, clock) -> None:
    workflow = PrepareWorkflow(
        postage,
        codec,
        token_lifetime=timedelta(minutes=1),
        propagation_delay=timedelta(seconds=30),
        clock=clock,
    )

    prepared = await workflow.prepare("2d")

    assert prepared.expires_at == FIXED_NOW + timedelta(minutes=1)
    assert prepared.ready_at == FIXED_NOW + timedelta(seconds=30)


@pytest.mark.asyncio
async def test_purchase_failure_propagates(
    prepare_workflow: PrepareWorkflow, chain: AsyncMock
) -> None:
    chain.bzz_balance.return_value = 0

    with pytest.raises(InsufficientFundsError):
        await prepare_workflow.prepare("30d")
