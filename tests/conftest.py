# tests/conftest.py
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

os.environ.setdefault("ADDRESS", "0x1111111111111111111111111111111111111111")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="x402-swarm-tests-"))

from x402_swarm.core.settings import settings
from x402_swarm.main import app as fastapi_app
from x402_swarm.services.chain import TransactionReceipt
from x402_swarm.services.container import ServiceContainer
from x402_swarm.services.payment import PaymentGate
from x402_swarm.services.postage import BATCH_CREATED_TOPIC, PostageService
from x402_swarm.services.prepare import PrepareWorkflow
from x402_swarm.services.replay import MemoryReplayGuard, ReplayClearWorker
from x402_swarm.services.storage import UploadResult
from x402_swarm.services.token_codec import TokenCodec
from x402_swarm.services.upload import UploadWorkflow

SERVER_ADDRESS = "0x2222222222222222222222222222222222222222"
POSTAGE_ADDRESS = "0x45a1502382541Cd610CC9068e88727426b696293"
PAYER_ADDRESS = "0x3333333333333333333333333333333333333333"
BATCH_ID = "0x" + "ab" * 32
OWNER_TOPIC = "0x" + "00" * 12 + "22" * 20
CREATE_TX_HASH = "0x" + "c1" * 32
APPROVE_TX_HASH = "0x" + "a1" * 32
REFERENCE = "5c" * 32
TOKEN_SECRET = bytes(range(32))
FIXED_NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


class FrozenClock:
    """Controllable replacement for ``utcnow``."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def batch_created_receipt(tx_hash: str = CREATE_TX_HASH) -> TransactionReceipt:
    return TransactionReceipt(
        tx_hash=tx_hash,
        succeeded=True,
        logs=[
            ("0x" + "ee" * 32,),
            (BATCH_CREATED_TOPIC, BATCH_ID, OWNER_TOPIC),
        ],
    )


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def codec() -> TokenCodec:
    return TokenCodec(TOKEN_SECRET)


@pytest.fixture()
def chain() -> AsyncMock:
    """Chain client with a funded wallet and an existing allowance."""
    client = AsyncMock()
    client.address = SERVER_ADDRESS
    client.postage_address = POSTAGE_ADDRESS
    client.last_price.return_value = 100
    client.minimum_initial_balance_per_chunk.return_value = 0
    client.native_balance.return_value = 10**18
    client.bzz_balance.return_value = 10**30
    client.bzz_allowance.return_value = 2**256 - 1
    client.approve_bzz.return_value = APPROVE_TX_HASH
    client.create_batch.return_value = CREATE_TX_HASH

    async def _receipt(tx_hash: str) -> TransactionReceipt:
        if tx_hash == CREATE_TX_HASH:
            return batch_created_receipt(tx_hash)
        return TransactionReceipt(tx_hash=tx_hash, succeeded=True, logs=[])

    client.wait_for_receipt.side_effect = _receipt
    return client


@pytest.fixture()
def postage(chain: AsyncMock) -> PostageService:
    return PostageService(chain)


@pytest.fixture()
def replay_guard() -> MemoryReplayGuard:
    return MemoryReplayGuard()


@pytest.fixture()
def uploader() -> AsyncMock:
    client = AsyncMock()
    client.upload_files.return_value = UploadResult(
        url=f"https://swarm.example/bzz/{REFERENCE}/",
        reference=REFERENCE,
        cid="bexample",
    )
    return client


@pytest.fixture()
def facilitator() -> AsyncMock:
    client = AsyncMock()
    client.verify.return_value = {"isValid": True, "payer": PAYER_ADDRESS}
    client.settle.return_value = {
        "success": True,
        "transaction": "0x" + "5e" * 32,
        "network": "eip155:8453",
        "payer": PAYER_ADDRESS,
    }
    return client


@pytest.fixture()
def prepare_workflow(
    postage: PostageService, codec: TokenCodec, clock: FrozenClock
) -> PrepareWorkflow:
    return PrepareWorkflow(postage, codec, clock=clock)


@pytest.fixture()
def upload_workflow(
    codec: TokenCodec,
    replay_guard: MemoryReplayGuard,
    uploader: AsyncMock,
    clock: FrozenClock,
) -> UploadWorkflow:
    return UploadWorkflow(codec, replay_guard, uploader, clock=clock)


@pytest.fixture()
def services(
    prepare_workflow: PrepareWorkflow,
    upload_workflow: UploadWorkflow,
    replay_guard: MemoryReplayGuard,
    uploader: AsyncMock,
    facilitator: AsyncMock,
) -> ServiceContainer:
    return ServiceContainer(
        server_wallet=SERVER_ADDRESS,
        prepare_workflow=prepare_workflow,
        upload_workflow=upload_workflow,
        payment_gate=PaymentGate(facilitator, settings),
        replay_guard=replay_guard,
        replay_worker=ReplayClearWorker(replay_guard, 3600),
        uploader=uploader,
        facilitator=facilitator,
    )


@pytest.fixture()
def app(services: ServiceContainer) -> Iterator[FastAPI]:
    fastapi_app.state.services = services
    try:
        yield fastapi_app
    finally:
        fastapi_app.state.services = None


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def payment_headers() -> dict[str, Any]:
    from x402_swarm.services.payment import encode_header_json

    payload = {
        "x402Version": 2,
        "payload": {"signature": "0x" + "99" * 65, "authorization": {"from": PAYER_ADDRESS}},
    }
    return {"PAYMENT-SIGNATURE": encode_header_json(payload)}
