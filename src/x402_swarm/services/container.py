"""Wiring of the service graph.

Built once at startup from the settings and the loaded server secrets, then
stored on ``app.state`` and handed to request handlers through dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from x402_swarm.core.identity import ServerSecrets
from x402_swarm.core.settings import Settings
from x402_swarm.services.chain import GnosisChainClient
from x402_swarm.services.payment import FacilitatorClient, PaymentGate
from x402_swarm.services.postage import PostageService
from x402_swarm.services.prepare import PrepareWorkflow
from x402_swarm.services.replay import (
    MemoryReplayGuard,
    RedisReplayGuard,
    ReplayClearWorker,
    ReplayGuard,
)
from x402_swarm.services.storage import BeeUploader
from x402_swarm.services.token_codec import TokenCodec
from x402_swarm.services.upload import UploadWorkflow


@dataclass
class ServiceContainer:
    """All long-lived collaborators of the HTTP layer."""

    server_wallet: str
    prepare_workflow: PrepareWorkflow
    upload_workflow: UploadWorkflow
    payment_gate: PaymentGate
    replay_guard: ReplayGuard
    replay_worker: ReplayClearWorker
    uploader: BeeUploader
    facilitator: FacilitatorClient

    async def start(self) -> None:
        await self.replay_worker.start()

    async def close(self) -> None:
        await self.replay_worker.stop()
        await self.uploader.close()
        await self.facilitator.close()
        if isinstance(self.replay_guard, RedisReplayGuard):
            await self.replay_guard.close()


def build_replay_guard(config: Settings) -> ReplayGuard:
    if config.replay_redis_url:
        return RedisReplayGuard.from_url(
            config.replay_redis_url, ttl_seconds=config.replay_clear_interval_seconds
        )
    return MemoryReplayGuard()


def build_services(config: Settings, secrets: ServerSecrets) -> ServiceContainer:
    """Create the service graph for ``config`` using the server identity ``secrets``."""
    account = secrets.account
    chain = GnosisChainClient(
        config.gnosis_rpc_url,
        account,
        receipt_timeout_seconds=config.chain_receipt_timeout_seconds,
    )
    codec = TokenCodec(secrets.token_secret)
    replay_guard = build_replay_guard(config)
    uploader = BeeUploader(
        config.swarm_gateway, account, timeout_seconds=config.http_timeout_seconds
    )
    facilitator = FacilitatorClient(
        config.effective_facilitator_url,
        api_key_id=config.cdp_api_key_id,
        api_key_secret=config.cdp_api_key_secret,
        timeout_seconds=config.http_timeout_seconds,
    )

    return ServiceContainer(
        server_wallet=account.address,
        prepare_workflow=PrepareWorkflow(
            PostageService(chain),
            codec,
            token_lifetime=timedelta(seconds=config.token_lifetime_seconds),
            propagation_delay=timedelta(seconds=config.stamp_propagation_seconds),
        ),
        upload_workflow=UploadWorkflow(codec, replay_guard, uploader),
        payment_gate=PaymentGate(facilitator, config),
        replay_guard=replay_guard,
        replay_worker=ReplayClearWorker(replay_guard, config.replay_clear_interval_seconds),
        uploader=uploader,
        facilitator=facilitator,
    )
