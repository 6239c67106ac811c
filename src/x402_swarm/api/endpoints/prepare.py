"""Prepare endpoint: pay for storage and receive an upload token."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response

from x402_swarm.api.dependencies import PaymentGateDep, PrepareWorkflowDep
from x402_swarm.core.time import isoformat_z
from x402_swarm.schemas.storage import PrepareResponse
from x402_swarm.services.errors import PostageError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["storage"])


@router.post("/prepare", response_model=PrepareResponse)
async def prepare_upload(
    request: Request,
    response: Response,
    workflow: PrepareWorkflowDep,
    payment_gate: PaymentGateDep,
    duration: str | None = None,
) -> PrepareResponse:
    """Purchase a postage batch for ``duration`` and return an upload token.

    Requires an x402 payment. Without one a ``402`` challenge is returned;
    an unknown duration is rejected with ``400`` before any challenge.

    Args:
        request: Incoming request, used for the payment resource URL
        response: Outgoing response, receives the payment settlement header
        workflow: Prepare workflow
        payment_gate: x402 payment gate
        duration: Duration tier, e.g. ``2d``

    Returns:
        The upload token with its readiness and expiry timestamps
    """
    payment = await payment_gate.require_payment(request, duration)

    try:
        prepared = await workflow.prepare(duration or "")
    except PostageError:
        logger.exception("Prepare failed")
        raise

    response.headers.update(await payment_gate.settle(payment))
    return PrepareResponse(
        uploadToken=prepared.upload_token,
        readyAt=isoformat_z(prepared.ready_at),
        expiresAt=isoformat_z(prepared.expires_at),
        duration=prepared.duration,
    )
