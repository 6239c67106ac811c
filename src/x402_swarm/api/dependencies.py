"""Common API dependencies for route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from x402_swarm.services.container import ServiceContainer
from x402_swarm.services.payment import PaymentGate
from x402_swarm.services.prepare import PrepareWorkflow
from x402_swarm.services.upload import UploadWorkflow


def get_services(request: Request) -> ServiceContainer:
    """Return the service container built at startup."""
    services: ServiceContainer = request.app.state.services
    return services


def get_prepare_workflow(request: Request) -> PrepareWorkflow:
    return get_services(request).prepare_workflow


def get_upload_workflow(request: Request) -> UploadWorkflow:
    return get_services(request).upload_workflow


def get_payment_gate(request: Request) -> PaymentGate:
    return get_services(request).payment_gate


def get_server_wallet(request: Request) -> str:
    return get_services(request).server_wallet


PrepareWorkflowDep = Annotated[PrepareWorkflow, Depends(get_prepare_workflow)]
UploadWorkflowDep = Annotated[UploadWorkflow, Depends(get_upload_workflow)]
PaymentGateDep = Annotated[PaymentGate, Depends(get_payment_gate)]
ServerWalletDep = Annotated[str, Depends(get_server_wallet)]
