# src/x402_swarm/main.py
"""Main entry point for the x402 Swarm storage service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from x402_swarm.api import prepare_router, pricing_router, upload_router
from x402_swarm.core.identity import load_or_create_secrets
from x402_swarm.core.settings import settings
from x402_swarm.services.container import ServiceContainer, build_services
from x402_swarm.services.errors import StorageServiceError

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="x402 Swarm Storage API",
    description="A decentralized storage service powered by Swarm and x402 payments.",
    version=settings.app_version,
)

# Browser clients need to read the payment headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=settings.cors_expose_headers,
)

app.include_router(pricing_router)
app.include_router(prepare_router)
app.include_router(upload_router)


@app.exception_handler(StorageServiceError)
async def handle_service_error(_request: Request, exc: StorageServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_body(),
        headers=exc.headers,
    )


@app.on_event("startup")
async def on_startup() -> None:
    logging.basicConfig(level=settings.log_level.upper())

    services: ServiceContainer | None = getattr(app.state, "services", None)
    if services is None:
        secrets = load_or_create_secrets(settings.secrets_path)
        services = build_services(settings, secrets)
        app.state.services = services

    logger.info("Server wallet: %s", services.server_wallet)
    logger.info("Payment network: %s", settings.payment_network)
    logger.info("Fund this wallet with xDAI (gas) and BZZ tokens on Gnosis Chain")
    await services.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    services: ServiceContainer | None = getattr(app.state, "services", None)
    if services:
        await services.close()
    app.state.services = None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


def run() -> None:
    import uvicorn

    uvicorn.run("x402_swarm.main:app", host="0.0.0.0", port=4021, reload=settings.debug)


if __name__ == "__main__":
    run()
