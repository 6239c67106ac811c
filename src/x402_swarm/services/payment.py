"""x402 payment gate for paid endpoints.

Requests without a payment header get a ``402`` challenge describing how to
pay. Requests carrying a payment payload have it verified by an x402
facilitator before the handler runs, and settled once the handler succeeded.
Signature checking and on-chain settlement are the facilitator's job.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import httpx
from fastapi import Request, status
from jose import jwt

from x402_swarm.core import pricing
from x402_swarm.core.settings import Settings
from x402_swarm.services.errors import InvalidTierError, StorageServiceError

logger = logging.getLogger(__name__)

X402_VERSION = 2
PAYMENT_SIGNATURE_HEADER_NAMES = ("PAYMENT-SIGNATURE", "X-PAYMENT")
PAYMENT_REQUIRED_HEADER = "PAYMENT-REQUIRED"
PAYMENT_RESPONSE_HEADER = "PAYMENT-RESPONSE"
USDC_TOKEN_NAME = "USD Coin"
USDC_TOKEN_VERSION = "2"
CDP_JWT_TTL_SECONDS = 120


def encode_header_json(payload: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode()).decode()


def decode_header_json(value: str) -> dict[str, Any]:
    """Decode a base64-encoded JSON header value.

    Raises:
        ValueError: If the value is not base64 JSON describing an object
    """
    try:
        decoded = json.loads(base64.b64decode(value, validate=False))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as err:
        raise ValueError("payment header must be base64-encoded JSON") from err
    if not isinstance(decoded, dict):
        raise ValueError("payment header must encode a JSON object")
    return decoded


class PaymentRequiredError(StorageServiceError):
    """Raised when a request must (re)pay before it is served."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(
        self, message: str, requirements: dict[str, Any], resource: str, *, payer: str | None = None
    ) -> None:
        super().__init__(message)
        self.requirements = requirements
        self.resource = resource
        self.payer = payer

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "x402Version": X402_VERSION,
            "error": str(self),
            "resource": {"url": self.resource},
            "accepts": [self.requirements],
        }
        if self.payer:
            body["payer"] = self.payer
        return body

    @property
    def headers(self) -> dict[str, str]:
        return {PAYMENT_REQUIRED_HEADER: encode_header_json(self.to_body())}


class FacilitatorError(RuntimeError):
    """Raised when the x402 facilitator cannot be reached or answers badly."""


@dataclass(frozen=True)
class VerifiedPayment:
    """A payment payload the facilitator accepted."""

    payload: dict[str, Any]
    requirements: dict[str, Any]
    resource: str
    payer: str | None


class FacilitatorClient:
    """HTTP client for an x402 facilitator's ``/verify`` and ``/settle``."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key_id: str | None = None,
        api_key_secret: str | None = None,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key_id = api_key_id
        # Keys pasted into env files often carry literal "\n" sequences.
        self.api_key_secret = api_key_secret.replace("\\n", "\n") if api_key_secret else None
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _build_auth_headers(self, method: str, url: str) -> dict[str, str]:
        if not (self.api_key_id and self.api_key_secret):
            return {}

        parts = urlsplit(url)
        now = int(time.time())
        claims = {
            "sub": self.api_key_id,
            "iss": "cdp",
            "aud": ["cdp_service"],
            "nbf": now,
            "exp": now + CDP_JWT_TTL_SECONDS,
            "uri": f"{method} {parts.netloc}{parts.path}",
        }
        token = jwt.encode(
            claims,
            self.api_key_secret,
            algorithm="ES256",
            headers={"kid": self.api_key_id, "nonce": secrets.token_hex(16)},
        )
        return {"Authorization": f"Bearer {token}"}

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        client = await self._ensure_client()
        url = f"{self.base_url}{path}"
        try:
            response = await client.post(
                url, json=body, headers=self._build_auth_headers("POST", url)
            )
        except httpx.HTTPError as exc:
            raise FacilitatorError(f"Facilitator request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise FacilitatorError(
                f"Facilitator responded with {response.status_code} and no JSON body"
            ) from exc
        if not isinstance(payload, dict):
            raise FacilitatorError("Facilitator response must be a JSON object")
        return payload

    async def verify(self, payload: dict[str, Any], requirements: dict[str, Any]) -> dict[str, Any]:
        return await self._post(
            "/verify",
            {
                "x402Version": payload.get("x402Version", X402_VERSION),
                "paymentPayload": payload,
                "paymentRequirements": requirements,
            },
        )

    async def settle(self, payload: dict[str, Any], requirements: dict[str, Any]) -> dict[str, Any]:
        return await self._post(
            "/settle",
            {
                "x402Version": payload.get("x402Version", X402_VERSION),
                "paymentPayload": payload,
                "paymentRequirements": requirements,
            },
        )


class PaymentGate:
    """Prices ``POST /prepare`` by duration tier and enforces payment."""

    def __init__(self, facilitator: FacilitatorClient, config: Settings) -> None:
        self.facilitator = facilitator
        self.pay_to = config.pay_to
        self.network = config.payment_network
        self.asset = config.payment_asset
        self.max_timeout_seconds = config.payment_max_timeout_seconds

    def build_requirements(self, tier_name: str, resource: str) -> dict[str, Any]:
        """Return the x402 payment requirements for ``tier_name``.

        Raises:
            InvalidTierError: If the tier is unknown. Raised before a challenge is
                issued so no payment is ever collected for an invalid request.
        """
        try:
            tier = pricing.lookup(tier_name)
        except pricing.UnknownTierError as err:
            raise InvalidTierError(pricing.available_tiers()) from err

        return {
            "scheme": "exact",
            "network": self.network,
            "amount": str(tier.price_atomic),
            "asset": self.asset,
            "payTo": self.pay_to,
            "resource": resource,
            "description": f"Swarm storage upload ({tier_name})",
            "mimeType": "application/json",
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "extra": {"name": USDC_TOKEN_NAME, "version": USDC_TOKEN_VERSION},
        }

    async def require_payment(self, request: Request, tier_name: str | None) -> VerifiedPayment:
        """Verify the request's payment for ``tier_name``.

        Raises:
            InvalidTierError: If the tier is unknown.
            PaymentRequiredError: If payment is missing, malformed or rejected.
        """
        resource = str(request.url)
        requirements = self.build_requirements(tier_name or "", resource)

        header = next(
            (
                request.headers[name]
                for name in PAYMENT_SIGNATURE_HEADER_NAMES
                if request.headers.get(name)
            ),
            None,
        )
        if header is None:
            raise PaymentRequiredError("Payment required", requirements, resource)

        try:
            payload = decode_header_json(header)
        except ValueError as err:
            raise PaymentRequiredError(str(err), requirements, resource) from err

        try:
            result = await self.facilitator.verify(payload, requirements)
        except FacilitatorError as err:
            logger.error("Payment verification unavailable: %s", err)
            raise PaymentRequiredError(
                "Payment verification failed", requirements, resource
            ) from err

        payer = result.get("payer")
        if not result.get("isValid"):
            reason = result.get("invalidReason") or "Payment rejected"
            raise PaymentRequiredError(str(reason), requirements, resource, payer=payer)

        return VerifiedPayment(
            payload=payload, requirements=requirements, resource=resource, payer=payer
        )

    async def settle(self, payment: VerifiedPayment) -> dict[str, str]:
        """Settle a verified payment and return the response headers to attach.

        Raises:
            PaymentRequiredError: If settlement fails.
        """
        try:
            result = await self.facilitator.settle(payment.payload, payment.requirements)
        except FacilitatorError as err:
            logger.error("Payment settlement unavailable: %s", err)
            raise PaymentRequiredError(
                "Payment settlement failed", payment.requirements, payment.resource
            ) from err

        if not result.get("success"):
            reason = result.get("errorReason") or "Payment settlement failed"
            raise PaymentRequiredError(
                str(reason), payment.requirements, payment.resource, payer=payment.payer
            )

        logger.info(
            "Settled payment from %s: %s", result.get("payer"), result.get("transaction")
        )
        return {PAYMENT_RESPONSE_HEADER: encode_header_json(result)}
