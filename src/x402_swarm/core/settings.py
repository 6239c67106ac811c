"""Application settings and configuration.

This module defines all configuration options for the x402 Swarm storage service.
Settings are loaded from environment variables with sensible defaults.
"""

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PERSISTENT_DATA_DIR = Path("/data")

NETWORK_TO_CAIP2 = {
    "base": "eip155:8453",
    "base-mainnet": "eip155:8453",
    "base-sepolia": "eip155:84532",
}

USDC_ASSETS = {
    "eip155:8453": "0x833589fCD6EDb6E08f4C7C32D4f71b54bdA02913",
    "eip155:84532": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
}

PUBLIC_FACILITATOR_URL = "https://x402.org/facilitator"
CDP_FACILITATOR_URL = "https://api.cdp.coinbase.com/platform/v2/x402"


def _default_data_dir() -> Path:
    # Docker and Akash deployments mount a persistent volume at /data.
    return PERSISTENT_DATA_DIR if PERSISTENT_DATA_DIR.exists() else Path.cwd()


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="x402 Swarm Storage", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Payment (x402) configuration
    pay_to: str = Field(alias="ADDRESS")
    network: str = Field(default="base", alias="NETWORK")
    facilitator_url: str | None = Field(default=None, alias="FACILITATOR_URL")
    cdp_api_key_id: str | None = Field(default=None, alias="CDP_API_KEY_ID")
    cdp_api_key_secret: str | None = Field(default=None, alias="CDP_API_KEY_SECRET")
    payment_max_timeout_seconds: int = Field(default=300, alias="PAYMENT_MAX_TIMEOUT_SECONDS")

    # Swarm and Gnosis Chain
    swarm_gateway: str = Field(default="https://swarm.o8.is", alias="SWARM_GATEWAY")
    gnosis_rpc_url: str = Field(default="https://rpc.gnosis.gateway.fm", alias="GNOSIS_RPC_URL")
    chain_receipt_timeout_seconds: float = Field(
        default=180.0,
        alias="CHAIN_RECEIPT_TIMEOUT_SECONDS",
    )
    http_timeout_seconds: float = Field(default=30.0, alias="HTTP_TIMEOUT_SECONDS")

    # Server identity persistence
    data_dir: Path = Field(default_factory=_default_data_dir, alias="DATA_DIR")

    # Upload token lifecycle
    token_lifetime_seconds: int = Field(default=10 * 60, alias="TOKEN_LIFETIME_SECONDS")
    stamp_propagation_seconds: int = Field(default=2 * 60, alias="STAMP_PROPAGATION_SECONDS")

    # Replay protection
    replay_clear_interval_seconds: int = Field(
        default=15 * 60,
        alias="REPLAY_CLEAR_INTERVAL_SECONDS",
    )
    replay_redis_url: str | None = Field(default=None, alias="REPLAY_REDIS_URL")

    # CORS configuration for browser clients
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")
    cors_expose_headers: list[str] = Field(
        default=["PAYMENT-REQUIRED", "PAYMENT-RESPONSE"],
        alias="CORS_EXPOSE_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_replay_window(self) -> "Settings":
        if self.replay_clear_interval_seconds <= self.token_lifetime_seconds:
            raise ValueError(
                "REPLAY_CLEAR_INTERVAL_SECONDS must exceed TOKEN_LIFETIME_SECONDS"
            )
        return self

    @property
    def payment_network(self) -> str:
        """Return the payment network as a CAIP-2 identifier.

        Returns:
            The configured network when already in CAIP-2 form, otherwise its mapping
            (unknown names fall back to Base mainnet)
        """
        if self.network.startswith("eip155:"):
            return self.network
        return NETWORK_TO_CAIP2.get(self.network, "eip155:8453")

    @property
    def payment_asset(self) -> str:
        """Return the USDC contract address on the payment network."""
        return USDC_ASSETS.get(self.payment_network, USDC_ASSETS["eip155:8453"])

    @property
    def effective_facilitator_url(self) -> str:
        """Return the facilitator URL, preferring CDP when credentials are configured."""
        if self.facilitator_url:
            return self.facilitator_url.rstrip("/")
        if self.cdp_api_key_id and self.cdp_api_key_secret:
            return CDP_FACILITATOR_URL
        return PUBLIC_FACILITATOR_URL

    @property
    def secrets_path(self) -> Path:
        """Return the location of the persisted server secrets file."""
        return self.data_dir / ".server-secrets"


settings = Settings()  # type: ignore[call-arg]
