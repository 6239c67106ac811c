"""Tests for environment-driven settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from x402_swarm.core.settings import CDP_FACILITATOR_URL, PUBLIC_FACILITATOR_URL, Settings

PAY_TO = "0x1111111111111111111111111111111111111111"


def test_defaults(tmp_path: Path) -> None:
    config = Settings(ADDRESS=PAY_TO, DATA_DIR=str(tmp_path))

    assert config.pay_to == PAY_TO
    assert config.payment_network == "eip155:8453"
    assert config.payment_asset == "0x833589fCD6EDb6E08f4C7C32D4f71b54bdA02913"
    assert config.token_lifetime_seconds == 600
    assert config.secrets_path == tmp_path / ".server-secrets"


def test_address_is_required(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ADDRESS", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


@pytest.mark.parametrize(
    ("network", "caip2"),
    [
        ("base", "eip155:8453"),
        ("base-sepolia", "eip155:84532"),
        ("eip155:84532", "eip155:84532"),
        ("unknown", "eip155:8453"),
    ],
)
def test_network_mapping(network: str, caip2: str) -> None:
    assert Settings(ADDRESS=PAY_TO, NETWORK=network).payment_network == caip2


def test_replay_interval_must_outlast_tokens() -> None:
    with pytest.raises(ValidationError):
        Settings(
            ADDRESS=PAY_TO,
            TOKEN_LIFETIME_SECONDS=600,
            REPLAY_CLEAR_INTERVAL_SECONDS=300,
        )


def test_facilitator_selection() -> None:
    assert Settings(ADDRESS=PAY_TO).effective_facilitator_url == PUBLIC_FACILITATOR_URL
    assert (
        Settings(
            ADDRESS=PAY_TO, CDP_API_KEY_ID="key", CDP_API_KEY_SECRET="secret"
        ).effective_facilitator_url
        == CDP_FACILITATOR_URL
    )
    assert (
        Settings(
            ADDRESS=PAY_TO,
            FACILITATOR_URL="https://facilitator.example/",
            CDP_API_KEY_ID="key",
            CDP_API_KEY_SECRET="secret",
        ).effective_facilitator_url
        == "https://facilitator.example"
    )
