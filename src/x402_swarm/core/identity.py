"""Server identity persistence.

The service owns a single long-lived wallet used to buy postage batches and a
symmetric key used to seal upload tokens. Both are generated on first start,
written to a private JSON file and loaded on every subsequent start.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount

logger = logging.getLogger(__name__)

TOKEN_SECRET_BYTES = 32
PRIVATE_KEY_BYTES = 32
SECRETS_FILE_MODE = 0o600


class SecretsError(RuntimeError):
    """Raised when the persisted secrets file cannot be used."""


@dataclass(frozen=True)
class ServerSecrets:
    """Immutable server identity loaded once at startup."""

    private_key: str
    token_secret: bytes

    @cached_property
    def account(self) -> LocalAccount:
        return Account.from_key(self.private_key)

    @cached_property
    def address(self) -> str:
        return self.account.address

    def to_json(self) -> str:
        return json.dumps(
            {"privateKey": self.private_key, "tokenSecret": self.token_secret.hex()},
            indent=2,
        )

    @classmethod
    def generate(cls) -> ServerSecrets:
        """Create a fresh wallet key and token secret."""
        return cls(
            private_key="0x" + secrets.token_hex(PRIVATE_KEY_BYTES),
            token_secret=secrets.token_bytes(TOKEN_SECRET_BYTES),
        )

    @classmethod
    def from_json(cls, raw: str) -> ServerSecrets:
        """Parse the on-disk representation.

        Raises:
            ValueError: If the payload is not valid JSON or a field is malformed
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("secrets file must contain a JSON object")
        private_key = data.get("privateKey")
        token_secret_hex = data.get("tokenSecret")
        if not isinstance(private_key, str) or not isinstance(token_secret_hex, str):
            raise ValueError("secrets file is missing privateKey or tokenSecret")
        token_secret = bytes.fromhex(token_secret_hex)
        if len(token_secret) != TOKEN_SECRET_BYTES:
            raise ValueError("tokenSecret must be 32 bytes")
        # Fails fast on a malformed key instead of at the first purchase.
        Account.from_key(private_key)
        return cls(private_key=private_key, token_secret=token_secret)


def load_or_create_secrets(path: Path) -> ServerSecrets:
    """Load the server secrets from ``path``, creating them on first run.

    Args:
        path: Location of the secrets file

    Returns:
        The loaded or newly generated secrets

    Raises:
        SecretsError: If an existing file cannot be parsed. The file is left
            untouched because it may hold the key of a funded wallet.
    """
    if path.exists():
        try:
            loaded = ServerSecrets.from_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as err:
            raise SecretsError(f"Failed to read secrets from {path}: {err}") from err
        logger.info("Loaded secrets from %s", path)
        return loaded

    generated = ServerSecrets.generate()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, SECRETS_FILE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(generated.to_json())
    logger.info("Generated and saved new secrets to %s", path)
    return generated
