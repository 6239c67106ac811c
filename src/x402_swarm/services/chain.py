"""Gnosis Chain access for the Swarm postage contracts.

``GnosisChainClient`` is a thin asynchronous wrapper over web3 that exposes
exactly the reads and writes the postage workflow needs. It does not make
decisions: sizing, allowance policy and receipt interpretation live in
:mod:`x402_swarm.services.postage`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import aiohttp
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted, Web3Exception

from x402_swarm.services.errors import ChainReadError, ChainTransactionFailedError

logger = logging.getLogger(__name__)

GNOSIS_CHAIN_ID = 100

# The async HTTP provider surfaces transport failures as aiohttp errors.
_RPC_ERRORS = (Web3Exception, aiohttp.ClientError, TimeoutError, OSError, ValueError)

BZZ_ADDRESS = "0xdBF3Ea6F5beE45c02255B2c26a16F300502F68da"
POSTAGE_STAMP_ADDRESS = "0x45a1502382541Cd610CC9068e88727426b696293"

POSTAGE_STAMP_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_initialBalancePerChunk", "type": "uint256"},
            {"name": "_depth", "type": "uint8"},
            {"name": "_bucketDepth", "type": "uint8"},
            {"name": "_nonce", "type": "bytes32"},
            {"name": "_immutable", "type": "bool"},
        ],
        "name": "createBatch",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "lastPrice",
        "outputs": [{"name": "", "type": "uint64"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "minimumInitialBalancePerChunk",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "batchId", "type": "bytes32"},
            {"indexed": False, "name": "totalAmount", "type": "uint256"},
            {"indexed": False, "name": "normalisedBalance", "type": "uint256"},
            {"indexed": True, "name": "owner", "type": "address"},
            {"indexed": False, "name": "depth", "type": "uint8"},
            {"indexed": False, "name": "bucketDepth", "type": "uint8"},
            {"indexed": False, "name": "immutableFlag", "type": "bool"},
        ],
        "name": "BatchCreated",
        "type": "event",
    },
]

ERC20_ABI: list[dict[str, Any]] = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


@dataclass(frozen=True)
class TransactionReceipt:
    """The parts of a mined transaction receipt the service inspects."""

    tx_hash: str
    succeeded: bool
    # Topics of each log entry, 0x-prefixed hex
    logs: list[tuple[str, ...]]


class GnosisChainClient:
    """Reads and writes the BZZ token and PostageStamp contracts."""

    def __init__(
        self,
        rpc_url: str,
        account: LocalAccount,
        *,
        receipt_timeout_seconds: float = 180.0,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        self.account = account
        self.receipt_timeout_seconds = receipt_timeout_seconds
        self.web3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._postage = self.web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(POSTAGE_STAMP_ADDRESS),
            abi=POSTAGE_STAMP_ABI,
        )
        self._bzz = self.web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(BZZ_ADDRESS),
            abi=ERC20_ABI,
        )

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def postage_address(self) -> str:
        return self._postage.address

    async def _read(self, label: str, call: Any) -> int:
        try:
            return int(await call)
        except _RPC_ERRORS as exc:
            raise ChainReadError(f"Chain query {label} failed: {exc}") from exc

    # --- Reads --------------------------------------------------------------------

    async def last_price(self) -> int:
        return await self._read("lastPrice", self._postage.functions.lastPrice().call())

    async def minimum_initial_balance_per_chunk(self) -> int:
        return await self._read(
            "minimumInitialBalancePerChunk",
            self._postage.functions.minimumInitialBalancePerChunk().call(),
        )

    async def native_balance(self) -> int:
        return await self._read("getBalance", self.web3.eth.get_balance(self.address))

    async def bzz_balance(self) -> int:
        return await self._read("balanceOf", self._bzz.functions.balanceOf(self.address).call())

    async def bzz_allowance(self, spender: str) -> int:
        return await self._read(
            "allowance",
            self._bzz.functions.allowance(self.address, spender).call(),
        )

    # --- Writes -------------------------------------------------------------------

    async def approve_bzz(self, spender: str, amount: int) -> str:
        return await self._transact(
            "approve", self._bzz.functions.approve(spender, amount)
        )

    async def create_batch(
        self,
        *,
        initial_balance_per_chunk: int,
        depth: int,
        bucket_depth: int,
        nonce: bytes,
        immutable: bool,
    ) -> str:
        return await self._transact(
            "createBatch",
            self._postage.functions.createBatch(
                self.address,
                initial_balance_per_chunk,
                depth,
                bucket_depth,
                nonce,
                immutable,
            ),
        )

    async def _transact(self, label: str, function: Any) -> str:
        try:
            tx = await function.build_transaction(
                {
                    "from": self.address,
                    "chainId": GNOSIS_CHAIN_ID,
                    "nonce": await self.web3.eth.get_transaction_count(self.address, "pending"),
                }
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except _RPC_ERRORS as exc:
            raise ChainTransactionFailedError(f"{label} submission failed: {exc}") from exc
        return AsyncWeb3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        """Block until ``tx_hash`` is mined and summarize its receipt."""
        try:
            receipt = await self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout_seconds
            )
        except TimeExhausted as exc:
            raise ChainTransactionFailedError(
                f"Transaction {tx_hash} was not mined within "
                f"{self.receipt_timeout_seconds:.0f}s"
            ) from exc
        except _RPC_ERRORS as exc:
            raise ChainTransactionFailedError(
                f"Waiting for transaction {tx_hash} failed: {exc}"
            ) from exc

        return TransactionReceipt(
            tx_hash=tx_hash,
            succeeded=receipt.get("status") == 1,
            logs=[
                tuple(AsyncWeb3.to_hex(topic) for topic in log.get("topics", []))
                for log in receipt.get("logs", [])
            ],
        )
