"""Postage batch acquisition on the Swarm capacity market.

Turns a retention period into a funded postage batch on Gnosis Chain:

- Read the current storage price and the contract's minimum balance
- Size the per-chunk balance for the requested number of days
- Make sure the BZZ allowance covers the purchase, approving if needed
- Create the batch and recover its id from the ``BatchCreated`` event
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Final, Protocol

from web3 import Web3

from x402_swarm.services.chain import TransactionReceipt
from x402_swarm.services.errors import (
    AllocationEventMissingError,
    ChainTransactionFailedError,
    InsufficientFundsError,
    PostageError,
)

logger = logging.getLogger(__name__)

# Gnosis Chain produces a block roughly every 5 seconds.
BLOCKS_PER_DAY: Final[int] = 17280
PRICE_BUFFER_PERCENT: Final[int] = 20

# Depth 19 gives about 112 MB of effective capacity.
BATCH_DEPTH: Final[int] = 19
BUCKET_DEPTH: Final[int] = 16
CHUNK_SIZE_BYTES: Final[int] = 4096

MAX_UINT256: Final[int] = 2**256 - 1
LOW_GAS_BALANCE_WEI: Final[int] = 10**15  # 0.001 xDAI

BATCH_CREATED_TOPIC: Final[str] = Web3.to_hex(
    Web3.keccak(text="BatchCreated(bytes32,uint256,uint256,address,uint8,uint8,bool)")
)


class ChainClient(Protocol):
    """Chain operations required by :class:`PostageService`."""

    @property
    def address(self) -> str: ...

    @property
    def postage_address(self) -> str: ...

    async def last_price(self) -> int: ...

    async def minimum_initial_balance_per_chunk(self) -> int: ...

    async def native_balance(self) -> int: ...

    async def bzz_balance(self) -> int: ...

    async def bzz_allowance(self, spender: str) -> int: ...

    async def approve_bzz(self, spender: str, amount: int) -> str: ...

    async def create_batch(
        self,
        *,
        initial_balance_per_chunk: int,
        depth: int,
        bucket_depth: int,
        nonce: bytes,
        immutable: bool,
    ) -> str: ...

    async def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt: ...


@dataclass(frozen=True)
class StampAllocation:
    """A purchased postage batch."""

    batch_id: str
    depth: int

    @property
    def capacity_bytes(self) -> int:
        return (1 << self.depth) * CHUNK_SIZE_BYTES


def size_allocation(days: int, unit_price: int) -> int:
    """Return the per-chunk balance that keeps a batch alive for ``days``.

    Args:
        days: Requested retention in days.
        unit_price: Current price per chunk per block (PLUR).

    Returns:
        ``days * BLOCKS_PER_DAY * unit_price`` plus a 20% buffer for price drift
        until the purchase confirms, plus one unit so integer division never
        expires the batch a block early.

    Raises:
        ValueError: If the unit price is zero.
    """
    if unit_price <= 0:
        raise ValueError("Price per chunk per block is zero")
    base_balance = days * BLOCKS_PER_DAY * unit_price
    buffered_balance = base_balance + (base_balance * PRICE_BUFFER_PERCENT) // 100
    return buffered_balance + 1


def total_cost(per_chunk_balance: int, depth: int) -> int:
    """Return the BZZ (PLUR) needed to fund every chunk of a batch."""
    return per_chunk_balance * (1 << depth)


class PostageService:
    """Buys postage batches with the server wallet."""

    def __init__(self, chain: ChainClient, *, depth: int = BATCH_DEPTH) -> None:
        self.chain = chain
        self.depth = depth

    async def current_unit_price(self) -> int:
        return await self.chain.last_price()

    async def minimum_unit_balance(self) -> int:
        return await self.chain.minimum_initial_balance_per_chunk()

    async def per_chunk_balance(self, days: int) -> int:
        """Return the balance to fund each chunk with, honoring the contract minimum."""
        unit_price = await self.current_unit_price()
        minimum_balance = await self.minimum_unit_balance()
        try:
            sized_balance = size_allocation(days, unit_price)
        except ValueError as err:
            raise PostageError(str(err)) from err
        return max(sized_balance, minimum_balance)

    async def buy_stamp(self, days: int, *, label: str | None = None) -> StampAllocation:
        """Size and purchase a batch that lives for ``days``."""
        tag = label or f"{days}d"
        balance = await self.per_chunk_balance(days)
        logger.info(
            "[%s] Creating stamp: %d PLUR (%d depth, %d days)",
            tag,
            total_cost(balance, self.depth),
            self.depth,
            days,
        )
        return await self.purchase(self.depth, balance, label=tag)

    async def purchase(
        self, depth: int, per_chunk_balance: int, *, label: str = "stamp"
    ) -> StampAllocation:
        """Create a postage batch funded with ``per_chunk_balance`` per chunk.

        Raises:
            InsufficientFundsError: If the wallet holds less BZZ than the batch costs.
            ChainTransactionFailedError: If approval or creation does not confirm.
            AllocationEventMissingError: If creation confirmed without a batch id.
        """
        cost = total_cost(per_chunk_balance, depth)

        gas_balance = await self.chain.native_balance()
        logger.info("Server xDAI balance: %d", gas_balance)
        if gas_balance < LOW_GAS_BALANCE_WEI:
            logger.warning("Low xDAI balance, transaction might fail due to gas")

        bzz_balance = await self.chain.bzz_balance()
        logger.info("Server BZZ balance: %d", bzz_balance)
        if bzz_balance < cost:
            raise InsufficientFundsError(have=bzz_balance, need=cost)

        await self._ensure_allowance(cost, label=label)

        logger.info("[%s] Creating batch...", label)
        tx_hash = await self.chain.create_batch(
            initial_balance_per_chunk=per_chunk_balance,
            depth=depth,
            bucket_depth=BUCKET_DEPTH,
            nonce=secrets.token_bytes(32),
            immutable=True,
        )
        receipt = await self.chain.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            raise ChainTransactionFailedError(f"Batch creation failed: {tx_hash}")

        batch_id = extract_batch_id(receipt)
        logger.info("[%s] Batch created: %s", label, batch_id)
        return StampAllocation(batch_id=batch_id, depth=depth)

    async def _ensure_allowance(self, cost: int, *, label: str) -> None:
        # Re-checked on every purchase so a confirmed approval from an earlier
        # failed attempt is reused instead of approved again.
        spender = self.chain.postage_address
        allowance = await self.chain.bzz_allowance(spender)
        if allowance >= cost:
            return

        logger.info("[%s] Approving BZZ...", label)
        tx_hash = await self.chain.approve_bzz(spender, MAX_UINT256)
        receipt = await self.chain.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            raise ChainTransactionFailedError(f"BZZ approval failed: {tx_hash}")


def extract_batch_id(receipt: TransactionReceipt) -> str:
    """Return the batch id topic of the receipt's ``BatchCreated`` log.

    Raises:
        AllocationEventMissingError: If no such log is present.
    """
    for topics in receipt.logs:
        if len(topics) > 1 and topics[0].lower() == BATCH_CREATED_TOPIC.lower():
            return topics[1]
    raise AllocationEventMissingError(receipt.tx_hash)
