"""Chain client protocol and shared polling helpers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from eth_account.signers.local import LocalAccount

from ..constants import CONFIRMATION_MAX_ATTEMPTS, CONFIRMATION_RETRY_DELAY
from ..schemas import ConfirmationTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class TransferOutput:
    """Value moved to one address by a transaction."""

    address: str
    amount: int


@dataclass
class TransactionInfo:
    """Ledger view of a transaction.

    `confirmed` is True once the transaction is included and succeeded.
    `failed` is True when it was included but reverted/rejected.
    """

    tx_hash: str
    sender: str
    outputs: list[TransferOutput] = field(default_factory=list)
    confirmed: bool = False
    failed: bool = False

    def amount_to(self, address: str) -> int:
        """Total value this transaction sends to `address`."""
        target = address.lower()
        return sum(o.amount for o in self.outputs if o.address.lower() == target)


class ChainClient(Protocol):
    """Ledger access used by the pool, treasury, client and gateway.

    Amounts are integers in the chain's smallest unit.
    """

    network: str
    unit: str
    decimals: int

    async def get_balance(self, address: str) -> int:
        """Current spendable balance of `address`."""
        ...

    async def send_transaction(self, account: LocalAccount, to: str, amount: int) -> str:
        """Sign with `account` and broadcast a transfer. Returns the tx hash."""
        ...

    async def get_transaction(self, tx_hash: str) -> TransactionInfo | None:
        """Look up a transaction. Returns None if the ledger does not know it."""
        ...

    async def estimate_transfer_fee(self) -> int:
        """Most a single native transfer can cost in fees at current prices."""
        ...

    def is_valid_address(self, address: str) -> bool:
        ...

    def explorer_url(self, tx_hash: str) -> str:
        ...


async def wait_for_confirmation(
    chain: ChainClient,
    tx_hash: str,
    max_attempts: int = CONFIRMATION_MAX_ATTEMPTS,
    delay: float = CONFIRMATION_RETRY_DELAY,
) -> TransactionInfo:
    """Poll until `tx_hash` is confirmed.

    Raises:
        ConfirmationTimeoutError: If not confirmed after `max_attempts` polls,
            or if the ledger reports the transaction as failed.
    """
    for attempt in range(max_attempts):
        info = await chain.get_transaction(tx_hash)
        if info is not None and info.failed:
            logger.warning(f"Transaction {tx_hash} failed on chain")
            raise ConfirmationTimeoutError(tx_hash, attempt + 1)
        if info is not None and info.confirmed:
            return info
        logger.debug(f"Transaction {tx_hash} unconfirmed (attempt {attempt + 1}/{max_attempts})")
        if attempt < max_attempts - 1:
            await asyncio.sleep(delay)
    raise ConfirmationTimeoutError(tx_hash, max_attempts)


async def lookup_transaction(
    chain: ChainClient,
    tx_hash: str,
    max_attempts: int,
    delay: float,
) -> TransactionInfo | None:
    """Fetch a transaction, retrying until it is confirmed or failed.

    Returns the last view seen, which may be unconfirmed, or None if the
    ledger never reported it.
    """
    info = None
    for attempt in range(max_attempts):
        info = await chain.get_transaction(tx_hash)
        if info is not None and (info.confirmed or info.failed):
            return info
        if attempt < max_attempts - 1:
            await asyncio.sleep(delay)
    return info
