"""Treasury wallet: the funded account that tops up workers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from eth_account.signers.local import LocalAccount

from ..amounts import to_atomic
from ..chain import ChainClient, wait_for_confirmation
from ..config import ConfirmationSettings, TreasurySettings
from ..schemas import FundingTimeoutError, TreasuryLowError

logger = logging.getLogger(__name__)


@dataclass
class FundingTransfer:
    """A completed treasury transfer."""

    tx_hash: str
    to: str
    amount: int


class TreasuryWallet:
    """Sends funds to worker wallets, one transfer at a time.

    A transfer never takes the balance below `reserve_floor`: the amount
    sent is capped at `balance - reserve_floor - fee`, where `fee` is the
    larger of `fee_buffer` and the chain's current worst-case transfer fee.
    """

    def __init__(
        self,
        chain: ChainClient,
        account: LocalAccount,
        settings: TreasurySettings | None = None,
        confirmation: ConfirmationSettings | None = None,
    ):
        self._chain = chain
        self._account = account
        self.settings = settings or TreasurySettings()
        self._confirmation = confirmation or ConfirmationSettings()
        self.reserve_floor = to_atomic(self.settings.reserve_floor, chain.decimals)
        self.fee_buffer = to_atomic(self.settings.fee_buffer, chain.decimals)
        self._lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def is_funding(self) -> bool:
        """True while a transfer is outstanding."""
        return self._lock.locked()

    async def get_balance(self) -> int:
        return await self._chain.get_balance(self.address)

    async def headroom(self) -> int:
        """Amount that can be sent without breaching the reserve floor."""
        balance = await self.get_balance()
        fee = max(self.fee_buffer, await self._chain.estimate_transfer_fee())
        return balance - self.reserve_floor - fee

    async def _acquire(self, to: str) -> None:
        # asyncio.wait_for can drop a lock acquired just as the timeout fires.
        waiter = asyncio.ensure_future(self._lock.acquire())
        try:
            done, _ = await asyncio.wait({waiter}, timeout=self.settings.funding_wait)
        except asyncio.CancelledError:
            waiter.cancel()
            if waiter.done() and not waiter.cancelled():
                self._lock.release()
            raise

        if not done:
            waiter.cancel()
            raise FundingTimeoutError(
                f"Treasury busy for more than {self.settings.funding_wait}s", to=to
            )

    async def fund(self, to: str, amount: int) -> FundingTransfer:
        """Send up to `amount` to `to` and wait for confirmation.

        Args:
            to: Recipient address.
            amount: Requested amount in atomic units.

        Returns:
            The transfer actually made; its amount may be below `amount`.

        Raises:
            FundingTimeoutError: If another transfer held the treasury for
                longer than `funding_wait` seconds.
            TreasuryLowError: If there is no headroom above the reserve.
            ConfirmationTimeoutError: If the transfer was not confirmed.
        """
        await self._acquire(to)

        try:
            headroom = await self.headroom()
            if headroom <= 0:
                raise TreasuryLowError(
                    f"Treasury {self.address} has no headroom above its reserve floor",
                    headroom=headroom,
                )

            send_amount = min(amount, headroom)
            if send_amount < amount:
                logger.warning(
                    f"Treasury capping top-up for {to} at {send_amount} (requested {amount})"
                )

            tx_hash = await self._chain.send_transaction(self._account, to, send_amount)
            logger.info(f"Treasury funded {to} with {send_amount}: {tx_hash}")
            await wait_for_confirmation(
                self._chain,
                tx_hash,
                max_attempts=self._confirmation.max_attempts,
                delay=self._confirmation.delay,
            )
            return FundingTransfer(tx_hash=tx_hash, to=to, amount=send_amount)
        finally:
            self._lock.release()
