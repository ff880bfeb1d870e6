"""On-chain payment verification and replay protection."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from ..chain import ChainClient, lookup_transaction
from ..constants import (
    ERR_DESTINATION_MISMATCH,
    ERR_INSUFFICIENT_AMOUNT,
    ERR_MANDATE_MISMATCH,
    ERR_REPLAYED_TX,
    ERR_TX_FAILED,
    ERR_TX_LOOKUP_FAILED,
    ERR_TX_NOT_FOUND,
    ERR_TX_UNCONFIRMED,
    REPLAY_WINDOW_SECONDS,
    TX_LOOKUP_MAX_RETRIES,
    TX_LOOKUP_RETRY_DELAY,
)
from ..schemas import PaymentPayload, PaymentVerificationError, ReplayRejectedError
from ..signing import recover_payload_signer

logger = logging.getLogger(__name__)


@dataclass
class VerifiedPayment:
    """A transfer confirmed on chain."""

    tx_hash: str
    payer: str
    pay_to: str
    amount: int


class PaymentVerifier:
    """Checks that a transaction paid enough to the expected address."""

    def __init__(
        self,
        chain: ChainClient,
        lookup_attempts: int = TX_LOOKUP_MAX_RETRIES,
        lookup_delay: float = TX_LOOKUP_RETRY_DELAY,
    ):
        self._chain = chain
        self._lookup_attempts = lookup_attempts
        self._lookup_delay = lookup_delay

    async def verify_transfer(self, tx_hash: str, pay_to: str, minimum: int) -> VerifiedPayment:
        """Verify `tx_hash` sent at least `minimum` to `pay_to`.

        Args:
            tx_hash: Transaction to check.
            pay_to: Expected recipient.
            minimum: Smallest acceptable amount in atomic units.

        Returns:
            The verified payment; `payer` is the on-chain sender.

        Raises:
            PaymentVerificationError: With `reason` set to one of the
                ERR_* constants.
        """
        try:
            info = await lookup_transaction(
                self._chain, tx_hash, self._lookup_attempts, self._lookup_delay
            )
        except Exception as e:
            logger.error(f"Lookup of {tx_hash} failed: {e}")
            raise PaymentVerificationError(
                f"Could not look up transaction {tx_hash}: {e}", reason=ERR_TX_LOOKUP_FAILED
            )
        if info is None:
            raise PaymentVerificationError(
                f"Transaction {tx_hash} not found", reason=ERR_TX_NOT_FOUND
            )
        if info.failed:
            raise PaymentVerificationError(
                f"Transaction {tx_hash} failed on chain", reason=ERR_TX_FAILED
            )
        if not info.confirmed:
            raise PaymentVerificationError(
                f"Transaction {tx_hash} is not confirmed yet", reason=ERR_TX_UNCONFIRMED
            )

        amount = info.amount_to(pay_to)
        if amount == 0:
            raise PaymentVerificationError(
                f"Transaction {tx_hash} does not pay {pay_to}",
                reason=ERR_DESTINATION_MISMATCH,
            )
        if amount < minimum:
            raise PaymentVerificationError(
                f"Insufficient payment: {amount} < {minimum}",
                reason=ERR_INSUFFICIENT_AMOUNT,
                paid=amount,
                required=minimum,
            )

        logger.info(f"Verified {amount} from {info.sender} to {pay_to} in {tx_hash}")
        return VerifiedPayment(tx_hash=tx_hash, payer=info.sender, pay_to=pay_to, amount=amount)


def verify_mandate(
    tool_name: str, payload: PaymentPayload | None, payment: VerifiedPayment
) -> None:
    """Check a signed mandate, if the payment header carries one.

    The signature must recover to the on-chain sender of `payment` over a
    mandate for `tool_name`. Headers without a signature are accepted.

    Raises:
        PaymentVerificationError: With reason ERR_MANDATE_MISMATCH.
    """
    if payload is None or not payload.mandate_signature:
        return
    try:
        signer = recover_payload_signer(tool_name, payload)
    except Exception as e:
        raise PaymentVerificationError(
            f"Unreadable mandate signature: {e}", reason=ERR_MANDATE_MISMATCH
        )
    if signer is None or signer.lower() != payment.payer.lower():
        raise PaymentVerificationError(
            f"Mandate for {tool_name} was not signed by payer {payment.payer}",
            reason=ERR_MANDATE_MISMATCH,
        )


class ReplayGuard:
    """Remembers transaction ids accepted as payment for `window` seconds.

    `reserve()` is synchronous, so check-and-mark cannot interleave with
    another request on the same event loop.
    """

    def __init__(
        self,
        window: float = REPLAY_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.window = window
        self._clock = clock
        self._seen: dict[str, float] = {}

    def __contains__(self, tx_hash: str) -> bool:
        self.prune()
        return tx_hash.lower() in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def reserve(self, tx_hash: str) -> None:
        """Mark `tx_hash` used.

        Raises:
            ReplayRejectedError: If it was already used within the window.
        """
        self.prune()
        key = tx_hash.lower()
        if key in self._seen:
            logger.warning(f"Replay of transaction {tx_hash} rejected")
            raise ReplayRejectedError(
                f"Transaction {tx_hash} was already used", reason=ERR_REPLAYED_TX
            )
        self._seen[key] = self._clock()

    def release(self, tx_hash: str) -> None:
        """Forget a reservation whose verification did not succeed."""
        self._seen.pop(tx_hash.lower(), None)

    def prune(self) -> None:
        cutoff = self._clock() - self.window
        expired = [k for k, seen_at in self._seen.items() if seen_at < cutoff]
        for key in expired:
            del self._seen[key]
