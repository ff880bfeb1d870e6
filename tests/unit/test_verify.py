"""Tests for payment verification and the replay guard."""

from unittest.mock import AsyncMock

import pytest
from eth_account import Account

from toolpay.constants import (
    ERR_DESTINATION_MISMATCH,
    ERR_INSUFFICIENT_AMOUNT,
    ERR_MANDATE_MISMATCH,
    ERR_TX_FAILED,
    ERR_TX_LOOKUP_FAILED,
    ERR_TX_NOT_FOUND,
    ERR_TX_UNCONFIRMED,
)
from toolpay.gateway.verify import PaymentVerifier, ReplayGuard, VerifiedPayment, verify_mandate
from toolpay.schemas import (
    PaymentChallenge,
    PaymentPayload,
    PaymentVerificationError,
    ReplayRejectedError,
)
from toolpay.signing import sign_mandate

from ..conftest import PAYER_KEY, PROVIDER_ADDRESS
from ..mocks import FakeClock, InMemoryLedger

TX_HASH = "0x" + "cd" * 32


class TestPaymentVerifier:
    def setup_method(self) -> None:
        self.ledger = InMemoryLedger()
        self.verifier = PaymentVerifier(self.ledger, lookup_attempts=3, lookup_delay=0)
        self.payer = Account.create().address

    @pytest.mark.asyncio
    async def test_accepts_sufficient_transfer(self):
        tx_hash = self.ledger.record_transfer(self.payer, PROVIDER_ADDRESS, 2500)

        verified = await self.verifier.verify_transfer(tx_hash, PROVIDER_ADDRESS, 2500)

        assert verified.payer == self.payer
        assert verified.amount == 2500

    @pytest.mark.asyncio
    async def test_recipient_match_ignores_case(self):
        tx_hash = self.ledger.record_transfer(self.payer, PROVIDER_ADDRESS.lower(), 3000)
        verified = await self.verifier.verify_transfer(tx_hash, PROVIDER_ADDRESS, 2500)
        assert verified.amount == 3000

    @pytest.mark.asyncio
    async def test_overpayment_is_accepted(self):
        tx_hash = self.ledger.record_transfer(self.payer, PROVIDER_ADDRESS, 9999)
        verified = await self.verifier.verify_transfer(tx_hash, PROVIDER_ADDRESS, 2500)
        assert verified.amount == 9999

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "setup,reason",
        [
            (lambda ledger, payer: "0x" + "ab" * 32, ERR_TX_NOT_FOUND),
            (lambda ledger, payer: ledger.record_transfer(payer, PROVIDER_ADDRESS, 2500, confirmed=False, failed=True), ERR_TX_FAILED),
            (lambda ledger, payer: ledger.record_transfer(payer, Account.create().address, 2500), ERR_DESTINATION_MISMATCH),
            (lambda ledger, payer: ledger.record_transfer(payer, PROVIDER_ADDRESS, 2499), ERR_INSUFFICIENT_AMOUNT),
        ],
    )
    async def test_rejection_reasons(self, setup, reason):
        tx_hash = setup(self.ledger, self.payer)

        with pytest.raises(PaymentVerificationError) as exc_info:
            await self.verifier.verify_transfer(tx_hash, PROVIDER_ADDRESS, 2500)

        assert exc_info.value.reason == reason

    @pytest.mark.asyncio
    async def test_unconfirmed_after_lookup_budget(self):
        self.ledger.confirm_after = 10
        tx_hash = self.ledger.record_transfer(self.payer, PROVIDER_ADDRESS, 2500, confirmed=False)

        with pytest.raises(PaymentVerificationError) as exc_info:
            await self.verifier.verify_transfer(tx_hash, PROVIDER_ADDRESS, 2500)

        assert exc_info.value.reason == ERR_TX_UNCONFIRMED

    @pytest.mark.asyncio
    async def test_waits_for_late_confirmation(self):
        self.ledger.confirm_after = 2
        tx_hash = self.ledger.record_transfer(self.payer, PROVIDER_ADDRESS, 2500, confirmed=False)

        verified = await self.verifier.verify_transfer(tx_hash, PROVIDER_ADDRESS, 2500)
        assert verified.tx_hash == tx_hash

    @pytest.mark.asyncio
    async def test_ledger_error_is_a_verification_failure(self):
        tx_hash = self.ledger.record_transfer(self.payer, PROVIDER_ADDRESS, 2500)
        self.ledger.get_transaction = AsyncMock(side_effect=ConnectionError("rpc down"))

        with pytest.raises(PaymentVerificationError) as exc_info:
            await self.verifier.verify_transfer(tx_hash, PROVIDER_ADDRESS, 2500)

        assert exc_info.value.reason == ERR_TX_LOOKUP_FAILED
        assert "rpc down" in exc_info.value.message


class TestVerifyMandate:
    def setup_method(self) -> None:
        self.payer = Account.from_key(PAYER_KEY)
        self.challenge = PaymentChallenge(
            pay_to=PROVIDER_ADDRESS,
            amount="0.000025",
            amount_usd="0.01",
            unit="BCH",
            satoshis=2500,
            network="bch:chipnet",
            result_id="result-1",
        )
        self.payment = VerifiedPayment(
            tx_hash=TX_HASH, payer=self.payer.address, pay_to=PROVIDER_ADDRESS, amount=2500
        )

    def _payload(self, signer, **overrides) -> PaymentPayload:
        fields = dict(
            tx_hash=TX_HASH,
            from_=signer.address,
            to=self.challenge.pay_to,
            amount=str(self.challenge.satoshis),
            network=self.challenge.network,
            result_id=self.challenge.result_id,
            mandate_signature=sign_mandate(signer, "weather", self.challenge),
        )
        fields.update(overrides)
        return PaymentPayload(**fields)

    def test_payer_signature_is_accepted(self):
        verify_mandate("weather", self._payload(self.payer), self.payment)

    def test_missing_signature_is_accepted(self):
        verify_mandate("weather", self._payload(self.payer, mandate_signature=None), self.payment)
        verify_mandate("weather", None, self.payment)

    def test_signature_from_other_wallet_is_rejected(self):
        with pytest.raises(PaymentVerificationError) as exc_info:
            verify_mandate("weather", self._payload(Account.create()), self.payment)
        assert exc_info.value.reason == ERR_MANDATE_MISMATCH

    def test_mandate_for_other_tool_is_rejected(self):
        with pytest.raises(PaymentVerificationError) as exc_info:
            verify_mandate("forecast", self._payload(self.payer), self.payment)
        assert exc_info.value.reason == ERR_MANDATE_MISMATCH

    def test_garbage_signature_is_rejected(self):
        payload = self._payload(self.payer, mandate_signature="0x1234")
        with pytest.raises(PaymentVerificationError) as exc_info:
            verify_mandate("weather", payload, self.payment)
        assert exc_info.value.reason == ERR_MANDATE_MISMATCH


class TestReplayGuard:
    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.guard = ReplayGuard(window=100, clock=self.clock)

    def test_second_reserve_is_rejected(self):
        self.guard.reserve("0xABC")
        with pytest.raises(ReplayRejectedError):
            self.guard.reserve("0xabc")
        assert "0xAbC" in self.guard

    def test_release_allows_retry(self):
        self.guard.reserve("0xabc")
        self.guard.release("0xABC")
        self.guard.reserve("0xabc")
        assert len(self.guard) == 1

    def test_entries_expire_after_window(self):
        self.guard.reserve("0xabc")
        self.clock.advance(101)
        assert "0xabc" not in self.guard
        self.guard.reserve("0xabc")

    def test_entries_kept_within_window(self):
        self.guard.reserve("0xabc")
        self.clock.advance(99)
        with pytest.raises(ReplayRejectedError):
            self.guard.reserve("0xabc")
