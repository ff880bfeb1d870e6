"""Per-mode request handlers for the tool gateway."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..amounts import apply_tolerance
from ..cache import PendingResult, ResultCache
from ..config import ConfirmationSettings
from ..constants import (
    ERR_MISSING_RESULT_ID,
    ERR_MISSING_TX_HASH,
    ERR_TOOL_MISMATCH,
    PAYMENT_TX_HEADER,
    RESULT_ID_HEADER,
)
from ..escrow import EscrowTask, EscrowTxQueue
from ..schemas import (
    EscrowOutcome,
    EscrowSettlementError,
    PaymentVerificationError,
    ReplayRejectedError,
    ResultExpiredError,
)
from .types import (
    EscrowSettlement,
    GatewayRequest,
    GatewayResponse,
    PayToClaimSettlement,
    ToolRoute,
)
from .verify import VerifiedPayment, verify_mandate

if TYPE_CHECKING:
    from .server import ToolGateway

logger = logging.getLogger(__name__)


# ============================================================================
# Escrow Mode
# ============================================================================


class EscrowModeHandler:
    """Pay escrow, run tool, then release to provider or refund to payer."""

    def __init__(
        self,
        gateway: ToolGateway,
        settlement: EscrowSettlement,
        confirmation: ConfirmationSettings | None = None,
    ):
        self._gateway = gateway
        self.escrow_address = settlement.escrow_address
        self.queue: EscrowTxQueue | None = None
        if settlement.signer is not None:
            if settlement.signer.address.lower() != settlement.escrow_address.lower():
                raise ValueError("Escrow signer does not control the escrow address")
            self.queue = EscrowTxQueue(gateway.chain, settlement.signer, confirmation)
        else:
            logger.warning("Escrow mode without a signer: funds will not be released or refunded")

    async def start(self) -> None:
        if self.queue is not None:
            await self.queue.start()

    async def stop(self) -> None:
        if self.queue is not None:
            await self.queue.stop()

    def info(self) -> dict[str, Any]:
        return {
            "escrowAddress": self.escrow_address,
            "escrowEnabled": self.queue is not None,
            "pendingEscrowTasks": self.queue.pending if self.queue is not None else 0,
        }

    async def handle(self, route: ToolRoute, request: GatewayRequest) -> GatewayResponse:
        gateway = self._gateway
        proof = gateway.extract_proof(request)
        required = await gateway.quote(route)

        if not proof.present:
            logger.info(f"Escrow challenge for {route.name}: {required} to {self.escrow_address}")
            return gateway.payment_required(self._challenge(route, required))

        if not proof.tx_hash:
            return gateway.error_response(
                400, f"Missing {PAYMENT_TX_HEADER} header", code=ERR_MISSING_TX_HASH
            )
        tx_hash = proof.tx_hash

        try:
            gateway.replay_guard.reserve(tx_hash)
        except ReplayRejectedError as e:
            return gateway.error_from(403, e)

        minimum = apply_tolerance(required, gateway.settings.price_tolerance)
        try:
            payment = await gateway.verifier.verify_transfer(tx_hash, self.escrow_address, minimum)
            verify_mandate(route.name, proof.payload, payment)
        except PaymentVerificationError as e:
            gateway.replay_guard.release(tx_hash)
            logger.warning(f"Escrow payment for {route.name} rejected: {e.message}")
            return gateway.payment_required(self._challenge(route, required), error=e.message)
        except BaseException:
            gateway.replay_guard.release(tx_hash)
            raise

        if proof.payload is not None and proof.payload.from_.lower() != payment.payer.lower():
            logger.warning(
                f"Payment header claims payer {proof.payload.from_}, "
                f"chain says {payment.payer}; using on-chain sender"
            )

        outcome = await gateway.execute(route, request.params)
        escrow = await self._settle(route, payment, tool_ok=outcome.ok)
        receipt = gateway.build_receipt(route, payment, escrow=escrow)

        if outcome.ok:
            return gateway.paid_response(200, {"success": True, "data": outcome.data}, receipt)
        return gateway.paid_response(
            502,
            {
                "success": False,
                "error": outcome.error,
                "refunded": escrow.status == "refunded",
            },
            receipt,
        )

    def _challenge(self, route: ToolRoute, required: int):
        return self._gateway.build_challenge(
            route, pay_to=self.escrow_address, amount=required, escrow=True
        )

    async def _settle(
        self, route: ToolRoute, payment: VerifiedPayment, tool_ok: bool
    ) -> EscrowOutcome:
        if tool_ok:
            kind, target = "release", route.provider_address
        else:
            kind, target = "refund", payment.payer

        if self.queue is None:
            return EscrowOutcome(status="no-signer", target=target, amount=payment.amount)

        task = EscrowTask(
            source_tx_hash=payment.tx_hash, target=target, amount=payment.amount, kind=kind
        )
        try:
            return await self.queue.submit(task)
        except EscrowSettlementError as e:
            return EscrowOutcome(
                status=f"{kind}-failed", target=target, amount=payment.amount, error=e.message
            )


# ============================================================================
# Pay-to-Claim Mode
# ============================================================================


class PayToClaimModeHandler:
    """Run tool first, hold result, deliver it once paid."""

    def __init__(self, gateway: ToolGateway, settlement: PayToClaimSettlement):
        self._gateway = gateway
        self.bind_payments = settlement.bind_payments
        self.cache = ResultCache(
            ttl=settlement.result_ttl,
            sweep_interval=settlement.sweep_interval,
            clock=gateway.clock,
        )

    async def start(self) -> None:
        await self.cache.start()

    async def stop(self) -> None:
        await self.cache.stop()

    def info(self) -> dict[str, Any]:
        return {
            "resultTtl": self.cache.ttl,
            "pendingResults": len(self.cache),
            "bindPayments": self.bind_payments,
        }

    async def handle(self, route: ToolRoute, request: GatewayRequest) -> GatewayResponse:
        gateway = self._gateway
        proof = gateway.extract_proof(request)

        if not proof.present:
            return await self._execute_first(route, request)

        if not proof.result_id:
            return gateway.error_response(
                400, f"Missing {RESULT_ID_HEADER} header", code=ERR_MISSING_RESULT_ID
            )
        if not proof.tx_hash:
            return gateway.error_response(
                400, f"Missing {PAYMENT_TX_HEADER} header", code=ERR_MISSING_TX_HASH
            )
        result_id, tx_hash = proof.result_id, proof.tx_hash

        if self.bind_payments:
            try:
                gateway.replay_guard.reserve(tx_hash)
            except ReplayRejectedError as e:
                return gateway.error_from(403, e)

        async def verify(entry: PendingResult) -> VerifiedPayment:
            if entry.tool_name != route.name:
                raise PaymentVerificationError(
                    f"Result {result_id} belongs to {entry.tool_name}", reason=ERR_TOOL_MISMATCH
                )
            payment = await gateway.verifier.verify_transfer(
                tx_hash, entry.pay_to, entry.price_required
            )
            verify_mandate(route.name, proof.payload, payment)
            return payment

        try:
            entry, payment = await self.cache.claim(result_id, verify)
        except ResultExpiredError as e:
            self._release(tx_hash)
            return gateway.error_from(410, e)
        except PaymentVerificationError as e:
            self._release(tx_hash)
            logger.warning(f"Claim of {result_id} rejected: {e.message}")
            pending = self.cache.get(result_id)
            if pending is None:
                return gateway.error_response(410, e.message, code=ResultExpiredError.code)
            return gateway.payment_required(self._challenge(route, pending), error=e.message)
        except BaseException:
            self._release(tx_hash)
            raise

        receipt = gateway.build_receipt(route, payment, result_id=result_id)
        return gateway.paid_response(200, {"success": True, "data": entry.payload}, receipt)

    async def _execute_first(self, route: ToolRoute, request: GatewayRequest) -> GatewayResponse:
        outcome = await self._gateway.execute(route, request.params)
        if not outcome.ok:
            return self._gateway.unpaid_failure(route, outcome)

        required = await self._gateway.quote(route)
        entry = self.cache.put(route.name, outcome.data, required, route.provider_address)
        return self._gateway.payment_required(
            self._challenge(route, entry), error="Payment required to claim result"
        )

    def _challenge(self, route: ToolRoute, entry: PendingResult):
        return self._gateway.build_challenge(
            route,
            pay_to=entry.pay_to,
            amount=entry.price_required,
            result_id=entry.result_id,
            expires_at=int(entry.expires_at),
        )

    def _release(self, tx_hash: str) -> None:
        if self.bind_payments:
            self._gateway.replay_guard.release(tx_hash)
