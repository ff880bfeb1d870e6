"""Tool gateway: 402 challenges, payment verification and delivery."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable

from eth_account.signers.local import LocalAccount

from ..amounts import format_native
from ..chain import ChainClient
from ..config import ConfirmationSettings, GatewaySettings
from ..constants import (
    ERR_UNKNOWN_TOOL,
    MODE_ESCROW,
    MODE_PAY_TO_CLAIM,
    PAYMENT_HEADER,
    PAYMENT_RECEIPT_HEADER,
    PAYMENT_TX_HEADER,
    RESULT_ID_HEADER,
)
from ..encoding import decode_payment_header, encode_receipt_header
from ..oracle import RateSource, quote
from ..schemas import (
    EscrowOutcome,
    PaymentChallenge,
    PaymentPayload,
    PaymentReceipt,
    PaymentRequired,
    ToolExecutionError,
    ToolPayError,
)
from ..signing import sign_receipt
from .modes import EscrowModeHandler, PayToClaimModeHandler
from .types import (
    EscrowSettlement,
    GatewayRequest,
    GatewayResponse,
    PayToClaimSettlement,
    Settlement,
    ToolOutcome,
    ToolRoute,
)
from .verify import PaymentVerifier, ReplayGuard, VerifiedPayment

logger = logging.getLogger(__name__)


class PaymentProof:
    """Payment material extracted from resubmission headers."""

    def __init__(
        self,
        payload: PaymentPayload | None,
        tx_hash: str | None,
        result_id: str | None,
        present: bool,
    ):
        self.payload = payload
        self.tx_hash = tx_hash
        self.result_id = result_id
        self.present = present


class ToolGateway:
    """Serves tools behind HTTP 402 payments.

    The settlement mode is fixed at construction:

    - EscrowSettlement: clients pay an escrow address up front; after the
      tool runs the payment is released to the provider or refunded.
    - PayToClaimSettlement: the tool runs first and its result is held
      until the client pays the provider and claims it by resultId.
    """

    def __init__(
        self,
        chain: ChainClient,
        oracle: RateSource,
        settlement: Settlement,
        routes: Iterable[ToolRoute] = (),
        settings: GatewaySettings | None = None,
        confirmation: ConfirmationSettings | None = None,
        receipt_signer: LocalAccount | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize gateway.

        Args:
            chain: Ledger used for verification and escrow transfers.
            oracle: USD rate source for pricing.
            settlement: Escrow or pay-to-claim settlement.
            routes: Tools to serve.
            settings: Gateway settings. Its `mode` is ignored in favour of
                `settlement`.
            confirmation: Confirmation polling for escrow transfers.
            receipt_signer: Key used to sign receipts. Defaults to the
                escrow signer in escrow mode.
            clock: Wall clock, injectable for tests.
        """
        self.chain = chain
        self.oracle = oracle
        self.settlement = settlement
        self.settings = settings or GatewaySettings(
            mode=MODE_ESCROW if isinstance(settlement, EscrowSettlement) else MODE_PAY_TO_CLAIM,
            network=chain.network,
            unit=chain.unit,
            escrow_address=getattr(settlement, "escrow_address", None),
        )
        self.clock = clock
        self.verifier = PaymentVerifier(
            chain,
            lookup_attempts=self.settings.tx_lookup_attempts,
            lookup_delay=self.settings.tx_lookup_delay,
        )
        self.replay_guard = ReplayGuard(self.settings.replay_window, clock=clock)

        if isinstance(settlement, EscrowSettlement):
            self._handler: EscrowModeHandler | PayToClaimModeHandler = EscrowModeHandler(
                self, settlement, confirmation
            )
            self._receipt_signer = receipt_signer or settlement.signer
        elif isinstance(settlement, PayToClaimSettlement):
            self._handler = PayToClaimModeHandler(self, settlement)
            self._receipt_signer = receipt_signer
        else:
            raise TypeError(f"Unsupported settlement: {type(settlement).__name__}")

        self._routes: dict[str, ToolRoute] = {}
        for route in routes:
            self.add_route(route)

    # ========================================================================
    # Routes
    # ========================================================================

    @property
    def mode(self) -> str:
        return MODE_ESCROW if isinstance(self.settlement, EscrowSettlement) else MODE_PAY_TO_CLAIM

    @property
    def handler(self) -> EscrowModeHandler | PayToClaimModeHandler:
        return self._handler

    @property
    def routes(self) -> list[ToolRoute]:
        return list(self._routes.values())

    def add_route(self, route: ToolRoute) -> None:
        self._routes[route.name] = route
        if self.is_paid(route):
            logger.info(f"Tool {route.name}: ${route.price} to {route.provider_address}")
        else:
            logger.info(f"Tool {route.name}: free (no valid provider address or price)")

    def get_route(self, name: str) -> ToolRoute | None:
        return self._routes.get(name)

    def is_paid(self, route: ToolRoute) -> bool:
        return (
            route.price > 0
            and route.provider_address is not None
            and self.chain.is_valid_address(route.provider_address)
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        await self._handler.start()

    async def stop(self) -> None:
        await self._handler.stop()

    # ========================================================================
    # Request Handling
    # ========================================================================

    async def handle(self, request: GatewayRequest) -> GatewayResponse:
        """Process one tool call, paid or unpaid."""
        route = self._routes.get(request.tool_name)
        if route is None:
            return self.error_response(
                404, f"Unknown tool: {request.tool_name}", code=ERR_UNKNOWN_TOOL
            )

        if not self.is_paid(route):
            outcome = await self.execute(route, request.params)
            if outcome.ok:
                return GatewayResponse(200, {"success": True, "data": outcome.data, "free": True})
            return self.unpaid_failure(route, outcome)

        return await self._handler.handle(route, request)

    async def execute(self, route: ToolRoute, params: dict[str, Any]) -> ToolOutcome:
        """Run a tool; exceptions from the handler become failed outcomes."""
        try:
            outcome = await route.handler.execute(params)
        except Exception as e:
            logger.error(f"Tool {route.name} raised: {e}")
            return ToolOutcome.failure(str(e) or type(e).__name__)
        if not outcome.ok:
            logger.warning(f"Tool {route.name} failed: {outcome.error}")
        return outcome

    def extract_proof(self, request: GatewayRequest) -> PaymentProof:
        raw = request.header(PAYMENT_HEADER)
        payload = None
        if raw is not None:
            try:
                payload = decode_payment_header(raw)
            except ValueError as e:
                logger.warning(f"Ignoring invalid {PAYMENT_HEADER} header: {e}")

        tx_hash = request.header(PAYMENT_TX_HEADER) or (payload.tx_hash if payload else None)
        result_id = request.header(RESULT_ID_HEADER) or (payload.result_id if payload else None)
        present = raw is not None or tx_hash is not None or result_id is not None
        return PaymentProof(payload, tx_hash, result_id, present)

    # ========================================================================
    # Pricing / Challenges / Receipts
    # ========================================================================

    async def quote(self, route: ToolRoute) -> int:
        """Price of `route` in atomic units at the current rate."""
        amount, _ = await quote(self.oracle, route.price, self.chain.decimals)
        return amount

    def build_challenge(
        self,
        route: ToolRoute,
        pay_to: str,
        amount: int,
        result_id: str | None = None,
        expires_at: int | None = None,
        escrow: bool = False,
    ) -> PaymentChallenge:
        return PaymentChallenge(
            pay_to=pay_to,
            amount=format_native(amount, self.chain.decimals),
            amount_usd=str(route.price),
            unit=self.chain.unit,
            satoshis=amount,
            network=self.chain.network,
            description=route.description or f"Payment for {route.name}",
            result_id=result_id,
            expires_at=expires_at,
            tool_provider=route.provider_address,
            escrow=escrow,
        )

    def payment_required(self, challenge: PaymentChallenge, error: str = "") -> GatewayResponse:
        body = PaymentRequired(error=error or "Payment required", accepts=[challenge])
        return GatewayResponse(402, body.to_wire())

    def build_receipt(
        self,
        route: ToolRoute,
        payment: VerifiedPayment,
        result_id: str | None = None,
        escrow: EscrowOutcome | None = None,
    ) -> PaymentReceipt:
        receipt = PaymentReceipt(
            verified=True,
            tx_hash=payment.tx_hash,
            pay_to=payment.pay_to,
            payer=payment.payer,
            amount=payment.amount,
            network=self.chain.network,
            tool_name=route.name,
            timestamp=int(self.clock()),
            explorer_url=self.chain.explorer_url(payment.tx_hash),
            tool_provider=route.provider_address,
            result_id=result_id,
            escrow=escrow,
        )
        if self._receipt_signer is not None:
            receipt = sign_receipt(receipt, self._receipt_signer)
        return receipt

    def paid_response(
        self,
        status_code: int,
        body: dict[str, Any],
        receipt: PaymentReceipt,
    ) -> GatewayResponse:
        body = {**body, "receipt": receipt.to_wire()}
        return GatewayResponse(
            status_code, body, headers={PAYMENT_RECEIPT_HEADER: encode_receipt_header(receipt)}
        )

    @staticmethod
    def error_response(status_code: int, message: str, code: str | None = None) -> GatewayResponse:
        body: dict[str, Any] = {"success": False, "error": message}
        if code:
            body["code"] = code
        return GatewayResponse(status_code, body)

    @staticmethod
    def error_from(status_code: int, error: ToolPayError) -> GatewayResponse:
        return GatewayResponse(status_code, error.to_dict())

    @staticmethod
    def unpaid_failure(route: ToolRoute, outcome: ToolOutcome) -> GatewayResponse:
        """500 for a tool that failed before any payment was asked for."""
        error = ToolExecutionError(outcome.error or "Tool failed", tool=route.name)
        return GatewayResponse(500, {**error.to_dict(), "noCost": True})

    def info(self) -> dict[str, Any]:
        """Public description of the gateway's settlement setup."""
        data: dict[str, Any] = {
            "mode": self.mode,
            "network": self.chain.network,
            "unit": self.chain.unit,
            "receiptSigner": self._receipt_signer.address if self._receipt_signer else None,
        }
        data.update(self._handler.info())
        return data
