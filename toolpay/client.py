"""Client side of the tool payment protocol.

Each call runs INTENT -> AUTHORIZATION -> SETTLEMENT -> DELIVERY:

1. INTENT: call the tool unpaid and read the 402 challenge.
2. AUTHORIZATION: sign a payment mandate with the paying wallet.
3. SETTLEMENT: transfer the quoted amount and wait for confirmation.
4. DELIVERY: resubmit with proof headers and receive the result.

A challenge with a `resultId` is pay-to-claim (the tool already ran and
the provider is paid directly); otherwise `payTo` is an escrow address.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx
from eth_account.signers.local import LocalAccount
from pydantic import ValidationError
from typing_extensions import Self

from .amounts import Money, parse_money
from .chain import ChainClient, wait_for_confirmation
from .config import ConfirmationSettings
from .constants import (
    PAYMENT_CHAIN_HEADER,
    PAYMENT_HEADER,
    PAYMENT_RECEIPT_HEADER,
    PAYMENT_TX_HEADER,
    RESULT_ID_HEADER,
)
from .encoding import decode_receipt_header, encode_payment_header
from .schemas import (
    Phase,
    PaymentChallenge,
    PaymentPayload,
    PaymentPhaseError,
    PaymentReceipt,
    PaymentRequired,
    Receipt,
)
from .signing import sign_mandate
from .wallets import WalletPool

logger = logging.getLogger(__name__)

PhaseHook = Callable[[str, Receipt], None]


@dataclass
class ToolCallResult:
    """Outcome of one tool call."""

    tool_name: str
    success: bool
    receipt: Receipt
    data: Any = None
    error: Optional[str] = None
    challenge: Optional[PaymentChallenge] = None
    tx_hash: Optional[str] = None
    explorer_url: Optional[str] = None
    free: bool = False
    no_cost: bool = False
    expired: bool = False
    server_receipt: Optional[PaymentReceipt] = None


class PaymentClient:
    """Calls gateway tools, paying from pool wallets."""

    def __init__(
        self,
        base_url: str,
        chain: ChainClient,
        pool: WalletPool | None = None,
        http_client: httpx.AsyncClient | None = None,
        confirmation: ConfirmationSettings | None = None,
        max_amount_usd: Money | None = None,
        timeout: float = 30.0,
    ):
        """Initialize client.

        Args:
            base_url: Gateway base URL; tools live at {base_url}/tools/{name}.
            chain: Ledger used to pay.
            pool: Wallet pool used by `call_tool`.
            http_client: Optional httpx.AsyncClient; created if omitted.
            confirmation: Confirmation polling settings.
            max_amount_usd: Refuse challenges priced above this.
            timeout: HTTP timeout for owned clients.
        """
        self._base_url = base_url.rstrip("/")
        self._chain = chain
        self._pool = pool
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._confirmation = confirmation or ConfirmationSettings()
        self._max_amount_usd = parse_money(max_amount_usd) if max_amount_usd is not None else None
        self._phase_hooks: list[PhaseHook] = []

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def on_phase_change(self, hook: PhaseHook) -> Self:
        """Register hook called with (tool_name, receipt) after each transition.

        Args:
            hook: Hook function.

        Returns:
            Self for chaining.
        """
        self._phase_hooks.append(hook)
        return self

    def _notify(self, receipt: Receipt) -> None:
        for hook in self._phase_hooks:
            try:
                hook(receipt.tool_name, receipt)
            except Exception as e:
                logger.warning(f"Phase hook failed: {e}")

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    # ========================================================================
    # Calls
    # ========================================================================

    async def call_tool(self, tool_name: str, params: dict[str, Any] | None = None) -> ToolCallResult:
        """Lease a pool wallet and call `tool_name`, paying if challenged.

        Raises:
            WalletPoolBusyError: If no wallet is free.
            FundingFailedError: If the leased wallet could not be funded.
        """
        if self._pool is None:
            raise RuntimeError("call_tool requires a wallet pool")
        async with self._pool.lease() as wallet:
            return await self.run(wallet.account, tool_name, params)

    async def run(
        self,
        account: LocalAccount,
        tool_name: str,
        params: dict[str, Any] | None = None,
    ) -> ToolCallResult:
        """Drive one call through all phases using `account` to pay.

        Phase failures are reported in the result, not raised.
        """
        params = params or {}
        receipt = Receipt(tool_name=tool_name)
        result = ToolCallResult(tool_name=tool_name, success=False, receipt=receipt)
        phase = Phase.INTENT

        try:
            self._begin(receipt, phase)
            response = await self._post(tool_name, params)
            body = self._json(response)

            if response.status_code == 200:
                result.data = body.get("data", body)
                result.free = True
                result.success = True
                self._finish(receipt, phase, "Served without payment")
                for later in (Phase.AUTHORIZATION, Phase.SETTLEMENT, Phase.DELIVERY):
                    receipt.skip(later, "Free tool")
                self._notify(receipt)
                return result

            if response.status_code != 402:
                result.no_cost = bool(body.get("noCost"))
                raise PaymentPhaseError(
                    phase, body.get("error") or f"Unexpected status {response.status_code}"
                )

            challenge = self._parse_challenge(body)
            result.challenge = challenge
            self._finish(
                receipt,
                phase,
                f"{challenge.amount} {challenge.unit} (${challenge.amount_usd}) to {challenge.pay_to}",
            )

            phase = Phase.AUTHORIZATION
            self._begin(receipt, phase)
            signature = self._authorize(account, tool_name, challenge)
            self._finish(receipt, phase, "Mandate signed")

            phase = Phase.SETTLEMENT
            self._begin(receipt, phase)
            tx_hash = await asyncio.shield(
                self._chain.send_transaction(account, challenge.pay_to, challenge.satoshis)
            )
            result.tx_hash = tx_hash
            result.explorer_url = self._chain.explorer_url(tx_hash)
            await wait_for_confirmation(
                self._chain,
                tx_hash,
                max_attempts=self._confirmation.max_attempts,
                delay=self._confirmation.delay,
            )
            self._finish(receipt, phase, "Confirmed", tx_hash=tx_hash)

            phase = Phase.DELIVERY
            self._begin(receipt, phase)
            payload = PaymentPayload(
                tx_hash=tx_hash,
                from_=account.address,
                to=challenge.pay_to,
                amount=str(challenge.satoshis),
                network=challenge.network,
                result_id=challenge.result_id,
                mandate_signature=signature,
            )
            headers = {
                PAYMENT_HEADER: encode_payment_header(payload),
                PAYMENT_TX_HEADER: tx_hash,
            }
            if challenge.result_id:
                headers[RESULT_ID_HEADER] = challenge.result_id

            response = await self._post(tool_name, params, headers)
            body = self._json(response)
            result.server_receipt = self._parse_receipt(response)

            if response.status_code != 200:
                result.expired = response.status_code == 410
                raise PaymentPhaseError(
                    phase, body.get("error") or f"Delivery failed with status {response.status_code}"
                )

            result.data = body.get("data")
            result.success = True
            self._finish(receipt, phase, "Result delivered")
            return result

        except PaymentPhaseError as e:
            self._fail(receipt, e.phase, e.message, result)
        except Exception as e:
            logger.warning(f"{tool_name}: {phase.value} failed: {e}")
            self._fail(receipt, phase, str(e) or type(e).__name__, result)
        return result

    # ========================================================================
    # Phase Helpers
    # ========================================================================

    def _begin(self, receipt: Receipt, phase: Phase) -> None:
        receipt.start(phase)
        self._notify(receipt)

    def _finish(
        self, receipt: Receipt, phase: Phase, detail: str, tx_hash: str | None = None
    ) -> None:
        receipt.complete(phase, detail=detail, tx_hash=tx_hash)
        self._notify(receipt)

    def _fail(self, receipt: Receipt, phase: Phase, detail: str, result: ToolCallResult) -> None:
        receipt.fail(phase, detail, tx_hash=result.tx_hash if phase == Phase.SETTLEMENT else None)
        result.error = detail
        logger.info(f"{receipt.tool_name}: failed at {phase.value}: {detail}")
        self._notify(receipt)

    def _authorize(self, account: LocalAccount, tool_name: str, challenge: PaymentChallenge) -> str:
        if challenge.network != self._chain.network:
            raise PaymentPhaseError(
                Phase.AUTHORIZATION,
                f"Challenge is for {challenge.network}, wallet is on {self._chain.network}",
            )
        if challenge.is_expired():
            raise PaymentPhaseError(Phase.AUTHORIZATION, "Challenge expired before payment")
        if self._max_amount_usd is not None and Decimal(challenge.amount_usd) > self._max_amount_usd:
            raise PaymentPhaseError(
                Phase.AUTHORIZATION,
                f"Price ${challenge.amount_usd} exceeds limit ${self._max_amount_usd}",
            )
        return sign_mandate(account, tool_name, challenge)

    # ========================================================================
    # HTTP
    # ========================================================================

    async def _post(
        self,
        tool_name: str,
        params: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        return await self._get_client().post(
            f"{self._base_url}/tools/{tool_name}",
            json=params,
            headers={PAYMENT_CHAIN_HEADER: self._chain.network, **(headers or {})},
        )

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {"data": body}

    @staticmethod
    def _parse_challenge(body: dict[str, Any]) -> PaymentChallenge:
        try:
            required = PaymentRequired.model_validate(body)
        except ValidationError as e:
            raise PaymentPhaseError(Phase.INTENT, f"Invalid 402 response: {e}")
        if not required.accepts:
            raise PaymentPhaseError(Phase.INTENT, "402 response offers no payment options")
        return required.accepts[0]

    @staticmethod
    def _parse_receipt(response: httpx.Response) -> PaymentReceipt | None:
        header = response.headers.get(PAYMENT_RECEIPT_HEADER)
        if not header:
            return None
        try:
            return decode_receipt_header(header)
        except ValueError as e:
            logger.warning(f"Ignoring invalid {PAYMENT_RECEIPT_HEADER} header: {e}")
            return None
