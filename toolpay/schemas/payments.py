"""Payment challenge, payload and receipt wire types."""

from __future__ import annotations

import time
from typing import Any, Literal, Optional

from pydantic import ConfigDict, Field, field_validator

from ..constants import SCHEME_TOOLPAY, x402_VERSION
from .base import ToolPayModel


def _validate_atomic(v: Any) -> Any:
    try:
        if int(v) < 0:
            raise ValueError
    except (TypeError, ValueError):
        raise ValueError("amount must be a non-negative integer")
    return v


class PaymentChallenge(ToolPayModel):
    """One entry of a 402 `accepts` list.

    `amount` is the native-unit decimal string shown to humans and
    `satoshis` the same amount in the chain's smallest unit. A challenge
    carrying `result_id` is a pay-to-claim challenge; otherwise `pay_to`
    is an escrow address.
    """

    model_config = ConfigDict(frozen=True)

    scheme: str = SCHEME_TOOLPAY
    pay_to: str
    amount: str
    amount_usd: str = Field(alias="amountUSD")
    unit: str
    satoshis: int
    network: str
    description: str = ""
    result_id: Optional[str] = None
    expires_at: Optional[int] = None
    tool_provider: Optional[str] = None
    escrow: bool = False

    @field_validator("satoshis")
    def validate_satoshis(cls, v):
        return _validate_atomic(v)

    @property
    def is_pay_to_claim(self) -> bool:
        return self.result_id is not None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at


class PaymentRequired(ToolPayModel):
    """Body of a 402 Payment Required response."""

    x402_version: int = x402_VERSION
    error: str = ""
    accepts: list[PaymentChallenge]


class PaymentPayload(ToolPayModel):
    """Decoded `X-Payment` header sent with a resubmission.

    `mandate_signature`, when present, must recover to the on-chain sender
    over the mandate rebuilt from these fields. A header without one is
    accepted on the strength of the transaction alone.
    """

    scheme: str = SCHEME_TOOLPAY
    tx_hash: str
    from_: str = Field(alias="from")
    to: str
    amount: str
    network: str
    result_id: Optional[str] = None
    timestamp: int = Field(default_factory=lambda: int(time.time()))
    mandate_signature: Optional[str] = None

    @field_validator("amount")
    def validate_amount(cls, v):
        return _validate_atomic(v)


EscrowStatus = Literal[
    "released", "refunded", "release-failed", "refund-failed", "no-signer"
]


class EscrowOutcome(ToolPayModel):
    """Result of the release or refund that followed an escrow payment."""

    status: EscrowStatus
    tx_hash: Optional[str] = None
    target: Optional[str] = None
    amount: Optional[int] = None
    error: Optional[str] = None


class PaymentReceipt(ToolPayModel):
    """Server-issued receipt, returned as the `X-Payment-Receipt` header."""

    verified: bool
    tx_hash: str
    pay_to: str
    payer: str
    amount: int
    network: str
    tool_name: str
    timestamp: int = Field(default_factory=lambda: int(time.time()))
    explorer_url: Optional[str] = None
    tool_provider: Optional[str] = None
    result_id: Optional[str] = None
    escrow: Optional[EscrowOutcome] = None
    signer: Optional[str] = None
    signature: Optional[str] = None

    def signing_fields(self) -> dict[str, Any]:
        """Wire fields covered by the signature."""
        data = self.to_wire()
        data.pop("signer", None)
        data.pop("signature", None)
        return data
