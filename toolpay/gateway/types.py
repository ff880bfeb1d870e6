"""Gateway types: tool handlers, routes, settlement modes, request/response."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Protocol, Union

from eth_account.signers.local import LocalAccount

from ..amounts import Money, parse_money
from ..constants import RESULT_SWEEP_INTERVAL, RESULT_TTL_SECONDS


@dataclass
class ToolOutcome:
    """Result of one tool execution."""

    ok: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, data: Any) -> "ToolOutcome":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: str) -> "ToolOutcome":
        return cls(ok=False, error=error)


class ToolHandler(Protocol):
    """Executes a tool. Failures are reported in the outcome, not raised."""

    async def execute(self, params: dict[str, Any]) -> ToolOutcome:
        ...


@dataclass
class ToolRoute:
    """A tool exposed by the gateway.

    A route is paid only when its provider address is valid on the chain
    and its price is positive; anything else is served free.
    """

    name: str
    handler: ToolHandler
    price_usd: Money = "0"
    provider_address: Optional[str] = None
    description: str = ""

    @property
    def price(self) -> Decimal:
        return parse_money(self.price_usd)


# ============================================================================
# Settlement Modes
# ============================================================================


@dataclass(frozen=True)
class EscrowSettlement:
    """Clients pay an escrow address; the gateway releases or refunds.

    Without a signer, payments are still verified but funds stay in escrow.
    """

    escrow_address: str
    signer: Optional[LocalAccount] = field(default=None, repr=False)


@dataclass(frozen=True)
class PayToClaimSettlement:
    """The tool runs first; clients pay the provider to claim the result.

    `bind_payments` applies the replay guard in this mode as well, so one
    transfer cannot claim two results.
    """

    result_ttl: float = RESULT_TTL_SECONDS
    sweep_interval: float = RESULT_SWEEP_INTERVAL
    bind_payments: bool = False


Settlement = Union[EscrowSettlement, PayToClaimSettlement]


# ============================================================================
# Request / Response
# ============================================================================


@dataclass
class GatewayRequest:
    """Framework-neutral tool call."""

    tool_name: str
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str) -> Optional[str]:
        value = self.headers.get(name.lower())
        if value is None or value.strip() == "":
            return None
        return value.strip()


@dataclass
class GatewayResponse:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
