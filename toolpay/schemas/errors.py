"""Error types for tool payments."""

from __future__ import annotations

from typing import Any


class ToolPayError(Exception):
    """Base class for tool payment errors."""

    code = "toolpay_error"

    def __init__(self, message: str, **details: Any):
        """Initialize error.

        Args:
            message: Human readable message.
            **details: Structured context copied onto the error.
        """
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """JSON body used by the gateway for error responses."""
        return {"success": False, "error": self.message, "code": self.code}


# ============================================================================
# Wallet Pool / Funding
# ============================================================================


class WalletPoolBusyError(ToolPayError):
    """Raised when every worker wallet is currently leased."""

    code = "busy"


class FundingFailedError(ToolPayError):
    """Raised when a worker wallet could not be brought above its threshold."""

    code = "funding_failed"


class FundingTimeoutError(FundingFailedError):
    """Raised when the treasury lock could not be acquired in time."""

    code = "funding_timeout"


class FundingIncompleteError(FundingFailedError):
    """Raised when a wallet is still below the gas floor after funding."""

    code = "funding_incomplete"


class TreasuryLowError(FundingFailedError):
    """Raised when the treasury has no headroom above its reserve floor."""

    code = "treasury_low"


# ============================================================================
# Chain
# ============================================================================


class ConfirmationTimeoutError(ToolPayError):
    """Raised when a transaction is not confirmed within the polling budget."""

    code = "confirmation_timeout"

    def __init__(self, tx_hash: str, attempts: int):
        super().__init__(
            f"Transaction {tx_hash} not confirmed after {attempts} attempts",
            tx_hash=tx_hash,
            attempts=attempts,
        )
        self.tx_hash = tx_hash


# ============================================================================
# Gateway
# ============================================================================


class PaymentVerificationError(ToolPayError):
    """Raised when a payment proof does not satisfy the challenge."""

    code = "payment_verification_failed"

    def __init__(self, message: str, reason: str | None = None, **details: Any):
        super().__init__(message, **details)
        self.reason = reason


class ReplayRejectedError(ToolPayError):
    """Raised when a transaction id was already used as payment."""

    code = "replay_rejected"


class ResultExpiredError(ToolPayError):
    """Raised when a resultId is unknown, expired or already claimed."""

    code = "result_expired"


class ToolExecutionError(ToolPayError):
    """Raised when a tool fails before any payment was taken."""

    code = "tool_execution_failed"


class EscrowSettlementError(ToolPayError):
    """Base class for escrow release/refund failures."""

    code = "escrow_failed"

    def __init__(self, message: str, task: Any = None, **details: Any):
        super().__init__(message, **details)
        self.task = task


class EscrowReleaseError(EscrowSettlementError):
    """Raised when forwarding escrowed funds to the provider fails."""

    code = "escrow_release_failed"


class EscrowRefundError(EscrowSettlementError):
    """Raised when returning escrowed funds to the payer fails."""

    code = "escrow_refund_failed"


# ============================================================================
# Client
# ============================================================================


class PaymentPhaseError(ToolPayError):
    """Raised inside the client when a protocol phase fails."""

    code = "phase_failed"

    def __init__(self, phase: Any, message: str, **details: Any):
        super().__init__(message, **details)
        self.phase = phase
