"""Wire types, receipts and errors."""

from .base import ToolPayModel
from .errors import (
    ConfirmationTimeoutError,
    EscrowRefundError,
    EscrowReleaseError,
    EscrowSettlementError,
    FundingFailedError,
    FundingIncompleteError,
    FundingTimeoutError,
    PaymentPhaseError,
    PaymentVerificationError,
    ReplayRejectedError,
    ResultExpiredError,
    ToolExecutionError,
    ToolPayError,
    TreasuryLowError,
    WalletPoolBusyError,
)
from .payments import (
    EscrowOutcome,
    EscrowStatus,
    PaymentChallenge,
    PaymentPayload,
    PaymentReceipt,
    PaymentRequired,
)
from .receipt import (
    PHASE_ORDER,
    InvalidPhaseTransition,
    Phase,
    PhaseRecord,
    PhaseStatus,
    Receipt,
)
from .wallets import PoolSnapshot, WorkerWalletState

__all__ = [
    "ToolPayModel",
    # Payments
    "PaymentChallenge",
    "PaymentRequired",
    "PaymentPayload",
    "PaymentReceipt",
    "EscrowOutcome",
    "EscrowStatus",
    # Receipt
    "Phase",
    "PHASE_ORDER",
    "PhaseStatus",
    "PhaseRecord",
    "Receipt",
    "InvalidPhaseTransition",
    # Wallets
    "WorkerWalletState",
    "PoolSnapshot",
    # Errors
    "ToolPayError",
    "WalletPoolBusyError",
    "FundingFailedError",
    "FundingTimeoutError",
    "FundingIncompleteError",
    "TreasuryLowError",
    "ConfirmationTimeoutError",
    "PaymentVerificationError",
    "ReplayRejectedError",
    "ResultExpiredError",
    "ToolExecutionError",
    "EscrowSettlementError",
    "EscrowReleaseError",
    "EscrowRefundError",
    "PaymentPhaseError",
]
