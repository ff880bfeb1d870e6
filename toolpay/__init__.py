"""x402 tool payments.

Pay-per-call tool access over HTTP 402 with a pool of worker wallets on
the client side and an escrow or pay-to-claim gateway on the server side.

Quick Start:
    ```python
    from toolpay import PaymentClient, TreasuryWallet, WalletPool, WorkerKeystore

    treasury = TreasuryWallet(chain, treasury_account)
    pool = WalletPool(chain, treasury, WorkerKeystore("workers.json"))
    pool.init()

    async with PaymentClient("https://tools.example.com", chain, pool=pool) as client:
        result = await client.call_tool("weather", {"city": "Lisbon"})
    ```
"""

from .cache import PendingResult, ResultCache
from .chain import ChainClient, TransactionInfo, TransferOutput, Web3ChainClient
from .client import PaymentClient, ToolCallResult
from .config import (
    ConfirmationSettings,
    GatewaySettings,
    PoolSettings,
    ToolPaySettings,
    TreasurySettings,
)
from .escrow import EscrowTask, EscrowTxQueue
from .gateway import (
    CallableTool,
    EscrowSettlement,
    HttpProxyTool,
    PayToClaimSettlement,
    ToolGateway,
    ToolOutcome,
    ToolRoute,
    create_app,
)
from .oracle import FixedPriceOracle, PriceOracle, RateSource
from .schemas import (
    ConfirmationTimeoutError,
    EscrowRefundError,
    EscrowReleaseError,
    FundingFailedError,
    FundingIncompleteError,
    FundingTimeoutError,
    PaymentChallenge,
    PaymentPayload,
    PaymentReceipt,
    PaymentRequired,
    PaymentVerificationError,
    Phase,
    PhaseStatus,
    Receipt,
    ReplayRejectedError,
    ResultExpiredError,
    ToolExecutionError,
    ToolPayError,
    TreasuryLowError,
    WalletPoolBusyError,
)
from .wallets import TreasuryWallet, WalletPool, WorkerKeystore, WorkerWallet

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Client side
    "PaymentClient",
    "ToolCallResult",
    "WalletPool",
    "WorkerWallet",
    "WorkerKeystore",
    "TreasuryWallet",
    # Server side
    "ToolGateway",
    "ToolRoute",
    "ToolOutcome",
    "CallableTool",
    "HttpProxyTool",
    "EscrowSettlement",
    "PayToClaimSettlement",
    "create_app",
    "ResultCache",
    "PendingResult",
    "EscrowTxQueue",
    "EscrowTask",
    # Chain / pricing
    "ChainClient",
    "TransactionInfo",
    "TransferOutput",
    "Web3ChainClient",
    "PriceOracle",
    "FixedPriceOracle",
    "RateSource",
    # Config
    "ToolPaySettings",
    "PoolSettings",
    "TreasurySettings",
    "ConfirmationSettings",
    "GatewaySettings",
    # Types
    "PaymentChallenge",
    "PaymentRequired",
    "PaymentPayload",
    "PaymentReceipt",
    "Receipt",
    "Phase",
    "PhaseStatus",
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
    "EscrowReleaseError",
    "EscrowRefundError",
]
