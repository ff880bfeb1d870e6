"""Worker wallet pool, treasury and keystore."""

from .keystore import WorkerKeystore
from .pool import PoolObserver, WalletPool, WorkerWallet
from .treasury import FundingTransfer, TreasuryWallet

__all__ = [
    "WorkerKeystore",
    "WalletPool",
    "WorkerWallet",
    "PoolObserver",
    "TreasuryWallet",
    "FundingTransfer",
]
