"""Ledger access."""

from .base import (
    ChainClient,
    TransactionInfo,
    TransferOutput,
    lookup_transaction,
    wait_for_confirmation,
)
from .evm import Web3ChainClient

__all__ = [
    "ChainClient",
    "TransactionInfo",
    "TransferOutput",
    "Web3ChainClient",
    "lookup_transaction",
    "wait_for_confirmation",
]
