"""EVM chain client for native-coin transfers (e.g. SmartBCH)."""

from __future__ import annotations

import logging
from typing import Any

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from ..constants import DEFAULT_EXPLORER_TX_URL, DEFAULT_UNIT, NATIVE_TRANSFER_GAS
from .base import TransactionInfo, TransferOutput

logger = logging.getLogger(__name__)


class Web3ChainClient:
    """ChainClient backed by an async JSON-RPC endpoint.

    Amounts are wei. The network identifier defaults to the CAIP-2 form
    `eip155:<chain_id>`.
    """

    decimals = 18

    def __init__(
        self,
        rpc_url: str | None = None,
        chain_id: int = 10001,
        network: str | None = None,
        unit: str = DEFAULT_UNIT,
        explorer_tx_url: str = DEFAULT_EXPLORER_TX_URL,
        w3: AsyncWeb3 | None = None,
    ):
        """Create client.

        Args:
            rpc_url: JSON-RPC URL. Ignored when `w3` is given.
            chain_id: EIP-155 chain id used when signing.
            network: Network identifier; defaults to eip155:<chain_id>.
            unit: Display symbol of the native coin.
            explorer_tx_url: Template with a `{tx_hash}` placeholder.
            w3: Optional preconfigured AsyncWeb3 instance.
        """
        if w3 is None:
            if not rpc_url:
                raise ValueError("rpc_url is required when no AsyncWeb3 instance is given")
            w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._w3 = w3
        self.chain_id = chain_id
        self.network = network or f"eip155:{chain_id}"
        self.unit = unit
        self._explorer_tx_url = explorer_tx_url

    async def get_balance(self, address: str) -> int:
        return int(await self._w3.eth.get_balance(Web3.to_checksum_address(address)))

    async def send_transaction(self, account: LocalAccount, to: str, amount: int) -> str:
        """Build, sign, and send a native transfer.

        Uses EIP-1559 fee parameters when the chain reports a base fee,
        otherwise a legacy gas price.

        Returns:
            Transaction hash as 0x-prefixed hex.
        """
        tx: dict[str, Any] = {
            "to": Web3.to_checksum_address(to),
            "value": int(amount),
            "nonce": await self._w3.eth.get_transaction_count(account.address, "pending"),
            "chainId": self.chain_id,
            "gas": NATIVE_TRANSFER_GAS,
        }

        tx.update(await self._fee_params())

        signed = account.sign_transaction(tx)
        tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hex = Web3.to_hex(tx_hash)
        logger.info(f"Broadcast {amount} wei from {account.address} to {to}: {tx_hex}")
        return tx_hex

    async def estimate_transfer_fee(self) -> int:
        """Upper bound on the fee of a native transfer: gas limit times fee cap."""
        fees = await self._fee_params()
        return NATIVE_TRANSFER_GAS * fees.get("maxFeePerGas", fees.get("gasPrice", 0))

    async def _fee_params(self) -> dict[str, int]:
        latest = await self._w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is not None:
            max_priority = Web3.to_wei(1.5, "gwei")
            return {
                "maxFeePerGas": base_fee * 2 + max_priority,
                "maxPriorityFeePerGas": max_priority,
            }
        return {"gasPrice": await self._w3.eth.gas_price}

    async def get_transaction(self, tx_hash: str) -> TransactionInfo | None:
        try:
            tx = await self._w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None

        try:
            receipt = await self._w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            receipt = None

        outputs = []
        if tx.get("to"):
            outputs.append(TransferOutput(address=tx["to"], amount=int(tx["value"])))

        status = receipt.get("status") if receipt is not None else None
        return TransactionInfo(
            tx_hash=tx_hash,
            sender=tx["from"],
            outputs=outputs,
            confirmed=status == 1,
            failed=status == 0,
        )

    def is_valid_address(self, address: str) -> bool:
        return bool(address) and Web3.is_address(address)

    def explorer_url(self, tx_hash: str) -> str:
        return self._explorer_tx_url.format(tx_hash=tx_hash)
