"""EIP-191 signatures for payment mandates and server receipts."""

from __future__ import annotations

import json
from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from .schemas import PaymentChallenge, PaymentPayload, PaymentReceipt


def canonical_json(data: dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def _sign_text(account: LocalAccount, text: str) -> str:
    signed = account.sign_message(encode_defunct(text=text))
    signature = signed.signature.hex()
    if not signature.startswith("0x"):
        signature = f"0x{signature}"
    return signature


def _mandate(
    tool_name: str, payer: str, pay_to: str, amount: str, network: str, result_id: str | None
) -> dict[str, Any]:
    mandate = {
        "tool": tool_name,
        "payer": payer,
        "payTo": pay_to,
        "amount": amount,
        "network": network,
    }
    if result_id:
        mandate["resultId"] = result_id
    return mandate


def build_mandate(tool_name: str, challenge: PaymentChallenge, payer: str) -> dict[str, Any]:
    """Statement a payer signs to authorize paying `challenge`."""
    return _mandate(
        tool_name,
        payer,
        challenge.pay_to,
        str(challenge.satoshis),
        challenge.network,
        challenge.result_id,
    )


def payload_mandate(tool_name: str, payload: PaymentPayload) -> dict[str, Any]:
    """The mandate a payment header claims to have been signed over."""
    return _mandate(
        tool_name, payload.from_, payload.to, payload.amount, payload.network, payload.result_id
    )


def sign_mandate(account: LocalAccount, tool_name: str, challenge: PaymentChallenge) -> str:
    """Sign the payment mandate for `challenge` with the paying wallet."""
    mandate = build_mandate(tool_name, challenge, account.address)
    return _sign_text(account, canonical_json(mandate))


def recover_mandate_signer(
    signature: str, tool_name: str, challenge: PaymentChallenge, payer: str
) -> str:
    mandate = build_mandate(tool_name, challenge, payer)
    return Account.recover_message(encode_defunct(text=canonical_json(mandate)), signature=signature)


def recover_payload_signer(tool_name: str, payload: PaymentPayload) -> str | None:
    """Address that signed the mandate in `payload`, or None if it carries none."""
    if not payload.mandate_signature:
        return None
    message = encode_defunct(text=canonical_json(payload_mandate(tool_name, payload)))
    return Account.recover_message(message, signature=payload.mandate_signature)


def sign_receipt(receipt: PaymentReceipt, account: LocalAccount) -> PaymentReceipt:
    """Return a copy of `receipt` carrying the signer's address and signature."""
    signature = _sign_text(account, canonical_json(receipt.signing_fields()))
    return receipt.model_copy(update={"signer": account.address, "signature": signature})


def recover_receipt_signer(receipt: PaymentReceipt) -> str | None:
    """Address that signed `receipt`, or None if it is unsigned."""
    if not receipt.signature:
        return None
    message = encode_defunct(text=canonical_json(receipt.signing_fields()))
    return Account.recover_message(message, signature=receipt.signature)
