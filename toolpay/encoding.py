"""Header encoding helpers."""

import base64
import json
from typing import Union

from .schemas import PaymentPayload, PaymentReceipt


def safe_base64_encode(data: Union[str, bytes]) -> str:
    """Safely encode string or bytes to base64 string.

    Args:
        data: String or bytes to encode

    Returns:
        Base64 encoded string
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(data).decode("utf-8")


def safe_base64_decode(data: str) -> str:
    """Safely decode base64 string to bytes and then to utf-8 string.

    Args:
        data: Base64 encoded string

    Returns:
        Decoded utf-8 string
    """
    return base64.b64decode(data).decode("utf-8")


def encode_payment_header(payload: PaymentPayload) -> str:
    """Encode a payment payload as an `X-Payment` header value."""
    return safe_base64_encode(payload.model_dump_json(by_alias=True, exclude_none=True))


def decode_payment_header(header: str) -> PaymentPayload:
    """Decode an `X-Payment` header value.

    Raises:
        ValueError: If the header is not base64 JSON or fails validation.
    """
    try:
        json_str = safe_base64_decode(header)
    except (ValueError, UnicodeDecodeError) as e:
        raise ValueError(f"Invalid payment header encoding: {e}")
    return PaymentPayload.model_validate_json(json_str)


def encode_receipt_header(receipt: PaymentReceipt) -> str:
    """Encode a receipt as a compact JSON `X-Payment-Receipt` header value."""
    return json.dumps(receipt.to_wire(), separators=(",", ":"))


def decode_receipt_header(header: str) -> PaymentReceipt:
    """Decode an `X-Payment-Receipt` header value."""
    return PaymentReceipt.model_validate_json(header)
