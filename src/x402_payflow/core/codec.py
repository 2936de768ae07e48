"""
Encoding of payment payloads for the ``X-PAYMENT`` header.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, Mapping

from .errors import PayloadEncodingError
from .models import PaymentPayload

__all__ = [
    "MAX_SAFE_INTEGER",
    "PAYMENT_HEADER",
    "decode_payment_payload",
    "encode_payment_payload",
]

PAYMENT_HEADER = "X-PAYMENT"

# largest integer a JavaScript JSON parser reads back exactly
MAX_SAFE_INTEGER = 2**53 - 1


def _check_values(value: Any, path: str) -> None:
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return
    if isinstance(value, float):
        raise PayloadEncodingError(f"{path} is a float; amounts must be strings")
    if isinstance(value, int):
        if abs(value) > MAX_SAFE_INTEGER:
            raise PayloadEncodingError(f"{path} exceeds the JSON-safe integer range; stringify it")
        return
    if isinstance(value, Mapping):
        for key, item in value.items():
            _check_values(item, f"{path}.{key}")
        return
    if isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _check_values(item, f"{path}[{index}]")
        return
    raise PayloadEncodingError(f"{path} has unsupported type {type(value).__name__}")


def encode_payment_payload(payload: PaymentPayload | Mapping[str, Any]) -> str:
    """Serialize ``payload`` to compact JSON and base64 encode it."""
    envelope = payload.to_dict() if isinstance(payload, PaymentPayload) else dict(payload)
    _check_values(envelope, "payload")
    document = json.dumps(envelope, separators=(",", ":"), sort_keys=True)
    return base64.b64encode(document.encode("utf-8")).decode("ascii")


def decode_payment_payload(header: str) -> Dict[str, Any]:
    """Inverse of :func:`encode_payment_payload`, as a server would apply it."""
    try:
        document = base64.b64decode(header.strip(), validate=True).decode("utf-8")
        decoded = json.loads(document)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PayloadEncodingError(f"Not a base64 JSON payment payload: {exc}") from exc
    if not isinstance(decoded, dict):
        raise PayloadEncodingError("Payment payload must decode to a JSON object")
    return decoded
