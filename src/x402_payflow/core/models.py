"""
Value objects exchanged during one x402 negotiation.

Everything here is immutable and lives for a single paid call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import MalformedChallenge

__all__ = [
    "Authorization",
    "Challenge",
    "NativeTransfer",
    "NativeTransferProof",
    "PaymentPayload",
    "PaymentRequirement",
    "Quote",
    "Scheme",
]


class Scheme(str, Enum):
    STABLECOIN_AUTHORIZATION = "x402-eip3009"
    NATIVE_TRANSFER = "x402-native"


def _optional_int(value: Any, field_name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedChallenge(f"'{field_name}' must be an integer, got {value!r}") from exc


def _usd_amount(value: Any, scheme: Scheme) -> Optional[str]:
    if value is None or str(value).strip() == "":
        return None
    text = str(value).strip()
    try:
        finite = Decimal(text).is_finite()
    except InvalidOperation as exc:
        raise MalformedChallenge(f"{scheme.value} requirement price {value!r} is not a number") from exc
    if not finite:
        raise MalformedChallenge(f"{scheme.value} requirement price {value!r} is not a number")
    return text


def _atomic_amount(value: Any, scheme: Scheme) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    text = str(value).strip()
    if not (text.isascii() and text.isdigit()) or int(text) <= 0:
        raise MalformedChallenge(
            f"{scheme.value} requirement maxAmountRequired {value!r} is not a positive integer"
        )
    return int(text)


@dataclass(frozen=True)
class PaymentRequirement:
    """One entry of the ``accepts`` list of a 402 challenge."""

    scheme: Scheme
    network: str
    pay_to: str
    amount: Optional[str] = None
    atomic_amount: Optional[int] = None
    asset: Optional[str] = None
    chain_id: Optional[int] = None
    max_timeout_seconds: int = 600
    resource: Optional[str] = None
    description: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def price_usd(self) -> Optional[Decimal]:
        return None if self.amount is None else Decimal(self.amount)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["PaymentRequirement"]:
        """
        Parse one ``accepts`` entry.

        Returns ``None`` for schemes this client cannot pay with and raises
        :class:`MalformedChallenge` when a supported entry is incomplete.

        ``priceUSD`` (else ``price``) is a USD decimal; the native entry's
        ``price`` is already converted to tokens, so ``priceUSD`` wins.
        ``maxAmountRequired`` is already in the asset's smallest unit and is
        paid as-is.
        """
        if not isinstance(data, Mapping):
            raise MalformedChallenge(f"Payment requirement must be an object, got {data!r}")

        raw_scheme = data.get("scheme")
        try:
            scheme = Scheme(raw_scheme)
        except ValueError:
            logging.debug("Ignoring unsupported payment scheme %r", raw_scheme)
            return None

        amount = _usd_amount(data.get("priceUSD") or data.get("price"), scheme)
        atomic_amount = _atomic_amount(data.get("maxAmountRequired"), scheme)
        if amount is None and atomic_amount is None:
            raise MalformedChallenge(f"{scheme.value} requirement has no price")

        pay_to = data.get("payTo")
        if not pay_to:
            raise MalformedChallenge(f"{scheme.value} requirement has no payTo address")

        network = data.get("network")
        if not network:
            raise MalformedChallenge(f"{scheme.value} requirement has no network")

        timeout = _optional_int(data.get("maxTimeoutSeconds"), "maxTimeoutSeconds")

        return cls(
            scheme=scheme,
            network=str(network),
            pay_to=str(pay_to),
            amount=amount,
            atomic_amount=atomic_amount,
            asset=data.get("asset") or data.get("token"),
            chain_id=_optional_int(data.get("chainId"), "chainId"),
            max_timeout_seconds=600 if timeout is None else timeout,
            resource=data.get("resource"),
            description=data.get("description"),
            raw=dict(data),
        )


@dataclass(frozen=True)
class Challenge:
    """Parsed body of an HTTP 402 response."""

    x402_version: Optional[int]
    accepts: Tuple[PaymentRequirement, ...]
    error: Optional[str] = None
    hint: Optional[str] = None

    @classmethod
    def from_body(cls, body: Any) -> "Challenge":
        """
        Parse a 402 body.

        Entries that are incomplete or use unknown schemes are dropped with a
        log line; only an absent or empty ``accepts`` list is fatal.
        """
        if not isinstance(body, Mapping):
            raise MalformedChallenge("402 response body is not a JSON object")

        entries = body.get("accepts")
        if not isinstance(entries, list) or not entries:
            raise MalformedChallenge("402 response lists no accepted payment methods")

        accepts = []
        for index, entry in enumerate(entries):
            try:
                requirement = PaymentRequirement.from_dict(entry)
            except MalformedChallenge as exc:
                logging.warning("Skipping accepts[%s]: %s", index, exc)
                continue
            if requirement is not None:
                accepts.append(requirement)

        version = _optional_int(body.get("x402Version"), "x402Version")
        return cls(
            x402_version=version,
            accepts=tuple(accepts),
            error=body.get("error"),
            hint=body.get("hint"),
        )


@dataclass(frozen=True)
class Authorization:
    """Unsigned EIP-3009 ``TransferWithAuthorization`` message."""

    from_address: str
    to: str
    value: int
    valid_after: int
    valid_before: int
    nonce: str

    def as_message(self) -> Dict[str, str]:
        """The typed-data message with every integer rendered as a string."""
        return {
            "from": self.from_address,
            "to": self.to,
            "value": str(self.value),
            "validAfter": str(self.valid_after),
            "validBefore": str(self.valid_before),
            "nonce": self.nonce,
        }

    def is_valid_at(self, timestamp: int) -> bool:
        return self.valid_after <= timestamp <= self.valid_before


@dataclass(frozen=True)
class NativeTransfer:
    """Unsigned descriptor for a direct native-token payment."""

    to: str
    amount: str
    value: int
    chain_id: int
    price_usd: Optional[str] = None


@dataclass(frozen=True)
class NativeTransferProof:
    tx_hash: str
    from_address: str
    to: str
    amount: str

    def as_payload(self) -> Dict[str, str]:
        return {
            "txHash": self.tx_hash,
            "from": self.from_address,
            "to": self.to,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class PaymentPayload:
    """Versioned envelope carried in the ``X-PAYMENT`` header."""

    x402_version: int
    scheme: Scheme
    network: str
    chain_id: int
    payload: Mapping[str, Any]
    token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {
            "x402Version": self.x402_version,
            "scheme": self.scheme.value,
            "network": self.network,
            "chainId": self.chain_id,
        }
        if self.token is not None:
            envelope["token"] = self.token
        envelope["payload"] = dict(self.payload)
        return envelope


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return None if value is None else int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Quote:
    """
    Advisory price estimate returned by the quote endpoint.

    The server re-checks the amount on submission, so nothing here is
    authoritative.
    """

    price_usd: Decimal
    native_price: Optional[Decimal] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    recommended_native: Optional[Decimal] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "Quote":
        pricing = payload.get("pricing") or {}
        tokens = payload.get("tokens") or {}
        payment = payload.get("payment") or {}

        price_usd = _decimal_or_none(pricing.get("totalCostUSD", payload.get("priceUSD")))
        if price_usd is None:
            raise ValueError(f"Quote response carries no USD price: {payload!r}")

        return cls(
            price_usd=price_usd,
            native_price=_decimal_or_none(pricing.get("avaxPrice", pricing.get("nativePrice"))),
            input_tokens=_int_or_none(tokens.get("input")),
            output_tokens=_int_or_none(tokens.get("estimatedOutput", tokens.get("output"))),
            total_tokens=_int_or_none(tokens.get("total")),
            recommended_native=_decimal_or_none(
                payment.get("recommendedAVAX", payment.get("recommendedNative"))
            ),
            raw=dict(payload),
        )
