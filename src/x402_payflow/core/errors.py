"""
Exception hierarchy raised while negotiating an x402 payment.
"""

from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "AuthorizationExpired",
    "InsufficientFunds",
    "InvalidAmount",
    "MalformedChallenge",
    "MissingExchangeRate",
    "NegotiationInProgress",
    "NoAccount",
    "PayloadEncodingError",
    "SettlementRejected",
    "TransportMethodUnsupported",
    "UserRejectedSigning",
    "WalletRpcError",
    "WalletTransportError",
    "WalletUnavailable",
    "X402Error",
]


class X402Error(Exception):
    """Base class for every error raised by the payment flow."""


class MalformedChallenge(X402Error):
    """The 402 response did not describe a usable payment requirement."""


class WalletUnavailable(X402Error):
    """No wallet transport is attached to the signer."""


class NoAccount(X402Error):
    """The wallet transport exposes no account to sign with."""


class UserRejectedSigning(X402Error):
    """The wallet owner declined the signature or transaction prompt."""


class InsufficientFunds(X402Error):
    """The wallet reported that the payer cannot cover the payment."""


class TransportMethodUnsupported(X402Error):
    """None of the signing methods tried is supported by the wallet."""

    def __init__(self, message: str, *, tried: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.tried = tried


class WalletTransportError(X402Error):
    """The wallet transport failed for a reason other than rejection."""


class AuthorizationExpired(X402Error):
    """The signed authorization ran past its validity window before submission."""


class NegotiationInProgress(X402Error):
    """A payment negotiation is already running on this negotiator."""


class MissingExchangeRate(X402Error):
    """A native-token payment was selected but no USD exchange rate is available."""


class InvalidAmount(X402Error, ValueError):
    """A price, rate or amount cannot be converted into asset units."""


class PayloadEncodingError(X402Error, ValueError):
    """A payment payload contains values that are unsafe to serialize."""


class SettlementRejected(X402Error):
    """The server refused the request that carried the payment proof."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        error_code: Optional[str] = None,
        hint: Optional[str] = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.hint = hint
        self.body = body


class WalletRpcError(Exception):
    """
    Raw error reported by a wallet transport.

    ``code`` follows EIP-1193 / JSON-RPC numbering. The signer gateway turns
    these into the typed :class:`X402Error` subclasses above.
    """

    def __init__(self, code: Optional[int], message: str, data: Any = None) -> None:
        super().__init__(message if code is None else f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data
