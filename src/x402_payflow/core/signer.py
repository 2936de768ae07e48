"""
Gateway between the negotiator and whatever wallet is attached.

Wallet backends disagree on which signing methods they implement, so the
gateway walks an ordered list of strategies. A strategy either produces a
value or explicitly reports that its method is unsupported; only the latter
moves on to the next strategy. Every other wallet error is converted into
a typed :class:`~x402_payflow.core.errors.X402Error` at this boundary.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import (
    InsufficientFunds,
    NoAccount,
    TransportMethodUnsupported,
    UserRejectedSigning,
    WalletRpcError,
    WalletTransportError,
    WalletUnavailable,
    X402Error,
)
from .transports import WalletTransport

__all__ = [
    "DEFAULT_SIGNING_STRATEGIES",
    "DEFAULT_TRANSACTION_STRATEGIES",
    "LegacyTypedDataStrategy",
    "SendTransactionStrategy",
    "SignerGateway",
    "StrategyResult",
    "TypedDataV4Strategy",
    "WalletStrategy",
    "classify_wallet_error",
]

USER_REJECTED = 4001
UNAUTHORIZED = 4100
UNSUPPORTED_CODES = frozenset({4200, -32601})
DISCONNECTED_CODES = frozenset({4900, 4901})


def classify_wallet_error(exc: WalletRpcError) -> X402Error:
    """Map a raw wallet error onto the typed error taxonomy."""
    if exc.code == USER_REJECTED:
        return UserRejectedSigning(exc.message or "User rejected the request")
    if exc.code == UNAUTHORIZED:
        return NoAccount(exc.message or "Wallet account is not authorized")
    if exc.code in DISCONNECTED_CODES:
        return WalletUnavailable(exc.message or "Wallet is disconnected")
    # nodes report this as a generic -32000 server error
    if "insufficient funds" in (exc.message or "").lower():
        return InsufficientFunds(exc.message)
    if exc.code in UNSUPPORTED_CODES:
        return TransportMethodUnsupported(exc.message)
    return WalletTransportError(str(exc))


@dataclass(frozen=True)
class StrategyResult:
    value: Optional[str] = None
    unsupported: bool = False
    reason: Optional[str] = None

    @classmethod
    def success(cls, value: str) -> "StrategyResult":
        return cls(value=value)

    @classmethod
    def unsupported_method(cls, reason: str) -> "StrategyResult":
        return cls(unsupported=True, reason=reason)


class WalletStrategy:
    """One named way of asking the wallet for a signature or transaction."""

    name = "base"
    method = ""

    def build_params(self, address: str, document: Mapping[str, Any]) -> List[Any]:
        raise NotImplementedError

    def run(self, transport: WalletTransport, address: str, document: Mapping[str, Any]) -> StrategyResult:
        try:
            result = transport.request(self.method, self.build_params(address, document))
        except WalletRpcError as exc:
            if exc.code in UNSUPPORTED_CODES:
                return StrategyResult.unsupported_method(str(exc))
            raise classify_wallet_error(exc) from exc

        if not isinstance(result, str) or not result:
            raise WalletTransportError(f"{self.method} returned an unexpected result: {result!r}")
        return StrategyResult.success(result)


class TypedDataV4Strategy(WalletStrategy):
    name = "typed-data-v4"
    method = "eth_signTypedData_v4"

    def build_params(self, address: str, document: Mapping[str, Any]) -> List[Any]:
        return [address, json.dumps(document)]


class LegacyTypedDataStrategy(WalletStrategy):
    """Older wallets only expose ``eth_signTypedData`` and take the document as an object."""

    name = "typed-data-legacy"
    method = "eth_signTypedData"

    def build_params(self, address: str, document: Mapping[str, Any]) -> List[Any]:
        return [address, dict(document)]


class SendTransactionStrategy(WalletStrategy):
    name = "send-transaction"
    method = "eth_sendTransaction"

    def build_params(self, address: str, document: Mapping[str, Any]) -> List[Any]:
        return [dict(document)]


DEFAULT_SIGNING_STRATEGIES = (TypedDataV4Strategy(), LegacyTypedDataStrategy())
DEFAULT_TRANSACTION_STRATEGIES = (SendTransactionStrategy(),)


def _jsonable(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Mapping):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _domain_fields(domain: Mapping[str, Any]) -> List[Dict[str, str]]:
    known = (
        ("name", "string"),
        ("version", "string"),
        ("chainId", "uint256"),
        ("verifyingContract", "address"),
        ("salt", "bytes32"),
    )
    return [{"name": name, "type": kind} for name, kind in known if name in domain]


class SignerGateway:
    """
    Ask the attached wallet to sign typed data or send a transaction.

    Only one wallet call runs at a time per gateway; most wallets queue
    prompts anyway and a second prompt would confuse the user.
    """

    def __init__(
        self,
        transport: Optional[WalletTransport] = None,
        *,
        address: Optional[str] = None,
        signing_strategies: Sequence[WalletStrategy] = DEFAULT_SIGNING_STRATEGIES,
        transaction_strategies: Sequence[WalletStrategy] = DEFAULT_TRANSACTION_STRATEGIES,
    ) -> None:
        self._transport = transport
        self._address = address
        self.signing_strategies = tuple(signing_strategies)
        self.transaction_strategies = tuple(transaction_strategies)
        self._lock = threading.Lock()

    @property
    def is_attached(self) -> bool:
        return self._transport is not None

    def attach(self, transport: WalletTransport, *, address: Optional[str] = None) -> None:
        self._transport = transport
        self._address = address

    def detach(self) -> None:
        self._transport = None
        self._address = None

    def _require_transport(self) -> WalletTransport:
        if self._transport is None:
            raise WalletUnavailable("No wallet is connected")
        return self._transport

    def resolve_address(self) -> str:
        """The signing account: the known address, else the wallet's first account."""
        transport = self._require_transport()
        if self._address:
            return self._address

        try:
            accounts = transport.request("eth_accounts", [])
        except WalletRpcError as exc:
            raise classify_wallet_error(exc) from exc
        if not accounts:
            raise NoAccount("Wallet exposes no accounts")
        self._address = accounts[0]
        return self._address

    def sign_typed_data(
        self,
        domain: Mapping[str, Any],
        types: Mapping[str, Any],
        primary_type: str,
        message: Mapping[str, Any],
    ) -> str:
        """Return the signature over an EIP-712 document."""
        all_types = dict(types)
        all_types.setdefault("EIP712Domain", _domain_fields(domain))
        document = {
            "types": all_types,
            "primaryType": primary_type,
            "domain": {
                key: ("0x" + bytes(value).hex() if isinstance(value, (bytes, bytearray)) else value)
                for key, value in domain.items()
            },
            "message": _jsonable(message),
        }
        with self._lock:
            transport = self._require_transport()
            address = self.resolve_address()
            logging.info("Requesting %s signature from %s", primary_type, address)
            return self._run(self.signing_strategies, transport, address, document, "typed-data signing")

    def send_transaction(self, to: str, value: int, data: Optional[str] = None) -> str:
        """Ask the wallet to broadcast a transfer and return the transaction hash."""
        with self._lock:
            transport = self._require_transport()
            address = self.resolve_address()
            tx: Dict[str, Any] = {"from": address, "to": to, "value": hex(int(value))}
            if data:
                tx["data"] = data
            logging.info("Requesting transaction of %s wei from %s to %s", value, address, to)
            return self._run(self.transaction_strategies, transport, address, tx, "sending a transaction")

    def _run(
        self,
        strategies: Sequence[WalletStrategy],
        transport: WalletTransport,
        address: str,
        document: Mapping[str, Any],
        action: str,
    ) -> str:
        tried: List[str] = []
        for strategy in strategies:
            result = strategy.run(transport, address, document)
            if not result.unsupported:
                return result.value
            logging.info("Wallet does not support %s (%s)", strategy.method, result.reason)
            tried.append(strategy.method)
        raise TransportMethodUnsupported(
            f"Wallet supports none of {', '.join(tried) or 'no methods'} for {action}",
            tried=tuple(tried),
        )
