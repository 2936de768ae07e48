"""
Wallet transports understood by :class:`x402_payflow.core.signer.SignerGateway`.

A transport is anything with an EIP-1193 style ``request(method, params)``
method that raises :class:`WalletRpcError` for wallet-side errors.
"""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

import requests
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import to_checksum_address, to_hex
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import Web3RPCError

from .errors import WalletRpcError, WalletTransportError

__all__ = [
    "JsonRpcTransport",
    "LocalAccountTransport",
    "WalletTransport",
]

UNAUTHORIZED = 4100
UNSUPPORTED_METHOD = 4200
TRANSFER_GAS = 21000


class WalletTransport(Protocol):
    def request(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        ...


class JsonRpcTransport:
    """
    Forward wallet calls to a remote signer that speaks JSON-RPC over HTTP.

    The remote side holds the keys; this class only relays EIP-1193 requests
    and hands back their results.
    """

    def __init__(
        self,
        url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout
        self._ids = itertools.count(1)

    def request(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": list(params or []),
        }
        logging.debug("JSON-RPC %s -> %s", method, self.url)
        try:
            response = self.session.post(self.url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise WalletTransportError(f"RPC call {method} to {self.url} failed: {exc}") from exc

        if response.status_code >= 400:
            raise WalletTransportError(
                f"RPC endpoint responded with {response.status_code}: {response.text}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise WalletTransportError(
                f"Failed to parse JSON-RPC response from {self.url}: {response.text}"
            ) from exc
        if not isinstance(payload, Mapping):
            raise WalletTransportError(f"Expected a single JSON-RPC response object, got {payload!r}")

        error = payload.get("error")
        if error is None:
            return payload.get("result")
        if not isinstance(error, Mapping):
            raise WalletTransportError(f"RPC call {method} failed: {error!r}")
        raise WalletRpcError(error.get("code"), error.get("message", ""), error.get("data"))


def _quantity(value: Any) -> int:
    if isinstance(value, int):
        return value
    text = str(value).strip()
    return int(text, 16) if text.startswith(("0x", "0X")) else int(text)


def _coerce_value(types: Mapping[str, Any], type_name: str, value: Any) -> Any:
    if type_name.endswith("]"):
        inner = type_name[: type_name.rindex("[")]
        return [_coerce_value(types, inner, item) for item in value]
    if type_name in types:
        return _coerce_struct(types, type_name, value)
    if isinstance(value, str) and type_name.startswith(("uint", "int")):
        return _quantity(value)
    if isinstance(value, str) and type_name.startswith("bytes"):
        return HexBytes(value)
    return value


def _coerce_struct(types: Mapping[str, Any], type_name: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    coerced = dict(data)
    for field in types[type_name]:
        name = field["name"]
        if name in coerced:
            coerced[name] = _coerce_value(types, field["type"], coerced[name])
    return coerced


def _coerce_typed_data(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn the JSON form of a typed-data document back into native values."""
    types = document["types"]
    domain = dict(document.get("domain") or {})
    if "EIP712Domain" in types:
        domain = _coerce_struct(types, "EIP712Domain", domain)
    elif isinstance(domain.get("chainId"), str):
        domain["chainId"] = _quantity(domain["chainId"])
    return {
        "types": types,
        "primaryType": document["primaryType"],
        "domain": domain,
        "message": _coerce_struct(types, document["primaryType"], document["message"]),
    }


def _node_call(action: str, call: Callable[[], Any]) -> Any:
    """Run one node call through web3, mapping its failures onto wallet errors."""
    try:
        return call()
    except Web3RPCError as exc:
        response = exc.rpc_response if isinstance(exc.rpc_response, Mapping) else {}
        error = response.get("error")
        if isinstance(error, Mapping):
            raise WalletRpcError(error.get("code"), error.get("message") or str(exc), error.get("data")) from exc
        raise WalletRpcError(None, str(exc)) from exc
    except requests.RequestException as exc:
        raise WalletTransportError(f"Node request failed while {action}: {exc}") from exc


class LocalAccountTransport:
    """
    Wallet backed by a private key held in process.

    Typed data is signed locally with ``eth_account``. Transactions are signed
    locally and broadcast through ``web3``; without a node only signing works.
    """

    def __init__(
        self,
        private_key: str,
        *,
        web3: Optional[Web3] = None,
        chain_id: Optional[int] = None,
    ) -> None:
        self._account = Account.from_key(private_key)
        self.web3 = web3
        self.chain_id = chain_id
        self._handlers = {
            "eth_accounts": self._accounts,
            "eth_requestAccounts": self._accounts,
            "eth_signTypedData_v4": self._sign_typed_data,
            "eth_signTypedData": self._sign_typed_data,
            "eth_sendTransaction": self._send_transaction,
        }

    @property
    def address(self) -> str:
        return self._account.address

    def request(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        handler = self._handlers.get(method)
        if handler is None:
            raise WalletRpcError(UNSUPPORTED_METHOD, f"{method} is not supported by a local account")
        return handler(list(params or []))

    def _accounts(self, params: List[Any]) -> List[str]:
        return [self.address]

    def _ensure_own(self, address: Any) -> None:
        if not isinstance(address, str) or address.lower() != self.address.lower():
            raise WalletRpcError(UNAUTHORIZED, f"Account {address} is not managed by this wallet")

    def _sign_typed_data(self, params: List[Any]) -> str:
        if len(params) != 2 or isinstance(params[0], list):
            # v1 eth_signTypedData takes [typedDataArray, address]
            raise WalletRpcError(UNSUPPORTED_METHOD, "Only EIP-712 v3/v4 documents can be signed")
        address, document = params
        self._ensure_own(address)
        if isinstance(document, str):
            document = json.loads(document)
        signable = encode_typed_data(full_message=_coerce_typed_data(document))
        return to_hex(self._account.sign_message(signable).signature)

    def _send_transaction(self, params: List[Any]) -> str:
        if not params or not isinstance(params[0], Mapping):
            raise WalletRpcError(-32602, "eth_sendTransaction expects a transaction object")
        tx = params[0]
        self._ensure_own(tx.get("from", self.address))
        if self.web3 is None:
            raise WalletRpcError(UNSUPPORTED_METHOD, "Broadcasting requires a node connection")

        eth = self.web3.eth
        to = to_checksum_address(tx["to"])
        value = _quantity(tx.get("value", 0))
        data = tx.get("data") or "0x"

        chain_id = self.chain_id
        if chain_id is None:
            chain_id = _node_call("reading the chain id", lambda: eth.chain_id)
        nonce = _node_call(
            "reading the account nonce",
            lambda: eth.get_transaction_count(self.address, "pending"),
        )
        if "gasPrice" in tx:
            gas_price = _quantity(tx["gasPrice"])
        else:
            gas_price = _node_call("reading the gas price", lambda: eth.gas_price)
        if "gas" in tx:
            gas = _quantity(tx["gas"])
        elif data == "0x":
            gas = TRANSFER_GAS
        else:
            estimate = {"from": self.address, "to": to, "value": value, "data": data}
            gas = _node_call("estimating gas", lambda: eth.estimate_gas(estimate))

        signed = self._account.sign_transaction(
            {
                "to": to,
                "value": value,
                "data": data,
                "nonce": nonce,
                "gas": gas,
                "gasPrice": gas_price,
                "chainId": chain_id,
            }
        )
        logging.info("Broadcasting native transfer of %s wei to %s", value, to)
        tx_hash = _node_call(
            "broadcasting the transaction",
            lambda: eth.send_raw_transaction(signed.raw_transaction),
        )
        return to_hex(tx_hash)
