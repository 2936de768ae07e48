import json
from typing import Any, Callable, Dict, List, Optional

import pytest
import requests

from x402_payflow.core.config import NegotiatorConfig
from x402_payflow.core.errors import WalletRpcError
from x402_payflow.core.signer import SignerGateway

PAYER = "0x1111111111111111111111111111111111111111"
MERCHANT = "0x209F0baCA0c23edc57881B26B68FC4148123B039"
USDC = "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E"
SIGNATURE = "0x" + "ab" * 65
TX_HASH = "0x" + "cd" * 32


def make_response(status: int, body: Any = None, *, text: Optional[str] = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    if text is not None:
        response._content = text.encode("utf-8")
    else:
        response._content = json.dumps(body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    response.encoding = "utf-8"
    return response


class StubSession:
    """Replays queued responses and records every request made."""

    def __init__(self, *responses: requests.Response) -> None:
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request {method} {url}")
        return self.responses.pop(0)

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("POST", url, **kwargs)


class FakeWallet:
    """
    In-memory EIP-1193 wallet.

    ``handlers`` overrides individual methods; a handler that is an exception
    instance is raised instead of called.
    """

    def __init__(self, accounts=(PAYER,), **handlers: Any) -> None:
        self.calls: List[tuple] = []
        self.handlers: Dict[str, Any] = {
            "eth_accounts": lambda params: list(accounts),
            "eth_signTypedData_v4": lambda params: SIGNATURE,
            "eth_signTypedData": lambda params: SIGNATURE,
            "eth_sendTransaction": lambda params: TX_HASH,
        }
        self.handlers.update(handlers)

    def request(self, method: str, params=None) -> Any:
        params = list(params or [])
        self.calls.append((method, params))
        handler = self.handlers.get(method)
        if handler is None:
            raise WalletRpcError(4200, f"{method} not supported")
        if isinstance(handler, BaseException):
            raise handler
        return handler(params)

    def methods(self) -> List[str]:
        return [method for method, _ in self.calls]


def challenge_body(*accepts: Dict[str, Any], version: int = 2) -> Dict[str, Any]:
    return {"x402Version": version, "accepts": list(accepts), "error": "Payment required"}


def stablecoin_offer(**overrides: Any) -> Dict[str, Any]:
    offer = {
        "scheme": "x402-eip3009",
        "network": "avalanche",
        "chainId": 43114,
        "price": "0.05",
        "payTo": MERCHANT,
        "asset": USDC,
        "maxTimeoutSeconds": 600,
    }
    offer.update(overrides)
    return offer


def native_offer(**overrides: Any) -> Dict[str, Any]:
    offer = {
        "scheme": "x402-native",
        "network": "avalanche",
        "chainId": 43114,
        "price": "0.05",
        "payTo": MERCHANT,
        "maxTimeoutSeconds": 600,
    }
    offer.update(overrides)
    return offer


@pytest.fixture
def config() -> NegotiatorConfig:
    return NegotiatorConfig.for_network("avalanche")


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def signer(wallet: FakeWallet) -> SignerGateway:
    return SignerGateway(wallet)


@pytest.fixture
def recorder() -> Callable:
    transitions: List[tuple] = []

    def observe(previous, current, attempt) -> None:
        transitions.append((previous.value, current.value))

    observe.transitions = transitions
    return observe
