"""
The x402 challenge/response flow.

:class:`ChallengeNegotiator` sends a request, and when the server answers
``402 Payment Required`` it picks one of the offered payment methods, has the
wallet authorize it, and repeats the request with an ``X-PAYMENT`` header.

Progress is tracked as an explicit state machine::

    idle -> challenged -> authorizing -> signing -> submitting -> settled
                                                               \\-> failed

Any step may move to ``failed``. Observers are called on every transition so
a UI can follow along without owning any protocol state.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import requests

from .authorization import (
    VALIDITY_SECONDS,
    build_authorization,
    build_native_transfer,
    build_transfer_typed_data,
)
from .codec import PAYMENT_HEADER, encode_payment_payload
from .config import NegotiatorConfig, NetworkConfig
from .errors import (
    AuthorizationExpired,
    MalformedChallenge,
    MissingExchangeRate,
    NegotiationInProgress,
    SettlementRejected,
)
from .models import (
    Authorization,
    Challenge,
    NativeTransfer,
    NativeTransferProof,
    PaymentPayload,
    PaymentRequirement,
    Scheme,
)
from .signer import SignerGateway

__all__ = [
    "ChallengeNegotiator",
    "NegotiationAttempt",
    "NegotiationState",
    "RequestSpec",
]


class NegotiationState(str, Enum):
    IDLE = "idle"
    CHALLENGED = "challenged"
    AUTHORIZING = "authorizing"
    SIGNING = "signing"
    SUBMITTING = "submitting"
    SETTLED = "settled"
    FAILED = "failed"


_TRANSITIONS = {
    NegotiationState.IDLE: {NegotiationState.CHALLENGED, NegotiationState.FAILED},
    NegotiationState.CHALLENGED: {NegotiationState.AUTHORIZING, NegotiationState.FAILED},
    NegotiationState.AUTHORIZING: {NegotiationState.SIGNING, NegotiationState.FAILED},
    NegotiationState.SIGNING: {NegotiationState.SUBMITTING, NegotiationState.FAILED},
    NegotiationState.SUBMITTING: {NegotiationState.SETTLED, NegotiationState.FAILED},
    NegotiationState.SETTLED: set(),
    NegotiationState.FAILED: set(),
}


@dataclass(frozen=True)
class RequestSpec:
    """Everything needed to (re)issue the paid request."""

    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Optional[Mapping[str, Any]] = None
    json: Any = None
    data: Any = None

    def with_header(self, name: str, value: str) -> "RequestSpec":
        headers = dict(self.headers)
        headers[name] = value
        return replace(self, headers=headers)


@dataclass
class NegotiationAttempt:
    """Record of a single call to :meth:`ChallengeNegotiator.execute`."""

    request: RequestSpec
    state: NegotiationState = NegotiationState.IDLE
    history: List[NegotiationState] = field(default_factory=lambda: [NegotiationState.IDLE])
    challenge: Optional[Challenge] = None
    requirement: Optional[PaymentRequirement] = None
    authorization: Optional[Authorization] = None
    transfer: Optional[NativeTransfer] = None
    proof: Optional[NativeTransferProof] = None
    payload: Optional[PaymentPayload] = None
    response: Optional[requests.Response] = None
    error: Optional[BaseException] = None

    @property
    def finished(self) -> bool:
        return self.state in (NegotiationState.SETTLED, NegotiationState.FAILED)


Observer = Callable[[NegotiationState, NegotiationState, NegotiationAttempt], None]
ExchangeRate = Union[Decimal, str, Callable[[], Optional[Decimal]], None]


def _rejection_from(response: requests.Response) -> SettlementRejected:
    try:
        body: Any = response.json()
    except ValueError:
        body = response.text

    message = f"Server rejected the payment with HTTP {response.status_code}"
    error_code = hint = None
    if isinstance(body, Mapping):
        if body.get("error"):
            message = str(body["error"])
        error_code = body.get("errorCode")
        hint = body.get("hint")
    return SettlementRejected(
        message,
        status_code=response.status_code,
        error_code=error_code,
        hint=hint,
        body=body,
    )


def _describe_amount(requirement: PaymentRequirement) -> str:
    if requirement.atomic_amount is not None:
        return f"{requirement.atomic_amount} base units"
    return f"${requirement.amount}"


class ChallengeNegotiator:
    """
    Pay-per-call HTTP client for x402 protected endpoints.

    One negotiation runs at a time; calling :meth:`execute` while another
    call is in flight raises :class:`NegotiationInProgress`.
    """

    def __init__(
        self,
        config: NegotiatorConfig,
        signer: SignerGateway,
        *,
        session: Optional[requests.Session] = None,
        get_headers: Optional[Callable[[], Mapping[str, str]]] = None,
        exchange_rate: ExchangeRate = None,
        observers: Iterable[Observer] = (),
    ) -> None:
        self.config = config
        self.signer = signer
        self.session = session or requests.Session()
        self.get_headers = get_headers
        self.exchange_rate = exchange_rate
        self._observers: List[Observer] = list(observers)
        self._guard = threading.Lock()
        self._last_attempt: Optional[NegotiationAttempt] = None

    @property
    def busy(self) -> bool:
        return self._guard.locked()

    @property
    def last_attempt(self) -> Optional[NegotiationAttempt]:
        return self._last_attempt

    def add_observer(self, observer: Observer) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> None:
        self._observers.remove(observer)

    def execute(
        self,
        request: RequestSpec,
        *,
        scheme: Optional[Scheme] = None,
        raise_on_rejection: bool = False,
    ) -> requests.Response:
        """
        Send ``request``, paying for it if the server asks.

        A non-402 first response is returned untouched. Otherwise the response
        to the paid retry is returned as-is, whatever its status, unless
        ``raise_on_rejection`` is set, in which case a failed retry raises
        :class:`SettlementRejected`. Nothing is retried automatically.
        """
        if not self._guard.acquire(blocking=False):
            raise NegotiationInProgress("A payment negotiation is already in progress")
        try:
            attempt = NegotiationAttempt(request=request)
            self._last_attempt = attempt
            return self._negotiate(attempt, scheme, raise_on_rejection)
        finally:
            self._guard.release()

    def _negotiate(
        self,
        attempt: NegotiationAttempt,
        scheme: Optional[Scheme],
        raise_on_rejection: bool,
    ) -> requests.Response:
        try:
            response = self._send(attempt.request)
        except Exception as exc:
            self._fail(attempt, exc)
            raise

        if response.status_code != 402:
            logging.info("%s %s needs no payment (HTTP %s)", attempt.request.method, attempt.request.url, response.status_code)
            attempt.response = response
            return response

        try:
            self._transition(attempt, NegotiationState.CHALLENGED)
            attempt.challenge = self.parse_challenge(response)
            requirement, network = self.select_requirement(attempt.challenge, scheme)
            attempt.requirement = requirement
            logging.info(
                "Paying %s via %s on %s to %s (server timeout %ss, authorization valid %ss)",
                _describe_amount(requirement),
                requirement.scheme.value,
                network.name,
                requirement.pay_to,
                requirement.max_timeout_seconds,
                VALIDITY_SECONDS,
            )

            if requirement.scheme is Scheme.STABLECOIN_AUTHORIZATION:
                payload = self._pay_with_authorization(attempt, requirement, network)
            else:
                payload = self._pay_with_transfer(attempt, requirement, network)
            attempt.payload = payload

            self._transition(attempt, NegotiationState.SUBMITTING)
            header = encode_payment_payload(payload)
            paid_response = self._send(attempt.request.with_header(PAYMENT_HEADER, header))
        except Exception as exc:
            self._fail(attempt, exc)
            raise

        attempt.response = paid_response
        if paid_response.ok:
            logging.info("Payment accepted for %s (HTTP %s)", attempt.request.url, paid_response.status_code)
            self._transition(attempt, NegotiationState.SETTLED)
            return paid_response

        rejection = _rejection_from(paid_response)
        logging.warning("Payment rejected by %s: %s", attempt.request.url, rejection)
        self._fail(attempt, rejection)
        if raise_on_rejection:
            raise rejection
        return paid_response

    def parse_challenge(self, response: requests.Response) -> Challenge:
        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedChallenge(f"402 response body is not JSON: {response.text[:200]}") from exc
        return Challenge.from_body(body)

    def select_requirement(
        self,
        challenge: Challenge,
        scheme: Optional[Scheme] = None,
    ) -> Tuple[PaymentRequirement, NetworkConfig]:
        """
        Pick the payment method to use, deterministically.

        Entries on unconfigured networks are dropped, as are USD-priced native
        transfers when no exchange rate source exists. Of the rest, the first entry of
        the preferred scheme wins (``scheme`` or ``config.preferred_scheme``);
        without a preference, or if it is not offered, the first entry does.
        """
        candidates: List[Tuple[PaymentRequirement, NetworkConfig]] = []
        for requirement in challenge.accepts:
            network = self.config.network_for(requirement.network, requirement.chain_id)
            if network is None:
                logging.info("Skipping %s offer on unconfigured network %s", requirement.scheme.value, requirement.network)
                continue
            if (
                requirement.scheme is Scheme.NATIVE_TRANSFER
                and requirement.atomic_amount is None
                and not self._has_exchange_rate()
            ):
                logging.info("Skipping native offer on %s: no exchange rate source", requirement.network)
                continue
            candidates.append((requirement, network))

        if not candidates:
            raise MalformedChallenge("No accepted payment method can be paid with this configuration")

        preferred = scheme or self.config.preferred_scheme
        selected = candidates[0]
        if preferred is not None:
            selected = next((item for item in candidates if item[0].scheme == preferred), selected)

        requirement = selected[0]
        merchant = self.config.merchant_address
        if merchant is not None and requirement.pay_to.lower() != merchant.lower():
            raise MalformedChallenge(
                f"Challenge asks to pay {requirement.pay_to}, expected merchant {merchant}"
            )
        return selected

    def _pay_with_authorization(
        self,
        attempt: NegotiationAttempt,
        requirement: PaymentRequirement,
        network: NetworkConfig,
    ) -> PaymentPayload:
        self._transition(attempt, NegotiationState.AUTHORIZING)
        payer = self.signer.resolve_address()
        authorization = build_authorization(requirement, payer, decimals=network.token_decimals)
        attempt.authorization = authorization
        typed_data = build_transfer_typed_data(authorization, network, requirement.asset)

        self._transition(attempt, NegotiationState.SIGNING)
        signature = self.signer.sign_typed_data(
            typed_data["domain"],
            typed_data["types"],
            typed_data["primaryType"],
            typed_data["message"],
        )
        # the wallet prompt has no timeout; never submit a proof that already lapsed
        if not authorization.is_valid_at(int(time.time())):
            raise AuthorizationExpired("Authorization expired while waiting for the wallet signature")

        body: Dict[str, str] = dict(authorization.as_message())
        body["signature"] = signature
        return PaymentPayload(
            x402_version=self._protocol_version(attempt),
            scheme=Scheme.STABLECOIN_AUTHORIZATION,
            network=requirement.network,
            chain_id=network.chain_id,
            token=typed_data["domain"]["verifyingContract"],
            payload=body,
        )

    def _pay_with_transfer(
        self,
        attempt: NegotiationAttempt,
        requirement: PaymentRequirement,
        network: NetworkConfig,
    ) -> PaymentPayload:
        self._transition(attempt, NegotiationState.AUTHORIZING)
        rate = None
        if requirement.atomic_amount is None:
            rate = self._resolve_exchange_rate()
        payer = self.signer.resolve_address()
        transfer = build_native_transfer(requirement, rate, network)
        attempt.transfer = transfer
        logging.info("Native payment of %s %s (rate %s USD)", transfer.amount, network.native_symbol, rate)

        self._transition(attempt, NegotiationState.SIGNING)
        tx_hash = self.signer.send_transaction(transfer.to, transfer.value)
        proof = NativeTransferProof(
            tx_hash=tx_hash,
            from_address=payer,
            to=transfer.to,
            amount=transfer.price_usd or transfer.amount,
        )
        attempt.proof = proof
        return PaymentPayload(
            x402_version=self._protocol_version(attempt),
            scheme=Scheme.NATIVE_TRANSFER,
            network=requirement.network,
            chain_id=network.chain_id,
            payload=proof.as_payload(),
        )

    def _protocol_version(self, attempt: NegotiationAttempt) -> int:
        version = attempt.challenge.x402_version if attempt.challenge else None
        return self.config.x402_version if version is None else version

    def _has_exchange_rate(self) -> bool:
        return self.exchange_rate is not None or self.config.native_usd_rate is not None

    def _resolve_exchange_rate(self) -> Decimal:
        source = self.exchange_rate
        rate = source() if callable(source) else source
        if rate is None:
            rate = self.config.native_usd_rate
        if rate is None:
            raise MissingExchangeRate("No USD exchange rate available for the native token")
        return Decimal(str(rate))

    def _send(self, request: RequestSpec) -> requests.Response:
        headers: Dict[str, str] = {}
        if self.get_headers is not None:
            headers.update(self.get_headers())
        headers.update(request.headers)
        return self.session.request(
            request.method,
            request.url,
            headers=headers,
            params=request.params,
            json=request.json,
            data=request.data,
            timeout=self.config.request_timeout,
        )

    def _fail(self, attempt: NegotiationAttempt, exc: BaseException) -> None:
        attempt.error = exc
        self._transition(attempt, NegotiationState.FAILED)

    def _transition(self, attempt: NegotiationAttempt, state: NegotiationState) -> None:
        previous = attempt.state
        if state not in _TRANSITIONS[previous]:
            raise RuntimeError(f"Invalid negotiation transition {previous.value} -> {state.value}")
        attempt.state = state
        attempt.history.append(state)
        logging.debug("x402 negotiation %s -> %s", previous.value, state.value)
        for observer in list(self._observers):
            observer(previous, state, attempt)
