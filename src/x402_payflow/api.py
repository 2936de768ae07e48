"""
Public, high-level helpers for paying x402 protected endpoints.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, Optional

import requests
from web3 import Web3

from .core.config import NegotiatorConfig, NegotiatorParameters, load_negotiator_config
from .core.models import Scheme
from .core.negotiator import ChallengeNegotiator, ExchangeRate, Observer, RequestSpec
from .core.quotes import fetch_native_price
from .core.signer import SignerGateway
from .core.transports import LocalAccountTransport, WalletTransport

__all__ = [
    "create_negotiator",
    "create_signer",
    "fetch_with_payment",
]


def create_signer(
    config: NegotiatorConfig,
    *,
    transport: Optional[WalletTransport] = None,
    session: Optional[requests.Session] = None,
) -> SignerGateway:
    """
    Build a :class:`SignerGateway` for ``config``.

    Without an explicit ``transport`` a local-key wallet is created from
    ``X402_PAYER_PRIVATE_KEY``, broadcasting through the network's RPC URL.
    If neither exists the gateway starts detached.
    """
    if transport is None and config.payer_private_key:
        network = config.primary_network
        web3 = None
        if network.rpc_url:
            provider = Web3.HTTPProvider(
                network.rpc_url,
                request_kwargs={"timeout": config.request_timeout},
                session=session,
            )
            web3 = Web3(provider)
        transport = LocalAccountTransport(config.payer_private_key, web3=web3, chain_id=network.chain_id)
    return SignerGateway(transport, address=config.payer_address if transport is not None else None)


def create_negotiator(
    *,
    config: Optional[NegotiatorConfig] = None,
    session: Optional[requests.Session] = None,
    transport: Optional[WalletTransport] = None,
    signer: Optional[SignerGateway] = None,
    get_headers: Optional[Callable[[], Mapping[str, str]]] = None,
    exchange_rate: ExchangeRate = None,
    observers: Iterable[Observer] = (),
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[NegotiatorParameters] = None,
    **explicit: Any,
) -> ChallengeNegotiator:
    """
    Construct a :class:`ChallengeNegotiator`.

    Callers can either supply a ready-made :class:`NegotiatorConfig` or let the
    helper assemble one from environment data and keyword parameters.
    """
    if config is not None:
        extras = (overrides, base, parameters, *explicit.values())
        if any(item is not None and item != {} for item in extras):
            raise ValueError(
                "Provide either a pre-built NegotiatorConfig or individual parameters, not both."
            )
        cfg = config
    else:
        cfg = load_negotiator_config(
            env_file=env_file,
            overrides=overrides,
            base=base,
            parameters=parameters,
            **explicit,
        )

    session = session or requests.Session()
    if signer is not None and transport is not None:
        raise ValueError("Provide either a signer or a transport, not both.")
    if signer is None:
        signer = create_signer(cfg, transport=transport, session=session)

    if exchange_rate is None and cfg.native_usd_rate is None and cfg.price_url:
        price_url = cfg.price_url

        def _fetch_rate():
            return fetch_native_price(session, price_url, timeout=cfg.request_timeout)

        exchange_rate = _fetch_rate

    return ChallengeNegotiator(
        cfg,
        signer,
        session=session,
        get_headers=get_headers,
        exchange_rate=exchange_rate,
        observers=observers,
    )


def fetch_with_payment(
    url: str,
    method: str = "GET",
    *,
    json: Any = None,
    data: Any = None,
    headers: Optional[Mapping[str, str]] = None,
    params: Optional[Mapping[str, Any]] = None,
    scheme: Optional[Scheme] = None,
    raise_on_rejection: bool = False,
    negotiator: Optional[ChallengeNegotiator] = None,
    **negotiator_kwargs: Any,
) -> requests.Response:
    """
    One-shot helper: send a request and pay for it if the server asks.

    ``negotiator_kwargs`` are forwarded to :func:`create_negotiator` when no
    ``negotiator`` is given.
    """
    if negotiator is None:
        negotiator = create_negotiator(**negotiator_kwargs)
    elif negotiator_kwargs:
        raise ValueError("Provide either a negotiator or negotiator parameters, not both.")

    request = RequestSpec(
        url=url,
        method=method.upper(),
        headers=dict(headers or {}),
        params=params,
        json=json,
        data=data,
    )
    return negotiator.execute(request, scheme=scheme, raise_on_rejection=raise_on_rejection)
