from decimal import Decimal

import pytest
from eth_account import Account

from conftest import PAYER, StubSession, challenge_body, make_response, stablecoin_offer
from x402_payflow import create_negotiator, create_signer, fetch_with_payment
from x402_payflow.core.codec import PAYMENT_HEADER, decode_payment_payload
from x402_payflow.core.config import NegotiatorConfig
from x402_payflow.core.transports import LocalAccountTransport


def test_signer_without_key_is_detached(config):
    assert not create_signer(config).is_attached


def test_signer_from_private_key():
    account = Account.create()
    config = NegotiatorConfig.for_network(
        "avalanche",
        payer_private_key=account.key.hex(),
        payer_address=account.address,
    )
    signer = create_signer(config)
    assert signer.is_attached
    assert signer.resolve_address() == account.address


def test_config_and_parameters_are_exclusive(config):
    with pytest.raises(ValueError):
        create_negotiator(config=config, network="avalanche")


def test_signer_and_transport_are_exclusive(config, signer):
    transport = LocalAccountTransport(Account.create().key)
    with pytest.raises(ValueError):
        create_negotiator(config=config, signer=signer, transport=transport)


def test_negotiator_from_parameters():
    negotiator = create_negotiator(env_file=None, base={}, network="avalanche-fuji", request_timeout=3)
    assert negotiator.config.primary_network.chain_id == 43113
    assert negotiator.config.request_timeout == 3.0


def test_price_endpoint_backs_exchange_rate():
    config = NegotiatorConfig.for_network("avalanche", price_url="https://api.example.com/v1/avax-price")
    session = StubSession(make_response(200, {"price": "35"}))
    negotiator = create_negotiator(config=config, session=session)
    assert negotiator.exchange_rate() == Decimal("35")
    assert session.calls[0]["url"] == "https://api.example.com/v1/avax-price"


def test_explicit_rate_is_not_replaced():
    config = NegotiatorConfig.for_network("avalanche", price_url="https://api.example.com/v1/avax-price")
    negotiator = create_negotiator(config=config, exchange_rate=Decimal("40"))
    assert negotiator.exchange_rate == Decimal("40")


def test_fetch_with_payment(config, signer):
    session = StubSession(
        make_response(402, challenge_body(stablecoin_offer())),
        make_response(200, {"ok": True}),
    )
    negotiator = create_negotiator(config=config, session=session, signer=signer)

    response = fetch_with_payment(
        "https://api.example.com/v1/agent/query",
        "post",
        json={"prompt": "hello"},
        negotiator=negotiator,
    )

    assert response.json() == {"ok": True}
    assert session.calls[1]["method"] == "POST"
    payload = decode_payment_payload(session.calls[1]["headers"][PAYMENT_HEADER])
    assert payload["payload"]["from"] == PAYER


def test_fetch_with_payment_rejects_mixed_arguments(config, signer):
    negotiator = create_negotiator(config=config, signer=signer)
    with pytest.raises(ValueError):
        fetch_with_payment("https://api.example.com", negotiator=negotiator, network="avalanche")
