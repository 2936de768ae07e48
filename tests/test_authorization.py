import time
from decimal import Decimal

import pytest

from conftest import MERCHANT, PAYER, USDC, native_offer, stablecoin_offer
from x402_payflow.core.authorization import (
    CLOCK_SKEW_SECONDS,
    VALIDITY_SECONDS,
    build_authorization,
    build_native_transfer,
    build_transfer_typed_data,
    generate_nonce,
)
from x402_payflow.core.config import KNOWN_NETWORKS
from x402_payflow.core.errors import MalformedChallenge, MissingExchangeRate
from x402_payflow.core.models import PaymentRequirement


def _requirement(**overrides):
    return PaymentRequirement.from_dict(stablecoin_offer(**overrides))


def test_nonce_is_32_random_bytes():
    nonce = generate_nonce()
    assert nonce.startswith("0x")
    assert len(bytes.fromhex(nonce[2:])) == 32


def test_nonces_do_not_collide():
    draws = {generate_nonce() for _ in range(10_000)}
    assert len(draws) == 10_000


def test_validity_window_brackets_now():
    before = int(time.time())
    authorization = build_authorization(_requirement(), PAYER)
    after = int(time.time())

    assert authorization.valid_after < before <= after < authorization.valid_before
    assert authorization.valid_before - authorization.valid_after == 3660
    assert CLOCK_SKEW_SECONDS + VALIDITY_SECONDS == 3660


def test_every_authorization_gets_a_fresh_nonce():
    requirement = _requirement()
    first = build_authorization(requirement, PAYER)
    second = build_authorization(requirement, PAYER)
    assert first.nonce != second.nonce


def test_authorization_fields():
    authorization = build_authorization(_requirement(), PAYER, now=1_700_000_000, nonce=b"\x01" * 32)

    assert authorization.from_address == PAYER
    assert authorization.to == MERCHANT
    assert authorization.value == 50000
    assert authorization.valid_after == 1_700_000_000 - 60
    assert authorization.valid_before == 1_700_000_000 + 3600
    assert authorization.nonce == "0x" + "01" * 32
    assert authorization.as_message() == {
        "from": PAYER,
        "to": MERCHANT,
        "value": "50000",
        "validAfter": "1699999940",
        "validBefore": "1700003600",
        "nonce": "0x" + "01" * 32,
    }


def test_authorization_rejects_short_nonce():
    with pytest.raises(ValueError):
        build_authorization(_requirement(), PAYER, nonce=b"\x01" * 16)


def test_typed_data_uses_usdc_domain():
    authorization = build_authorization(_requirement(), PAYER)
    typed_data = build_transfer_typed_data(authorization, KNOWN_NETWORKS["avalanche"], USDC)

    assert typed_data["primaryType"] == "TransferWithAuthorization"
    assert typed_data["domain"] == {
        "name": "USD Coin",
        "version": "2",
        "chainId": 43114,
        "verifyingContract": USDC,
    }
    fields = [item["name"] for item in typed_data["types"]["TransferWithAuthorization"]]
    assert fields == ["from", "to", "value", "validAfter", "validBefore", "nonce"]
    assert typed_data["message"]["value"] == "50000"


def test_typed_data_defaults_to_network_asset():
    network = KNOWN_NETWORKS["avalanche-fuji"]
    authorization = build_authorization(_requirement(), PAYER)
    typed_data = build_transfer_typed_data(authorization, network)
    assert typed_data["domain"]["verifyingContract"] == network.asset_address
    assert typed_data["domain"]["chainId"] == 43113


def test_native_transfer_descriptor():
    requirement = PaymentRequirement.from_dict(native_offer())
    transfer = build_native_transfer(requirement, Decimal("35"), KNOWN_NETWORKS["avalanche"])

    assert transfer.to == MERCHANT
    assert transfer.amount == "0.001428571428571428"
    assert transfer.value == 1428571428571428
    assert transfer.chain_id == 43114
    assert transfer.price_usd == "0.05"


def test_authorization_uses_atomic_amount_as_is():
    offer = stablecoin_offer(maxAmountRequired="50000")
    del offer["price"]
    requirement = PaymentRequirement.from_dict(offer)

    assert requirement.amount is None
    assert requirement.atomic_amount == 50000
    assert build_authorization(requirement, PAYER).value == 50000


@pytest.mark.parametrize("raw", ["0.05", "-5", "0", "5e4", "NaN"])
def test_invalid_atomic_amount_is_malformed(raw):
    with pytest.raises(MalformedChallenge):
        PaymentRequirement.from_dict(stablecoin_offer(maxAmountRequired=raw))


def test_native_transfer_from_atomic_amount_needs_no_rate():
    offer = native_offer(maxAmountRequired="1428571428571428")
    del offer["price"]
    transfer = build_native_transfer(
        PaymentRequirement.from_dict(offer), None, KNOWN_NETWORKS["avalanche"]
    )

    assert transfer.value == 1428571428571428
    assert transfer.amount == "0.001428571428571428"
    assert transfer.price_usd is None


def test_native_transfer_from_usd_price_requires_rate():
    with pytest.raises(MissingExchangeRate):
        build_native_transfer(
            PaymentRequirement.from_dict(native_offer()), None, KNOWN_NETWORKS["avalanche"]
        )
