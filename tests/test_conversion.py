import random
from decimal import Decimal

import pytest

from x402_payflow.core.conversion import (
    convert_price,
    native_amount,
    token_amount_to_base_units,
    usd_to_stablecoin_units,
)
from x402_payflow.core.errors import InvalidAmount, MissingExchangeRate
from x402_payflow.core.models import Scheme


@pytest.mark.parametrize(
    "price, expected",
    [
        ("0.05", 50000),
        ("1", 1000000),
        ("0.000001", 1),
        ("0.0000001", 1),
        ("0.0000015", 2),
        ("12.3456789", 12345679),
        ("1E-7", 1),
    ],
)
def test_stablecoin_units_round_up(price, expected):
    assert usd_to_stablecoin_units(price) == expected


def test_stablecoin_conversion_never_underpays():
    rng = random.Random(402)
    for _ in range(2000):
        price = Decimal(rng.randrange(1, 10**12)).scaleb(-rng.randrange(0, 12))
        units = int(convert_price(str(price), Scheme.STABLECOIN_AUTHORIZATION))
        assert Decimal(units) / Decimal(10**6) >= price
        assert Decimal(units - 1) / Decimal(10**6) < price


def test_convert_price_stablecoin_returns_integer_string():
    assert convert_price("0.05", Scheme.STABLECOIN_AUTHORIZATION) == "50000"


def test_native_amount_divides_by_rate_and_truncates():
    amount = native_amount("0.05", "35")
    assert amount == "0.001428571428571428"
    assert token_amount_to_base_units(amount, 18) == 1428571428571428


def test_native_amount_has_no_exponent():
    assert native_amount("1", "1000000000") == "0.000000001000000000"


def test_convert_price_native_requires_rate():
    with pytest.raises(MissingExchangeRate):
        convert_price("0.05", Scheme.NATIVE_TRANSFER)
    assert convert_price("0.05", Scheme.NATIVE_TRANSFER, Decimal("25")) == "0.002000000000000000"


def test_native_amount_below_smallest_unit_is_rejected():
    with pytest.raises(InvalidAmount):
        native_amount("0.000000000000000001", "1000", decimals=18)


@pytest.mark.parametrize("price", ["0", "-1", "abc", "", "NaN", "Infinity"])
def test_invalid_prices_are_rejected(price):
    with pytest.raises(InvalidAmount):
        usd_to_stablecoin_units(price)


def test_floats_are_rejected():
    with pytest.raises(InvalidAmount):
        usd_to_stablecoin_units(0.05)


def test_invalid_amount_is_a_value_error():
    with pytest.raises(ValueError):
        native_amount("0.05", "0")
