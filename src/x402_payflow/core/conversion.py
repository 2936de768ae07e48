"""
Conversion of USD quotes into the smallest unit of the payment asset.

No I/O happens here: the native-token exchange rate is fetched by the caller.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Optional

from .errors import InvalidAmount, MissingExchangeRate
from .models import Scheme

__all__ = [
    "NATIVE_DECIMALS",
    "STABLECOIN_DECIMALS",
    "convert_price",
    "native_amount",
    "to_decimal",
    "token_amount_to_base_units",
    "usd_to_stablecoin_units",
]

STABLECOIN_DECIMALS = 6
NATIVE_DECIMALS = 18

# enough digits for 18 decimals on amounts well beyond any realistic price
_PRECISION = 60


def to_decimal(value: Decimal | str | int, field_name: str = "amount") -> Decimal:
    """Parse ``value`` as a finite, strictly positive decimal."""
    if isinstance(value, float):
        raise InvalidAmount(f"{field_name} must be a decimal string, not a float")
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise InvalidAmount(f"{field_name} {value!r} is not a valid decimal number") from exc
    if not parsed.is_finite() or parsed <= 0:
        raise InvalidAmount(f"{field_name} must be greater than zero, got {value!r}")
    return parsed


def usd_to_stablecoin_units(price: Decimal | str, decimals: int = STABLECOIN_DECIMALS) -> int:
    """
    ``ceil(price * 10**decimals)``.

    Rounding always goes up so the payer never sends less than the quote.
    """
    amount = to_decimal(price, "price")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = amount.scaleb(decimals)
        return int(scaled.to_integral_value(rounding=ROUND_CEILING))


def native_amount(
    price: Decimal | str,
    exchange_rate: Decimal | str,
    decimals: int = NATIVE_DECIMALS,
) -> str:
    """
    Token amount worth ``price`` USD at ``exchange_rate`` USD per token.

    The result is truncated to ``decimals`` places and rendered without an
    exponent.
    """
    amount = to_decimal(price, "price")
    rate = to_decimal(exchange_rate, "exchange rate")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        tokens = (amount / rate).quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)
    if tokens <= 0:
        raise InvalidAmount(
            f"${amount} at {rate} USD per token is below the asset's smallest unit"
        )
    return format(tokens, "f")


def token_amount_to_base_units(amount: Decimal | str, decimals: int) -> int:
    """Convert a decimal token amount into integer base units, truncating dust."""
    value = to_decimal(amount)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return int(value.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def convert_price(
    price: Decimal | str,
    scheme: Scheme,
    exchange_rate: Optional[Decimal | str] = None,
    *,
    decimals: Optional[int] = None,
) -> str:
    """
    Convert a USD price for ``scheme``.

    Stablecoin authorizations return the integer amount of smallest units as
    a string; native transfers return the decimal token amount.
    """
    if scheme is Scheme.STABLECOIN_AUTHORIZATION:
        places = STABLECOIN_DECIMALS if decimals is None else decimals
        return str(usd_to_stablecoin_units(price, places))

    if exchange_rate is None:
        raise MissingExchangeRate("A USD exchange rate is required for native-token payments")
    places = NATIVE_DECIMALS if decimals is None else decimals
    return native_amount(price, exchange_rate, places)
