"""
HTTP helpers for the pricing collaborators: the quote and native price endpoints.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import requests

from .conversion import convert_price, to_decimal
from .models import Quote, Scheme

__all__ = [
    "fetch_native_price",
    "fetch_quote",
    "quote_amount",
]


def _read_json(response: requests.Response, url: str) -> Dict[str, Any]:
    if response.status_code >= 400:
        raise RuntimeError(f"Pricing endpoint responded with {response.status_code}: {response.text}")
    try:
        return response.json()
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Failed to parse JSON from pricing endpoint at {url}: {response.text}") from exc


def fetch_quote(
    session: requests.Session,
    url: str,
    body: Mapping[str, Any],
    *,
    headers: Optional[Mapping[str, str]] = None,
    timeout: float = 30.0,
) -> Quote:
    """POST ``body`` to the quote endpoint and parse the estimate."""
    logging.info("Requesting price quote from %s", url)
    response = session.post(url, json=dict(body), headers=dict(headers or {}), timeout=timeout)
    return Quote.from_response(_read_json(response, url))


def fetch_native_price(
    session: requests.Session,
    url: str,
    *,
    headers: Optional[Mapping[str, str]] = None,
    timeout: float = 30.0,
) -> Decimal:
    """GET the current USD price of the native token from a ``{"price": ...}`` endpoint."""
    response = session.get(url, headers=dict(headers or {}), timeout=timeout)
    payload = _read_json(response, url)
    price = to_decimal(str(payload.get("price")), "native price")
    logging.info("Native token price from %s: %s USD", url, price)
    return price


def quote_amount(
    quote: Quote,
    scheme: Scheme,
    *,
    exchange_rate: Optional[Decimal | str] = None,
) -> str:
    """
    Amount to pay for ``quote`` under ``scheme``.

    Native payments fall back to the price the quote was computed with when no
    fresher ``exchange_rate`` is supplied.
    """
    rate = exchange_rate if exchange_rate is not None else quote.native_price
    return convert_price(quote.price_usd, scheme, rate)
