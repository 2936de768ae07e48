"""
Builders for the scheme-specific, unsigned payment authorizations.
"""

from __future__ import annotations

import secrets
import time
from decimal import Decimal
from typing import Any, Dict, Optional

from .config import NetworkConfig
from .conversion import native_amount, token_amount_to_base_units, usd_to_stablecoin_units
from .errors import MissingExchangeRate
from .models import Authorization, NativeTransfer, PaymentRequirement

__all__ = [
    "CLOCK_SKEW_SECONDS",
    "NONCE_BYTES",
    "TRANSFER_WITH_AUTHORIZATION_TYPES",
    "VALIDITY_SECONDS",
    "build_authorization",
    "build_native_transfer",
    "build_transfer_typed_data",
    "generate_nonce",
]

NONCE_BYTES = 32
CLOCK_SKEW_SECONDS = 60
VALIDITY_SECONDS = 3600

EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}


def generate_nonce() -> str:
    """Fresh 32-byte nonce from the OS CSPRNG, ``0x``-prefixed hex."""
    return "0x" + secrets.token_bytes(NONCE_BYTES).hex()


def _authorization_value(requirement: PaymentRequirement, decimals: int) -> int:
    if requirement.atomic_amount is not None:
        return requirement.atomic_amount
    return usd_to_stablecoin_units(requirement.amount, decimals)


def build_authorization(
    requirement: PaymentRequirement,
    payer: str,
    *,
    decimals: int = 6,
    now: Optional[int] = None,
    nonce: Optional[bytes] = None,
) -> Authorization:
    """
    Construct the EIP-3009 ``TransferWithAuthorization`` message for ``requirement``.

    ``value`` is the requirement's atomic amount when it carries one, else the
    USD price rounded up to the asset's smallest unit. The window opens one
    minute in the past to tolerate clock skew and closes one hour from now.
    """
    now = int(time.time()) if now is None else now
    if nonce is not None and len(nonce) != NONCE_BYTES:
        raise ValueError(f"Nonce must be {NONCE_BYTES} bytes, got {len(nonce)}")

    return Authorization(
        from_address=payer,
        to=requirement.pay_to,
        value=_authorization_value(requirement, decimals),
        valid_after=now - CLOCK_SKEW_SECONDS,
        valid_before=now + VALIDITY_SECONDS,
        nonce=generate_nonce() if nonce is None else "0x" + nonce.hex(),
    )


def build_transfer_typed_data(
    authorization: Authorization,
    network: NetworkConfig,
    asset: Optional[str] = None,
) -> Dict[str, Any]:
    """
    The full EIP-712 document a wallet signs for ``authorization``.

    ``asset`` overrides the network's configured stablecoin contract when the
    challenge names one.
    """
    domain = {
        "name": network.token_name,
        "version": network.token_version,
        "chainId": network.chain_id,
        "verifyingContract": asset or network.asset_address,
    }
    types = {"EIP712Domain": list(EIP712_DOMAIN_FIELDS)}
    types.update({name: list(fields) for name, fields in TRANSFER_WITH_AUTHORIZATION_TYPES.items()})
    return {
        "types": types,
        "primaryType": "TransferWithAuthorization",
        "domain": domain,
        "message": authorization.as_message(),
    }


def build_native_transfer(
    requirement: PaymentRequirement,
    exchange_rate: Optional[Decimal | str],
    network: NetworkConfig,
) -> NativeTransfer:
    """
    Descriptor for paying ``requirement`` with the chain's native token.

    There is nothing to sign here: broadcasting the transfer is the proof.
    A requirement that already names its amount in wei needs no exchange rate.
    """
    decimals = network.native_decimals
    if requirement.atomic_amount is not None:
        value = requirement.atomic_amount
        amount = format(Decimal(value).scaleb(-decimals), "f")
    else:
        if exchange_rate is None:
            raise MissingExchangeRate("No USD exchange rate available for the native token")
        amount = native_amount(requirement.amount, exchange_rate, decimals)
        value = token_amount_to_base_units(amount, decimals)
    return NativeTransfer(
        to=requirement.pay_to,
        amount=amount,
        value=value,
        chain_id=network.chain_id,
        price_usd=requirement.amount,
    )
