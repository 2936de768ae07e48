"""
Public facade for the x402 pay-per-call client.

The most useful pieces are re-exported here so integrators can
``from x402_payflow import ...`` without navigating the package.
"""

from .api import create_negotiator, create_signer, fetch_with_payment
from .core import (
    ChallengeNegotiator,
    ConfigError,
    InsufficientFunds,
    JsonRpcTransport,
    LocalAccountTransport,
    MalformedChallenge,
    NegotiationInProgress,
    NegotiationState,
    NegotiatorConfig,
    NegotiatorParameters,
    NetworkConfig,
    NoAccount,
    PaymentPayload,
    PaymentRequirement,
    Quote,
    RequestSpec,
    Scheme,
    SettlementRejected,
    SignerGateway,
    TransportMethodUnsupported,
    UserRejectedSigning,
    WalletUnavailable,
    X402Error,
    convert_price,
    decode_payment_payload,
    encode_payment_payload,
    fetch_native_price,
    fetch_quote,
    load_negotiator_config,
)

__all__ = (
    "ChallengeNegotiator",
    "ConfigError",
    "InsufficientFunds",
    "JsonRpcTransport",
    "LocalAccountTransport",
    "MalformedChallenge",
    "NegotiationInProgress",
    "NegotiationState",
    "NegotiatorConfig",
    "NegotiatorParameters",
    "NetworkConfig",
    "NoAccount",
    "PaymentPayload",
    "PaymentRequirement",
    "Quote",
    "RequestSpec",
    "Scheme",
    "SettlementRejected",
    "SignerGateway",
    "TransportMethodUnsupported",
    "UserRejectedSigning",
    "WalletUnavailable",
    "X402Error",
    "convert_price",
    "create_negotiator",
    "create_signer",
    "decode_payment_payload",
    "encode_payment_payload",
    "fetch_native_price",
    "fetch_quote",
    "fetch_with_payment",
    "load_negotiator_config",
)
