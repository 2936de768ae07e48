"""
Core primitives that implement the x402 negotiation.
"""

from .authorization import (
    build_authorization,
    build_native_transfer,
    build_transfer_typed_data,
    generate_nonce,
)
from .codec import PAYMENT_HEADER, decode_payment_payload, encode_payment_payload
from .config import (
    KNOWN_NETWORKS,
    ConfigError,
    NegotiatorConfig,
    NegotiatorParameters,
    NetworkConfig,
    load_negotiator_config,
)
from .conversion import (
    convert_price,
    native_amount,
    token_amount_to_base_units,
    usd_to_stablecoin_units,
)
from .environment import ClientEnvironment, build_environment, load_env_file
from .errors import (
    AuthorizationExpired,
    InsufficientFunds,
    InvalidAmount,
    MalformedChallenge,
    MissingExchangeRate,
    NegotiationInProgress,
    NoAccount,
    PayloadEncodingError,
    SettlementRejected,
    TransportMethodUnsupported,
    UserRejectedSigning,
    WalletRpcError,
    WalletTransportError,
    WalletUnavailable,
    X402Error,
)
from .models import (
    Authorization,
    Challenge,
    NativeTransfer,
    NativeTransferProof,
    PaymentPayload,
    PaymentRequirement,
    Quote,
    Scheme,
)
from .negotiator import ChallengeNegotiator, NegotiationAttempt, NegotiationState, RequestSpec
from .quotes import fetch_native_price, fetch_quote, quote_amount
from .signer import SignerGateway, StrategyResult, WalletStrategy, classify_wallet_error
from .transports import JsonRpcTransport, LocalAccountTransport, WalletTransport

__all__ = [
    "AuthorizationExpired",
    "Authorization",
    "Challenge",
    "ChallengeNegotiator",
    "ClientEnvironment",
    "ConfigError",
    "InsufficientFunds",
    "InvalidAmount",
    "JsonRpcTransport",
    "KNOWN_NETWORKS",
    "LocalAccountTransport",
    "MalformedChallenge",
    "MissingExchangeRate",
    "NativeTransfer",
    "NativeTransferProof",
    "NegotiationAttempt",
    "NegotiationInProgress",
    "NegotiationState",
    "NegotiatorConfig",
    "NegotiatorParameters",
    "NetworkConfig",
    "NoAccount",
    "PAYMENT_HEADER",
    "PayloadEncodingError",
    "PaymentPayload",
    "PaymentRequirement",
    "Quote",
    "RequestSpec",
    "Scheme",
    "SettlementRejected",
    "SignerGateway",
    "StrategyResult",
    "TransportMethodUnsupported",
    "UserRejectedSigning",
    "WalletRpcError",
    "WalletStrategy",
    "WalletTransport",
    "WalletTransportError",
    "WalletUnavailable",
    "X402Error",
    "build_authorization",
    "build_environment",
    "build_native_transfer",
    "build_transfer_typed_data",
    "classify_wallet_error",
    "convert_price",
    "decode_payment_payload",
    "encode_payment_payload",
    "fetch_native_price",
    "fetch_quote",
    "generate_nonce",
    "load_env_file",
    "load_negotiator_config",
    "native_amount",
    "quote_amount",
    "token_amount_to_base_units",
    "usd_to_stablecoin_units",
]
