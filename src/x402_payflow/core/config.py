"""
Configuration objects and helpers for the x402 negotiator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

from eth_account import Account
from eth_utils import add_0x_prefix, is_hex, is_hex_address, remove_0x_prefix, to_checksum_address

from .environment import build_environment
from .models import Scheme

__all__ = [
    "ConfigError",
    "KNOWN_NETWORKS",
    "NegotiatorConfig",
    "NegotiatorParameters",
    "NetworkConfig",
    "load_negotiator_config",
]

_PARAMETER_TO_ENV_KEY = {
    "network": "X402_NETWORK",
    "chain_id": "X402_CHAIN_ID",
    "asset_address": "X402_ASSET_ADDRESS",
    "token_name": "X402_TOKEN_NAME",
    "token_version": "X402_TOKEN_VERSION",
    "token_decimals": "X402_TOKEN_DECIMALS",
    "native_symbol": "X402_NATIVE_SYMBOL",
    "native_decimals": "X402_NATIVE_DECIMALS",
    "rpc_url": "X402_RPC_URL",
    "merchant_address": "X402_MERCHANT_ADDRESS",
    "preferred_scheme": "X402_PREFERRED_SCHEME",
    "x402_version": "X402_VERSION",
    "request_timeout": "X402_REQUEST_TIMEOUT_SECONDS",
    "payer_private_key": "X402_PAYER_PRIVATE_KEY",
    "payer_address": "X402_PAYER_ADDRESS",
    "native_usd_rate": "X402_NATIVE_USD_RATE",
    "price_url": "X402_PRICE_URL",
}


class ConfigError(Exception):
    """Raised when the supplied configuration is invalid."""


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Scheme):
        return value.value
    return str(value)


def _private_key_hex(raw_key: str) -> str:
    digits = remove_0x_prefix(raw_key.strip())
    if len(digits) != 64 or not is_hex(digits):
        raise ConfigError("X402_PAYER_PRIVATE_KEY must be 32 bytes of hex (64 characters)")
    return add_0x_prefix(digits.lower())


def _checksum_address(raw: str, variable: str) -> str:
    candidate = add_0x_prefix(raw.strip())
    if not is_hex_address(candidate):
        raise ConfigError(f"{variable} is not a valid EVM address: '{raw}'")
    return to_checksum_address(candidate)


def _parse_int(raw: str, field_name: str) -> int:
    try:
        return int(raw.strip(), 0)
    except ValueError as exc:
        raise ConfigError(f"{field_name} must be an integer, got '{raw}'") from exc


def _parse_positive_decimal(raw: str, field_name: str) -> Decimal:
    try:
        value = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ConfigError(f"{field_name} must be a valid decimal number, got '{raw}'") from exc
    if not value.is_finite() or value <= 0:
        raise ConfigError(f"{field_name} must be greater than zero")
    return value


def _parse_scheme(raw: str) -> Scheme:
    try:
        return Scheme(raw.strip())
    except ValueError as exc:
        choices = ", ".join(item.value for item in Scheme)
        raise ConfigError(
            f"X402_PREFERRED_SCHEME must be one of {choices}, got '{raw}'"
        ) from exc


@dataclass(frozen=True)
class NetworkConfig:
    """Chain and asset constants for one payment network."""

    name: str
    chain_id: int
    asset_address: str
    token_name: str = "USD Coin"
    token_version: str = "2"
    token_decimals: int = 6
    native_symbol: str = "ETH"
    native_decimals: int = 18
    rpc_url: Optional[str] = None
    aliases: Tuple[str, ...] = ()

    @property
    def caip2(self) -> str:
        return f"eip155:{self.chain_id}"

    def matches(self, network: str, chain_id: Optional[int] = None) -> bool:
        """
        True when a challenge entry targets this network.

        A chain id carried by the entry is authoritative; otherwise the name is
        compared against the configured name, aliases and CAIP-2 identifier.
        """
        if chain_id is not None:
            return chain_id == self.chain_id
        wanted = network.strip().lower()
        names = {self.name.lower(), self.caip2}
        names.update(alias.lower() for alias in self.aliases)
        return wanted in names


KNOWN_NETWORKS: Dict[str, NetworkConfig] = {
    "avalanche": NetworkConfig(
        name="avalanche",
        chain_id=43114,
        asset_address="0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",
        native_symbol="AVAX",
        rpc_url="https://api.avax.network/ext/bc/C/rpc",
        aliases=("avalanche-c", "avax"),
    ),
    "avalanche-fuji": NetworkConfig(
        name="avalanche-fuji",
        chain_id=43113,
        asset_address="0x5425890298aed601595a70AB815c96711a31Bc65",
        native_symbol="AVAX",
        rpc_url="https://api.avax-test.network/ext/bc/C/rpc",
        aliases=("fuji",),
    ),
}


@dataclass(frozen=True)
class NegotiatorParameters:
    """
    Explicit parameter bundle for constructing :class:`NegotiatorConfig`.

    Every field maps onto one ``X402_*`` variable and wins over the
    environment when set.
    """

    network: Optional[str] = None
    chain_id: Optional[int | str] = None
    asset_address: Optional[str] = None
    token_name: Optional[str] = None
    token_version: Optional[str] = None
    token_decimals: Optional[int | str] = None
    native_symbol: Optional[str] = None
    native_decimals: Optional[int | str] = None
    rpc_url: Optional[str] = None
    merchant_address: Optional[str] = None
    preferred_scheme: Optional[Scheme | str] = None
    x402_version: Optional[int | str] = None
    request_timeout: Optional[float | str] = None
    payer_private_key: Optional[str] = None
    payer_address: Optional[str] = None
    native_usd_rate: Optional[Decimal | str | float] = None
    price_url: Optional[str] = None

    def as_overrides(self) -> Dict[str, str]:
        """The ``X402_*`` assignments for every field that is set."""
        return {
            env_key: _stringify(getattr(self, name))
            for name, env_key in _PARAMETER_TO_ENV_KEY.items()
            if getattr(self, name) is not None
        }


def _parameter_overrides(
    parameters: Optional[NegotiatorParameters],
    explicit: Mapping[str, Any],
) -> Dict[str, str]:
    unknown = sorted(set(explicit) - set(_PARAMETER_TO_ENV_KEY))
    if unknown:
        raise TypeError(f"Unknown negotiator parameter(s): {', '.join(unknown)}")
    overrides = parameters.as_overrides() if parameters is not None else {}
    overrides.update(NegotiatorParameters(**explicit).as_overrides())
    return overrides


def _network_from_mapping(values: Mapping[str, str]) -> NetworkConfig:
    name = values.get("X402_NETWORK", "avalanche").strip()
    preset = KNOWN_NETWORKS.get(name.lower())

    chain_raw = values.get("X402_CHAIN_ID") or None
    asset_raw = values.get("X402_ASSET_ADDRESS") or None
    if preset is None and (chain_raw is None or asset_raw is None):
        raise ConfigError(
            f"Unknown network '{name}': X402_CHAIN_ID and X402_ASSET_ADDRESS must be provided"
        )

    chain_id = _parse_int(chain_raw, "X402_CHAIN_ID") if chain_raw else preset.chain_id
    asset_address = _checksum_address(
        asset_raw if asset_raw else preset.asset_address, "X402_ASSET_ADDRESS"
    )

    defaults = preset or NetworkConfig(name=name, chain_id=chain_id, asset_address=asset_address)
    token_decimals = _parse_int(
        values.get("X402_TOKEN_DECIMALS", str(defaults.token_decimals)), "X402_TOKEN_DECIMALS"
    )
    native_decimals = _parse_int(
        values.get("X402_NATIVE_DECIMALS", str(defaults.native_decimals)), "X402_NATIVE_DECIMALS"
    )
    if token_decimals < 0 or native_decimals < 0:
        raise ConfigError("Token decimals must not be negative")

    return NetworkConfig(
        name=defaults.name if preset is not None else name,
        chain_id=chain_id,
        asset_address=asset_address,
        token_name=values.get("X402_TOKEN_NAME", defaults.token_name),
        token_version=values.get("X402_TOKEN_VERSION", defaults.token_version),
        token_decimals=token_decimals,
        native_symbol=values.get("X402_NATIVE_SYMBOL", defaults.native_symbol),
        native_decimals=native_decimals,
        rpc_url=values.get("X402_RPC_URL", defaults.rpc_url) or None,
        aliases=defaults.aliases,
    )


@dataclass(frozen=True)
class NegotiatorConfig:
    """
    Immutable settings injected into :class:`ChallengeNegotiator`.

    ``networks`` lists every network the client is willing to pay on; the
    first one is where a local-key wallet broadcasts native transfers.
    """

    networks: Tuple[NetworkConfig, ...]
    merchant_address: Optional[str] = None
    preferred_scheme: Optional[Scheme] = None
    x402_version: int = 2
    request_timeout: float = 30.0
    payer_private_key: Optional[str] = field(default=None, repr=False)
    payer_address: Optional[str] = None
    native_usd_rate: Optional[Decimal] = None
    price_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.networks:
            raise ConfigError("At least one network must be configured")

    @property
    def primary_network(self) -> NetworkConfig:
        return self.networks[0]

    def network_for(self, network: str, chain_id: Optional[int] = None) -> Optional[NetworkConfig]:
        for candidate in self.networks:
            if candidate.matches(network, chain_id):
                return candidate
        return None

    @classmethod
    def for_network(cls, name: str, **kwargs: Any) -> "NegotiatorConfig":
        """Build a config for one of :data:`KNOWN_NETWORKS`."""
        try:
            network = KNOWN_NETWORKS[name]
        except KeyError as exc:
            raise ConfigError(f"Unknown network '{name}'") from exc
        return cls(networks=(network,), **kwargs)

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "NegotiatorConfig":
        network = _network_from_mapping(values)

        merchant_raw = values.get("X402_MERCHANT_ADDRESS")
        merchant_address = (
            _checksum_address(merchant_raw, "X402_MERCHANT_ADDRESS") if merchant_raw else None
        )

        scheme_raw = values.get("X402_PREFERRED_SCHEME")
        preferred_scheme = _parse_scheme(scheme_raw) if scheme_raw else None

        x402_version = _parse_int(values.get("X402_VERSION", "2"), "X402_VERSION")

        timeout_raw = values.get("X402_REQUEST_TIMEOUT_SECONDS", "30")
        request_timeout = float(_parse_positive_decimal(timeout_raw, "X402_REQUEST_TIMEOUT_SECONDS"))

        private_key = None
        payer_address = None
        key_raw = values.get("X402_PAYER_PRIVATE_KEY")
        if key_raw:
            private_key = _private_key_hex(key_raw)
            payer_address = Account.from_key(private_key).address
        address_raw = values.get("X402_PAYER_ADDRESS")
        if address_raw:
            payer_address = _checksum_address(address_raw, "X402_PAYER_ADDRESS")

        rate_raw = values.get("X402_NATIVE_USD_RATE")
        native_usd_rate = (
            _parse_positive_decimal(rate_raw, "X402_NATIVE_USD_RATE") if rate_raw else None
        )

        return cls(
            networks=(network,),
            merchant_address=merchant_address,
            preferred_scheme=preferred_scheme,
            x402_version=x402_version,
            request_timeout=request_timeout,
            payer_private_key=private_key,
            payer_address=payer_address,
            native_usd_rate=native_usd_rate,
            price_url=values.get("X402_PRICE_URL") or None,
        )

    @classmethod
    def from_env(
        cls,
        *,
        env_file: Optional[str] = ".env",
        overrides: Optional[Mapping[str, str]] = None,
        base: Optional[Mapping[str, str]] = None,
        parameters: Optional[NegotiatorParameters] = None,
        **explicit: Any,
    ) -> "NegotiatorConfig":
        parameter_overrides = _parameter_overrides(parameters, explicit)
        merged_overrides = dict(overrides or {})
        merged_overrides.update(parameter_overrides)

        environment = build_environment(
            env_file=env_file,
            base=base,
            overrides=merged_overrides,
        )
        return cls.from_mapping(environment.scoped())


def load_negotiator_config(
    *,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[NegotiatorParameters] = None,
    **explicit: Any,
) -> NegotiatorConfig:
    """
    Convenience wrapper that mirrors :meth:`NegotiatorConfig.from_env`.

    Keyword arguments use the field names of :class:`NegotiatorParameters`,
    e.g. ``load_negotiator_config(network="avalanche-fuji")``.
    """
    return NegotiatorConfig.from_env(
        env_file=env_file,
        overrides=overrides,
        base=base,
        parameters=parameters,
        **explicit,
    )
