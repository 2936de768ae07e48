from decimal import Decimal

import pytest
from eth_account import Account
from eth_utils import to_checksum_address

from conftest import MERCHANT
from x402_payflow.core.config import (
    ConfigError,
    NegotiatorConfig,
    NegotiatorParameters,
    load_negotiator_config,
)
from x402_payflow.core.environment import build_environment, load_env_file
from x402_payflow.core.models import Scheme

PRIVATE_KEY = "0x" + "4c" * 32


def test_defaults_to_avalanche():
    config = load_negotiator_config(env_file=None, base={})
    network = config.primary_network
    assert network.name == "avalanche"
    assert network.chain_id == 43114
    assert network.token_name == "USD Coin"
    assert network.token_version == "2"
    assert network.native_symbol == "AVAX"
    assert config.x402_version == 2
    assert config.request_timeout == 30.0
    assert config.preferred_scheme is None
    assert config.payer_address is None


def test_env_file_fills_missing_values(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\n"
        "export X402_NETWORK=avalanche-fuji\n"
        "X402_MERCHANT_ADDRESS='0x209f0baca0c23edc57881b26b68fc4148123b039'\n"
        "X402_PREFERRED_SCHEME=\"x402-native\"\n"
        "X402_NATIVE_USD_RATE=35.5\n"
    )
    config = load_negotiator_config(env_file=str(env_file), base={"X402_NATIVE_USD_RATE": "20"})

    assert config.primary_network.chain_id == 43113
    assert config.merchant_address == to_checksum_address(MERCHANT)
    assert config.preferred_scheme is Scheme.NATIVE_TRANSFER
    assert config.native_usd_rate == Decimal("20")


def test_overrides_and_parameters_win(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("X402_NETWORK=avalanche-fuji\nX402_VERSION=1\n")
    config = load_negotiator_config(
        env_file=str(env_file),
        base={},
        overrides={"X402_VERSION": "3"},
        parameters=NegotiatorParameters(network="avalanche"),
        request_timeout=5,
    )
    assert config.primary_network.name == "avalanche"
    assert config.x402_version == 3
    assert config.request_timeout == 5.0


def test_private_key_derives_payer_address():
    config = load_negotiator_config(env_file=None, base={"X402_PAYER_PRIVATE_KEY": "4c" * 32})
    assert config.payer_private_key == PRIVATE_KEY
    assert config.payer_address == Account.from_key(PRIVATE_KEY).address
    assert PRIVATE_KEY not in repr(config)


def test_custom_network_requires_chain_and_asset():
    with pytest.raises(ConfigError):
        load_negotiator_config(env_file=None, base={"X402_NETWORK": "base"})

    config = load_negotiator_config(
        env_file=None,
        base={
            "X402_NETWORK": "base",
            "X402_CHAIN_ID": "8453",
            "X402_ASSET_ADDRESS": "833589fcd6edb6e08f4c7c32d4f71b54bda02913",
            "X402_NATIVE_SYMBOL": "ETH",
        },
    )
    network = config.primary_network
    assert network.chain_id == 8453
    assert network.asset_address == to_checksum_address("0x833589fcd6edb6e08f4c7c32d4f71b54bda02913")
    assert network.caip2 == "eip155:8453"


@pytest.mark.parametrize(
    "values",
    [
        {"X402_PAYER_PRIVATE_KEY": "0x1234"},
        {"X402_PAYER_PRIVATE_KEY": "zz" * 32},
        {"X402_PAYER_ADDRESS": "0x" + "12" * 19},
        {"X402_MERCHANT_ADDRESS": "not-an-address"},
        {"X402_PREFERRED_SCHEME": "exact"},
        {"X402_NATIVE_USD_RATE": "-1"},
        {"X402_NATIVE_USD_RATE": "abc"},
        {"X402_REQUEST_TIMEOUT_SECONDS": "0"},
        {"X402_CHAIN_ID": "forty"},
        {"X402_TOKEN_DECIMALS": "-2"},
    ],
)
def test_invalid_values(values):
    with pytest.raises(ConfigError):
        load_negotiator_config(env_file=None, base=values)


def test_unknown_parameter_is_rejected():
    with pytest.raises(TypeError, match="colour, shade"):
        load_negotiator_config(env_file=None, base={}, shade="dark", colour="blue")


def test_explicit_parameters_win_over_bundle():
    config = load_negotiator_config(
        env_file=None,
        base={"X402_REQUEST_TIMEOUT_SECONDS": "9"},
        parameters=NegotiatorParameters(request_timeout=5, x402_version=3),
        request_timeout=7,
        merchant_address=None,
    )
    assert config.request_timeout == 7.0
    assert config.x402_version == 3
    assert config.merchant_address is None


def test_config_is_immutable(config):
    with pytest.raises(AttributeError):
        config.x402_version = 1


def test_empty_network_list_is_rejected():
    with pytest.raises(ConfigError):
        NegotiatorConfig(networks=())


def test_network_matching(config):
    assert config.network_for("avalanche").chain_id == 43114
    assert config.network_for("avax") is not None
    assert config.network_for("eip155:43114") is not None
    assert config.network_for("whatever", 43114) is not None
    assert config.network_for("avalanche", 43113) is None
    assert config.network_for("base") is None


def test_load_env_file_does_not_clobber(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("X402_NETWORK=avalanche-fuji\nX402_VERSION=1\n")
    environ = {"X402_NETWORK": "avalanche"}
    merged = load_env_file(str(env_file), environ=environ)
    assert merged == {"X402_NETWORK": "avalanche", "X402_VERSION": "1"}


def test_environment_scoping(tmp_path):
    environment = build_environment(
        env_file=str(tmp_path / "missing.env"),
        base={"HOME": "/root", "X402_NETWORK": "avalanche"},
    )
    assert environment.get("HOME") == "/root"
    assert environment.scoped() == {"X402_NETWORK": "avalanche"}
