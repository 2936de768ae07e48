"""
Command-line interface for calling x402 protected endpoints.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional, Sequence, Tuple

import requests

from .api import create_negotiator
from .core.config import ConfigError, load_negotiator_config
from .core.errors import SettlementRejected, UserRejectedSigning, X402Error
from .core.models import Scheme
from .core.negotiator import NegotiationAttempt, NegotiationState, RequestSpec
from .core.transports import JsonRpcTransport


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


def _split_pair(value: str, separator: str, example: str) -> Tuple[str, str]:
    name, found, rest = value.partition(separator)
    name = name.strip()
    if not found or not name:
        raise argparse.ArgumentTypeError(f"Expected {example}, got '{value}'")
    return name, rest


def _env_override(value: str) -> Tuple[str, str]:
    return _split_pair(value, "=", "KEY=VALUE")


def _header(value: str) -> Tuple[str, str]:
    name, rest = _split_pair(value, ":", "'Name: value'")
    return name, rest.strip()


def _log_transition(previous: NegotiationState, current: NegotiationState, attempt: NegotiationAttempt) -> None:
    logging.info("Negotiation %s -> %s", previous.value, current.value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="x402-payflow",
        description="Call an HTTP endpoint and pay for it if it answers 402 Payment Required",
    )
    parser.add_argument("url", help="Endpoint to call")
    parser.add_argument(
        "-X",
        "--method",
        default="GET",
        help="HTTP method (default: GET)",
    )
    parser.add_argument(
        "-H",
        "--header",
        action="append",
        type=_header,
        metavar="'NAME: VALUE'",
        default=None,
        help="Extra request header; may be repeated",
    )
    parser.add_argument(
        "--json",
        dest="json_body",
        help="JSON request body",
    )
    parser.add_argument(
        "--scheme",
        choices=[item.value for item in Scheme],
        help="Preferred payment scheme when the server offers several",
    )
    parser.add_argument(
        "--exchange-rate",
        help="USD price of the native token, for native-token payments",
    )
    parser.add_argument(
        "--wallet-rpc",
        metavar="URL",
        help="JSON-RPC endpoint of a remote signer to use instead of X402_PAYER_PRIVATE_KEY",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing X402_* settings (default: .env)",
    )
    parser.add_argument(
        "--set",
        action="append",
        type=_env_override,
        metavar="KEY=VALUE",
        default=None,
        help="Override an environment variable without editing the .env file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)
    overrides = dict(args.set or ())
    if args.exchange_rate:
        overrides["X402_NATIVE_USD_RATE"] = args.exchange_rate

    try:
        config = load_negotiator_config(env_file=args.env_file, overrides=overrides)
    except (ConfigError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    try:
        body = json.loads(args.json_body) if args.json_body else None
    except json.JSONDecodeError as exc:
        logging.error("--json is not valid JSON: %s", exc)
        return 1

    session = requests.Session()
    transport = None
    if args.wallet_rpc:
        transport = JsonRpcTransport(args.wallet_rpc, session=session, timeout=config.request_timeout)
    negotiator = create_negotiator(
        config=config,
        session=session,
        transport=transport,
        observers=(_log_transition,),
    )
    request = RequestSpec(
        url=args.url,
        method=args.method.upper(),
        headers=dict(args.header or ()),
        json=body,
    )

    try:
        response = negotiator.execute(
            request,
            scheme=Scheme(args.scheme) if args.scheme else None,
            raise_on_rejection=True,
        )
    except UserRejectedSigning as exc:
        logging.error("Payment declined in the wallet: %s", exc)
        return 1
    except SettlementRejected as exc:
        logging.error("Server rejected the payment (HTTP %s): %s", exc.status_code, exc)
        if exc.hint:
            logging.error("Hint: %s", exc.hint)
        return 1
    except X402Error as exc:
        logging.error("Payment failed: %s", exc)
        return 1
    except requests.RequestException as exc:
        logging.error("Request failed: %s", exc)
        return 1

    sys.stdout.write(response.text)
    if not response.text.endswith("\n"):
        sys.stdout.write("\n")
    return 0 if response.ok else 1


def main() -> None:
    sys.exit(run_cli())
