"""
Minimal script that uses the public API to pay for one x402 protected call.
"""

from __future__ import annotations

import argparse
import logging
import sys

from x402_payflow import (
    ConfigError,
    NegotiationState,
    RequestSpec,
    Scheme,
    X402Error,
    create_negotiator,
    load_negotiator_config,
)


def _override(value: str) -> tuple[str, str]:
    key, found, val = value.partition("=")
    if not found or not key.strip():
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    return key.strip(), val


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pay for one API call with x402")
    parser.add_argument("url", help="x402 protected endpoint, e.g. https://api.example.com/agent/generate")
    parser.add_argument("--prompt", default="Hello!", help="Prompt to send in the JSON body")
    parser.add_argument("--model", default="openai/gpt-4o-mini", help="Model id to send in the JSON body")
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing X402_* settings",
    )
    parser.add_argument(
        "--set",
        action="append",
        type=_override,
        metavar="KEY=VALUE",
        default=None,
        help="Override an environment variable without editing the .env file",
    )
    parser.add_argument(
        "--native",
        action="store_true",
        help="Prefer paying with the native token instead of USDC",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        config = load_negotiator_config(env_file=args.env_file, overrides=dict(args.set or ()))
    except (ConfigError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    def show_progress(previous: NegotiationState, current: NegotiationState, attempt) -> None:
        logging.info("[%s] -> [%s]", previous.value, current.value)

    negotiator = create_negotiator(config=config, observers=(show_progress,))
    request = RequestSpec(
        url=args.url,
        method="POST",
        json={"prompt": args.prompt, "model": args.model},
    )
    scheme = Scheme.NATIVE_TRANSFER if args.native else Scheme.STABLECOIN_AUTHORIZATION

    try:
        response = negotiator.execute(request, scheme=scheme)
    except X402Error as exc:
        logging.error("Payment flow failed: %s", exc)
        return 1

    if not response.ok:
        logging.error("Request failed with HTTP %s: %s", response.status_code, response.text)
        return 1

    logging.info("Paid request succeeded: %s", response.text[:500])
    return 0


if __name__ == "__main__":
    sys.exit(main())
