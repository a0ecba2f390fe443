"""
Minimal script that pays for an x402-protected resource with Solana USDC.

It plays both halves of the handshake against one configuration: issues the
payment requirements, builds and signs the payer's transaction, encodes the
X-PAYMENT header and hands it to the facilitator for verification and
settlement.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Iterable, Tuple

from solders.keypair import Keypair

from x402_solana_payments import (
    ConfigurationError,
    TokenAccountResolver,
    X402Error,
    create_payment_gate,
    decode_payment_header,
    encode_payment_header,
    load_settlement_config,
)
from x402_solana_payments.core.ledger import LedgerClient
from x402_solana_payments.core.transactions import ComputeBudget, build_payment_transaction


def _override(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    key, val = value.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError("Override key must not be empty")
    return key, val


def _build_overrides(pairs: Iterable[Tuple[str, str]]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, value in pairs:
        overrides[key] = value
    return overrides


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pay for a resource with an x402 Solana payment")
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
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    parser.add_argument(
        "--payer-secret",
        required=True,
        help="Base58 secret key of the paying wallet",
    )
    parser.add_argument(
        "--amount",
        type=int,
        default=10_000,
        help="Price in micro-units (default: 10000, i.e. $0.01)",
    )
    parser.add_argument(
        "--resource",
        default="https://api.example.com/premium",
        help="Resource URL protected by the payment",
    )
    parser.add_argument(
        "--description",
        default="Premium request",
        help="Payment description shown to the payer",
    )
    parser.add_argument(
        "--verify-only",
        action="store_true",
        help="Stop after facilitator verification (no on-chain settlement)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        config = load_settlement_config(env_file=args.env_file, overrides=_build_overrides(args.set or ()))
        payer = Keypair.from_base58_string(args.payer_secret)
    except (ConfigurationError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    gate = create_payment_gate(config=config)
    requirements = gate.requirements(args.amount, args.description, args.resource)
    logging.info("Paying %s micro-units to %s on %s", requirements.max_amount_required, requirements.pay_to, requirements.network)

    ledger = LedgerClient.from_config(config)
    try:
        transaction = build_payment_transaction(
            payer,
            requirements,
            TokenAccountResolver(ledger),
            ledger.latest_blockhash(),
            budget=ComputeBudget(unit_limit=300_000),
        )
        header_value = encode_payment_header(transaction, requirements)
        if args.verify_only:
            verification = gate.facilitator.verify_detailed(decode_payment_header(header_value), requirements)
            if not verification:
                logging.error("Payment rejected: %s", verification.invalid_reason)
                return 1
            logging.info("Verification succeeded; skipping settlement.")
            return 0
        outcome = gate.process(header_value, requirements)
    except X402Error as exc:
        logging.error("Payment failed: %s", exc)
        return 1

    if outcome:
        logging.info(
            "Payment settled on %s. Transaction: %s",
            outcome.settlement.network,
            outcome.settlement.transaction,
        )
        return 0

    logging.error("Payment not settled: %s", outcome.reason)
    return 1


if __name__ == "__main__":
    sys.exit(main())
