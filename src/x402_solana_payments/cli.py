"""
Command-line interface for exercising the payment gate and the treasury engine.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import Iterable, Sequence, Tuple

from .api import create_facilitator_client, create_payment_gate, create_refund_engine
from .core.amounts import micro_units_to_usd, usd_to_micro_units
from .core.codec import decode_payment_header
from .core.config import SettlementConfig, load_settlement_config
from .core.errors import ConfigurationError, ConfirmationCancelled, X402Error
from .core.requirements import PaymentRequirements

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_UNCONFIRMED = 2


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


def _env_override(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    key, val = value.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError("Override key must not be empty")
    return key, val


def _usd_amount(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"'{value}' is not a dollar amount") from exc
    if not amount.is_finite() or amount <= 0:
        raise argparse.ArgumentTypeError("Dollar amounts must be positive")
    return amount


def _collect_overrides(pairs: Iterable[Tuple[str, str]]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, value in pairs:
        overrides[key] = value
    return overrides


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="x402-solana",
        description="x402 payments and treasury refunds on Solana",
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
    commands = parser.add_subparsers(dest="command", required=True)

    requirements = commands.add_parser("requirements", help="Print a 402 payment challenge")
    requirements.add_argument("--amount", type=int, required=True, help="Price in micro-units")
    requirements.add_argument("--description", default="", help="Description shown to the payer")
    requirements.add_argument("--resource", required=True, help="URL of the paid resource")
    requirements.add_argument(
        "--no-fee-payer-discovery",
        action="store_true",
        help="Do not ask the facilitator for its fee payer",
    )

    for name, text in (
        ("verify", "Verify an X-PAYMENT header with the facilitator"),
        ("settle", "Verify then settle an X-PAYMENT header"),
    ):
        sub = commands.add_parser(name, help=text)
        sub.add_argument("--header", required=True, help="X-PAYMENT header value")
        sub.add_argument(
            "--requirements",
            required=True,
            help="Path to the JSON payment requirements the header answers",
        )

    commands.add_parser("supported", help="List the facilitator's supported payment kinds")

    refund = commands.add_parser("refund", help="Send a treasury refund")
    refund.add_argument("--to", required=True, dest="destination", help="Destination wallet address")
    amount = refund.add_mutually_exclusive_group(required=True)
    amount.add_argument("--micro-units", type=int, help="Refund amount in micro-units")
    amount.add_argument("--usd", type=_usd_amount, help="Refund amount in dollars (e.g. 0.25)")
    return parser


def _load_requirements(path: str) -> PaymentRequirements:
    with open(path, encoding="utf-8") as handle:
        data = json.load(handle)
    if isinstance(data, dict) and "accepts" in data:
        data = data["accepts"][0]
    return PaymentRequirements.from_dict(data)


def _cmd_requirements(config: SettlementConfig, args: argparse.Namespace) -> int:
    gate = create_payment_gate(config=config, discover_fee_payer=not args.no_fee_payer_discovery)
    challenge = gate.challenge(gate.requirements(args.amount, args.description, args.resource))
    print(json.dumps(challenge.body, indent=2))
    return EXIT_OK


def _cmd_verify(config: SettlementConfig, args: argparse.Namespace) -> int:
    client = create_facilitator_client(config=config)
    requirements = _load_requirements(args.requirements)
    header = decode_payment_header(args.header)
    header.check_against(requirements)
    result = client.verify_detailed(header, requirements)
    if not result.is_valid:
        logging.error("Payment rejected: %s", result.invalid_reason or result.raw)
        return EXIT_FAILED
    logging.info("Facilitator accepted payment payload for payer %s", result.payer)
    return EXIT_OK


def _cmd_settle(config: SettlementConfig, args: argparse.Namespace) -> int:
    gate = create_payment_gate(config=config, discover_fee_payer=False)
    outcome = gate.process(args.header, _load_requirements(args.requirements))
    if not outcome:
        logging.error("Payment not settled: %s", outcome.reason)
        return EXIT_FAILED
    settlement = outcome.settlement
    logging.info(
        "Payment settled on %s. Transaction: %s",
        settlement.network,
        settlement.transaction,
    )
    return EXIT_OK


def _cmd_supported(config: SettlementConfig, args: argparse.Namespace) -> int:
    client = create_facilitator_client(config=config)
    for kind in client.supported():
        print(f"{kind.network}\t{kind.scheme}\tv{kind.x402_version}\t{json.dumps(kind.extra)}")
    return EXIT_OK


def _cmd_refund(config: SettlementConfig, args: argparse.Namespace) -> int:
    micro_units = args.micro_units if args.micro_units is not None else usd_to_micro_units(args.usd)
    engine = create_refund_engine(config=config)
    logging.info(
        "Refunding $%s (%d micro-units) to %s",
        micro_units_to_usd(micro_units),
        micro_units,
        args.destination,
    )
    result = engine.execute_refund(args.destination, micro_units)
    if not result.success:
        logging.error("Refund failed: %s", result.error_message)
        return EXIT_FAILED
    if result.unconfirmed:
        logging.warning(
            "Refund %s broadcast but unconfirmed; check %s before retrying",
            result.transaction_id,
            result.explorer_url,
        )
        return EXIT_UNCONFIRMED
    logging.info("Refund %s %s: %s", result.transaction_id, result.state.value, result.explorer_url)
    return EXIT_OK


_COMMANDS = {
    "requirements": _cmd_requirements,
    "verify": _cmd_verify,
    "settle": _cmd_settle,
    "supported": _cmd_supported,
    "refund": _cmd_refund,
}


def run_cli(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)
    overrides = _collect_overrides(args.set or ())

    try:
        config = load_settlement_config(env_file=args.env_file, overrides=overrides)
    except (ConfigurationError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return EXIT_FAILED

    try:
        return _COMMANDS[args.command](config, args)
    except ConfirmationCancelled as exc:
        logging.warning("%s; the transaction may still land", exc)
        return EXIT_UNCONFIRMED
    except (X402Error, OSError, ValueError) as exc:
        logging.error("%s failed: %s", args.command, exc)
        return EXIT_FAILED


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
