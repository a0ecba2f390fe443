"""
Public, high-level helpers for wiring the settlement engine together.
"""

from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Mapping, Optional

import requests

from .core.amounts import micro_units_to_usd, usd_to_micro_units
from .core.config import SettlementConfig, load_settlement_config
from .core.errors import X402Error
from .core.facilitator import FacilitatorClient
from .core.gate import PaymentGate
from .core.ledger import LedgerClient
from .core.requirements import PaymentRequirementIssuer
from .core.treasury import RefundResult, TreasurySettlementEngine

__all__ = [
    "create_facilitator_client",
    "create_payment_gate",
    "create_refund_engine",
    "execute_refund",
    "micro_units_to_usd",
    "usd_to_micro_units",
]


def _resolve_config(
    config: Optional[SettlementConfig],
    env_file: Optional[str],
    overrides: Optional[Mapping[str, str]],
) -> SettlementConfig:
    if config is not None:
        if overrides:
            raise ValueError(
                "Provide either a pre-built SettlementConfig or overrides, not both."
            )
        return config
    return load_settlement_config(env_file=env_file, overrides=overrides)


def create_facilitator_client(
    *,
    config: Optional[SettlementConfig] = None,
    session: Optional[requests.Session] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
) -> FacilitatorClient:
    return FacilitatorClient(_resolve_config(config, env_file, overrides), session=session)


def create_payment_gate(
    *,
    config: Optional[SettlementConfig] = None,
    session: Optional[requests.Session] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    discover_fee_payer: bool = True,
) -> PaymentGate:
    """
    Construct a :class:`PaymentGate` at startup.

    With ``discover_fee_payer`` the facilitator's ``/supported`` listing is
    consulted once for a fee payer; the configured ``X402_FEE_PAYER`` is used
    when the facilitator cannot be reached or advertises none.
    """
    cfg = _resolve_config(config, env_file, overrides)
    facilitator = FacilitatorClient(cfg, session=session)

    fee_payer = None
    if discover_fee_payer:
        try:
            fee_payer = facilitator.fee_payer(cfg.network)
        except X402Error as exc:
            logging.warning("Could not discover facilitator fee payer: %s", exc)
    if fee_payer:
        logging.info("Using facilitator fee payer %s", fee_payer)

    return PaymentGate(PaymentRequirementIssuer(cfg, fee_payer=fee_payer), facilitator)


def create_refund_engine(
    *,
    config: Optional[SettlementConfig] = None,
    ledger: Optional[LedgerClient] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
) -> TreasurySettlementEngine:
    return TreasurySettlementEngine(_resolve_config(config, env_file, overrides), ledger=ledger)


def execute_refund(
    destination_address: str,
    *,
    amount_micro_units: Optional[int] = None,
    amount_usd: Optional[Decimal | str | int] = None,
    engine: Optional[TreasurySettlementEngine] = None,
    config: Optional[SettlementConfig] = None,
    env_file: Optional[str] = ".env",
    cancel: Optional[threading.Event] = None,
) -> RefundResult:
    """
    High-level convenience wrapper around :meth:`TreasurySettlementEngine.execute_refund`.

    Exactly one of ``amount_micro_units`` and ``amount_usd`` must be given.
    """
    if (amount_micro_units is None) == (amount_usd is None):
        raise ValueError("Provide exactly one of amount_micro_units or amount_usd")
    if amount_micro_units is None:
        amount_micro_units = usd_to_micro_units(amount_usd)

    if engine is None:
        engine = create_refund_engine(config=config, env_file=env_file)
    return engine.execute_refund(destination_address, amount_micro_units, cancel=cancel)
