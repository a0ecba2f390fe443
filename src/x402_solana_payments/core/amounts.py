"""
Conversions between display dollars and integer USDC micro-units.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Union

__all__ = [
    "MICRO_UNITS_PER_USD",
    "USDC_DECIMALS",
    "micro_units_to_usd",
    "usd_to_micro_units",
]

USDC_DECIMALS = 6
MICRO_UNITS_PER_USD = 10**USDC_DECIMALS

_QUANTUM = Decimal(1).scaleb(-USDC_DECIMALS)


def _to_decimal(value: Union[Decimal, str, int, float]) -> Decimal:
    if isinstance(value, bool):
        raise TypeError("Amounts must be numeric, not bool")
    if isinstance(value, float):
        # str() gives the shortest repr, so 0.1 stays 0.1 rather than 0.1000000000000000055...
        value = str(value)
    try:
        amount = Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount '{value}'") from exc
    if not amount.is_finite():
        raise ValueError(f"Amount must be finite, got '{value}'")
    return amount


def usd_to_micro_units(usd_amount: Union[Decimal, str, int, float]) -> int:
    """
    Convert a dollar amount to micro-units (1 USD = 1,000,000).

    Digits beyond the sixth decimal place are truncated.
    """
    amount = _to_decimal(usd_amount)
    if amount < 0:
        raise ValueError(f"Amount must not be negative, got {amount}")
    scaled = amount.quantize(_QUANTUM, rounding=ROUND_DOWN).scaleb(USDC_DECIMALS)
    return int(scaled)


def micro_units_to_usd(micro_units: int) -> Decimal:
    if isinstance(micro_units, bool) or not isinstance(micro_units, int):
        raise TypeError("Micro-unit amounts must be integers")
    return Decimal(micro_units).scaleb(-USDC_DECIMALS)
