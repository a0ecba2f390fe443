"""
Configuration objects and helpers for the settlement engine.

A :class:`SettlementConfig` is built once at startup and handed to every
component constructor. All validation happens here so a bad deployment fails
before the first request rather than on it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from solders.pubkey import Pubkey

from .environment import build_environment
from .errors import ConfigurationError
from .networks import SolanaNetwork, get_solana_network
from .signer import TreasurySigner

__all__ = [
    "ConfigurationError",
    "SettlementConfig",
    "SettlementParameters",
    "load_settlement_config",
]

DEFAULT_FACILITATOR_URL = "https://facilitator.payai.network"

_PARAMETER_TO_ENV_KEY = {
    "network": "X402_NETWORK",
    "asset_mint": "X402_ASSET_MINT",
    "pay_to": "X402_PAY_TO_ADDRESS",
    "treasury_private_key": "X402_TREASURY_PRIVATE_KEY",
    "facilitator_url": "X402_FACILITATOR_URL",
    "fee_payer": "X402_FEE_PAYER",
    "rpc_url": "X402_RPC_URL",
    "mime_type": "X402_PAYMENT_MIME_TYPE",
    "max_timeout_seconds": "X402_PAYMENT_TIMEOUT_SECONDS",
    "http_timeout_seconds": "X402_HTTP_TIMEOUT_SECONDS",
    "rpc_timeout_seconds": "X402_RPC_TIMEOUT_SECONDS",
    "poll_interval_seconds": "X402_CONFIRMATION_POLL_INTERVAL",
    "confirmation_timeout_seconds": "X402_CONFIRMATION_TIMEOUT",
    "compute_unit_limit": "X402_COMPUTE_UNIT_LIMIT",
    "compute_unit_price": "X402_COMPUTE_UNIT_PRICE",
    "max_retries": "X402_MAX_RETRIES",
    "retry_backoff": "X402_RETRY_BACKOFF",
}


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class SettlementParameters:
    """
    Explicit parameter bundle for constructing :class:`SettlementConfig`.

    Each field maps to one ``X402_*`` key; ``None`` leaves the environment value alone.
    """

    network: Optional[str] = None
    asset_mint: Optional[str] = None
    pay_to: Optional[str] = None
    treasury_private_key: Optional[str] = field(default=None, repr=False)
    facilitator_url: Optional[str] = None
    fee_payer: Optional[str] = None
    rpc_url: Optional[str] = None
    mime_type: Optional[str] = None
    max_timeout_seconds: Optional[int | str] = None
    http_timeout_seconds: Optional[float | str] = None
    rpc_timeout_seconds: Optional[float | str] = None
    poll_interval_seconds: Optional[float | str] = None
    confirmation_timeout_seconds: Optional[float | str] = None
    compute_unit_limit: Optional[int | str] = None
    compute_unit_price: Optional[int | str] = None
    max_retries: Optional[int | str] = None
    retry_backoff: Optional[float | str] = None

    def as_overrides(self) -> Dict[str, str]:
        overrides: Dict[str, str] = {}
        for field_name, env_key in _PARAMETER_TO_ENV_KEY.items():
            value = getattr(self, field_name)
            if value is None:
                continue
            overrides[env_key] = _stringify(value)
        return overrides


def _normalize_address(raw_address: str, field_name: str) -> str:
    value = raw_address.strip()
    if not value:
        raise ConfigurationError(f"{field_name} must not be empty")
    try:
        return str(Pubkey.from_string(value))
    except ValueError as exc:
        raise ConfigurationError(f"{field_name} is not a valid Solana address") from exc


def _parse_int(values: Mapping[str, str], key: str, default: int, *, minimum: int = 0) -> int:
    raw = values.get(key) or str(default)
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got '{raw}'") from exc
    if parsed < minimum:
        raise ConfigurationError(f"{key} must be at least {minimum}, got {parsed}")
    return parsed


def _parse_seconds(values: Mapping[str, str], key: str, default: str) -> float:
    raw = values.get(key) or default
    try:
        parsed = Decimal(raw)
    except InvalidOperation as exc:
        raise ConfigurationError(f"{key} must be a number of seconds, got '{raw}'") from exc
    if not parsed.is_finite() or parsed <= 0:
        raise ConfigurationError(f"{key} must be a positive number of seconds, got '{raw}'")
    return float(parsed)


@dataclass(frozen=True)
class SettlementConfig:
    network: str
    asset_mint: str
    pay_to: str
    facilitator_url: str
    rpc_url: str
    fee_payer: Optional[str] = None
    treasury_private_key: Optional[str] = field(default=None, repr=False)
    mime_type: str = "application/json"
    max_timeout_seconds: int = 300
    http_timeout_seconds: float = 30.0
    rpc_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 2.0
    confirmation_timeout_seconds: float = 90.0
    compute_unit_limit: int = 200_000
    compute_unit_price: int = 1
    max_retries: int = 3
    retry_backoff: float = 0.5

    @property
    def solana_network(self) -> SolanaNetwork:
        return get_solana_network(self.network)

    @property
    def has_treasury_key(self) -> bool:
        return bool(self.treasury_private_key)

    def treasury_signer(self) -> TreasurySigner:
        """
        Materialise the treasury signer.

        Raises :class:`ConfigurationError` when no key was configured; the
        issuer and facilitator client never need it, only the refund engine does.
        """
        if not self.treasury_private_key:
            raise ConfigurationError(
                "X402_TREASURY_PRIVATE_KEY is required to execute treasury transfers"
            )
        return TreasurySigner.from_secret(self.treasury_private_key)

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "SettlementConfig":
        network_name = (values.get("X402_NETWORK") or "solana-devnet").strip()
        try:
            network = get_solana_network(network_name)
        except KeyError as exc:
            raise ConfigurationError(str(exc.args[0])) from exc

        facilitator_url = (values.get("X402_FACILITATOR_URL") or DEFAULT_FACILITATOR_URL).rstrip("/")
        if not facilitator_url.startswith(("http://", "https://")):
            raise ConfigurationError("X402_FACILITATOR_URL must be an http(s) URL")

        treasury_key = values.get("X402_TREASURY_PRIVATE_KEY") or None
        treasury_address: Optional[str] = None
        if treasury_key:
            treasury_address = TreasurySigner.from_secret(treasury_key).address

        pay_to_raw = values.get("X402_PAY_TO_ADDRESS") or treasury_address
        if not pay_to_raw:
            raise ConfigurationError(
                "X402_PAY_TO_ADDRESS must be provided (or X402_TREASURY_PRIVATE_KEY to derive it)"
            )
        pay_to = _normalize_address(pay_to_raw, "X402_PAY_TO_ADDRESS")
        if treasury_address is not None and pay_to != treasury_address:
            raise ConfigurationError(
                "X402_PAY_TO_ADDRESS does not match the public key of X402_TREASURY_PRIVATE_KEY"
            )

        asset_mint = _normalize_address(
            values.get("X402_ASSET_MINT") or network.usdc_mint, "X402_ASSET_MINT"
        )

        fee_payer_raw = values.get("X402_FEE_PAYER")
        fee_payer = _normalize_address(fee_payer_raw, "X402_FEE_PAYER") if fee_payer_raw else None

        network_rpc_key = (
            "X402_RPC_URL_MAINNET" if network.name == "solana" else "X402_RPC_URL_DEVNET"
        )
        rpc_url = (
            values.get("X402_RPC_URL")
            or values.get(network_rpc_key)
            or network.default_rpc_url
        )

        return cls(
            network=network.name,
            asset_mint=asset_mint,
            pay_to=pay_to,
            facilitator_url=facilitator_url,
            rpc_url=rpc_url,
            fee_payer=fee_payer,
            treasury_private_key=treasury_key,
            mime_type=values.get("X402_PAYMENT_MIME_TYPE") or "application/json",
            max_timeout_seconds=_parse_int(values, "X402_PAYMENT_TIMEOUT_SECONDS", 300, minimum=1),
            http_timeout_seconds=_parse_seconds(values, "X402_HTTP_TIMEOUT_SECONDS", "30"),
            rpc_timeout_seconds=_parse_seconds(values, "X402_RPC_TIMEOUT_SECONDS", "10"),
            poll_interval_seconds=_parse_seconds(values, "X402_CONFIRMATION_POLL_INTERVAL", "2"),
            confirmation_timeout_seconds=_parse_seconds(values, "X402_CONFIRMATION_TIMEOUT", "90"),
            compute_unit_limit=_parse_int(values, "X402_COMPUTE_UNIT_LIMIT", 200_000, minimum=1),
            compute_unit_price=_parse_int(values, "X402_COMPUTE_UNIT_PRICE", 1),
            max_retries=_parse_int(values, "X402_MAX_RETRIES", 3),
            retry_backoff=float(_parse_seconds(values, "X402_RETRY_BACKOFF", "0.5")),
        )

    @classmethod
    def from_env(
        cls,
        *,
        env_file: Optional[str] = ".env",
        overrides: Optional[Mapping[str, str]] = None,
        base: Optional[Mapping[str, str]] = None,
        parameters: Optional[SettlementParameters] = None,
        **explicit: Any,
    ) -> "SettlementConfig":
        merged_overrides = dict(overrides or {})
        if parameters is not None:
            merged_overrides.update(parameters.as_overrides())
        unknown = set(explicit) - set(_PARAMETER_TO_ENV_KEY)
        if unknown:
            raise TypeError(f"Unknown settlement parameter(s): {', '.join(sorted(unknown))}")
        merged_overrides.update(SettlementParameters(**explicit).as_overrides())

        environment = build_environment(
            env_file=env_file,
            base=base,
            overrides=merged_overrides,
        )
        return cls.from_mapping(environment.settings())


def load_settlement_config(
    *,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[SettlementParameters] = None,
    network: Optional[str] = None,
    asset_mint: Optional[str] = None,
    pay_to: Optional[str] = None,
    treasury_private_key: Optional[str] = None,
    facilitator_url: Optional[str] = None,
    fee_payer: Optional[str] = None,
    rpc_url: Optional[str] = None,
    mime_type: Optional[str] = None,
    max_timeout_seconds: Optional[int | str] = None,
    poll_interval_seconds: Optional[float | str] = None,
    confirmation_timeout_seconds: Optional[float | str] = None,
) -> SettlementConfig:
    """
    Convenience wrapper that mirrors :meth:`SettlementConfig.from_env`.

    Settings can come from the process environment, a ``.env`` file, direct
    keyword arguments, or any combination of the three.
    """
    explicit = {
        "network": network,
        "asset_mint": asset_mint,
        "pay_to": pay_to,
        "treasury_private_key": treasury_private_key,
        "facilitator_url": facilitator_url,
        "fee_payer": fee_payer,
        "rpc_url": rpc_url,
        "mime_type": mime_type,
        "max_timeout_seconds": max_timeout_seconds,
        "poll_interval_seconds": poll_interval_seconds,
        "confirmation_timeout_seconds": confirmation_timeout_seconds,
    }
    return SettlementConfig.from_env(
        env_file=env_file,
        overrides=overrides,
        base=base,
        parameters=parameters,
        **{key: value for key, value in explicit.items() if value is not None},
    )
