"""
Construction of the HTTP 402 payment challenge.
"""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from .config import SettlementConfig
from .errors import ConfigurationError, MalformedPaymentError

__all__ = [
    "PAYMENT_REQUIRED_HEADER",
    "X402_VERSION",
    "PaymentRequiredResponse",
    "PaymentRequirementIssuer",
    "PaymentRequirements",
    "payment_required_response",
]

X402_VERSION = 1
EXACT_SCHEME = "exact"
PAYMENT_REQUIRED_HEADER = "X-PAYMENT-REQUIRED"


@dataclass(frozen=True)
class PaymentRequirements:
    """One billable request, as advertised in the ``accepts`` list of a 402."""

    network: str
    asset: str
    max_amount_required: str
    pay_to: str
    resource: str
    description: str = ""
    mime_type: str = "application/json"
    max_timeout_seconds: int = 300
    scheme: str = EXACT_SCHEME
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # freeze the opaque mapping as well so issued requirements cannot drift
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @property
    def amount(self) -> int:
        return int(self.max_amount_required)

    @property
    def fee_payer(self) -> Optional[str]:
        return self.extra.get("feePayer")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "outputSchema": None,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentRequirements":
        try:
            amount = data["maxAmountRequired"]
            if not isinstance(amount, str) or not re.fullmatch(r"[0-9]+", amount):
                raise MalformedPaymentError(
                    f"maxAmountRequired must be an integer string, got {amount!r}"
                )
            return cls(
                scheme=data.get("scheme", EXACT_SCHEME),
                network=data["network"],
                asset=data["asset"],
                max_amount_required=amount,
                pay_to=data["payTo"],
                resource=data.get("resource", ""),
                description=data.get("description", ""),
                mime_type=data.get("mimeType", "application/json"),
                max_timeout_seconds=_timeout_seconds(data.get("maxTimeoutSeconds", 300)),
                extra=data.get("extra") or {},
            )
        except KeyError as exc:
            raise MalformedPaymentError(f"Payment requirements missing '{exc.args[0]}'") from exc


def _timeout_seconds(value: Any) -> int:
    if isinstance(value, bool):
        raise MalformedPaymentError(f"maxTimeoutSeconds must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedPaymentError(f"maxTimeoutSeconds must be an integer, got {value!r}") from exc


@dataclass(frozen=True)
class PaymentRequiredResponse:
    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str]


def payment_required_response(
    requirements: PaymentRequirements,
    *,
    error: str = "Payment required",
) -> PaymentRequiredResponse:
    """
    Build the 402 challenge for ``requirements``.

    The same document is returned as the JSON body and, base64 encoded, in the
    ``X-PAYMENT-REQUIRED`` header for clients that only inspect headers.
    """
    body = {
        "x402Version": X402_VERSION,
        "accepts": [requirements.to_dict()],
        "error": error,
    }
    document = json.dumps(body, separators=(",", ":"))
    header_value = base64.b64encode(document.encode("utf-8")).decode("ascii")
    return PaymentRequiredResponse(
        status_code=402,
        body=body,
        headers={
            "Content-Type": "application/json",
            PAYMENT_REQUIRED_HEADER: header_value,
        },
    )


class PaymentRequirementIssuer:
    """
    Issues payment requirements bound to the configured network and recipient.

    Callers only choose the price, description and resource; they cannot
    redirect funds.
    """

    def __init__(self, config: SettlementConfig, *, fee_payer: Optional[str] = None) -> None:
        if not config.pay_to:
            raise ConfigurationError("A payment recipient (pay_to) must be configured")
        if not config.network:
            raise ConfigurationError("A settlement network must be configured")
        if not config.asset_mint:
            raise ConfigurationError("An asset mint must be configured")
        self.config = config
        self.fee_payer = fee_payer or config.fee_payer

    def issue_requirements(
        self,
        amount_smallest_unit: int,
        description: str,
        resource_url: str,
    ) -> PaymentRequirements:
        if isinstance(amount_smallest_unit, bool) or not isinstance(amount_smallest_unit, int):
            raise ValueError("Payment amounts must be integers in the asset's smallest unit")
        if amount_smallest_unit <= 0:
            raise ValueError("Payment amount must be greater than zero")

        extra: Dict[str, Any] = {}
        if self.fee_payer:
            extra["feePayer"] = self.fee_payer

        return PaymentRequirements(
            network=self.config.network,
            asset=self.config.asset_mint,
            max_amount_required=str(amount_smallest_unit),
            pay_to=self.config.pay_to,
            resource=resource_url,
            description=description,
            mime_type=self.config.mime_type,
            max_timeout_seconds=self.config.max_timeout_seconds,
            extra=extra,
        )

    def challenge(
        self,
        amount_smallest_unit: int,
        description: str,
        resource_url: str,
    ) -> PaymentRequiredResponse:
        requirements = self.issue_requirements(amount_smallest_unit, description, resource_url)
        return payment_required_response(requirements)
