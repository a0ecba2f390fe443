"""
Server half of the x402 handshake: challenge, verify, settle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .codec import (
    PAYMENT_RESPONSE_HEADER,
    decode_payment_header,
    encode_payment_response,
    extract_payment_header,
)
from .errors import MalformedPaymentError
from .facilitator import FacilitatorClient, SettlementResult
from .requirements import (
    PaymentRequiredResponse,
    PaymentRequirementIssuer,
    PaymentRequirements,
    payment_required_response,
)

__all__ = ["PaymentGate", "PaymentOutcome"]


@dataclass(frozen=True)
class PaymentOutcome:
    verified: bool
    settled: bool
    settlement: Optional[SettlementResult] = None
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.verified and self.settled

    def response_headers(self) -> Dict[str, str]:
        if self.settlement is None:
            return {}
        return {
            PAYMENT_RESPONSE_HEADER: encode_payment_response(
                success=self.settlement.success,
                network=self.settlement.network,
                transaction=self.settlement.transaction,
                payer=self.settlement.payer,
            )
        }


class PaymentGate:
    """
    Guards a paid resource.

    The issuer binds requirements to the configured network and recipient;
    the facilitator decides whether the submitted header pays them.
    """

    def __init__(self, issuer: PaymentRequirementIssuer, facilitator: FacilitatorClient) -> None:
        self.issuer = issuer
        self.facilitator = facilitator

    def requirements(self, amount: int, description: str, resource_url: str) -> PaymentRequirements:
        return self.issuer.issue_requirements(amount, description, resource_url)

    def challenge(self, requirements: PaymentRequirements, *, error: str = "Payment required") -> PaymentRequiredResponse:
        return payment_required_response(requirements, error=error)

    def process(self, header_value: str, requirements: PaymentRequirements) -> PaymentOutcome:
        """
        Verify then settle one payment header.

        Decoding and network/scheme mismatches raise
        :class:`MalformedPaymentError`; facilitator failures propagate as
        their taxonomy errors. ``settle`` is attempted at most once and only
        after a successful ``verify``.
        """
        header = decode_payment_header(header_value)
        header.check_against(requirements)

        verification = self.facilitator.verify_detailed(header, requirements)
        if not verification.is_valid:
            return PaymentOutcome(
                verified=False,
                settled=False,
                reason=verification.invalid_reason or "Payment verification failed",
            )

        settlement = self.facilitator.settle(header, requirements)
        if not settlement.success:
            return PaymentOutcome(
                verified=True,
                settled=False,
                settlement=settlement,
                reason=settlement.error_reason or "Payment settlement failed",
            )
        return PaymentOutcome(verified=True, settled=True, settlement=settlement)

    def guard(self, headers: Mapping[str, str], requirements: PaymentRequirements):
        """
        Either a 402 challenge (no or unusable header) or the settled outcome.

        Returns a :class:`PaymentRequiredResponse` when the caller must pay,
        otherwise the :class:`PaymentOutcome`.
        """
        header_value = extract_payment_header(headers)
        if header_value is None:
            return self.challenge(requirements)
        try:
            outcome = self.process(header_value, requirements)
        except MalformedPaymentError as exc:
            logging.info("Rejecting malformed payment header: %s", exc)
            return self.challenge(requirements, error=str(exc))
        if not outcome:
            return self.challenge(requirements, error=outcome.reason or "Invalid payment")
        return outcome
