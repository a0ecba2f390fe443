"""
HTTP client for the x402 settlement facilitator.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import ConnectTimeoutError, MaxRetryError, NewConnectionError
from urllib3.util.retry import Retry

from .codec import PaymentHeader
from .config import SettlementConfig
from .errors import (
    FacilitatorRejected,
    FacilitatorUnreachable,
    SettlementOutcomeUnknown,
)
from .requirements import X402_VERSION, PaymentRequirements

__all__ = [
    "FacilitatorClient",
    "SettlementResult",
    "SupportedKind",
    "VerificationResult",
]


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    invalid_reason: Optional[str]
    payer: Optional[str]
    raw: Dict[str, Any]

    def __bool__(self) -> bool:
        return self.is_valid

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "VerificationResult":
        return cls(
            is_valid=bool(payload.get("isValid")),
            invalid_reason=payload.get("invalidReason"),
            payer=payload.get("payer"),
            raw=payload,
        )


@dataclass(frozen=True)
class SettlementResult:
    success: bool
    network: Optional[str]
    transaction: Optional[str]
    payer: Optional[str] = None
    error_reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "SettlementResult":
        return cls(
            success=bool(payload.get("success")),
            network=payload.get("network") or payload.get("networkId"),
            transaction=payload.get("transaction") or payload.get("txHash"),
            payer=payload.get("payer"),
            error_reason=payload.get("errorReason") or payload.get("error"),
            raw=payload,
        )


@dataclass(frozen=True)
class SupportedKind:
    x402_version: int
    scheme: str
    network: str
    extra: Dict[str, Any]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SupportedKind":
        return cls(
            x402_version=int(data.get("x402Version", X402_VERSION)),
            scheme=data.get("scheme", ""),
            network=data.get("network", ""),
            extra=dict(data.get("extra") or {}),
        )


def _failed_to_connect(exc: requests.ConnectionError) -> bool:
    """True when the request never left this process: DNS, refused or connect timeout."""
    if isinstance(exc, requests.ConnectTimeout):
        return True
    reason = exc.args[0] if exc.args else None
    if isinstance(reason, MaxRetryError):
        reason = reason.reason
    return isinstance(reason, (NewConnectionError, ConnectTimeoutError))


def _build_session(max_retries: int, backoff: float) -> requests.Session:
    # Only connection establishment is retried: a request that never reached
    # the facilitator cannot have settled anything. Read timeouts and 5xx
    # answers are surfaced to the caller unchanged.
    retry = Retry(
        total=max_retries,
        connect=max_retries,
        read=0,
        status=0,
        other=0,
        backoff_factor=backoff,
        allowed_methods=None,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class FacilitatorClient:
    """
    Client for the facilitator's ``/verify``, ``/settle`` and ``/supported`` endpoints.

    ``settle`` is never retried after the request left this process. Call
    ``verify`` first and ``settle`` at most once per accepted header.
    """

    def __init__(
        self,
        config: SettlementConfig,
        *,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.base_url = config.facilitator_url.rstrip("/")
        self.timeout = config.http_timeout_seconds
        self.session = session or _build_session(config.max_retries, config.retry_backoff)

    @staticmethod
    def _request_body(header: PaymentHeader, requirements: PaymentRequirements) -> Dict[str, Any]:
        return {
            "x402Version": header.x402_version,
            "paymentHeader": header.encode(),
            "paymentPayload": header.to_dict(),
            "paymentRequirements": requirements.to_dict(),
        }

    def _parse(self, response: requests.Response, url: str) -> Dict[str, Any]:
        if response.status_code >= 400:
            raise FacilitatorRejected(response.status_code, response.text, url=url)
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise FacilitatorRejected(
                response.status_code,
                f"Failed to parse JSON from facilitator: {response.text}",
                url=url,
            ) from exc
        if not isinstance(payload, dict):
            raise FacilitatorRejected(response.status_code, f"Unexpected response: {payload!r}", url=url)
        return payload

    def _post_json(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FacilitatorUnreachable(f"Facilitator at {url} is unreachable: {exc}") from exc
        return self._parse(response, url)

    def verify_detailed(
        self,
        header: PaymentHeader,
        requirements: PaymentRequirements,
    ) -> VerificationResult:
        url = f"{self.base_url}/verify"
        logging.info("Submitting payment for verification to %s", url)
        result = VerificationResult.from_response(
            self._post_json(url, self._request_body(header, requirements))
        )
        if not result.is_valid:
            logging.info("Facilitator rejected payment: %s", result.invalid_reason)
        return result

    def verify(self, header: PaymentHeader, requirements: PaymentRequirements) -> bool:
        return self.verify_detailed(header, requirements).is_valid

    def settle(self, header: PaymentHeader, requirements: PaymentRequirements) -> SettlementResult:
        url = f"{self.base_url}/settle"
        logging.info("Submitting payment for settlement to %s", url)
        body = self._request_body(header, requirements)
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except (requests.ReadTimeout, requests.exceptions.ChunkedEncodingError) as exc:
            raise SettlementOutcomeUnknown(
                f"Settlement at {url} timed out after the request was sent; "
                "query the facilitator or ledger before settling again"
            ) from exc
        except requests.ConnectionError as exc:
            if _failed_to_connect(exc):
                raise FacilitatorUnreachable(f"Facilitator at {url} is unreachable: {exc}") from exc
            # dropped after the body may have been delivered
            raise SettlementOutcomeUnknown(
                f"Connection to {url} failed mid-settlement ({exc}); "
                "query the facilitator or ledger before settling again"
            ) from exc
        except requests.RequestException as exc:
            raise FacilitatorUnreachable(f"Facilitator at {url} is unreachable: {exc}") from exc

        result = SettlementResult.from_response(self._parse(response, url))
        if result.success:
            logging.info("Payment settled on %s. Transaction: %s", result.network, result.transaction)
        else:
            logging.warning("Settlement failed: %s", result.error_reason)
        return result

    def supported(self) -> List[SupportedKind]:
        url = f"{self.base_url}/supported"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FacilitatorUnreachable(f"Facilitator at {url} is unreachable: {exc}") from exc
        payload = self._parse(response, url)
        return [SupportedKind.from_dict(kind) for kind in payload.get("kinds") or []]

    def fee_payer(self, network: Optional[str] = None) -> Optional[str]:
        """Return the fee payer the facilitator advertises for ``network``, if any."""
        network = network or self.config.network
        for kind in self.supported():
            if kind.network == network and kind.scheme == "exact":
                fee_payer = kind.extra.get("feePayer")
                if fee_payer:
                    return fee_payer
        return None
