"""
Error taxonomy shared by every component of the settlement engine.

Ledger, facilitator and transport failures are mapped onto these classes at
the component boundary; raw ``requests``/``httpx``/``solana`` exceptions never
cross into caller code. ``retryable`` tells the caller whether a bounded retry
with backoff is a sensible reaction.
"""

from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "X402Error",
    "ConfigurationError",
    "InvalidRefundRequest",
    "MalformedPaymentError",
    "NetworkMismatchError",
    "UnsupportedAssetError",
    "NetworkUnavailable",
    "LedgerRequestRejected",
    "FacilitatorUnreachable",
    "FacilitatorRejected",
    "DestinationAccountMissing",
    "RefundExecutionFailed",
    "SettlementTimeout",
    "SettlementOutcomeUnknown",
    "BroadcastOutcomeUnknown",
    "ConfirmationCancelled",
]


class X402Error(Exception):
    """Base class for every error raised by this package."""

    retryable: bool = False


class ConfigurationError(X402Error):
    """Raised at startup when the supplied configuration is invalid."""


class InvalidRefundRequest(X402Error):
    """The refund destination or amount is unusable."""


class MalformedPaymentError(X402Error):
    """A payment header could not be decoded or does not match its requirements."""


class NetworkMismatchError(MalformedPaymentError):
    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            f"Payment header targets network '{actual}' but requirements expect '{expected}'"
        )
        self.expected = expected
        self.actual = actual


class UnsupportedAssetError(X402Error):
    """The mint is not governed by a known token program."""


class NetworkUnavailable(X402Error):
    """A ledger RPC call could not complete."""

    retryable = True


class LedgerRequestRejected(X402Error):
    """The ledger RPC answered with a JSON-RPC error; repeating the call will not help."""


class FacilitatorUnreachable(X402Error):
    """The facilitator could not be reached."""

    retryable = True


class FacilitatorRejected(X402Error):
    """The facilitator answered with a definitive non-2xx response."""

    def __init__(self, status_code: int, detail: str, *, url: Optional[str] = None) -> None:
        super().__init__(f"Facilitator responded with {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail
        self.url = url


class DestinationAccountMissing(X402Error):
    """The destination token account does not exist on the ledger."""

    def __init__(self, owner: str, token_account: str) -> None:
        super().__init__(
            f"Token account {token_account} for {owner} does not exist; "
            "it must be created before a refund can be delivered"
        )
        self.owner = owner
        self.token_account = token_account


class RefundExecutionFailed(X402Error):
    """The ledger rejected the refund transaction."""

    def __init__(
        self,
        message: str,
        *,
        signature: Optional[str] = None,
        ledger_error: Any = None,
    ) -> None:
        super().__init__(message)
        self.signature = signature
        self.ledger_error = ledger_error


class SettlementTimeout(X402Error):
    """
    The outcome of a money-moving call is unknown.

    This is distinct from both success and failure: the caller must check the
    facilitator or the ledger before deciding to send funds again.
    """


class SettlementOutcomeUnknown(SettlementTimeout):
    """A ``/settle`` call timed out or lost its connection after it was sent."""


class BroadcastOutcomeUnknown(SettlementTimeout):
    """Submitting a signed transaction failed mid-flight; it may still land."""

    def __init__(self, message: str, *, signature: str) -> None:
        super().__init__(message)
        self.signature = signature


class ConfirmationCancelled(X402Error):
    """Confirmation polling was cancelled; the broadcast transaction is untouched."""

    def __init__(self, signature: str) -> None:
        super().__init__(f"Stopped waiting for transaction {signature}")
        self.signature = signature
