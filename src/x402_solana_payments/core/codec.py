"""
Encoding and decoding of the ``X-PAYMENT`` header.

The header is ``base64(json({x402Version, scheme, network, payload}))`` where,
for Solana networks, ``payload.transaction`` is itself the base64 of the
signed transaction's wire bytes. Both layers must match the facilitator
byte for byte, so the JSON is always emitted in compact form.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from hexbytes import HexBytes
from solders.transaction import Transaction, VersionedTransaction

from .errors import MalformedPaymentError, NetworkMismatchError
from .networks import is_evm_network, is_solana_network
from .requirements import EXACT_SCHEME, X402_VERSION, PaymentRequirements

__all__ = [
    "PAYMENT_HEADER",
    "PAYMENT_RESPONSE_HEADER",
    "EvmPaymentPayload",
    "PaymentHeader",
    "SolanaPaymentPayload",
    "decode_payment_header",
    "decode_transaction",
    "encode_payment_header",
    "encode_payment_response",
    "extract_payment_header",
]

PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

SignedTransaction = Union[VersionedTransaction, Transaction]


@dataclass(frozen=True)
class SolanaPaymentPayload:
    transaction: str

    @property
    def transaction_bytes(self) -> bytes:
        return base64.b64decode(self.transaction, validate=True)

    def to_dict(self) -> Dict[str, Any]:
        return {"transaction": self.transaction}


@dataclass(frozen=True)
class EvmPaymentPayload:
    transaction: HexBytes

    def to_dict(self) -> Dict[str, Any]:
        return {"transaction": "0x" + bytes(self.transaction).hex()}


PaymentPayload = Union[SolanaPaymentPayload, EvmPaymentPayload]


@dataclass(frozen=True)
class PaymentHeader:
    x402_version: int
    scheme: str
    network: str
    payload: PaymentPayload

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x402Version": self.x402_version,
            "scheme": self.scheme,
            "network": self.network,
            "payload": self.payload.to_dict(),
        }

    def encode(self) -> str:
        document = json.dumps(self.to_dict(), separators=(",", ":"))
        return base64.b64encode(document.encode("utf-8")).decode("ascii")

    def check_against(self, requirements: PaymentRequirements) -> None:
        """Raise when this header cannot be an answer to ``requirements``."""
        if self.network != requirements.network:
            raise NetworkMismatchError(requirements.network, self.network)
        if self.scheme != requirements.scheme:
            raise MalformedPaymentError(
                f"Payment scheme '{self.scheme}' does not match required '{requirements.scheme}'"
            )


def encode_payment_header(
    transaction: SignedTransaction,
    requirements: PaymentRequirements,
    *,
    x402_version: int = X402_VERSION,
) -> str:
    """Serialize a signed transaction into an ``X-PAYMENT`` header value."""
    if not is_solana_network(requirements.network):
        raise MalformedPaymentError(
            f"Cannot encode a Solana transaction for network '{requirements.network}'"
        )
    wire = bytes(transaction)
    header = PaymentHeader(
        x402_version=x402_version,
        scheme=requirements.scheme,
        network=requirements.network,
        payload=SolanaPaymentPayload(base64.b64encode(wire).decode("ascii")),
    )
    return header.encode()


def _decode_payload(network: str, raw: Any) -> PaymentPayload:
    if not isinstance(raw, Mapping) or not isinstance(raw.get("transaction"), str):
        raise MalformedPaymentError("Payment payload must contain a 'transaction' string")
    transaction = raw["transaction"]

    if is_solana_network(network):
        try:
            base64.b64decode(transaction, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedPaymentError("Solana payment transaction is not valid base64") from exc
        return SolanaPaymentPayload(transaction)

    try:
        return EvmPaymentPayload(HexBytes(transaction))
    except ValueError as exc:
        raise MalformedPaymentError("EVM payment transaction is not valid hex") from exc


def decode_payment_header(value: str) -> PaymentHeader:
    if not value:
        raise MalformedPaymentError("Payment header is empty")
    try:
        document = base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedPaymentError("Payment header is not valid base64") from exc
    try:
        data = json.loads(document.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedPaymentError("Payment header does not contain valid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedPaymentError("Payment header must encode a JSON object")

    network = data.get("network")
    scheme = data.get("scheme")
    if not network or not isinstance(network, str):
        raise MalformedPaymentError("Payment header is missing 'network'")
    if not is_solana_network(network) and not is_evm_network(network):
        raise MalformedPaymentError(f"Unrecognised payment network '{network}'")
    if scheme != EXACT_SCHEME:
        raise MalformedPaymentError(f"Unrecognised payment scheme {scheme!r}")

    version = data.get("x402Version", X402_VERSION)
    if isinstance(version, bool) or not isinstance(version, int):
        raise MalformedPaymentError("x402Version must be an integer")

    return PaymentHeader(
        x402_version=version,
        scheme=scheme,
        network=network,
        payload=_decode_payload(network, data.get("payload")),
    )


def decode_transaction(header: PaymentHeader) -> VersionedTransaction:
    """Recover the signed Solana transaction carried by ``header``."""
    if not isinstance(header.payload, SolanaPaymentPayload):
        raise MalformedPaymentError(f"Network '{header.network}' does not carry a Solana transaction")
    try:
        return VersionedTransaction.from_bytes(header.payload.transaction_bytes)
    except ValueError as exc:
        raise MalformedPaymentError("Payment transaction bytes do not deserialize") from exc


def encode_payment_response(
    *,
    success: bool,
    network: Optional[str],
    transaction: Optional[str],
    payer: Optional[str] = None,
) -> str:
    """Build the ``X-PAYMENT-RESPONSE`` header returned after settlement."""
    document = json.dumps(
        {
            "success": success,
            "transaction": transaction,
            "network": network,
            "payer": payer,
        },
        separators=(",", ":"),
    )
    return base64.b64encode(document.encode("utf-8")).decode("ascii")


def extract_payment_header(headers: Mapping[str, str]) -> Optional[str]:
    """Case-insensitive lookup of ``X-PAYMENT`` in a plain mapping of request headers."""
    wanted = PAYMENT_HEADER.lower()
    for key, value in headers.items():
        if key.lower() == wanted and value:
            return value
    return None
