"""
Thin adapter over the solana-py RPC client.

Every call made by the engine goes through :class:`LedgerClient`, which is the
single place where ``httpx``/``solana`` exceptions are translated into
:class:`~x402_solana_payments.core.errors.NetworkUnavailable` (transport) or
:class:`~x402_solana_payments.core.errors.LedgerRequestRejected` (JSON-RPC
error). Read-only calls that fail in transport are retried a bounded number
of times with exponential backoff; submitting a transaction never is.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.account import Account
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from .config import SettlementConfig
from .errors import (
    BroadcastOutcomeUnknown,
    LedgerRequestRejected,
    NetworkUnavailable,
    RefundExecutionFailed,
)

__all__ = [
    "LedgerClient",
    "SignatureStatus",
]

T = TypeVar("T")

_TRANSPORT_ERRORS = (SolanaRpcException, httpx.HTTPError, OSError)


@dataclass(frozen=True)
class SignatureStatus:
    """Snapshot of a transaction's status as reported by ``getSignatureStatuses``."""

    signature: str
    found: bool
    confirmation_status: Optional[str] = None
    err: Any = None

    @property
    def failed(self) -> bool:
        return self.err is not None

    @property
    def is_confirmed(self) -> bool:
        return self.confirmation_status in ("confirmed", "finalized")


_CONFIRMATION_NAMES = (
    (TransactionConfirmationStatus.Processed, "processed"),
    (TransactionConfirmationStatus.Confirmed, "confirmed"),
    (TransactionConfirmationStatus.Finalized, "finalized"),
)


def _confirmation_name(status) -> Optional[str]:
    for variant, name in _CONFIRMATION_NAMES:
        if status == variant:
            return name
    return None


class LedgerClient:
    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        client: Optional[Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rpc_url = rpc_url
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._client = client or Client(rpc_url, commitment=Confirmed, timeout=timeout)
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: SettlementConfig, **kwargs: Any) -> "LedgerClient":
        return cls(
            config.rpc_url,
            timeout=config.rpc_timeout_seconds,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff,
            **kwargs,
        )

    def _read(self, description: str, call: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return call()
            except RPCException as exc:
                raise LedgerRequestRejected(
                    f"Ledger RPC {description} rejected by {self.rpc_url}: {exc}"
                ) from exc
            except _TRANSPORT_ERRORS as exc:
                if attempt >= self.max_retries:
                    raise NetworkUnavailable(
                        f"Ledger RPC {description} failed at {self.rpc_url}: {exc}"
                    ) from exc
                delay = self.retry_backoff * (2**attempt)
                attempt += 1
                logging.warning(
                    "Ledger RPC %s failed (%s); retry %d/%d in %.2fs",
                    description,
                    exc,
                    attempt,
                    self.max_retries,
                    delay,
                )
                self._sleep(delay)

    def get_account(self, address: Pubkey) -> Optional[Account]:
        response = self._read(
            f"getAccountInfo({address})",
            lambda: self._client.get_account_info(address, commitment=Confirmed),
        )
        return response.value

    def account_exists(self, address: Pubkey) -> bool:
        return self.get_account(address) is not None

    def latest_blockhash(self) -> Hash:
        response = self._read(
            "getLatestBlockhash",
            lambda: self._client.get_latest_blockhash(commitment=Confirmed),
        )
        return response.value.blockhash

    def send_transaction(self, wire: bytes, signature: Signature) -> str:
        """
        Broadcast signed wire bytes and return the transaction signature.

        A preflight rejection means nothing reached the network and is raised
        as :class:`RefundExecutionFailed`. A transport failure is ambiguous,
        since the node may have forwarded the transaction before the
        connection dropped, and is raised as :class:`BroadcastOutcomeUnknown`.
        """
        opts = TxOpts(skip_preflight=False, preflight_commitment=Confirmed)
        try:
            response = self._client.send_raw_transaction(wire, opts=opts)
        except RPCException as exc:
            raise RefundExecutionFailed(
                f"Ledger rejected transaction {signature} before broadcast: {exc}",
                ledger_error=exc.args[0] if exc.args else None,
            ) from exc
        except _TRANSPORT_ERRORS as exc:
            raise BroadcastOutcomeUnknown(
                f"Broadcast of {signature} to {self.rpc_url} did not complete: {exc}",
                signature=str(signature),
            ) from exc
        return str(response.value)

    def signature_status(self, signature: str) -> SignatureStatus:
        """Single, un-retried status probe; the confirmation loop is its own retry."""
        try:
            response = self._client.get_signature_statuses([Signature.from_string(signature)])
        except RPCException as exc:
            raise LedgerRequestRejected(f"Status lookup for {signature} rejected: {exc}") from exc
        except _TRANSPORT_ERRORS as exc:
            raise NetworkUnavailable(f"Status lookup for {signature} failed: {exc}") from exc

        status = response.value[0] if response.value else None
        if status is None:
            return SignatureStatus(signature=signature, found=False)
        return SignatureStatus(
            signature=signature,
            found=True,
            confirmation_status=_confirmation_name(status.confirmation_status),
            err=status.err,
        )
