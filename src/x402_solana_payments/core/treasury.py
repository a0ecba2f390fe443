"""
Treasury refunds: build, sign, broadcast and confirm an SPL transfer.

The pipeline for one :class:`RefundRequest` is strictly sequential:

1. validate the request (no I/O before this passes)
2. detect the mint's token program and derive both token accounts
3. require the destination token account to already exist
4. ``transfer_checked`` with decimals read from the mint
5. compute unit limit and price directives
6. fresh blockhash, treasury as fee payer, sign, serialize
7. broadcast
8. poll until confirmed, finalized, failed, or the poll budget runs out

A transaction that reached the network is never resubmitted here. A timed-out
poll is reported as success with ``unconfirmed=True``; a second attempt, with
a new blockhash, is always the caller's decision.
"""

from __future__ import annotations

import enum
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .config import SettlementConfig
from .errors import (
    ConfirmationCancelled,
    DestinationAccountMissing,
    InvalidRefundRequest,
    LedgerRequestRejected,
    NetworkUnavailable,
    RefundExecutionFailed,
    X402Error,
)
from .ledger import LedgerClient, SignatureStatus
from .signer import TreasurySigner
from .token_accounts import TokenAccountResolver, resolve_token_account
from .transactions import (
    ComputeBudget,
    TransferPlan,
    build_transfer_instructions,
    compile_transfer_message,
)

__all__ = [
    "ConfirmationState",
    "ConfirmationTracker",
    "RefundRequest",
    "RefundResult",
    "TreasurySettlementEngine",
    "is_valid_address",
]

_BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def is_valid_address(address: object) -> bool:
    """A base58 public key that lies on the ed25519 curve, i.e. a wallet and not a PDA."""
    if not isinstance(address, str) or not _BASE58_ADDRESS.match(address):
        return False
    try:
        pubkey = Pubkey.from_string(address)
    except ValueError:
        return False
    return pubkey.is_on_curve()


class ConfirmationState(enum.Enum):
    SUBMITTED = "submitted"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"
    TIMED_OUT = "timed-out"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        ConfirmationState.CONFIRMED,
        ConfirmationState.FINALIZED,
        ConfirmationState.FAILED,
        ConfirmationState.TIMED_OUT,
    }
)

_TRANSITIONS = {
    ConfirmationState.SUBMITTED: frozenset({ConfirmationState.PENDING}),
    ConfirmationState.PENDING: _TERMINAL_STATES,
}


class ConfirmationTracker:
    """
    State machine for one broadcast transaction.

    ``submitted -> pending -> {confirmed, finalized, failed, timed-out}``;
    terminal states are final. ``sleep`` and ``clock`` are injectable so the
    poll loop can run on simulated time.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        signature: str,
        *,
        poll_interval: float = 2.0,
        timeout: float = 90.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ledger = ledger
        self.signature = signature
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self.state = ConfirmationState.SUBMITTED
        self.history: List[ConfirmationState] = [self.state]
        self.last_status: Optional[SignatureStatus] = None
        self.polls = 0

    def transition(self, new_state: ConfirmationState) -> None:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise RuntimeError(
                f"Illegal confirmation transition {self.state.value} -> {new_state.value}"
            )
        logging.info("Transaction %s: %s -> %s", self.signature, self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def _wait(self, cancel: Optional[threading.Event]) -> None:
        if cancel is not None and self._sleep is time.sleep:
            # wake early on cancel when running on real time
            cancelled = cancel.wait(self.poll_interval)
        else:
            self._sleep(self.poll_interval)
            cancelled = cancel is not None and cancel.is_set()
        if cancelled:
            raise ConfirmationCancelled(self.signature)

    def _probe(self) -> Optional[SignatureStatus]:
        self.polls += 1
        try:
            status = self.ledger.signature_status(self.signature)
        except (NetworkUnavailable, LedgerRequestRejected) as exc:
            logging.warning("Could not check status of %s: %s", self.signature, exc)
            return None
        self.last_status = status
        return status

    def run(self, cancel: Optional[threading.Event] = None) -> ConfirmationState:
        if self.state is not ConfirmationState.SUBMITTED:
            raise RuntimeError(f"Tracker for {self.signature} already ran")
        self.transition(ConfirmationState.PENDING)
        deadline = self._clock() + self.timeout

        while True:
            if cancel is not None and cancel.is_set():
                raise ConfirmationCancelled(self.signature)

            status = self._probe()
            if status is not None and status.failed:
                self.transition(ConfirmationState.FAILED)
                return self.state
            if status is not None and status.confirmation_status == "finalized":
                self.transition(ConfirmationState.FINALIZED)
                return self.state
            if status is not None and status.confirmation_status == "confirmed":
                self.transition(ConfirmationState.CONFIRMED)
                return self.state

            if self._clock() >= deadline:
                self.transition(ConfirmationState.TIMED_OUT)
                logging.warning(
                    "Transaction %s not confirmed after %.0fs (last status: %s)",
                    self.signature,
                    self.timeout,
                    status.confirmation_status if status and status.found else "pending",
                )
                return self.state

            self._wait(cancel)


@dataclass(frozen=True)
class RefundRequest:
    destination_address: str
    amount_micro_units: int


@dataclass(frozen=True)
class RefundResult:
    """
    Discriminated outcome of a refund.

    ``success`` with ``unconfirmed`` set means the transaction was broadcast
    but not seen confirmed within the poll budget: check the ledger before
    sending funds again.
    """

    success: bool
    transaction_id: Optional[str] = None
    state: Optional[ConfirmationState] = None
    error: Optional[X402Error] = field(default=None, compare=False)
    explorer_url: Optional[str] = None

    @property
    def unconfirmed(self) -> bool:
        return self.state is ConfirmationState.TIMED_OUT

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None


class TreasurySettlementEngine:
    def __init__(
        self,
        config: SettlementConfig,
        *,
        signer: Optional[TreasurySigner] = None,
        ledger: Optional[LedgerClient] = None,
        resolver: Optional[TokenAccountResolver] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.signer = signer or config.treasury_signer()
        self.ledger = ledger or LedgerClient.from_config(config)
        self.resolver = resolver or TokenAccountResolver(self.ledger)
        self.mint = Pubkey.from_string(config.asset_mint)
        self.budget = ComputeBudget(
            unit_limit=config.compute_unit_limit,
            unit_price_micro_lamports=config.compute_unit_price,
        )
        self._clock = clock
        self._sleep = sleep
        logging.info(
            "Treasury engine ready: treasury=%s mint=%s network=%s rpc=%s",
            self.signer.address,
            self.mint,
            config.network,
            self.ledger.rpc_url,
        )

    @property
    def treasury_address(self) -> str:
        return self.signer.address

    def treasury_token_account(self) -> Pubkey:
        return self.resolver.resolve(self.signer.pubkey, self.mint)

    def explorer_url(self, signature: str) -> str:
        return self.config.solana_network.explorer_url(signature)

    @staticmethod
    def validate(request: RefundRequest) -> None:
        if not is_valid_address(request.destination_address):
            raise InvalidRefundRequest(
                f"Invalid destination address: {request.destination_address!r}"
            )
        amount = request.amount_micro_units
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidRefundRequest(f"Refund amount must be an integer, got {amount!r}")
        if amount <= 0:
            raise InvalidRefundRequest(f"Invalid refund amount: {amount}")

    def _build_signed_transfer(self, request: RefundRequest) -> VersionedTransaction:
        destination_owner = Pubkey.from_string(request.destination_address)
        variant = self.resolver.detect_program_variant(self.mint)
        source = resolve_token_account(self.signer.pubkey, self.mint, variant)
        destination = resolve_token_account(destination_owner, self.mint, variant)
        logging.info("Refund accounts: treasury=%s destination=%s", source, destination)

        if not self.resolver.account_exists(destination):
            raise DestinationAccountMissing(request.destination_address, str(destination))

        plan = TransferPlan(
            mint=self.mint,
            source=source,
            destination=destination,
            authority=self.signer.pubkey,
            amount=request.amount_micro_units,
            decimals=self.resolver.mint_decimals(self.mint),
            variant=variant,
        )
        instructions = build_transfer_instructions(plan, self.budget)

        # fetched last so the blockhash is as fresh as possible when signed
        blockhash = self.ledger.latest_blockhash()
        message = compile_transfer_message(instructions, self.signer.pubkey, blockhash)

        return VersionedTransaction(message, [self.signer.keypair])

    def settle_refund(
        self,
        request: RefundRequest,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> RefundResult:
        """
        Execute ``request`` and raise on any failure.

        Not idempotent: calling this twice for the same request sends two
        transfers.
        """
        self.validate(request)
        logging.info(
            "Processing refund: %d micro-units to %s",
            request.amount_micro_units,
            request.destination_address,
        )

        transaction = self._build_signed_transfer(request)
        expected_signature = transaction.signatures[0]
        logging.info("Broadcasting refund transaction %s", expected_signature)
        signature = self.ledger.send_transaction(bytes(transaction), expected_signature)

        tracker = ConfirmationTracker(
            self.ledger,
            signature,
            poll_interval=self.config.poll_interval_seconds,
            timeout=self.config.confirmation_timeout_seconds,
            clock=self._clock,
            sleep=self._sleep,
        )
        state = tracker.run(cancel)

        if state is ConfirmationState.FAILED:
            ledger_error = tracker.last_status.err if tracker.last_status else None
            raise RefundExecutionFailed(
                f"Refund transaction {signature} failed: {ledger_error}",
                signature=signature,
                ledger_error=ledger_error,
            )

        if state is ConfirmationState.TIMED_OUT:
            logging.warning(
                "Refund %s was broadcast but is unconfirmed; verify at %s",
                signature,
                self.explorer_url(signature),
            )
        else:
            logging.info("Refund transaction %s %s", signature, state.value)

        return RefundResult(
            success=True,
            transaction_id=signature,
            state=state,
            explorer_url=self.explorer_url(signature),
        )

    def execute_refund(
        self,
        destination_address: str,
        amount_micro_units: int,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> RefundResult:
        """
        Like :meth:`settle_refund` but reports failures in the result.

        Cancellation still raises :class:`ConfirmationCancelled` because the
        transaction is in flight and the caller has to know its signature.
        """
        request = RefundRequest(destination_address, amount_micro_units)
        try:
            return self.settle_refund(request, cancel=cancel)
        except ConfirmationCancelled:
            raise
        except X402Error as exc:
            logging.error("Refund to %s failed: %s", destination_address, exc)
            signature = getattr(exc, "signature", None)
            state = ConfirmationState.FAILED if isinstance(exc, RefundExecutionFailed) and signature else None
            return RefundResult(
                success=False,
                transaction_id=signature,
                state=state,
                error=exc,
                explorer_url=self.explorer_url(signature) if signature else None,
            )
