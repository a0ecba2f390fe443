"""Unit tests for the treasury refund engine and its confirmation state machine."""

import threading

import pytest
from solders.compute_budget import ID as COMPUTE_BUDGET_PROGRAM_ID
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

from conftest import FakeLedger, mint_data
from x402_solana_payments.core.errors import (
    ConfirmationCancelled,
    DestinationAccountMissing,
    InvalidRefundRequest,
    LedgerRequestRejected,
    NetworkUnavailable,
    RefundExecutionFailed,
)
from x402_solana_payments.core.token_accounts import TokenProgramVariant, resolve_token_account
from x402_solana_payments.core.treasury import (
    ConfirmationState,
    ConfirmationTracker,
    RefundRequest,
    TreasurySettlementEngine,
    is_valid_address,
)


@pytest.fixture
def engine(settlement_config, fake_ledger, fake_clock):
    return TreasurySettlementEngine(
        settlement_config,
        ledger=fake_ledger,
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )


@pytest.fixture
def destination(customer_keypair):
    return str(customer_keypair.pubkey())


def _sent_transaction(ledger):
    assert len(ledger.sent) == 1
    return VersionedTransaction.from_bytes(ledger.sent[0])


class TestAddressValidation:
    def test_wallet_address(self, destination):
        assert is_valid_address(destination)

    @pytest.mark.parametrize("address", ["", "not-an-address", "0OIl" * 10, None, 42])
    def test_garbage(self, address):
        assert not is_valid_address(address)

    def test_program_derived_address_is_rejected(self, customer_keypair, mint):
        token_account = resolve_token_account(customer_keypair.pubkey(), mint, TokenProgramVariant.LEGACY)
        assert not is_valid_address(str(token_account))


class TestRefundValidation:
    @pytest.mark.parametrize("amount", [0, -1, 1.5, "100", True])
    def test_bad_amount_touches_nothing(self, engine, fake_ledger, destination, amount):
        result = engine.execute_refund(destination, amount)

        assert not result.success
        assert isinstance(result.error, InvalidRefundRequest)
        assert result.transaction_id is None
        assert fake_ledger.reads == []
        assert fake_ledger.blockhash_calls == 0
        assert fake_ledger.sent == []

    def test_bad_address_raises_from_settle(self, engine, fake_ledger):
        with pytest.raises(InvalidRefundRequest):
            engine.settle_refund(RefundRequest("nope", 100))
        assert fake_ledger.reads == []


class TestSettleRefund:
    def test_confirmed_after_pending_polls(self, engine, fake_ledger, fake_clock, destination, treasury_keypair):
        fake_ledger.statuses = [None, ("processed", None), ("confirmed", None)]

        result = engine.execute_refund(destination, 1_500_000)

        assert result.success
        assert result.state is ConfirmationState.CONFIRMED
        assert not result.unconfirmed
        assert fake_clock.sleeps == [2.0, 2.0]
        assert result.explorer_url == f"https://explorer.solana.com/tx/{result.transaction_id}?cluster=devnet"

        transaction = _sent_transaction(fake_ledger)
        assert str(transaction.signatures[0]) == result.transaction_id
        message = transaction.message
        assert message.account_keys[0] == treasury_keypair.pubkey()
        programs = [message.account_keys[ix.program_id_index] for ix in message.instructions]
        assert programs == [COMPUTE_BUDGET_PROGRAM_ID, COMPUTE_BUDGET_PROGRAM_ID, TOKEN_PROGRAM_ID]
        data = bytes(message.instructions[-1].data)
        assert int.from_bytes(data[1:9], "little") == 1_500_000
        assert data[9] == 6

    def test_finalized(self, engine, fake_ledger, destination):
        fake_ledger.statuses = [("finalized", None)]
        assert engine.execute_refund(destination, 1).state is ConfirmationState.FINALIZED

    def test_timeout_is_unconfirmed_success(self, engine, fake_ledger, fake_clock, destination):
        result = engine.execute_refund(destination, 1_000)

        assert result.success
        assert result.unconfirmed
        assert result.state is ConfirmationState.TIMED_OUT
        assert result.transaction_id is not None
        assert fake_clock.now == pytest.approx(90.0)
        assert len(fake_ledger.sent) == 1

    def test_failure_on_first_poll_stops_immediately(self, engine, fake_ledger, fake_clock, destination):
        fake_ledger.statuses = [("processed", {"InstructionError": [2, "InsufficientFunds"]})]

        result = engine.execute_refund(destination, 1_000)

        assert not result.success
        assert result.state is ConfirmationState.FAILED
        assert isinstance(result.error, RefundExecutionFailed)
        assert result.error.ledger_error == {"InstructionError": [2, "InsufficientFunds"]}
        assert result.transaction_id == result.error.signature
        assert fake_clock.sleeps == []

    def test_status_outage_keeps_polling(self, engine, fake_ledger, destination):
        fake_ledger.statuses = [NetworkUnavailable("blip"), ("confirmed", None)]
        assert engine.execute_refund(destination, 1_000).state is ConfirmationState.CONFIRMED

    def test_missing_destination_account_is_not_broadcast(self, engine, fake_ledger, payer_keypair):
        result = engine.execute_refund(str(payer_keypair.pubkey()), 1_000)

        assert not result.success
        assert isinstance(result.error, DestinationAccountMissing)
        assert result.state is None
        assert fake_ledger.sent == []
        assert fake_ledger.blockhash_calls == 0

    def test_preflight_rejection(self, engine, fake_ledger, destination):
        fake_ledger.send_error = RefundExecutionFailed("rejected", ledger_error="insufficient funds")

        result = engine.execute_refund(destination, 1_000)

        assert not result.success
        assert result.transaction_id is None
        assert result.state is None

    def test_cancel_raises_with_signature(self, engine, fake_ledger, destination):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ConfirmationCancelled) as exc_info:
            engine.execute_refund(destination, 1_000, cancel=cancel)

        assert len(fake_ledger.sent) == 1
        assert exc_info.value.signature == str(_sent_transaction(fake_ledger).signatures[0])

    def test_token_2022_mint(self, settlement_config, treasury_keypair, customer_keypair, mint, fake_clock):
        ledger = FakeLedger()
        ledger.add_account(mint, TOKEN_2022_PROGRAM_ID, mint_data())
        for owner in (treasury_keypair.pubkey(), customer_keypair.pubkey()):
            ledger.add_account(
                resolve_token_account(owner, mint, TokenProgramVariant.TOKEN_2022),
                TOKEN_2022_PROGRAM_ID,
            )
        ledger.statuses = [("confirmed", None)]
        engine = TreasurySettlementEngine(settlement_config, ledger=ledger, clock=fake_clock, sleep=fake_clock.sleep)

        result = engine.execute_refund(str(customer_keypair.pubkey()), 1_000)

        assert result.success
        message = _sent_transaction(ledger).message
        assert message.account_keys[message.instructions[-1].program_id_index] == TOKEN_2022_PROGRAM_ID

    def test_treasury_token_account(self, engine, treasury_keypair, mint):
        assert engine.treasury_token_account() == resolve_token_account(
            treasury_keypair.pubkey(), mint, TokenProgramVariant.LEGACY
        )


class TestConfirmationTracker:
    def test_state_history(self, fake_ledger, fake_clock):
        fake_ledger.statuses = [None, ("confirmed", None)]
        tracker = ConfirmationTracker(fake_ledger, "sig", clock=fake_clock, sleep=fake_clock.sleep)

        assert tracker.run() is ConfirmationState.CONFIRMED
        assert tracker.history == [
            ConfirmationState.SUBMITTED,
            ConfirmationState.PENDING,
            ConfirmationState.CONFIRMED,
        ]
        assert tracker.polls == 2

    def test_terminal_states_are_final(self, fake_ledger, fake_clock):
        fake_ledger.statuses = [("finalized", None)]
        tracker = ConfirmationTracker(fake_ledger, "sig", clock=fake_clock, sleep=fake_clock.sleep)
        tracker.run()

        assert tracker.state.is_terminal
        with pytest.raises(RuntimeError):
            tracker.transition(ConfirmationState.PENDING)
        with pytest.raises(RuntimeError):
            tracker.run()

    def test_poll_budget(self, fake_ledger, fake_clock):
        tracker = ConfirmationTracker(
            fake_ledger, "sig", poll_interval=1.0, timeout=5.0, clock=fake_clock, sleep=fake_clock.sleep
        )

        assert tracker.run() is ConfirmationState.TIMED_OUT
        assert tracker.polls == 6
        assert fake_clock.sleeps == [1.0] * 5

    def test_poll_budget_with_cancel_event(self, fake_ledger, fake_clock):
        tracker = ConfirmationTracker(
            fake_ledger, "sig", poll_interval=1.0, timeout=5.0, clock=fake_clock, sleep=fake_clock.sleep
        )

        assert tracker.run(threading.Event()) is ConfirmationState.TIMED_OUT
        assert tracker.polls == 6
        assert fake_clock.sleeps == [1.0] * 5

    def test_cancel_during_injected_sleep(self, fake_ledger, fake_clock):
        cancel = threading.Event()

        def sleep(seconds):
            fake_clock.sleep(seconds)
            cancel.set()

        tracker = ConfirmationTracker(fake_ledger, "sig", poll_interval=1.0, clock=fake_clock, sleep=sleep)

        with pytest.raises(ConfirmationCancelled):
            tracker.run(cancel)
        assert tracker.polls == 1
        assert fake_clock.sleeps == [1.0]

    def test_rejected_status_lookup_keeps_polling(self, fake_ledger, fake_clock):
        fake_ledger.statuses = [LedgerRequestRejected("invalid params"), ("confirmed", None)]
        tracker = ConfirmationTracker(fake_ledger, "sig", clock=fake_clock, sleep=fake_clock.sleep)

        assert tracker.run() is ConfirmationState.CONFIRMED
        assert tracker.polls == 2

    def test_cancel_between_polls(self, fake_ledger):
        cancel = threading.Event()

        def status(signature):
            cancel.set()
            return FakeLedger.signature_status(fake_ledger, signature)

        fake_ledger.signature_status = status
        tracker = ConfirmationTracker(fake_ledger, "sig", poll_interval=30.0)

        with pytest.raises(ConfirmationCancelled):
            tracker.run(cancel)
        assert tracker.state is ConfirmationState.PENDING
