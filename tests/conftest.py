"""Shared pytest fixtures for x402_solana_payments tests."""

import json
from types import SimpleNamespace

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID

from x402_solana_payments.core.config import SettlementConfig
from x402_solana_payments.core.ledger import SignatureStatus
from x402_solana_payments.core.networks import SOLANA_DEVNET
from x402_solana_payments.core.requirements import PaymentRequirements
from x402_solana_payments.core.token_accounts import TokenProgramVariant, resolve_token_account

DEVNET_USDC = SOLANA_DEVNET.usdc_mint


def mint_data(decimals=6):
    """82 byte SPL mint account body with only decimals and is_initialized set."""
    return bytes(44) + bytes([decimals, 1]) + bytes(36)


def keypair_secret(keypair):
    return json.dumps(list(bytes(keypair)))


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeLedger:
    """In-memory stand-in for LedgerClient that records every call."""

    rpc_url = "http://ledger.test"

    def __init__(self):
        self.accounts = {}
        self.statuses = []
        self.reads = []
        self.sent = []
        self.blockhash_calls = 0
        self.send_error = None

    def add_account(self, address, owner, data=b""):
        self.accounts[address] = SimpleNamespace(owner=owner, data=data)

    def get_account(self, address):
        self.reads.append(address)
        return self.accounts.get(address)

    def account_exists(self, address):
        return address in self.accounts

    def latest_blockhash(self):
        self.blockhash_calls += 1
        return Hash.default()

    def send_transaction(self, wire, signature):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(wire)
        return str(signature)

    def signature_status(self, signature):
        if not self.statuses:
            return SignatureStatus(signature=signature, found=False)
        item = self.statuses.pop(0)
        if isinstance(item, Exception):
            raise item
        if item is None:
            return SignatureStatus(signature=signature, found=False)
        confirmation, err = item
        return SignatureStatus(
            signature=signature,
            found=True,
            confirmation_status=confirmation,
            err=err,
        )


@pytest.fixture
def treasury_keypair():
    return Keypair.from_seed(bytes([1] * 32))


@pytest.fixture
def payer_keypair():
    return Keypair.from_seed(bytes([2] * 32))


@pytest.fixture
def customer_keypair():
    return Keypair.from_seed(bytes([3] * 32))


@pytest.fixture
def mint():
    return Pubkey.from_string(DEVNET_USDC)


@pytest.fixture
def settlement_config(treasury_keypair):
    return SettlementConfig.from_mapping(
        {
            "X402_NETWORK": "solana-devnet",
            "X402_TREASURY_PRIVATE_KEY": keypair_secret(treasury_keypair),
            "X402_FACILITATOR_URL": "https://facilitator.test",
        }
    )


@pytest.fixture
def gate_config(treasury_keypair):
    """Configuration for the paid-resource side, which never holds the treasury key."""
    return SettlementConfig.from_mapping(
        {
            "X402_NETWORK": "solana-devnet",
            "X402_PAY_TO_ADDRESS": str(treasury_keypair.pubkey()),
            "X402_FACILITATOR_URL": "https://facilitator.test",
        }
    )


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_ledger(mint, treasury_keypair, customer_keypair):
    """Ledger holding a legacy SPL mint plus treasury and customer token accounts."""
    ledger = FakeLedger()
    ledger.add_account(mint, TOKEN_PROGRAM_ID, mint_data())
    for owner in (treasury_keypair.pubkey(), customer_keypair.pubkey()):
        token_account = resolve_token_account(owner, mint, TokenProgramVariant.LEGACY)
        ledger.add_account(token_account, TOKEN_PROGRAM_ID)
    return ledger


@pytest.fixture
def sample_requirements(treasury_keypair):
    return PaymentRequirements(
        network="solana-devnet",
        asset=DEVNET_USDC,
        max_amount_required="1000000",
        pay_to=str(treasury_keypair.pubkey()),
        resource="https://api.example.com/report",
        description="Premium report",
    )
