"""
Builders for SPL token transfer transactions.

All amounts are integers in the mint's smallest unit. Every transaction gets
a compute unit limit and price up front so it is not starved when the
ledger is congested.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import VersionedTransaction
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID
from spl.token.instructions import TransferCheckedParams, transfer_checked

from .errors import MalformedPaymentError
from .requirements import PaymentRequirements
from .token_accounts import TokenAccountResolver, TokenProgramVariant, resolve_token_account

__all__ = [
    "ComputeBudget",
    "TransferPlan",
    "build_payment_transaction",
    "build_transfer_instructions",
    "compile_transfer_message",
    "create_associated_token_account_idempotent",
    "sign_message",
]


@dataclass(frozen=True)
class ComputeBudget:
    unit_limit: int = 200_000
    unit_price_micro_lamports: int = 1

    def instructions(self) -> List[Instruction]:
        return [
            set_compute_unit_limit(self.unit_limit),
            set_compute_unit_price(self.unit_price_micro_lamports),
        ]


@dataclass(frozen=True)
class TransferPlan:
    """Everything needed to emit a ``transfer_checked`` instruction."""

    mint: Pubkey
    source: Pubkey
    destination: Pubkey
    authority: Pubkey
    amount: int
    decimals: int
    variant: TokenProgramVariant

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise TypeError("Transfer amounts must be integers in the smallest unit")
        if self.amount <= 0:
            raise ValueError("Transfer amount must be greater than zero")


def build_transfer_instructions(
    plan: TransferPlan,
    budget: ComputeBudget,
    *,
    prefix: Sequence[Instruction] = (),
) -> List[Instruction]:
    transfer = transfer_checked(
        TransferCheckedParams(
            program_id=plan.variant.program_id,
            source=plan.source,
            mint=plan.mint,
            dest=plan.destination,
            owner=plan.authority,
            amount=plan.amount,
            decimals=plan.decimals,
        )
    )
    return [*budget.instructions(), *prefix, transfer]


def compile_transfer_message(
    instructions: Sequence[Instruction],
    fee_payer: Pubkey,
    blockhash: Hash,
) -> MessageV0:
    return MessageV0.try_compile(fee_payer, list(instructions), [], blockhash)


def sign_message(message: MessageV0, signers: Sequence[Keypair]) -> VersionedTransaction:
    """
    Sign ``message`` with ``signers`` and leave any other required slot empty.

    Used when a third party (the facilitator) pays fees and co-signs later.
    """
    by_key = {signer.pubkey(): signer for signer in signers}
    payload = to_bytes_versioned(message)
    required = message.account_keys[: message.header.num_required_signatures]
    signatures = [
        by_key[key].sign_message(payload) if key in by_key else Signature.default()
        for key in required
    ]
    return VersionedTransaction.populate(message, signatures)


def create_associated_token_account_idempotent(
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    variant: TokenProgramVariant,
) -> Instruction:
    account = resolve_token_account(owner, mint, variant)
    return Instruction(
        ASSOCIATED_TOKEN_PROGRAM_ID,
        bytes([1]),
        [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(account, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=False, is_writable=False),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(variant.program_id, is_signer=False, is_writable=False),
        ],
    )


def build_payment_transaction(
    payer: Keypair,
    requirements: PaymentRequirements,
    resolver: TokenAccountResolver,
    blockhash: Hash,
    *,
    budget: Optional[ComputeBudget] = None,
) -> VersionedTransaction:
    """
    Build the paying client's transaction for ``requirements``.

    When the requirements advertise a facilitator ``feePayer`` that key pays
    the fee and its signature slot is left for the facilitator to fill;
    otherwise the payer pays its own fee. A missing destination token account
    is created in the same transaction, paid for by the fee payer.
    """
    mint = Pubkey.from_string(requirements.asset)
    pay_to = Pubkey.from_string(requirements.pay_to)
    variant = resolver.detect_program_variant(mint)
    fee_payer = Pubkey.from_string(requirements.fee_payer) if requirements.fee_payer else payer.pubkey()

    destination = resolve_token_account(pay_to, mint, variant)
    prefix: List[Instruction] = []
    if not resolver.account_exists(destination):
        if requirements.fee_payer is None:
            raise MalformedPaymentError(
                f"Recipient token account {destination} does not exist and no feePayer was offered"
            )
        prefix.append(create_associated_token_account_idempotent(fee_payer, pay_to, mint, variant))

    plan = TransferPlan(
        mint=mint,
        source=resolve_token_account(payer.pubkey(), mint, variant),
        destination=destination,
        authority=payer.pubkey(),
        amount=requirements.amount,
        decimals=resolver.mint_decimals(mint),
        variant=variant,
    )
    instructions = build_transfer_instructions(plan, budget or ComputeBudget(), prefix=prefix)
    message = compile_transfer_message(instructions, fee_payer, blockhash)
    return sign_message(message, [payer])
