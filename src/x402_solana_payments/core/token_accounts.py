"""
Associated token account derivation and token program detection.

A mint is governed by exactly one of two token programs, the legacy SPL
Token program or Token-2022, and the associated token account address
depends on which. Program ownership and decimals of a mint never change, so
both are parsed from a single ledger read per mint and cached for the
lifetime of the process.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Dict, NamedTuple, TypeVar, Union

from solders.pubkey import Pubkey
from spl.token._layouts import MINT_LAYOUT
from spl.token.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)

from .errors import UnsupportedAssetError
from .ledger import LedgerClient

__all__ = [
    "TokenAccountResolver",
    "TokenProgramVariant",
    "resolve_token_account",
]

T = TypeVar("T")

AddressLike = Union[str, Pubkey]


class TokenProgramVariant(enum.Enum):
    LEGACY = "spl-token"
    TOKEN_2022 = "spl-token-2022"

    @property
    def program_id(self) -> Pubkey:
        return TOKEN_PROGRAM_ID if self is TokenProgramVariant.LEGACY else TOKEN_2022_PROGRAM_ID

    @classmethod
    def from_program_id(cls, program_id: Pubkey) -> "TokenProgramVariant":
        if program_id == TOKEN_PROGRAM_ID:
            return cls.LEGACY
        if program_id == TOKEN_2022_PROGRAM_ID:
            return cls.TOKEN_2022
        raise UnsupportedAssetError(f"Account is owned by {program_id}, not a known token program")


def _pubkey(value: AddressLike) -> Pubkey:
    return value if isinstance(value, Pubkey) else Pubkey.from_string(value)


def resolve_token_account(
    owner: AddressLike,
    mint: AddressLike,
    variant: TokenProgramVariant,
) -> Pubkey:
    """Derive the associated token account of ``owner`` for ``mint``. No I/O."""
    address, _bump = Pubkey.find_program_address(
        [bytes(_pubkey(owner)), bytes(variant.program_id), bytes(_pubkey(mint))],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


class _KeyedCache:
    """
    Read-through cache with one loader per key.

    Concurrent first lookups of the same key block on a per-key lock so the
    loader runs once; different keys load in parallel.
    """

    def __init__(self) -> None:
        self._values: Dict[str, object] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: str, loader: Callable[[], T]) -> T:
        try:
            return self._values[key]  # type: ignore[return-value]
        except KeyError:
            pass
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            if key not in self._values:
                self._values[key] = loader()
            return self._values[key]  # type: ignore[return-value]

    def __contains__(self, key: str) -> bool:
        return key in self._values


class MintInfo(NamedTuple):
    variant: TokenProgramVariant
    decimals: int


class TokenAccountResolver:
    def __init__(self, ledger: LedgerClient) -> None:
        self.ledger = ledger
        self._mints = _KeyedCache()

    def mint_info(self, mint: AddressLike) -> MintInfo:
        """Program and decimals of ``mint``, read from the ledger on first use only."""
        mint_key = _pubkey(mint)

        def load() -> MintInfo:
            account = self.ledger.get_account(mint_key)
            if account is None:
                raise UnsupportedAssetError(f"Mint {mint_key} does not exist on the ledger")
            variant = TokenProgramVariant.from_program_id(account.owner)
            # Token-2022 mints append extensions after the base layout
            decimals = MINT_LAYOUT.parse(bytes(account.data)[: MINT_LAYOUT.sizeof()]).decimals
            logging.info("Mint %s is governed by %s (%d decimals)", mint_key, variant.value, decimals)
            return MintInfo(variant, decimals)

        return self._mints.get(str(mint_key), load)

    def detect_program_variant(self, mint: AddressLike) -> TokenProgramVariant:
        return self.mint_info(mint).variant

    def mint_decimals(self, mint: AddressLike) -> int:
        return self.mint_info(mint).decimals

    def resolve(self, owner: AddressLike, mint: AddressLike) -> Pubkey:
        """Derive ``owner``'s token account after detecting the mint's program."""
        return resolve_token_account(owner, mint, self.detect_program_variant(mint))

    def account_exists(self, address: AddressLike) -> bool:
        return self.ledger.account_exists(_pubkey(address))
