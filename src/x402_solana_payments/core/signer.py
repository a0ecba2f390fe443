"""
Treasury key custody.
"""

from __future__ import annotations

import json
import re

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from .errors import ConfigurationError

__all__ = ["TreasurySigner"]

_BASE58_SECRET = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{80,90}$")


def _keypair_from_secret(secret: str) -> Keypair:
    value = secret.strip()
    if not value:
        raise ConfigurationError("X402_TREASURY_PRIVATE_KEY must not be empty")

    if value.startswith("["):
        # solana-keygen JSON file contents
        try:
            raw = bytes(json.loads(value))
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(
                "X402_TREASURY_PRIVATE_KEY is not a valid JSON byte array"
            ) from exc
        if len(raw) != 64:
            raise ConfigurationError("X402_TREASURY_PRIVATE_KEY must hold 64 bytes")
        try:
            return Keypair.from_bytes(raw)
        except ValueError as exc:
            raise ConfigurationError("X402_TREASURY_PRIVATE_KEY is not a valid keypair") from exc

    if not _BASE58_SECRET.match(value):
        raise ConfigurationError("X402_TREASURY_PRIVATE_KEY must be a base58 encoded 64 byte secret")
    try:
        return Keypair.from_base58_string(value)
    except ValueError as exc:
        raise ConfigurationError("X402_TREASURY_PRIVATE_KEY is not a valid keypair") from exc


class TreasurySigner:
    """
    Holds the treasury keypair for the lifetime of the process.

    The secret never leaves this object: ``repr`` is redacted and only the
    public key and signatures are exposed.
    """

    __slots__ = ("_keypair",)

    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @classmethod
    def from_secret(cls, secret: str) -> "TreasurySigner":
        return cls(_keypair_from_secret(secret))

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def address(self) -> str:
        return str(self._keypair.pubkey())

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    def sign_message(self, message: bytes) -> Signature:
        return self._keypair.sign_message(message)

    def __repr__(self) -> str:
        return f"TreasurySigner(address={self.address!r}, secret=<redacted>)"

    __str__ = __repr__

    def __reduce__(self):
        raise TypeError("TreasurySigner cannot be serialized")
