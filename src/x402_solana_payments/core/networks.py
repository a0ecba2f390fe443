"""
Descriptors for the Solana chain variants the engine can settle on.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

__all__ = [
    "EVM_NETWORKS",
    "KNOWN_NETWORKS",
    "SOLANA_DEVNET",
    "SOLANA_MAINNET",
    "SolanaNetwork",
    "get_solana_network",
    "is_evm_network",
    "is_solana_network",
]


@dataclass(frozen=True)
class SolanaNetwork:
    name: str
    caip2: str
    default_rpc_url: str
    usdc_mint: str
    explorer_cluster: Optional[str] = None

    def explorer_url(self, signature: str) -> str:
        url = f"https://explorer.solana.com/tx/{signature}"
        if self.explorer_cluster:
            url += f"?cluster={self.explorer_cluster}"
        return url


SOLANA_MAINNET = SolanaNetwork(
    name="solana",
    caip2="solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp",
    default_rpc_url="https://api.mainnet-beta.solana.com",
    usdc_mint="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
)

SOLANA_DEVNET = SolanaNetwork(
    name="solana-devnet",
    caip2="solana:EtWTRABZaYq6iMfeYKouRu166VU2xqa1",
    default_rpc_url="https://api.devnet.solana.com",
    usdc_mint="4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
    explorer_cluster="devnet",
)

_SOLANA_NETWORKS: Dict[str, SolanaNetwork] = {
    SOLANA_MAINNET.name: SOLANA_MAINNET,
    SOLANA_DEVNET.name: SOLANA_DEVNET,
}

EVM_NETWORKS = frozenset(
    {
        "base-sepolia",
        "base",
        "avalanche-fuji",
        "avalanche",
        "iotex",
        "sei",
        "sei-testnet",
    }
)

KNOWN_NETWORKS = EVM_NETWORKS | frozenset(_SOLANA_NETWORKS)


def is_solana_network(network: str) -> bool:
    return network in _SOLANA_NETWORKS


def is_evm_network(network: str) -> bool:
    return network in EVM_NETWORKS


def get_solana_network(name: str) -> SolanaNetwork:
    """Return the descriptor for ``name`` or raise :class:`KeyError`."""
    try:
        return _SOLANA_NETWORKS[name]
    except KeyError:
        raise KeyError(
            f"Unsupported Solana network '{name}'; expected one of {sorted(_SOLANA_NETWORKS)}"
        ) from None
