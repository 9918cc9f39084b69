"""
Cluster selection for RPC queries and CLI invocations.
"""

from __future__ import annotations

from dataclasses import dataclass

PRESET_URLS = {
    "localhost": "http://localhost:8899",
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
}


@dataclass(frozen=True)
class Network:
    """
    A named cluster preset or an arbitrary RPC URL.

    ``moniker`` is passed to the solana CLI as ``--url`` (it accepts both
    preset names and URLs); ``rpc_url`` is what the RPC client talks to.
    """

    moniker: str

    @classmethod
    def parse(cls, value: str) -> Network:
        return cls(value.strip())

    @classmethod
    def localhost(cls) -> Network:
        return cls("localhost")

    @classmethod
    def devnet(cls) -> Network:
        return cls("devnet")

    @classmethod
    def testnet(cls) -> Network:
        return cls("testnet")

    @classmethod
    def mainnet_beta(cls) -> Network:
        return cls("mainnet-beta")

    @property
    def is_preset(self) -> bool:
        return self.moniker in PRESET_URLS

    @property
    def rpc_url(self) -> str:
        return PRESET_URLS.get(self.moniker, self.moniker)

    def __str__(self) -> str:
        return self.moniker
