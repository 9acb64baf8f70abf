"""Capability interfaces the governance ledger consumes.

Real deployments back these with contract clients; tests and local runs use
the in-process implementations from :mod:`cryptodevs_dao.dao.local_chain`.
"""

from __future__ import annotations

import time
from typing import Callable, Protocol, runtime_checkable

Clock = Callable[[], int]


def system_clock() -> int:
    """目前 unix 時間（秒），對應鏈上的 block.timestamp。"""
    return int(time.time())


@runtime_checkable
class NftOwnershipOracle(Protocol):
    """ERC721Enumerable 中帳本用到的唯讀子集。"""

    def balance_of(self, address: str) -> int: ...

    def token_of_owner_by_index(self, address: str, index: int) -> int: ...


@runtime_checkable
class NftMarketplace(Protocol):
    def get_price(self) -> int: ...

    def available(self, token_id: int) -> bool: ...

    def purchase(self, token_id: int, *, value: int) -> None: ...


@runtime_checkable
class FundsTransfer(Protocol):
    """Sends value out of the treasury; returns False when the recipient refuses."""

    def send_value(self, recipient: str, amount: int) -> bool: ...


__all__ = [
    "Clock",
    "FundsTransfer",
    "NftMarketplace",
    "NftOwnershipOracle",
    "system_clock",
]
