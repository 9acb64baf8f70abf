"""In-process stand-ins for the contracts the DAO talks to.

- ``CryptoDevsNft``: ERC721Enumerable-style ownership registry (the oracle)
- ``FakeNftMarketplace``: fixed-price marketplace selling fake NFTs
- ``AccountBook``: native balances receiving withdrawals

They mirror the on-chain revert conditions with plain Python exceptions so the
ledger sees the same failure modes it would see from real contract calls.
"""

from __future__ import annotations

from collections import defaultdict

import structlog

from cryptodevs_dao.config.settings import DEFAULT_NFT_PRICE_WEI

LOGGER = structlog.get_logger(__name__)


class CryptoDevsNft:
    """ERC721Enumerable 的最小實作：鑄造、轉移與依索引列舉。"""

    def __init__(self, *, max_supply: int | None = None) -> None:
        self._owners: dict[int, str] = {}
        self._owned: defaultdict[str, list[int]] = defaultdict(list)
        self._next_token_id = 1
        self._max_supply = max_supply

    @property
    def total_supply(self) -> int:
        return len(self._owners)

    def mint(self, to: str) -> int:
        if self._max_supply is not None and self.total_supply >= self._max_supply:
            raise ValueError("Exceeded maximum Crypto Devs supply")
        token_id = self._next_token_id
        self._next_token_id += 1
        self._owners[token_id] = to.lower()
        self._owned[to.lower()].append(token_id)
        return token_id

    def owner_of(self, token_id: int) -> str:
        try:
            return self._owners[token_id]
        except KeyError:
            raise LookupError(f"ERC721: invalid token ID {token_id}") from None

    def transfer(self, token_id: int, *, sender: str, recipient: str) -> None:
        if self.owner_of(token_id) != sender.lower():
            raise PermissionError("ERC721: transfer from incorrect owner")
        # swap-and-pop，與 ERC721Enumerable 移除索引的方式一致
        tokens = self._owned[sender.lower()]
        position = tokens.index(token_id)
        tokens[position] = tokens[-1]
        tokens.pop()
        self._owners[token_id] = recipient.lower()
        self._owned[recipient.lower()].append(token_id)

    def balance_of(self, address: str) -> int:
        return len(self._owned.get(address.lower(), ()))

    def token_of_owner_by_index(self, address: str, index: int) -> int:
        tokens = self._owned.get(address.lower(), [])
        if not 0 <= index < len(tokens):
            raise IndexError("ERC721Enumerable: owner index out of bounds")
        return tokens[index]


class FakeNftMarketplace:
    """固定售價的假 NFT 市場；每個 token id 只能售出一次。"""

    def __init__(self, *, price: int = DEFAULT_NFT_PRICE_WEI) -> None:
        self._price = price
        self._sold: dict[int, int] = {}
        self.balance = 0

    def get_price(self) -> int:
        return self._price

    def available(self, token_id: int) -> bool:
        return token_id not in self._sold

    def purchase(self, token_id: int, *, value: int) -> None:
        if value < self._price:
            raise ValueError(f"This NFT costs {self._price} wei")
        if not self.available(token_id):
            raise ValueError(f"token {token_id} is no longer available")
        self._sold[token_id] = value
        self.balance += value
        LOGGER.debug("local_chain.marketplace.sold", nft_token_id=token_id, value_wei=value)

    def sold_tokens(self) -> dict[int, int]:
        return dict(self._sold)


class AccountBook:
    """原生幣餘額簿；可將地址標記為拒收，以模擬 receive() revert 的合約。"""

    def __init__(self) -> None:
        self._balances: defaultdict[str, int] = defaultdict(int)
        self._rejecting: set[str] = set()

    def balance_of(self, address: str) -> int:
        return self._balances.get(address.lower(), 0)

    def reject_payments(self, address: str, rejecting: bool = True) -> None:
        if rejecting:
            self._rejecting.add(address.lower())
        else:
            self._rejecting.discard(address.lower())

    def send_value(self, recipient: str, amount: int) -> bool:
        if recipient.lower() in self._rejecting:
            return False
        self._balances[recipient.lower()] += amount
        return True


__all__ = ["AccountBook", "CryptoDevsNft", "FakeNftMarketplace"]
