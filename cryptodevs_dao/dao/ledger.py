"""CryptoDevs DAO governance ledger.

帳本持有全部可變狀態：提案清單、每個提案的已投票 NFT 集合、金庫餘額與
owner。每個公開操作在同一把鎖內完成「檢查 → 外部呼叫 → 寫入」，
任何前置條件或外部呼叫失敗都不會留下部分寫入。
"""

from __future__ import annotations

import threading
from typing import Any, Callable, TypeVar

import structlog

from cryptodevs_dao.dao.capabilities import (
    Clock,
    FundsTransfer,
    NftMarketplace,
    NftOwnershipOracle,
    system_clock,
)
from cryptodevs_dao.dao.errors import (
    AlreadyExecutedError,
    AlreadyVotedError,
    DaoError,
    ExternalCallFailedError,
    InsufficientTreasuryFundsError,
    InvalidAddressError,
    InvalidAmountError,
    InvalidVoteChoiceError,
    NotAMemberError,
    NotOwnerError,
    ProposalNotFoundError,
    TokenNotAvailableError,
    TransferFailedError,
    VotingClosedError,
    VotingStillOpenError,
)
from cryptodevs_dao.dao.models import (
    LedgerState,
    ProposalRecord,
    ProposalState,
    ProposalView,
    VoteChoice,
)

LOGGER = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_VOTING_WINDOW_SECONDS = 5 * 60
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def _validate_address(address: str) -> str:
    value = (address or "").strip()
    if not value or _same_address(value, ZERO_ADDRESS):
        raise InvalidAddressError(context={"address": address})
    return value


def _validate_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmountError(context={"amount": repr(amount)})
    return amount


class GovernanceLedger:
    """提案生命週期、逐 NFT 計票與金庫託管。"""

    def __init__(
        self,
        *,
        owner: str,
        oracle: NftOwnershipOracle,
        marketplace: NftMarketplace,
        funds: FundsTransfer,
        voting_window_seconds: int = DEFAULT_VOTING_WINDOW_SECONDS,
        clock: Clock = system_clock,
        initial_balance: int = 0,
    ) -> None:
        if voting_window_seconds <= 0:
            raise ValueError("voting_window_seconds must be positive")
        self._owner = _validate_address(owner)
        self._treasury_balance = _validate_amount(initial_balance)
        self._oracle = oracle
        self._marketplace = marketplace
        self._funds = funds
        self._voting_window = int(voting_window_seconds)
        self._clock = clock
        self._proposals: list[ProposalRecord] = []
        self._lock = threading.RLock()

    @classmethod
    def from_state(
        cls,
        state: LedgerState,
        *,
        oracle: NftOwnershipOracle,
        marketplace: NftMarketplace,
        funds: FundsTransfer,
        voting_window_seconds: int = DEFAULT_VOTING_WINDOW_SECONDS,
        clock: Clock = system_clock,
    ) -> "GovernanceLedger":
        """以既有快照（例如自資料庫載入）重建帳本。"""
        ledger = cls(
            owner=state.owner,
            oracle=oracle,
            marketplace=marketplace,
            funds=funds,
            voting_window_seconds=voting_window_seconds,
            clock=clock,
        )
        ledger.restore(state)
        return ledger

    # --- Queries ---
    @property
    def owner(self) -> str:
        with self._lock:
            return self._owner

    @property
    def treasury_balance(self) -> int:
        with self._lock:
            return self._treasury_balance

    @property
    def num_proposals(self) -> int:
        with self._lock:
            return len(self._proposals)

    @property
    def voting_window_seconds(self) -> int:
        return self._voting_window

    def now(self) -> int:
        return int(self._clock())

    def get_proposal(self, proposal_index: int) -> ProposalView:
        with self._lock:
            record = self._require_proposal(proposal_index)
            return self._view(proposal_index, record, self.now())

    def list_proposals(self) -> list[ProposalView]:
        with self._lock:
            now = self.now()
            return [self._view(i, record, now) for i, record in enumerate(self._proposals)]

    def has_voted(self, proposal_index: int, token_id: int) -> bool:
        with self._lock:
            return token_id in self._require_proposal(proposal_index).voters

    def member_balance(self, address: str) -> int:
        return int(self._external("balance_of", self._oracle.balance_of, address))

    def voting_power(self, proposal_index: int, address: str) -> int:
        """`address` 目前持有、尚未對此提案投過票的 NFT 數量。"""
        with self._lock:
            record = self._require_proposal(proposal_index)
            owned = self._owned_tokens(address, self.member_balance(address))
            return sum(1 for token_id in owned if token_id not in record.voters)

    # --- Checkpoints ---
    def snapshot(self) -> LedgerState:
        with self._lock:
            return LedgerState(
                owner=self._owner,
                treasury_balance=self._treasury_balance,
                proposals=tuple(ProposalState.from_record(r) for r in self._proposals),
            )

    def restore(self, state: LedgerState) -> None:
        with self._lock:
            self._owner = _validate_address(state.owner)
            self._treasury_balance = _validate_amount(state.treasury_balance)
            self._proposals = [p.to_record() for p in state.proposals]

    # --- Mutations ---
    def deposit(self, sender: str, amount: int) -> int:
        """接收任何人轉入的資金，回傳新的金庫餘額。"""
        amount = _validate_amount(amount)
        with self._lock:
            self._treasury_balance += amount
            balance = self._treasury_balance
        LOGGER.info("dao.ledger.deposit", sender=sender, amount_wei=amount, balance_wei=balance)
        return balance

    def create_proposal(self, token_to_purchase: int, *, caller: str) -> int:
        """建立購買 `token_to_purchase` 的提案並回傳其索引。"""
        with self._lock:
            self._require_member(caller)
            is_available = self._external(
                "available", self._marketplace.available, token_to_purchase
            )
            if not is_available:
                raise TokenNotAvailableError(context={"nft_token_id": token_to_purchase})

            deadline = self.now() + self._voting_window
            self._proposals.append(ProposalRecord(nft_token_id=token_to_purchase, deadline=deadline))
            index = len(self._proposals) - 1

        LOGGER.info(
            "dao.ledger.proposal_created",
            proposal_index=index,
            nft_token_id=token_to_purchase,
            deadline=deadline,
            proposer=caller,
        )
        return index

    def vote_on_proposal(
        self, proposal_index: int, vote: VoteChoice | int | str, *, caller: str
    ) -> int:
        """以呼叫者每個尚未投票的 NFT 各投一票，回傳本次計入的票數。

        投票權在投票當下重新計算（非建案時快照），
        因此在期間內取得更多 NFT 的成員可以追加票數。
        """
        try:
            vote = VoteChoice.parse(vote)
        except (KeyError, ValueError, TypeError) as exc:
            raise InvalidVoteChoiceError(context={"choice": repr(vote)}, cause=exc) from exc

        with self._lock:
            record = self._require_proposal(proposal_index)
            balance = self._require_member(caller)
            if self.now() >= record.deadline:
                raise VotingClosedError(
                    context={"proposal_index": proposal_index, "deadline": record.deadline}
                )

            # 先完整列舉再寫入：列舉途中失敗不會動到 voters
            owned = self._owned_tokens(caller, balance)
            fresh = [token_id for token_id in dict.fromkeys(owned) if token_id not in record.voters]
            if not fresh:
                raise AlreadyVotedError(
                    context={"proposal_index": proposal_index, "caller": caller}
                )

            record.voters.update(fresh)
            if vote == VoteChoice.YAY:
                record.yay_votes += len(fresh)
            else:
                record.nay_votes += len(fresh)
            yay, nay = record.yay_votes, record.nay_votes

        LOGGER.info(
            "dao.ledger.vote_cast",
            proposal_index=proposal_index,
            voter=caller,
            choice=vote.name,
            votes=len(fresh),
            yay_votes=yay,
            nay_votes=nay,
        )
        return len(fresh)

    def execute_proposal(self, proposal_index: int, *, caller: str) -> bool:
        """結算已截止的提案；贊成票多於反對票時向市場購買 NFT。

        回傳是否實際購買。平手視為否決。金庫不足時整個呼叫失敗，
        提案維持未執行，之後補足資金可再次執行。
        """
        with self._lock:
            record = self._require_proposal(proposal_index)
            self._require_member(caller)
            if self.now() < record.deadline:
                raise VotingStillOpenError(
                    context={"proposal_index": proposal_index, "deadline": record.deadline}
                )
            if record.executed:
                raise AlreadyExecutedError(context={"proposal_index": proposal_index})

            purchased = False
            price = 0
            if record.yay_votes > record.nay_votes:
                price = int(self._external("get_price", self._marketplace.get_price))
                if self._treasury_balance < price:
                    raise InsufficientTreasuryFundsError(
                        context={
                            "proposal_index": proposal_index,
                            "price_wei": price,
                            "balance_wei": self._treasury_balance,
                        }
                    )
                self._external(
                    "purchase", self._marketplace.purchase, record.nft_token_id, value=price
                )
                self._treasury_balance -= price
                purchased = True

            record.executed = True
            balance = self._treasury_balance

        LOGGER.info(
            "dao.ledger.proposal_executed",
            proposal_index=proposal_index,
            purchased=purchased,
            price_wei=price,
            balance_wei=balance,
        )
        return purchased

    def withdraw_funds(self, *, caller: str) -> int:
        """owner 提領全部金庫餘額，回傳提領金額。"""
        with self._lock:
            self._require_owner(caller)
            amount = self._treasury_balance
            try:
                sent = self._funds.send_value(self._owner, amount)
            except Exception as exc:
                raise TransferFailedError(
                    context={"recipient": self._owner, "amount_wei": amount}, cause=exc
                ) from exc
            if not sent:
                raise TransferFailedError(context={"recipient": self._owner, "amount_wei": amount})
            self._treasury_balance = 0
            owner = self._owner

        LOGGER.info("dao.ledger.funds_withdrawn", recipient=owner, amount_wei=amount)
        return amount

    def transfer_ownership(self, new_owner: str, *, caller: str) -> str:
        """轉移 owner 身分，回傳原 owner。"""
        with self._lock:
            self._require_owner(caller)
            target = _validate_address(new_owner)
            previous, self._owner = self._owner, target

        LOGGER.info("dao.ledger.ownership_transferred", previous_owner=previous, new_owner=target)
        return previous

    # --- Internals ---
    def _require_proposal(self, proposal_index: int) -> ProposalRecord:
        if (
            isinstance(proposal_index, bool)
            or not isinstance(proposal_index, int)
            or not 0 <= proposal_index < len(self._proposals)
        ):
            raise ProposalNotFoundError(
                context={"proposal_index": proposal_index, "num_proposals": len(self._proposals)}
            )
        return self._proposals[proposal_index]

    def _require_member(self, caller: str) -> int:
        balance = self.member_balance(caller)
        if balance <= 0:
            raise NotAMemberError(context={"caller": caller})
        return balance

    def _require_owner(self, caller: str) -> None:
        if not _same_address(caller or "", self._owner):
            raise NotOwnerError(context={"caller": caller})

    def _owned_tokens(self, address: str, balance: int) -> list[int]:
        lookup = self._oracle.token_of_owner_by_index
        return [
            int(self._external("token_of_owner_by_index", lookup, address, i))
            for i in range(balance)
        ]

    def _external(self, call: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except DaoError:
            raise
        except Exception as exc:
            raise ExternalCallFailedError(
                f"外部合約呼叫失敗: {call}: {exc}",
                context={"call": call},
                cause=exc,
            ) from exc

    @staticmethod
    def _view(index: int, record: ProposalRecord, now: int) -> ProposalView:
        return ProposalView(
            index=index,
            nft_token_id=record.nft_token_id,
            deadline=record.deadline,
            yay_votes=record.yay_votes,
            nay_votes=record.nay_votes,
            executed=record.executed,
            voter_count=len(record.voters),
            status=record.status_at(now),
        )


__all__ = [
    "DEFAULT_VOTING_WINDOW_SECONDS",
    "GovernanceLedger",
    "ZERO_ADDRESS",
]
