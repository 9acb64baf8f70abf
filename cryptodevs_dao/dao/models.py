from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum

__all__ = [
    "VoteChoice",
    "ProposalStatus",
    "ProposalRecord",
    "ProposalView",
    "ProposalState",
    "LedgerState",
]


class VoteChoice(IntEnum):
    """投票選項，數值與鏈上 enum 一致（YAY = 0, NAY = 1）。"""

    YAY = 0
    NAY = 1

    @classmethod
    def parse(cls, raw: "VoteChoice | int | str") -> "VoteChoice":
        if isinstance(raw, VoteChoice):
            return raw
        if isinstance(raw, str):
            return cls[raw.strip().upper()]
        return cls(raw)


class ProposalStatus(str, Enum):
    OPEN = "open"
    CLOSED_PENDING = "closed_pending"
    EXECUTED = "executed"

    @classmethod
    def at(cls, *, executed: bool, deadline: int, now: int) -> "ProposalStatus":
        """Open → Closed-Pending → Executed；只依 executed 旗標與截止時間推導。"""
        if executed:
            return cls.EXECUTED
        if now < deadline:
            return cls.OPEN
        return cls.CLOSED_PENDING


@dataclass(slots=True)
class ProposalRecord:
    """帳本內部持有的可變提案紀錄；只有帳本本身會修改它。"""

    nft_token_id: int
    deadline: int
    yay_votes: int = 0
    nay_votes: int = 0
    executed: bool = False
    voters: set[int] = field(default_factory=set)

    def status_at(self, now: int) -> ProposalStatus:
        return ProposalStatus.at(executed=self.executed, deadline=self.deadline, now=now)


@dataclass(slots=True, frozen=True)
class ProposalView:
    index: int
    nft_token_id: int
    deadline: int
    yay_votes: int
    nay_votes: int
    executed: bool
    voter_count: int
    status: ProposalStatus


@dataclass(slots=True, frozen=True)
class ProposalState:
    nft_token_id: int
    deadline: int
    yay_votes: int
    nay_votes: int
    executed: bool
    voters: frozenset[int]

    @classmethod
    def from_record(cls, record: ProposalRecord) -> "ProposalState":
        return cls(
            nft_token_id=record.nft_token_id,
            deadline=record.deadline,
            yay_votes=record.yay_votes,
            nay_votes=record.nay_votes,
            executed=record.executed,
            voters=frozenset(record.voters),
        )

    def view(self, index: int, now: int) -> ProposalView:
        return ProposalView(
            index=index,
            nft_token_id=self.nft_token_id,
            deadline=self.deadline,
            yay_votes=self.yay_votes,
            nay_votes=self.nay_votes,
            executed=self.executed,
            voter_count=len(self.voters),
            status=ProposalStatus.at(executed=self.executed, deadline=self.deadline, now=now),
        )

    def to_record(self) -> ProposalRecord:
        return ProposalRecord(
            nft_token_id=self.nft_token_id,
            deadline=self.deadline,
            yay_votes=self.yay_votes,
            nay_votes=self.nay_votes,
            executed=self.executed,
            voters=set(self.voters),
        )


@dataclass(slots=True, frozen=True)
class LedgerState:
    """帳本完整快照：用於回滾檢查點與自資料庫還原。"""

    owner: str
    treasury_balance: int
    proposals: tuple[ProposalState, ...] = ()

    @property
    def num_proposals(self) -> int:
        return len(self.proposals)
