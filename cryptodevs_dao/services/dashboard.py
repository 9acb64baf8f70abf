"""Read models served to the web dashboard."""

from __future__ import annotations

from dataclasses import dataclass

from cryptodevs_dao.dao.models import LedgerState, ProposalView

WEI_PER_ETHER = 10**18


def format_ether(wei: int) -> str:
    """以 ether 字串表示 wei，格式與 ethers.js formatEther 相同（"0.0"、"0.1"、"12.5"）。"""
    sign = "-" if wei < 0 else ""
    whole, fraction = divmod(abs(int(wei)), WEI_PER_ETHER)
    fraction_text = f"{fraction:018d}".rstrip("0") or "0"
    return f"{sign}{whole}.{fraction_text}"


@dataclass(frozen=True, slots=True)
class DashboardSnapshot:
    owner: str
    treasury_balance_wei: int
    num_proposals: int
    proposals: tuple[ProposalView, ...]
    nft_balance: int | None = None

    @property
    def treasury_balance_eth(self) -> str:
        return format_ether(self.treasury_balance_wei)

    @property
    def is_member(self) -> bool:
        return bool(self.nft_balance)


def build_dashboard_snapshot(
    state: LedgerState, *, now: int, nft_balance: int | None = None
) -> DashboardSnapshot:
    # 所有欄位取自同一份快照
    proposals = tuple(p.view(i, now) for i, p in enumerate(state.proposals))
    return DashboardSnapshot(
        owner=state.owner,
        treasury_balance_wei=state.treasury_balance,
        num_proposals=state.num_proposals,
        proposals=proposals,
        nft_balance=nft_balance,
    )


__all__ = ["DashboardSnapshot", "WEI_PER_ETHER", "build_dashboard_snapshot", "format_ether"]
