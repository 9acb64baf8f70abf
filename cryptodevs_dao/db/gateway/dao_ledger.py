from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Mapping

from cryptodevs_dao.dao.models import LedgerState, ProposalState
from cryptodevs_dao.infra.types.db import ConnectionProtocol

_LEDGER_ROW_ID = 1


def _proposal_from_row(row: Mapping[str, Any], voters: frozenset[int]) -> ProposalState:
    return ProposalState(
        nft_token_id=int(row["nft_token_id"]),
        deadline=int(row["deadline"]),
        yay_votes=int(row["yay_votes"]),
        nay_votes=int(row["nay_votes"]),
        executed=bool(row["executed"]),
        voters=voters,
    )


class DaoLedgerGateway:
    """Encapsulate reads/writes of the persisted ledger tables.

    提案以永久索引為主鍵；索引一經寫入永不重用或壓縮。
    """

    def __init__(self, *, schema: str = "dao") -> None:
        self._schema = schema

    # --- Ledger row ---
    async def fetch_ledger(self, connection: ConnectionProtocol) -> tuple[str, int, int] | None:
        """回傳 (owner, treasury_balance, num_proposals)，尚未初始化時為 None。"""
        row = await connection.fetchrow(
            f"""
                SELECT owner, treasury_balance, num_proposals
                FROM {self._schema}.ledger_state
                WHERE id = $1
            """,
            _LEDGER_ROW_ID,
        )
        if row is None:
            return None
        return str(row["owner"]), int(row["treasury_balance"]), int(row["num_proposals"])

    async def save_ledger(
        self,
        connection: ConnectionProtocol,
        *,
        owner: str,
        treasury_balance: int,
        num_proposals: int,
    ) -> None:
        await connection.execute(
            f"""
                INSERT INTO {self._schema}.ledger_state (id, owner, treasury_balance, num_proposals)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (id) DO UPDATE
                SET owner = EXCLUDED.owner,
                    treasury_balance = EXCLUDED.treasury_balance,
                    num_proposals = EXCLUDED.num_proposals,
                    updated_at = timezone('utc', now())
            """,
            _LEDGER_ROW_ID,
            owner,
            Decimal(treasury_balance),
            num_proposals,
        )

    # --- Proposals ---
    async def save_proposal(
        self,
        connection: ConnectionProtocol,
        *,
        proposal_index: int,
        proposal: ProposalState,
    ) -> None:
        # deadline 與 nft_token_id 建立後不變，衝突時只更新票數與執行旗標
        await connection.execute(
            f"""
                INSERT INTO {self._schema}.proposals
                    (proposal_index, nft_token_id, deadline, yay_votes, nay_votes, executed)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (proposal_index) DO UPDATE
                SET yay_votes = EXCLUDED.yay_votes,
                    nay_votes = EXCLUDED.nay_votes,
                    executed = EXCLUDED.executed
            """,
            proposal_index,
            Decimal(proposal.nft_token_id),
            proposal.deadline,
            proposal.yay_votes,
            proposal.nay_votes,
            proposal.executed,
        )

    async def add_voters(
        self,
        connection: ConnectionProtocol,
        *,
        proposal_index: int,
        token_ids: Iterable[int],
    ) -> None:
        records = [(proposal_index, Decimal(token_id)) for token_id in token_ids]
        if not records:
            return
        await connection.executemany(
            f"""
                INSERT INTO {self._schema}.proposal_voters (proposal_index, token_id)
                VALUES ($1, $2)
                ON CONFLICT DO NOTHING
            """,
            records,
        )

    async def fetch_voters(self, connection: ConnectionProtocol) -> dict[int, set[int]]:
        rows = await connection.fetch(
            f"SELECT proposal_index, token_id FROM {self._schema}.proposal_voters"
        )
        voters: dict[int, set[int]] = {}
        for row in rows:
            voters.setdefault(int(row["proposal_index"]), set()).add(int(row["token_id"]))
        return voters

    async def fetch_proposals(self, connection: ConnectionProtocol) -> list[ProposalState]:
        rows = await connection.fetch(
            f"""
                SELECT proposal_index, nft_token_id, deadline, yay_votes, nay_votes, executed
                FROM {self._schema}.proposals
                ORDER BY proposal_index
            """
        )
        voters = await self.fetch_voters(connection)
        proposals: list[ProposalState] = []
        for expected_index, row in enumerate(rows):
            index = int(row["proposal_index"])
            if index != expected_index:
                raise RuntimeError(
                    f"proposal index gap in store: expected {expected_index}, found {index}"
                )
            proposals.append(_proposal_from_row(row, frozenset(voters.get(index, ()))))
        return proposals

    async def load_state(self, connection: ConnectionProtocol) -> LedgerState | None:
        ledger = await self.fetch_ledger(connection)
        if ledger is None:
            return None
        owner, balance, num_proposals = ledger
        proposals = await self.fetch_proposals(connection)
        if len(proposals) != num_proposals:
            raise RuntimeError(
                f"ledger row says {num_proposals} proposals, store holds {len(proposals)}"
            )
        return LedgerState(owner=owner, treasury_balance=balance, proposals=tuple(proposals))


__all__ = ["DaoLedgerGateway"]
