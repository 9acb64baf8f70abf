"""DAO governance service implementation using Result pattern."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import structlog

from cryptodevs_dao.dao.errors import DaoError, LedgerPersistenceError, ProposalNotFoundError
from cryptodevs_dao.dao.ledger import GovernanceLedger
from cryptodevs_dao.dao.models import LedgerState, ProposalView, VoteChoice
from cryptodevs_dao.db.gateway.dao_ledger import DaoLedgerGateway
from cryptodevs_dao.infra.events.dao_events import DaoEvent
from cryptodevs_dao.infra.events.dao_events import publish as publish_dao_event
from cryptodevs_dao.infra.result import Ok, Result, async_returns_result
from cryptodevs_dao.infra.types.db import ConnectionProtocol, PoolProtocol
from cryptodevs_dao.services.dashboard import DashboardSnapshot, build_dashboard_snapshot

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class VoteOutcome:
    votes_cast: int
    proposal: ProposalView


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    purchased: bool
    proposal: ProposalView


@dataclass(slots=True)
class _MutationScope:
    # 市場購買或轉帳已完成；之後無法再回滾帳本
    external_effect: bool = False


class DaoService:
    """DAO 治理服務：儀表板呼叫的唯一入口。

    所有變更操作經由同一把 asyncio.Lock 串行化；每次變更先取帳本檢查點，
    帳本操作或資料庫寫入失敗時還原檢查點，再以 Err 回傳具名錯誤。
    例外：購買或提領已把資金送出後寫入才失敗時，帳本保留送出後的狀態，
    並標記儲存層落後，下一次寫入改為寫入完整快照。

    查詢只讀取最後一次完成的變更所留下的快照，不等待鎖。
    未提供 pool 時只在記憶體中運作。
    """

    def __init__(
        self,
        ledger: GovernanceLedger,
        *,
        gateway: DaoLedgerGateway | None = None,
        pool: PoolProtocol | None = None,
    ) -> None:
        self._ledger = ledger
        self._gateway = gateway or DaoLedgerGateway()
        self._pool = pool
        self._lock = asyncio.Lock()
        self._committed: LedgerState = ledger.snapshot()
        self._store_dirty = False

    @property
    def ledger(self) -> GovernanceLedger:
        return self._ledger

    @property
    def persistent(self) -> bool:
        return self._pool is not None

    @property
    def store_dirty(self) -> bool:
        """儲存層是否落後於記憶體中的帳本。"""
        return self._store_dirty

    # --- Store ---
    @async_returns_result(DaoError, exception_map={Exception: LedgerPersistenceError})
    async def restore_from_store(self) -> Result[bool, DaoError]:
        """自資料庫還原帳本，回傳是否實際載入了既有狀態。

        資料庫為空時寫入目前狀態作為初始列；儲存層落後時改為以記憶體中的
        帳本覆寫資料庫，而不是載入過期的資料。
        """
        if self._pool is None:
            return Ok(False)
        async with self._lock:
            async with self._pool.acquire() as conn:
                c: ConnectionProtocol = conn
                if self._store_dirty:
                    current = self._ledger.snapshot()
                    async with c.transaction():
                        await self._write_diff(c, None, current)
                    self._store_dirty = False
                    LOGGER.info("dao.service.store_resynced", num_proposals=current.num_proposals)
                    return Ok(False)

                state = await self._gateway.load_state(c)
                if state is None:
                    initial = self._ledger.snapshot()
                    async with c.transaction():
                        await self._write_diff(c, None, initial)
                    LOGGER.info("dao.service.store_initialised", owner=initial.owner)
                    return Ok(False)
            self._ledger.restore(state)
            self._committed = self._ledger.snapshot()
        LOGGER.info(
            "dao.service.store_restored",
            num_proposals=state.num_proposals,
            balance_wei=state.treasury_balance,
        )
        return Ok(True)

    # --- Mutations ---
    @async_returns_result(DaoError, exception_map={Exception: DaoError})
    async def deposit(self, *, sender: str, amount: int) -> Result[int, DaoError]:
        """Receive value into the treasury; returns the new balance."""
        async with self._mutation("deposit"):
            balance = self._ledger.deposit(sender, amount)
        await publish_dao_event(DaoEvent(kind="funds_deposited", actor=sender, amount_wei=amount))
        return Ok(balance)

    @async_returns_result(DaoError, exception_map={Exception: DaoError})
    async def create_proposal(
        self, *, caller: str, nft_token_id: int
    ) -> Result[ProposalView, DaoError]:
        async with self._mutation("create_proposal"):
            index = self._ledger.create_proposal(nft_token_id, caller=caller)
            proposal = self._ledger.get_proposal(index)
        await publish_dao_event(
            DaoEvent(kind="proposal_created", proposal_index=index, actor=caller)
        )
        return Ok(proposal)

    @async_returns_result(DaoError, exception_map={Exception: DaoError})
    async def vote(
        self, *, caller: str, proposal_index: int, choice: VoteChoice | int | str
    ) -> Result[VoteOutcome, DaoError]:
        async with self._mutation("vote"):
            votes = self._ledger.vote_on_proposal(proposal_index, choice, caller=caller)
            proposal = self._ledger.get_proposal(proposal_index)
        await publish_dao_event(
            DaoEvent(kind="vote_cast", proposal_index=proposal_index, actor=caller)
        )
        return Ok(VoteOutcome(votes_cast=votes, proposal=proposal))

    @async_returns_result(DaoError, exception_map={Exception: DaoError})
    async def execute_proposal(
        self, *, caller: str, proposal_index: int
    ) -> Result[ExecutionOutcome, DaoError]:
        async with self._mutation("execute_proposal") as scope:
            purchased = self._ledger.execute_proposal(proposal_index, caller=caller)
            scope.external_effect = purchased
            proposal = self._ledger.get_proposal(proposal_index)
        await publish_dao_event(
            DaoEvent(
                kind="proposal_executed",
                proposal_index=proposal_index,
                actor=caller,
                purchased=purchased,
            )
        )
        return Ok(ExecutionOutcome(purchased=purchased, proposal=proposal))

    @async_returns_result(DaoError, exception_map={Exception: DaoError})
    async def withdraw_funds(self, *, caller: str) -> Result[int, DaoError]:
        async with self._mutation("withdraw_funds") as scope:
            amount = self._ledger.withdraw_funds(caller=caller)
            scope.external_effect = True
        await publish_dao_event(DaoEvent(kind="funds_withdrawn", actor=caller, amount_wei=amount))
        return Ok(amount)

    @async_returns_result(DaoError, exception_map={Exception: DaoError})
    async def transfer_ownership(self, *, caller: str, new_owner: str) -> Result[str, DaoError]:
        async with self._mutation("transfer_ownership"):
            self._ledger.transfer_ownership(new_owner, caller=caller)
            owner = self._ledger.owner
        await publish_dao_event(DaoEvent(kind="ownership_transferred", actor=owner))
        return Ok(owner)

    # --- Queries ---
    async def get_treasury_balance(self) -> int:
        return self._committed.treasury_balance

    async def get_num_proposals(self) -> int:
        return self._committed.num_proposals

    async def list_proposals(self) -> list[ProposalView]:
        state, now = self._committed, self._ledger.now()
        return [p.view(i, now) for i, p in enumerate(state.proposals)]

    @async_returns_result(DaoError, exception_map={Exception: DaoError})
    async def get_proposal(self, *, proposal_index: int) -> Result[ProposalView, DaoError]:
        state = self._committed
        if (
            isinstance(proposal_index, bool)
            or not isinstance(proposal_index, int)
            or not 0 <= proposal_index < state.num_proposals
        ):
            raise ProposalNotFoundError(
                context={"proposal_index": proposal_index, "num_proposals": state.num_proposals}
            )
        return Ok(state.proposals[proposal_index].view(proposal_index, self._ledger.now()))

    @async_returns_result(DaoError, exception_map={Exception: DaoError})
    async def get_nft_balance(self, *, address: str) -> Result[int, DaoError]:
        return Ok(self._ledger.member_balance(address))

    @async_returns_result(DaoError, exception_map={Exception: DaoError})
    async def dashboard(self, *, address: str | None = None) -> Result[DashboardSnapshot, DaoError]:
        state, now = self._committed, self._ledger.now()
        if address is None:
            return Ok(build_dashboard_snapshot(state, now=now))
        balance = await self.get_nft_balance(address=address)
        return balance.map(
            lambda nft_balance: build_dashboard_snapshot(state, now=now, nft_balance=nft_balance)
        )

    # --- Transaction boundary ---
    @asynccontextmanager
    async def _mutation(self, operation: str) -> AsyncIterator[_MutationScope]:
        async with self._lock:
            checkpoint = self._ledger.snapshot()
            scope = _MutationScope()
            try:
                yield scope
            except BaseException:
                self._ledger.restore(checkpoint)
                raise

            after = self._ledger.snapshot()
            try:
                await self._persist(operation, checkpoint, after)
            except BaseException:
                if scope.external_effect:
                    self._store_dirty = True
                    self._committed = after
                    LOGGER.error(
                        "dao.service.store_behind_ledger",
                        operation=operation,
                        balance_wei=after.treasury_balance,
                    )
                else:
                    self._ledger.restore(checkpoint)
                raise
            self._committed = after

    async def _persist(self, operation: str, before: LedgerState, after: LedgerState) -> None:
        if self._pool is None:
            return
        full = self._store_dirty
        if after == before and not full:
            return
        try:
            async with self._pool.acquire() as conn:
                c: ConnectionProtocol = conn
                async with c.transaction():
                    await self._write_diff(c, None if full else before, after)
        except Exception as exc:
            LOGGER.error("dao.service.persist_failed", operation=operation, error=str(exc))
            raise LedgerPersistenceError(context={"operation": operation}, cause=exc) from exc
        if full:
            self._store_dirty = False
            LOGGER.info("dao.service.store_resynced", operation=operation)

    async def _write_diff(
        self, connection: ConnectionProtocol, before: LedgerState | None, after: LedgerState
    ) -> None:
        """只寫入 before → after 之間變動的列；before 為 None 時寫入全部。

        已投票 NFT 只會新增不會刪除，因此 voters 只需寫入差集。
        """
        for index, proposal in enumerate(after.proposals):
            previous = None
            if before is not None and index < before.num_proposals:
                previous = before.proposals[index]
            if proposal == previous:
                continue
            await self._gateway.save_proposal(connection, proposal_index=index, proposal=proposal)
            new_voters = proposal.voters - (previous.voters if previous else frozenset())
            await self._gateway.add_voters(
                connection, proposal_index=index, token_ids=sorted(new_voters)
            )
        if (
            before is None
            or after.owner != before.owner
            or after.treasury_balance != before.treasury_balance
            or after.num_proposals != before.num_proposals
        ):
            await self._gateway.save_ledger(
                connection,
                owner=after.owner,
                treasury_balance=after.treasury_balance,
                num_proposals=after.num_proposals,
            )


__all__ = ["DaoService", "ExecutionOutcome", "VoteOutcome"]
