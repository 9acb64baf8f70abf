"""Wire settings, logging, persistence and collaborators into a DaoService."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from cryptodevs_dao.config.settings import DaoSettings, get_settings
from cryptodevs_dao.dao.capabilities import (
    Clock,
    FundsTransfer,
    NftMarketplace,
    NftOwnershipOracle,
    system_clock,
)
from cryptodevs_dao.dao.ledger import GovernanceLedger
from cryptodevs_dao.dao.local_chain import AccountBook, CryptoDevsNft, FakeNftMarketplace
from cryptodevs_dao.db import pool as db_pool
from cryptodevs_dao.infra.logging.config import configure_logging
from cryptodevs_dao.services.dao_service import DaoService

LOGGER = structlog.get_logger(__name__)


@dataclass(slots=True)
class LocalChain:
    nft: CryptoDevsNft
    marketplace: FakeNftMarketplace
    accounts: AccountBook


async def build_service(
    *,
    oracle: NftOwnershipOracle,
    marketplace: NftMarketplace,
    funds: FundsTransfer,
    settings: DaoSettings | None = None,
    owner: str | None = None,
    clock: Clock = system_clock,
    initial_balance: int = 0,
) -> DaoService:
    """建立服務；啟用持久化時初始化連線池並自資料庫還原帳本。

    還原失敗直接拋出錯誤，讓啟動流程停止而不是以空帳本繼續運作。
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    ledger = GovernanceLedger(
        owner=owner or settings.owner_address,
        oracle=oracle,
        marketplace=marketplace,
        funds=funds,
        voting_window_seconds=settings.voting_window_seconds,
        clock=clock,
        initial_balance=initial_balance,
    )

    pool = await db_pool.init_pool() if settings.persistence_enabled else None
    service = DaoService(ledger, pool=pool)

    restored = await service.restore_from_store()
    if restored.is_err():
        raise restored.unwrap_err()

    LOGGER.info(
        "dao.bootstrap.ready",
        owner=ledger.owner,
        persistent=service.persistent,
        restored=restored.unwrap(),
        voting_window_seconds=settings.voting_window_seconds,
    )
    return service


async def build_local_service(
    *,
    owner: str,
    settings: DaoSettings | None = None,
    clock: Clock = system_clock,
    initial_balance: int = 0,
) -> tuple[DaoService, LocalChain]:
    """以程序內的 NFT 合約、假市場與帳戶簿建立服務，供本機執行與測試使用。"""
    settings = settings or get_settings()
    chain = LocalChain(
        nft=CryptoDevsNft(),
        marketplace=FakeNftMarketplace(price=settings.nft_price_wei),
        accounts=AccountBook(),
    )
    service = await build_service(
        oracle=chain.nft,
        marketplace=chain.marketplace,
        funds=chain.accounts,
        settings=settings,
        owner=owner,
        clock=clock,
        initial_balance=initial_balance,
    )
    return service, chain


async def shutdown_service(service: DaoService) -> None:
    """關閉服務持有的資料庫連線池；純記憶體服務不需處理。"""
    if service.persistent:
        await db_pool.close_pool()
    LOGGER.info("dao.bootstrap.shutdown", persistent=service.persistent)


__all__ = ["LocalChain", "build_local_service", "build_service", "shutdown_service"]
