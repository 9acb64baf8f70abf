from __future__ import annotations

import asyncio
from typing import Any, cast
from weakref import WeakKeyDictionary

import asyncpg
import structlog
from dotenv import load_dotenv

from cryptodevs_dao.config.db_settings import PoolConfig
from cryptodevs_dao.infra.retry import backoff_retry

LOGGER = structlog.get_logger(__name__)

_POOL_LOCKS: "WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = WeakKeyDictionary()
_POOLS: "WeakKeyDictionary[asyncio.AbstractEventLoop, asyncpg.Pool]" = WeakKeyDictionary()


async def init_pool(config: PoolConfig | None = None) -> asyncpg.Pool:
    """Initialise the asyncpg pool if it does not already exist."""
    loop = asyncio.get_running_loop()
    existing = _POOLS.get(loop)
    if existing is not None:
        return existing

    lock = _get_pool_lock(loop)

    async with lock:
        pool = _POOLS.get(loop)
        if pool is not None:
            return pool

        if config is None:
            load_dotenv(override=False)
            pool_config = PoolConfig.model_validate({})
        else:
            pool_config = config

        pool = await _create_pool(pool_config)
        _POOLS[loop] = pool

        LOGGER.info(
            "db.pool.initialised",
            min_size=pool_config.min_size,
            max_size=pool_config.max_size,
        )
        return pool


async def _create_pool(pool_config: PoolConfig) -> asyncpg.Pool:
    # 資料庫容器可能晚於應用啟動，連線錯誤時以退避重試
    @backoff_retry(
        max_attempts=pool_config.db_connect_attempts,
        retry_on=(OSError, asyncpg.CannotConnectNowError),
    )
    async def _connect() -> asyncpg.Pool:
        _apg = cast(Any, asyncpg)
        return cast(
            asyncpg.Pool,
            await _apg.create_pool(
                dsn=pool_config.dsn,
                min_size=pool_config.min_size,
                max_size=pool_config.max_size,
                timeout=pool_config.timeout or 60.0,
            ),
        )

    return await _connect()


async def close_pool() -> None:
    """Close the pool if one exists."""
    loop = asyncio.get_running_loop()
    lock = _get_pool_lock(loop)

    async with lock:
        pool = _POOLS.pop(loop, None)

    if pool is not None:
        await pool.close()
        LOGGER.info("db.pool.closed")


def _get_pool_lock(loop: asyncio.AbstractEventLoop | None = None) -> asyncio.Lock:
    if loop is None:
        loop = asyncio.get_running_loop()
    lock = _POOL_LOCKS.get(loop)
    if lock is None:
        lock = asyncio.Lock()
        _POOL_LOCKS[loop] = lock
    return lock
