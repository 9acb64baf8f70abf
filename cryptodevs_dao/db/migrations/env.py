"""Alembic environment for the dao ledger schema (raw SQL revisions, no ORM metadata)."""

from __future__ import annotations

import structlog
from alembic import context
from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

from cryptodevs_dao.config.db_settings import PoolConfig
from cryptodevs_dao.config.settings import get_settings
from cryptodevs_dao.infra.logging.config import configure_logging

load_dotenv(override=False)
configure_logging(get_settings().log_level)

LOGGER = structlog.get_logger(__name__)


def _pool_config() -> PoolConfig:
    # 與 asyncpg 連線池共用 DATABASE_URL 驗證規則
    return PoolConfig.model_validate({})


def run_migrations_offline(db_config: PoolConfig) -> None:
    """Emit the revision SQL to stdout instead of executing it."""
    context.configure(url=db_config.sqlalchemy_url, target_metadata=None, literal_binds=True)

    with context.begin_transaction():
        context.run_migrations()
    LOGGER.info("dao.migrations.run", mode="offline")


def run_migrations_online(db_config: PoolConfig) -> None:
    engine = create_engine(db_config.sqlalchemy_url, poolclass=pool.NullPool)

    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=None)
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()
    LOGGER.info("dao.migrations.run", mode="online")


_db_config = _pool_config()
if context.is_offline_mode():
    run_migrations_offline(_db_config)
else:
    run_migrations_online(_db_config)
