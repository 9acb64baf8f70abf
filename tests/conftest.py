from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import asyncpg
import pytest
import pytest_asyncio
from dotenv import load_dotenv
from faker import Faker

from cryptodevs_dao.config.db_settings import PoolConfig
from cryptodevs_dao.dao.ledger import GovernanceLedger
from cryptodevs_dao.dao.local_chain import AccountBook, CryptoDevsNft, FakeNftMarketplace
from cryptodevs_dao.db.pool import close_pool, init_pool

START_TIME = 1_700_000_000
NFT_PRICE_WEI = 10**17
VOTING_WINDOW_SECONDS = 300


class FakeClock:
    """Manually advanced clock returning unix seconds."""

    def __init__(self, start: int = START_TIME) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def faker() -> Faker:
    """Provide a Faker instance with Chinese and English locales for test data generation."""
    return Faker(["zh_TW", "en_US"])


@pytest.fixture
def make_address(faker: Faker):
    """Return a factory producing distinct 20-byte hex addresses."""
    seen: set[str] = set()

    def _make() -> str:
        while True:
            address = faker.hexify(text="0x" + "^" * 40)
            if address not in seen and int(address, 16) != 0:
                seen.add(address)
                return address

    return _make


@pytest.fixture
def owner(make_address) -> str:
    return make_address()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def nft() -> CryptoDevsNft:
    return CryptoDevsNft()


@pytest.fixture
def marketplace() -> FakeNftMarketplace:
    return FakeNftMarketplace(price=NFT_PRICE_WEI)


@pytest.fixture
def accounts() -> AccountBook:
    return AccountBook()


@pytest.fixture
def ledger(
    owner: str,
    nft: CryptoDevsNft,
    marketplace: FakeNftMarketplace,
    accounts: AccountBook,
    clock: FakeClock,
) -> GovernanceLedger:
    return GovernanceLedger(
        owner=owner,
        oracle=nft,
        marketplace=marketplace,
        funds=accounts,
        voting_window_seconds=VOTING_WINDOW_SECONDS,
        clock=clock,
    )


@pytest_asyncio.fixture
async def db_pool() -> AsyncIterator[asyncpg.Pool]:
    """Initialise the shared asyncpg pool for database-centric tests."""
    try:
        load_dotenv(override=False)
        config = PoolConfig.model_validate({})
    except (ValueError, RuntimeError) as exc:
        pytest.skip(f"Skipping database tests: {exc}")

    pool = await init_pool(config)
    try:
        yield pool
    finally:
        await close_pool()
        await asyncio.sleep(0.1)
