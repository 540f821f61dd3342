"""
Integration fixtures

Real SQLite store in a temporary directory, mock payment processor and
rate source, and a controllable clock.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from adapters.db.sqlite_adapter import SQLiteAdapter, init_schema
from adapters.mock.payment_gateway import MockPaymentGateway
from adapters.mock.rate_source import MockRateSource
from core.balance import BalanceEngine, ExchangeRateProvider, KeyedLockRegistry
from core.storage import BalanceStore

START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests move forward by hand"""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncGenerator[SQLiteAdapter, None]:
    async with SQLiteAdapter(tmp_path / "wallet_test.db") as adapter:
        await init_schema(adapter)
        yield adapter


@pytest.fixture
def store(db: SQLiteAdapter) -> BalanceStore:
    return BalanceStore(db)


@pytest.fixture
def gateway() -> MockPaymentGateway:
    return MockPaymentGateway()


@pytest.fixture
def rate_source() -> MockRateSource:
    return MockRateSource()


@pytest.fixture
def rate_provider(rate_source: MockRateSource, store: BalanceStore, clock: FakeClock) -> ExchangeRateProvider:
    return ExchangeRateProvider(rate_source, store, cache_ttl_sec=3600, max_stale_sec=86400, now=clock)


@pytest.fixture
def engine(
    store: BalanceStore,
    gateway: MockPaymentGateway,
    rate_provider: ExchangeRateProvider,
    clock: FakeClock,
) -> BalanceEngine:
    return BalanceEngine(store, gateway, rate_provider, locks=KeyedLockRegistry(), now=clock)
