"""Shared fixtures: an in-memory database and the stores built on it."""

from datetime import datetime

import pytest

from coinfolio.coin_store import CoinStore
from coinfolio.database import Database
from coinfolio.portfolio import PortfolioAggregator
from coinfolio.portfolio_store import PortfolioStore
from coinfolio.stats_store import StatsStore


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 1, 12, 0, 0))


@pytest.fixture
def db():
    """Create an in-memory DuckDB database for testing."""
    database = Database(db_path=":memory:")
    yield database
    database.close()


@pytest.fixture
def coin_store(db):
    return CoinStore(db)


@pytest.fixture
def stats_store(db, clock):
    return StatsStore(db, clock=clock)


@pytest.fixture
def portfolio_store(db, clock):
    return PortfolioStore(db, clock=clock)


@pytest.fixture
def aggregator(coin_store, stats_store, portfolio_store):
    return PortfolioAggregator(coin_store, stats_store, portfolio_store)


@pytest.fixture
def btc(coin_store):
    return coin_store.create("BTC", "Bitcoin")


@pytest.fixture
def eth(coin_store):
    return coin_store.create("ETH", "Ethereum")
