"""
Tests for the refresh scheduler.

Tests cover:
- A tick writing one stat per coin, stamped with the tick time
- Per-coin failure isolation
- Catalog read failure turning the tick into a no-op
- Non-overlapping ticks
- Start/stop lifecycle
- Retention after a tick
- run_refresh end-to-end against a mocked HTTP session
"""

import threading
import time
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
import requests

from coinfolio.config import load_config
from coinfolio.errors import StorageError, UpstreamDataError
from coinfolio.models import Coin, CoinStat, PriceQuote
from coinfolio.scheduler import RefreshScheduler, TickResult, run_refresh


class FakeSource:
    """In-memory PriceStatSource; tickers listed in `failing` raise."""

    def __init__(self, prices, failing=()):
        self.prices = prices
        self.failing = set(failing)
        self.calls = []
        self.close_calls = 0

    def fetch(self, ticker):
        self.calls.append(ticker)
        if ticker in self.failing:
            raise UpstreamDataError(f"no data for {ticker}", ticker)
        return PriceQuote(price=Decimal(self.prices[ticker]), market_cap=Decimal("1000"), volume=None)

    def close(self):
        self.close_calls += 1


@pytest.fixture
def three_coins(coin_store):
    return [
        coin_store.create("BTC", "Bitcoin"),
        coin_store.create("ETH", "Ethereum"),
        coin_store.create("ALPH", "Alephium"),
    ]


@pytest.fixture
def source():
    return FakeSource({"BTC": "51000", "ETH": "3000", "ALPH": "2.5"})


@pytest.fixture
def scheduler(coin_store, stats_store, source, clock):
    sched = RefreshScheduler(coin_store, stats_store, source, interval_seconds=600, clock=clock)
    yield sched
    sched.stop(timeout=5)


class TestTick:
    """Tests for one refresh pass."""

    def test_tick_writes_stat_per_coin(self, scheduler, stats_store, three_coins, clock):
        result = scheduler.run_tick()

        assert result.updated == ["BTC", "ETH", "ALPH"]
        assert result.failed == []
        assert result.skipped is False
        for coin in three_coins:
            assert stats_store.latest(coin.id).timestamp == clock.now
        assert stats_store.latest(three_coins[2].id).current_price == Decimal("2.5")
        assert scheduler.last_result is result

    def test_failing_coin_is_skipped(self, scheduler, stats_store, source, three_coins, clock):
        """The second coin fails; the first and third are written, the second keeps its old stat."""
        btc, eth, alph = three_coins
        earlier = clock.now - timedelta(minutes=10)
        stats_store.upsert(CoinStat(coin_id=eth.id, current_price=Decimal("2900"), timestamp=earlier))
        source.failing.add("ETH")

        result = scheduler.run_tick()

        assert result.updated == ["BTC", "ALPH"]
        assert result.failed == ["ETH"]
        assert stats_store.latest(btc.id).timestamp == clock.now
        assert stats_store.latest(alph.id).timestamp == clock.now
        eth_stat = stats_store.latest(eth.id)
        assert eth_stat.timestamp == earlier
        assert eth_stat.current_price == Decimal("2900")
        assert stats_store.count(eth.id) == 1

    def test_storage_error_on_upsert_is_isolated(self, coin_store, source, clock, three_coins):
        stats = Mock()
        stats.upsert.side_effect = [StorageError("disk full"), None, None]
        sched = RefreshScheduler(coin_store, stats, source, clock=clock)

        result = sched.run_tick()

        assert result.failed == ["BTC"]
        assert result.updated == ["ETH", "ALPH"]

    def test_coin_deleted_after_catalog_read_is_skipped(self, stats_store, source, clock):
        coins = Mock()
        coins.get_all.return_value = [Coin(id=9999, ticker="BTC", name="Bitcoin")]
        sched = RefreshScheduler(coins, stats_store, source, clock=clock)

        result = sched.run_tick()

        assert result.failed == ["BTC"]
        assert stats_store.count() == 0

    def test_catalog_failure_is_noop(self, stats_store, source, clock):
        coins = Mock()
        coins.get_all.side_effect = StorageError("catalog unavailable")
        sched = RefreshScheduler(coins, stats_store, source, clock=clock)

        result = sched.run_tick()

        assert result.error == "catalog unavailable"
        assert result.updated == []
        assert source.calls == []
        assert stats_store.count() == 0

    def test_empty_catalog(self, scheduler, source):
        result = scheduler.run_tick()

        assert result.updated == [] and result.failed == []
        assert source.calls == []

    def test_repeat_tick_same_second_is_idempotent(self, scheduler, stats_store, three_coins):
        scheduler.run_tick()
        scheduler.run_tick()

        assert stats_store.count() == 3

    def test_concurrent_tick_is_skipped(self, coin_store, stats_store, clock, three_coins):
        entered = threading.Event()
        release = threading.Event()

        class BlockingSource(FakeSource):
            def fetch(self, ticker):
                entered.set()
                release.wait(5)
                return super().fetch(ticker)

        sched = RefreshScheduler(
            coin_store, stats_store, BlockingSource({"BTC": "1", "ETH": "2", "ALPH": "3"}), clock=clock
        )
        results = []
        worker = threading.Thread(target=lambda: results.append(sched.run_tick()))
        worker.start()
        assert entered.wait(5)

        assert sched.state == RefreshScheduler.STATE_RUNNING
        second = sched.run_tick()

        release.set()
        worker.join(5)
        assert second.skipped is True
        assert results[0].skipped is False
        assert results[0].updated == ["BTC", "ETH", "ALPH"]
        sched.stop()

    def test_retention_applied_after_tick(self, coin_store, stats_store, source, clock, three_coins):
        btc = three_coins[0]
        stats_store.upsert(CoinStat(
            coin_id=btc.id, current_price=Decimal("1"), timestamp=clock.now - timedelta(days=30)
        ))
        sched = RefreshScheduler(coin_store, stats_store, source, retention_days=7, clock=clock)

        sched.run_tick()

        assert stats_store.count(btc.id) == 1
        assert stats_store.latest(btc.id).timestamp == clock.now

    def test_to_dict(self):
        result = TickResult(started_at=datetime(2024, 3, 1, 12, 0, 0), updated=["BTC"])

        data = result.to_dict()

        assert data["started_at"] == "2024-03-01T12:00:00"
        assert data["finished_at"] is None
        assert data["updated"] == ["BTC"]


class TestLifecycle:
    """Tests for start/stop."""

    def test_rejects_non_positive_interval(self, coin_store, stats_store, source):
        with pytest.raises(ValueError):
            RefreshScheduler(coin_store, stats_store, source, interval_seconds=0)

    def test_start_runs_first_tick_immediately(self, scheduler, source, three_coins):
        scheduler.start()
        scheduler.start()

        for _ in range(100):
            if scheduler.last_result is not None:
                break
            time.sleep(0.05)

        assert scheduler.last_result is not None
        assert source.calls[:3] == ["BTC", "ETH", "ALPH"]

    def test_stop_is_idempotent_and_terminal(self, scheduler, source):
        scheduler.start()

        scheduler.stop(timeout=5)
        scheduler.stop(timeout=5)

        assert scheduler.state == RefreshScheduler.STATE_STOPPED
        assert source.close_calls == 1
        assert scheduler.run_tick().skipped is True
        with pytest.raises(RuntimeError):
            scheduler.start()

    def test_stop_without_start_closes_source(self, scheduler, source):
        scheduler.stop()

        assert source.close_calls == 1

    def test_status(self, scheduler, three_coins):
        assert scheduler.status()["state"] == "idle"
        assert scheduler.status()["last_result"] is None

        scheduler.run_tick()

        status = scheduler.status()
        assert status["interval_seconds"] == 600
        assert status["last_result"]["updated"] == ["BTC", "ETH", "ALPH"]


def test_run_refresh_seeds_and_fetches(tmp_path):
    """Runs one tick against a fresh database with HTTP mocked out."""

    def fake_get(url, params=None, timeout=None):
        response = Mock(spec=requests.Response)
        response.status_code = 200
        if "gateio" in url:
            response.json.return_value = [{"last": "42", "quote_volume": "1000"}]
        elif "/alph/" in url:
            response.status_code = 503
        else:
            response.json.return_value = {"market_cap": "900000"}
        return response

    config = load_config({"db_path": str(tmp_path / "coinfolio.duckdb")})

    with patch("requests.Session.get", side_effect=fake_get):
        result = run_refresh(config)

    assert result.updated == ["BTC"]
    assert result.failed == ["ALPH"]
    assert result.finished_at is not None
