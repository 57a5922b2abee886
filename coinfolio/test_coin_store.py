"""
Tests for the coin registry.

Tests cover:
- Ticker normalization and case-insensitive lookup
- Duplicate ticker handling (create vs upsert)
- Seeding an empty catalog
- Update and reference-checked delete
"""

from datetime import datetime
from decimal import Decimal

import pytest

from coinfolio.errors import ConflictError, ValidationError
from coinfolio.models import CoinStat, PortfolioEntryRequest


class TestReads:
    """Tests for catalog lookups."""

    def test_create_normalizes_ticker(self, coin_store):
        coin = coin_store.create("  btc ", "Bitcoin")

        assert coin.ticker == "BTC"
        assert coin.id is not None

    def test_get_by_ticker_case_insensitive(self, coin_store, btc):
        assert coin_store.get_by_ticker("btc") == btc
        assert coin_store.get_by_ticker("Btc") == btc
        assert coin_store.get_by_ticker("ETH") is None

    def test_get_by_id(self, coin_store, btc):
        assert coin_store.get_by_id(btc.id) == btc
        assert coin_store.get_by_id(9999) is None

    def test_get_all_ordered_by_id(self, coin_store, btc, eth):
        assert [c.ticker for c in coin_store.get_all()] == ["BTC", "ETH"]


class TestWrites:
    """Tests for catalog writes."""

    def test_create_duplicate_ticker_conflicts(self, coin_store, btc):
        with pytest.raises(ConflictError):
            coin_store.create("btc", "Bitcoin Again")

        assert coin_store.get_by_id(btc.id).name == "Bitcoin"

    @pytest.mark.parametrize("ticker, name", [
        ("", "Bitcoin"),
        ("   ", "Bitcoin"),
        ("X" * 21, "Too long"),
        ("BTC", ""),
        ("BTC", "N" * 101),
    ])
    def test_create_validates(self, coin_store, ticker, name):
        with pytest.raises(ValidationError):
            coin_store.create(ticker, name)

    def test_upsert_renames_existing(self, coin_store, btc):
        coin = coin_store.upsert("btc", "Bitcoin Core")

        assert coin.id == btc.id
        assert coin.name == "Bitcoin Core"
        assert coin_store.count() == 1

    def test_seed_only_when_empty(self, coin_store):
        assert coin_store.seed() == 2
        assert {c.ticker for c in coin_store.get_all()} == {"BTC", "ALPH"}

        assert coin_store.seed([("DOGE", "Dogecoin")]) == 0
        assert coin_store.count() == 2

    def test_update(self, coin_store, btc):
        assert coin_store.update(btc.id, "xbt", "Bitcoin") is True
        assert coin_store.get_by_id(btc.id).ticker == "XBT"
        assert coin_store.update(9999, "ZZZ", "Nothing") is False

    def test_update_to_taken_ticker_conflicts(self, coin_store, btc, eth):
        with pytest.raises(ConflictError):
            coin_store.update(eth.id, "BTC", "Ethereum")

    def test_delete_unreferenced(self, coin_store, btc):
        assert coin_store.delete(btc.id) is True
        assert coin_store.get_by_id(btc.id) is None
        assert coin_store.delete(btc.id) is False

    def test_delete_referenced_by_stats(self, coin_store, stats_store, btc):
        stats_store.upsert(CoinStat(btc.id, Decimal("1"), datetime(2024, 1, 1)))

        with pytest.raises(ConflictError):
            coin_store.delete(btc.id)

        assert coin_store.get_by_id(btc.id) is not None

    def test_delete_referenced_by_entry(self, coin_store, portfolio_store, btc):
        portfolio_store.insert(1, PortfolioEntryRequest(btc.id, Decimal("1"), Decimal("1")))

        with pytest.raises(ConflictError):
            coin_store.delete(btc.id)
