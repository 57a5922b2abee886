"""
Read-side views of coins joined with their statistics.
"""

from datetime import datetime
from typing import List

from .coin_store import CoinStore
from .errors import NotFoundError, ValidationError
from .models import Coin, CoinHistory, CoinWithStats
from .stats_store import StatsStore


class MarketView:
    """Coins with latest, dated or ranged stats."""

    def __init__(self, coins: CoinStore, stats: StatsStore):
        self.coins = coins
        self.stats = stats

    def _require_coin(self, coin_id: int) -> Coin:
        coin = self.coins.get_by_id(coin_id)
        if coin is None:
            raise NotFoundError(f"Coin {coin_id} not found")
        return coin

    def coins_with_latest_stats(self) -> List[CoinWithStats]:
        latest = self.stats.latest_for_all()
        return [
            CoinWithStats.from_coin_and_stat(coin, latest.get(coin.id))
            for coin in self.coins.get_all()
        ]

    def coins_at(self, timestamp: datetime) -> List[CoinWithStats]:
        snapshot = self.stats.for_all_at(timestamp)
        return [
            CoinWithStats.from_coin_and_stat(coin, snapshot.get(coin.id))
            for coin in self.coins.get_all()
        ]

    def coin(self, coin_id: int) -> CoinWithStats:
        coin = self._require_coin(coin_id)
        return CoinWithStats.from_coin_and_stat(coin, self.stats.latest(coin.id))

    def coin_at(self, coin_id: int, timestamp: datetime) -> CoinWithStats:
        coin = self._require_coin(coin_id)
        return CoinWithStats.from_coin_and_stat(coin, self.stats.at(coin.id, timestamp))

    def coin_by_ticker(self, ticker: str) -> CoinWithStats:
        coin = self.coins.get_by_ticker(ticker)
        if coin is None:
            raise NotFoundError(f"Coin {ticker.strip().upper()} not found")
        return CoinWithStats.from_coin_and_stat(coin, self.stats.latest(coin.id))

    def history(self, coin_id: int, start: datetime, end: datetime) -> CoinHistory:
        """
        Stats for a coin between two timestamps, oldest first.

        :raises ValidationError: If end is before start
        :raises NotFoundError: If the coin does not exist
        """
        if end < start:
            raise ValidationError("'to' date must not be before 'from' date")
        coin = self._require_coin(coin_id)
        return CoinHistory(coin=coin, stats=self.stats.range(coin.id, start, end))
