"""
Persistence of time-stamped coin statistics.

One row per (coin_id, recorded_at). Writes go through upsert(), which relies
on the table's unique constraint as its conflict target, so concurrent writers
can never create two rows for the same key.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Iterable, Callable

from .database import Database
from .errors import NotFoundError, ValidationError
from .models import AMOUNT_DIGITS, PRICE_DIGITS, CoinStat, check_fits, truncate_to_seconds

logger = logging.getLogger(__name__)

_STAT_COLUMNS = "id, coin_id, current_price, market_cap, volume_24h, recorded_at"


def _row_to_stat(row: tuple) -> CoinStat:
    return CoinStat(
        id=row[0],
        coin_id=row[1],
        current_price=row[2],
        market_cap=row[3],
        volume_24h=row[4],
        timestamp=row[5],
    )


class StatsStore:
    """
    DuckDB-backed storage for coin price/market-cap/volume snapshots.

    :param db: Shared Database handle
    :param clock: Returns "now"; used by delete_older_than
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    # ==================== Point Queries ====================

    def latest(self, coin_id: int) -> Optional[CoinStat]:
        """Most recent stat for a coin, or None if it has none."""
        row = self.db.fetchone(f"""
            SELECT {_STAT_COLUMNS}
            FROM coin_stats
            WHERE coin_id = ?
            ORDER BY recorded_at DESC
            LIMIT 1
        """, [coin_id])
        return _row_to_stat(row) if row else None

    def at(self, coin_id: int, timestamp: datetime) -> Optional[CoinStat]:
        """Stat recorded for a coin at exactly this timestamp."""
        row = self.db.fetchone(f"""
            SELECT {_STAT_COLUMNS}
            FROM coin_stats
            WHERE coin_id = ? AND recorded_at = ?
        """, [coin_id, truncate_to_seconds(timestamp)])
        return _row_to_stat(row) if row else None

    def range(self, coin_id: int, start: datetime, end: datetime) -> List[CoinStat]:
        """
        Stats for a coin between start and end (inclusive), oldest first.

        :raises ValidationError: If end is before start
        """
        if end < start:
            raise ValidationError("'to' date must not be before 'from' date")

        rows = self.db.execute(f"""
            SELECT {_STAT_COLUMNS}
            FROM coin_stats
            WHERE coin_id = ? AND recorded_at >= ? AND recorded_at <= ?
            ORDER BY recorded_at ASC
        """, [coin_id, truncate_to_seconds(start), truncate_to_seconds(end)])
        return [_row_to_stat(row) for row in rows]

    # ==================== Bulk Queries ====================

    def latest_for_all(self) -> Dict[int, CoinStat]:
        """Latest stat per coin; coins without stats are absent."""
        rows = self.db.execute(f"""
            SELECT {_STAT_COLUMNS}
            FROM coin_stats
            QUALIFY row_number() OVER (PARTITION BY coin_id ORDER BY recorded_at DESC) = 1
        """)
        return {row[1]: _row_to_stat(row) for row in rows}

    def latest_for_coins(self, coin_ids: Iterable[int]) -> Dict[int, CoinStat]:
        """Latest stat for each of the given coins, in one query."""
        ids = sorted(set(coin_ids))
        if not ids:
            return {}

        placeholders = ", ".join("?" for _ in ids)
        rows = self.db.execute(f"""
            SELECT {_STAT_COLUMNS}
            FROM coin_stats
            WHERE coin_id IN ({placeholders})
            QUALIFY row_number() OVER (PARTITION BY coin_id ORDER BY recorded_at DESC) = 1
        """, ids)
        return {row[1]: _row_to_stat(row) for row in rows}

    def for_all_at(self, timestamp: datetime) -> Dict[int, CoinStat]:
        """Snapshot across coins at exactly this timestamp."""
        rows = self.db.execute(f"""
            SELECT {_STAT_COLUMNS}
            FROM coin_stats
            WHERE recorded_at = ?
        """, [truncate_to_seconds(timestamp)])
        return {row[1]: _row_to_stat(row) for row in rows}

    def count(self, coin_id: Optional[int] = None) -> int:
        if coin_id is None:
            row = self.db.fetchone("SELECT COUNT(*) FROM coin_stats")
        else:
            row = self.db.fetchone("SELECT COUNT(*) FROM coin_stats WHERE coin_id = ?", [coin_id])
        return row[0] if row else 0

    # ==================== Writes ====================

    def upsert(self, stat: CoinStat) -> CoinStat:
        """
        Insert a stat, or overwrite price/market cap/volume of the existing
        row with the same (coin_id, timestamp). The timestamp is never rewritten.

        :param stat: Stat to write; its id is ignored
        :return: The stored row
        :raises ValidationError: If a value does not fit its column exactly
        :raises NotFoundError: If the coin does not exist
        """
        recorded_at = truncate_to_seconds(stat.timestamp)
        check_fits(stat.current_price, "current price", *PRICE_DIGITS)
        if stat.market_cap is not None:
            check_fits(stat.market_cap, "market cap", *AMOUNT_DIGITS)
        if stat.volume_24h is not None:
            check_fits(stat.volume_24h, "volume", *AMOUNT_DIGITS)

        with self.db.locked():
            # Checked under the lock so CoinStore.delete cannot run in between
            if self.db.fetchone("SELECT 1 FROM coins WHERE id = ?", [stat.coin_id]) is None:
                raise NotFoundError(f"Coin {stat.coin_id} not found")
            self.db.execute("""
                INSERT INTO coin_stats (
                    coin_id, current_price, market_cap, volume_24h, recorded_at
                )
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (coin_id, recorded_at) DO UPDATE SET
                    current_price = EXCLUDED.current_price,
                    market_cap = EXCLUDED.market_cap,
                    volume_24h = EXCLUDED.volume_24h
            """, [
                stat.coin_id,
                stat.current_price,
                stat.market_cap,
                stat.volume_24h,
                recorded_at,
            ])
            stored = self.at(stat.coin_id, recorded_at)

        logger.debug(f"Upserted stat for coin {stat.coin_id} at {recorded_at}")
        return stored

    def delete_older_than(self, days: int) -> int:
        """
        Delete stats recorded more than `days` days before now.

        :return: Number of rows deleted (0 when nothing matched)
        :raises ValidationError: If days is negative or not an integer
        """
        if isinstance(days, bool) or not isinstance(days, int) or days < 0:
            raise ValidationError(f"days must be a non-negative integer, got {days!r}")

        cutoff = self.clock() - timedelta(days=days)
        rows = self.db.execute("""
            DELETE FROM coin_stats
            WHERE recorded_at < ?
            RETURNING id
        """, [cutoff])

        logger.info(f"Deleted {len(rows)} stats older than {days} days")
        return len(rows)
