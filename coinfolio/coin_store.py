"""
Coin catalog persistence (ticker <-> id <-> display name).
"""

import logging
from typing import Optional, List, Iterable, Tuple

from .database import Database
from .errors import ConflictError, ValidationError
from .models import Coin

logger = logging.getLogger(__name__)

MAX_TICKER_LENGTH = 20
MAX_NAME_LENGTH = 100

# Catalog inserted into an empty database
DEFAULT_COINS: List[Tuple[str, str]] = [
    ("BTC", "Bitcoin"),
    ("ALPH", "Alephium"),
]


def normalize_ticker(ticker: str) -> str:
    """
    Strip and upper-case a ticker.

    :raises ValidationError: If the ticker is blank or too long
    """
    if not isinstance(ticker, str) or not ticker.strip():
        raise ValidationError("Ticker is required")
    normalized = ticker.strip().upper()
    if len(normalized) > MAX_TICKER_LENGTH:
        raise ValidationError(f"Ticker must be at most {MAX_TICKER_LENGTH} characters")
    return normalized


def _validate_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Coin name is required")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Coin name must be at most {MAX_NAME_LENGTH} characters")
    return name


def _row_to_coin(row: tuple) -> Coin:
    return Coin(id=row[0], ticker=row[1], name=row[2])


class CoinStore:
    """DuckDB-backed coin registry."""

    def __init__(self, db: Database):
        self.db = db

    # ==================== Reads ====================

    def get_all(self) -> List[Coin]:
        rows = self.db.execute("SELECT id, ticker, name FROM coins ORDER BY id")
        return [_row_to_coin(row) for row in rows]

    def get_by_id(self, coin_id: int) -> Optional[Coin]:
        row = self.db.fetchone("SELECT id, ticker, name FROM coins WHERE id = ?", [coin_id])
        return _row_to_coin(row) if row else None

    def get_by_ticker(self, ticker: str) -> Optional[Coin]:
        """Case-insensitive ticker lookup."""
        row = self.db.fetchone(
            "SELECT id, ticker, name FROM coins WHERE ticker = ?",
            [normalize_ticker(ticker)],
        )
        return _row_to_coin(row) if row else None

    def count(self) -> int:
        return self.db.fetchone("SELECT COUNT(*) FROM coins")[0]

    # ==================== Writes ====================

    def create(self, ticker: str, name: str) -> Coin:
        """
        Add a coin to the catalog.

        :raises ConflictError: If the ticker already exists
        :raises ValidationError: If ticker or name are blank or too long
        """
        ticker = normalize_ticker(ticker)
        name = _validate_name(name)

        try:
            row = self.db.fetchone("""
                INSERT INTO coins (ticker, name)
                VALUES (?, ?)
                RETURNING id, ticker, name
            """, [ticker, name])
        except ConflictError:
            raise ConflictError(f"Coin with ticker {ticker} already exists") from None

        logger.info(f"Created coin {ticker} ({name})")
        return _row_to_coin(row)

    def upsert(self, ticker: str, name: str) -> Coin:
        """Create the coin, or rename the existing coin with this ticker."""
        ticker = normalize_ticker(ticker)
        name = _validate_name(name)

        with self.db.locked():
            self.db.execute("""
                INSERT INTO coins (ticker, name)
                VALUES (?, ?)
                ON CONFLICT (ticker) DO UPDATE SET
                    name = EXCLUDED.name
            """, [ticker, name])
            coin = self.get_by_ticker(ticker)

        logger.info(f"Upserted coin {ticker} ({name})")
        return coin

    def seed(self, coins: Iterable[Tuple[str, str]] = DEFAULT_COINS) -> int:
        """
        Insert the given catalog if the coins table is empty.

        :return: Number of coins inserted
        """
        with self.db.locked():
            if self.count() > 0:
                return 0
            inserted = 0
            for ticker, name in coins:
                self.upsert(ticker, name)
                inserted += 1

        logger.info(f"Seeded {inserted} coins")
        return inserted

    def update(self, coin_id: int, ticker: str, name: str) -> bool:
        """
        Change a coin's ticker and name.

        :return: False if no coin has this id
        :raises ConflictError: If the new ticker belongs to another coin
        """
        ticker = normalize_ticker(ticker)
        name = _validate_name(name)

        with self.db.locked():
            existing = self.get_by_ticker(ticker)
            if existing is not None and existing.id != coin_id:
                raise ConflictError(f"Coin with ticker {ticker} already exists")
            rows = self.db.execute("""
                UPDATE coins
                SET ticker = ?, name = ?
                WHERE id = ?
                RETURNING id
            """, [ticker, name, coin_id])
        return len(rows) > 0

    def delete(self, coin_id: int) -> bool:
        """
        Remove a coin that nothing references.

        :return: False if no coin has this id
        :raises ConflictError: If stats or portfolio entries reference the coin
        """
        with self.db.transaction():
            stat_refs = self.db.fetchone(
                "SELECT COUNT(*) FROM coin_stats WHERE coin_id = ?", [coin_id]
            )[0]
            entry_refs = self.db.fetchone(
                "SELECT COUNT(*) FROM portfolio_entries WHERE coin_id = ?", [coin_id]
            )[0]
            if stat_refs or entry_refs:
                raise ConflictError(
                    f"Coin {coin_id} is referenced by {stat_refs} stats "
                    f"and {entry_refs} portfolio entries"
                )
            rows = self.db.execute("DELETE FROM coins WHERE id = ? RETURNING id", [coin_id])

        if rows:
            logger.info(f"Deleted coin {coin_id}")
        return len(rows) > 0
