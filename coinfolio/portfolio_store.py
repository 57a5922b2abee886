"""
Portfolio entry persistence.

Every read and write that takes a user id filters on it in the WHERE clause;
that predicate is the only ownership check, so an entry owned by someone else
looks exactly like a missing one.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Callable

from .database import Database
from .models import PortfolioEntry, PortfolioEntryRequest, truncate_to_seconds

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, user_id, coin_id, quantity, entry_price, "
    "entry_date, notes, created_at, updated_at"
)
_ENTRY_COLUMNS = ", ".join(f"e.{column}" for column in _COLUMNS.split(", "))


@dataclass
class EntryRow:
    """A stored entry joined with its coin's ticker and name."""
    entry: PortfolioEntry
    ticker: Optional[str]
    name: Optional[str]


def _row_to_entry(row: tuple) -> PortfolioEntry:
    return PortfolioEntry(
        id=row[0],
        user_id=row[1],
        coin_id=row[2],
        quantity=row[3],
        entry_price=row[4],
        entry_date=row[5],
        notes=row[6],
        created_at=row[7],
        updated_at=row[8],
    )


class PortfolioStore:
    """
    DuckDB-backed storage for user holdings.

    Thread Safety:
        Safe to share; statements are serialized by the Database lock.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    # ==================== Reads ====================

    def list_for_user(self, user_id: int) -> List[EntryRow]:
        """All of a user's entries with coin ticker/name, ordered by id."""
        rows = self.db.execute(f"""
            SELECT {_ENTRY_COLUMNS}, c.ticker, c.name
            FROM portfolio_entries e
            LEFT JOIN coins c ON c.id = e.coin_id
            WHERE e.user_id = ?
            ORDER BY e.id
        """, [user_id])
        return [EntryRow(_row_to_entry(row), row[9], row[10]) for row in rows]

    def get(self, entry_id: int, user_id: int) -> Optional[EntryRow]:
        row = self.db.fetchone(f"""
            SELECT {_ENTRY_COLUMNS}, c.ticker, c.name
            FROM portfolio_entries e
            LEFT JOIN coins c ON c.id = e.coin_id
            WHERE e.id = ? AND e.user_id = ?
        """, [entry_id, user_id])
        if row is None:
            return None
        return EntryRow(_row_to_entry(row), row[9], row[10])

    # ==================== Writes ====================

    def insert(self, user_id: int, request: PortfolioEntryRequest) -> PortfolioEntry:
        now = truncate_to_seconds(self.clock())
        entry_date = truncate_to_seconds(request.entry_date) if request.entry_date else now

        row = self.db.fetchone(f"""
            INSERT INTO portfolio_entries (
                user_id, coin_id, quantity, entry_price,
                entry_date, notes, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING {_COLUMNS}
        """, [
            user_id, request.coin_id, request.quantity, request.entry_price,
            entry_date, request.notes, now, now,
        ])

        entry = _row_to_entry(row)
        logger.info(f"Inserted portfolio entry {entry.id} for user {user_id}")
        return entry

    def update(self, entry_id: int, user_id: int, request: PortfolioEntryRequest) -> bool:
        """
        Overwrite an entry's coin, quantity, price, date and notes.

        :return: False if no entry matches both id and user
        """
        now = truncate_to_seconds(self.clock())
        entry_date = truncate_to_seconds(request.entry_date) if request.entry_date else now

        rows = self.db.execute("""
            UPDATE portfolio_entries
            SET coin_id = ?,
                quantity = ?,
                entry_price = ?,
                entry_date = ?,
                notes = ?,
                updated_at = ?
            WHERE id = ? AND user_id = ?
            RETURNING id
        """, [
            request.coin_id, request.quantity, request.entry_price,
            entry_date, request.notes, now, entry_id, user_id,
        ])
        return len(rows) > 0

    def delete(self, entry_id: int, user_id: int) -> bool:
        rows = self.db.execute("""
            DELETE FROM portfolio_entries
            WHERE id = ? AND user_id = ?
            RETURNING id
        """, [entry_id, user_id])
        return len(rows) > 0
