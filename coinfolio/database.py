"""
DuckDB connection handling for the coinfolio stores.

A single Database owns the connection, creates the schema and serializes every
statement through one re-entrant lock, since a DuckDB connection must not be
used from several threads at once. The stores (coins, stats, portfolio) share
one Database so that an in-memory database is visible to all of them.
"""

import duckdb
import logging
import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Optional, List, Any, Sequence

from .errors import ConflictError, StorageError

logger = logging.getLogger(__name__)


def _bind(value: Any) -> Any:
    # Decimals go over as fixed-point text; the driver loses positive exponents
    if isinstance(value, Decimal):
        return format(value, "f")
    return value


class Database:
    """
    Shared DuckDB handle with schema initialization and transactions.

    Usage:
        db = Database(":memory:")
        try:
            rows = db.execute("SELECT * FROM coins")
        finally:
            db.close()
    """

    def __init__(self, db_path: str = "coinfolio.duckdb"):
        """
        Open the database and create the schema.

        :param db_path: Path to DuckDB database file. Use ':memory:' for in-memory DB.
        """
        self.db_path = db_path
        self._lock = threading.RLock()
        try:
            self.conn = duckdb.connect(db_path)
        except duckdb.Error as e:
            raise StorageError(f"Could not open database {db_path}: {e}") from e
        self._initialize_schema()

    def _initialize_schema(self):
        """Create all required sequences, tables and indexes if they don't exist."""

        self.execute("CREATE SEQUENCE IF NOT EXISTS coins_id_seq START 1")
        self.execute("CREATE SEQUENCE IF NOT EXISTS coin_stats_id_seq START 1")
        self.execute("CREATE SEQUENCE IF NOT EXISTS portfolio_entries_id_seq START 1")

        # Coin catalog
        self.execute("""
            CREATE TABLE IF NOT EXISTS coins (
                id INTEGER PRIMARY KEY DEFAULT nextval('coins_id_seq'),
                ticker VARCHAR NOT NULL UNIQUE,
                name VARCHAR NOT NULL
            )
        """)

        # Time-stamped statistics, one row per (coin, timestamp)
        self.execute("""
            CREATE TABLE IF NOT EXISTS coin_stats (
                id BIGINT PRIMARY KEY DEFAULT nextval('coin_stats_id_seq'),
                coin_id INTEGER NOT NULL,
                current_price DECIMAL(20, 8) NOT NULL,
                market_cap DECIMAL(30, 2),
                volume_24h DECIMAL(30, 2),
                recorded_at TIMESTAMP NOT NULL,
                UNIQUE (coin_id, recorded_at)
            )
        """)

        # User holdings
        self.execute("""
            CREATE TABLE IF NOT EXISTS portfolio_entries (
                id INTEGER PRIMARY KEY DEFAULT nextval('portfolio_entries_id_seq'),
                user_id INTEGER NOT NULL,
                coin_id INTEGER NOT NULL,
                quantity DECIMAL(20, 8) NOT NULL,
                entry_price DECIMAL(20, 8) NOT NULL,
                entry_date TIMESTAMP NOT NULL,
                notes VARCHAR,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)

        self.execute("""
            CREATE INDEX IF NOT EXISTS idx_coin_stats_recorded
            ON coin_stats(recorded_at)
        """)
        self.execute("""
            CREATE INDEX IF NOT EXISTS idx_portfolio_entries_user
            ON portfolio_entries(user_id)
        """)

        logger.info("Coinfolio schema initialized successfully")

    def close(self):
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def execute(self, query: str, params: Optional[Sequence[Any]] = None) -> List[tuple]:
        """
        Run one statement and return all result rows.

        :raises ConflictError: On a constraint violation
        :raises StorageError: On any other backend failure
        """
        with self._lock:
            if self.conn is None:
                raise StorageError("Database connection is closed")
            try:
                if params is None:
                    return self.conn.execute(query).fetchall()
                return self.conn.execute(query, [_bind(p) for p in params]).fetchall()
            except duckdb.ConstraintException as e:
                raise ConflictError(str(e)) from e
            except duckdb.Error as e:
                logger.error(f"Database error: {e}")
                raise StorageError(str(e)) from e

    def fetchone(self, query: str, params: Optional[Sequence[Any]] = None) -> Optional[tuple]:
        rows = self.execute(query, params)
        return rows[0] if rows else None

    @contextmanager
    def locked(self):
        """Hold the connection lock across several statements without a transaction."""
        with self._lock:
            yield self

    @contextmanager
    def transaction(self):
        """
        Context manager for transactional operations.

        Holds the connection lock for the whole block, so other threads cannot
        interleave statements between a check and the write that depends on it.

        Usage:
            with db.transaction():
                db.execute(...)
                db.execute(...)
        """
        with self._lock:
            self.execute("BEGIN TRANSACTION")
            try:
                yield self
                self.execute("COMMIT")
            except Exception as e:
                if self.conn is not None:
                    try:
                        self.conn.execute("ROLLBACK")
                    except duckdb.Error as rollback_error:
                        # A failed COMMIT has already ended the transaction
                        logger.debug(f"Rollback skipped: {rollback_error}")
                logger.error(f"Transaction rolled back due to error: {e}")
                raise
