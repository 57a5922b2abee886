"""
Portfolio read/write service.

Joins a user's stored entries against the latest coin stats and values them
with the functions in valuation.py. Valuations are computed per call and
never stored.
"""

import logging
from typing import Optional, List, Dict

from .coin_store import CoinStore
from .errors import ValidationError
from .models import (
    CoinStat,
    PortfolioEntryRequest,
    PortfolioSummary,
    Valuation,
    ValuatedEntry,
    PRICE_DIGITS,
    ZERO,
    check_fits,
    to_decimal,
)
from .portfolio_store import PortfolioStore, EntryRow
from .stats_store import StatsStore
from .valuation import valuate, summarize

logger = logging.getLogger(__name__)


def _require_id(value, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Invalid {field_name} format: {value!r}")
    return value


def validate_request(request: PortfolioEntryRequest) -> PortfolioEntryRequest:
    """
    Check and normalize an entry request.

    Quantity and entry price must fit the stored precision exactly, so a
    value is never rounded on its way into the database.

    :raises ValidationError: If coin id, quantity or entry price are invalid
    """
    coin_id = _require_id(request.coin_id, "coin id")
    quantity = check_fits(to_decimal(request.quantity, "quantity"), "quantity", *PRICE_DIGITS)
    entry_price = check_fits(
        to_decimal(request.entry_price, "entry price"), "entry price", *PRICE_DIGITS
    )

    if quantity <= ZERO:
        raise ValidationError(f"quantity must be positive, got {quantity}")
    if entry_price < ZERO:
        raise ValidationError(f"entry price must not be negative, got {entry_price}")

    notes = request.notes.strip() if request.notes else None
    return PortfolioEntryRequest(
        coin_id=coin_id,
        quantity=quantity,
        entry_price=entry_price,
        entry_date=request.entry_date,
        notes=notes or None,
    )


class PortfolioAggregator:
    """
    Valuated view over a user's holdings.

    Storage failures propagate as StorageError; nothing here catches them.
    """

    def __init__(
        self,
        coins: CoinStore,
        stats: StatsStore,
        entries: PortfolioStore,
    ):
        self.coins = coins
        self.stats = stats
        self.entries = entries

    def _valuate_row(self, row: EntryRow, stat: Optional[CoinStat]) -> ValuatedEntry:
        current_price = stat.current_price if stat is not None else ZERO
        return ValuatedEntry(
            entry=row.entry,
            ticker=row.ticker,
            name=row.name,
            current_price=current_price,
            valuation=valuate(row.entry.quantity, row.entry.entry_price, current_price),
        )

    # ==================== Reads ====================

    def list_entries(self, user_id: int) -> List[ValuatedEntry]:
        """
        All of a user's entries valued at the latest known prices.

        Uses one query for the entries and one for the stats of every distinct
        coin they hold.
        """
        user_id = _require_id(user_id, "user id")
        rows = self.entries.list_for_user(user_id)
        latest: Dict[int, CoinStat] = self.stats.latest_for_coins(
            row.entry.coin_id for row in rows
        )
        return [self._valuate_row(row, latest.get(row.entry.coin_id)) for row in rows]

    def get_entry(self, entry_id: int, user_id: int) -> Optional[ValuatedEntry]:
        """
        One entry of this user, valued; None if it does not exist or is
        owned by someone else.
        """
        entry_id = _require_id(entry_id, "entry id")
        user_id = _require_id(user_id, "user id")

        row = self.entries.get(entry_id, user_id)
        if row is None:
            logger.info(f"Portfolio entry {entry_id} not found for user {user_id}")
            return None

        stat = self.stats.latest(row.entry.coin_id)
        if stat is None:
            logger.warning(f"No stats found for coin {row.ticker}")
        return self._valuate_row(row, stat)

    def summary(self, user_id: int) -> PortfolioSummary:
        return summarize(self.list_entries(user_id))

    # ==================== Writes ====================

    def create_entry(self, user_id: int, request: PortfolioEntryRequest) -> Optional[ValuatedEntry]:
        """
        Record a new holding.

        :return: The stored entry with derived values from the latest stat
                 (all zero if the coin has none yet), or None if the coin
                 does not exist
        :raises ValidationError: If the request is malformed
        """
        user_id = _require_id(user_id, "user id")
        request = validate_request(request)

        # The coin must not be deleted between the lookup and the insert
        with self.entries.db.locked():
            coin = self.coins.get_by_id(request.coin_id)
            if coin is None:
                logger.error(f"Failed to create portfolio entry: coin {request.coin_id} not found")
                return None
            entry = self.entries.insert(user_id, request)

        stat = self.stats.latest(coin.id)
        if stat is None:
            return ValuatedEntry(entry, coin.ticker, coin.name, ZERO, Valuation.zero())

        return ValuatedEntry(
            entry=entry,
            ticker=coin.ticker,
            name=coin.name,
            current_price=stat.current_price,
            valuation=valuate(entry.quantity, entry.entry_price, stat.current_price),
        )

    def update_entry(self, entry_id: int, user_id: int, request: PortfolioEntryRequest) -> bool:
        """
        Replace an entry's fields.

        :return: False if no entry with this id belongs to this user
        :raises ValidationError: If the request is malformed or names an unknown coin
        """
        entry_id = _require_id(entry_id, "entry id")
        user_id = _require_id(user_id, "user id")
        request = validate_request(request)

        with self.entries.db.locked():
            if self.coins.get_by_id(request.coin_id) is None:
                raise ValidationError(f"Coin {request.coin_id} does not exist")
            updated = self.entries.update(entry_id, user_id, request)
        if updated:
            logger.info(f"Updated portfolio entry {entry_id} for user {user_id}")
        return updated

    def delete_entry(self, entry_id: int, user_id: int) -> bool:
        entry_id = _require_id(entry_id, "entry id")
        user_id = _require_id(user_id, "user id")

        deleted = self.entries.delete(entry_id, user_id)
        if deleted:
            logger.info(f"Deleted portfolio entry {entry_id} for user {user_id}")
        return deleted
