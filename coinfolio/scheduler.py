"""
Periodic refresh of coin statistics.

This module implements the control flow for:
- One refresh tick: quote every coin in the catalog and upsert its stat
- Per-coin failure isolation (a bad coin is logged and skipped)
- A dedicated worker thread that runs ticks on a fixed interval
- A terminal, idempotent stop that releases the price source
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any, Callable

from .coin_store import CoinStore
from .database import Database
from .config import AppConfig, config_from_env, load_config
from .errors import StorageError
from .models import CoinStat, truncate_to_seconds
from .price_source import PriceStatSource, GateioKryptexSource
from .stats_store import StatsStore

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Outcome of one refresh tick."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    updated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(timespec="seconds"),
            "finished_at": self.finished_at.isoformat(timespec="seconds") if self.finished_at else None,
            "updated": list(self.updated),
            "failed": list(self.failed),
            "skipped": self.skipped,
            "error": self.error,
        }


class RefreshScheduler:
    """
    Refreshes stats for every catalog coin on a fixed interval.

    Ticks run on one worker thread, and run_tick() refuses to start while
    another tick is in progress, so at most one tick executes at a time.

    Usage:
        scheduler = RefreshScheduler(coins, stats, source, interval_seconds=600)
        scheduler.start()
        ...
        scheduler.stop()
    """

    STATE_IDLE = "idle"
    STATE_RUNNING = "running"
    STATE_STOPPED = "stopped"

    DEFAULT_INTERVAL_SECONDS = 600

    def __init__(
        self,
        coins: CoinStore,
        stats: StatsStore,
        source: PriceStatSource,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        retention_days: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        :param coins: Catalog reader (get_all)
        :param stats: Stats writer (upsert, delete_older_than)
        :param source: Price source; closed by stop()
        :param interval_seconds: Delay between the end of one tick and the next
        :param retention_days: If set, prune stats older than this after each tick
        :param clock: Returns "now"; stamps the stats written by a tick
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        self.coins = coins
        self.stats = stats
        self.source = source
        self.interval_seconds = interval_seconds
        self.retention_days = retention_days
        self.clock = clock

        self._tick_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._stopped = False
        self.last_result: Optional[TickResult] = None

    # ==================== Lifecycle ====================

    @property
    def state(self) -> str:
        if self._stopped:
            return self.STATE_STOPPED
        if self._tick_lock.locked():
            return self.STATE_RUNNING
        return self.STATE_IDLE

    def start(self):
        """
        Start the worker thread; the first tick runs immediately.

        :raises RuntimeError: If the scheduler has been stopped
        """
        with self._lifecycle_lock:
            if self._stopped:
                raise RuntimeError("RefreshScheduler has been stopped and cannot be restarted")
            if self._thread is not None:
                return

            logger.info(f"Starting coin refresh with interval: {self.interval_seconds} seconds")
            self._thread = threading.Thread(
                target=self._run_loop,
                name="coinfolio-refresh",
                daemon=True,
            )
            self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        """
        Stop scheduling ticks and release the price source.

        An in-flight tick is given `timeout` seconds to finish and is otherwise
        abandoned. Safe to call more than once.
        """
        with self._lifecycle_lock:
            if self._stopped:
                return
            self._stopped = True
            self._stop_event.set()
            thread = self._thread

        logger.info("Stopping coin refresh")
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Refresh tick still running after stop timeout; abandoning it")

        self.source.close()

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "interval_seconds": self.interval_seconds,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }

    def _run_loop(self):
        while not self._stop_event.is_set():
            try:
                self.run_tick()
            except Exception as e:
                logger.error(f"Unexpected error in refresh tick: {e}", exc_info=True)
            if self._stop_event.wait(self.interval_seconds):
                break

    # ==================== Tick ====================

    def run_tick(self) -> TickResult:
        """
        Execute one refresh across the whole catalog.

        Never raises for a coin-level or catalog-level failure; those are
        logged and recorded in the returned TickResult.

        :return: Summary of the tick; skipped=True if another tick was running
                 or the scheduler is stopped
        """
        started_at = truncate_to_seconds(self.clock())

        if self._stopped or not self._tick_lock.acquire(blocking=False):
            logger.info("Refresh tick skipped: another tick is running or scheduler stopped")
            return TickResult(started_at=started_at, finished_at=started_at, skipped=True)

        try:
            result = self._tick(started_at)
        finally:
            self._tick_lock.release()

        self.last_result = result
        return result

    def _tick(self, started_at: datetime) -> TickResult:
        result = TickResult(started_at=started_at)
        logger.info("Fetching coin data from external API")

        try:
            coins = self.coins.get_all()
        except StorageError as e:
            logger.error(f"Could not read coin catalog, skipping tick: {e}")
            result.error = str(e)
            result.finished_at = truncate_to_seconds(self.clock())
            return result

        for coin in coins:
            if self._stop_event.is_set():
                logger.info("Stop requested; abandoning remaining coins in this tick")
                break
            if self._refresh_coin(coin.id, coin.ticker, started_at):
                result.updated.append(coin.ticker)
            else:
                result.failed.append(coin.ticker)

        self._apply_retention()

        result.finished_at = truncate_to_seconds(self.clock())
        logger.info(
            f"Coin refresh complete: {len(result.updated)} updated, {len(result.failed)} failed"
        )
        return result

    def _refresh_coin(self, coin_id: int, ticker: str, timestamp: datetime) -> bool:
        """
        Quote and store one coin.

        :return: True if a stat was written, False if the coin was skipped
        """
        try:
            quote = self.source.fetch(ticker)
            self.stats.upsert(CoinStat(
                coin_id=coin_id,
                current_price=quote.price,
                market_cap=quote.market_cap,
                volume_24h=quote.volume,
                timestamp=timestamp,
            ))
        except Exception as e:
            # Continue with next coin - don't fail the entire tick
            logger.warning(f"Skipping {ticker} - no data available: {e}")
            return False

        logger.info(f"Successfully updated stats for {ticker}")
        return True

    def _apply_retention(self):
        if self.retention_days is None:
            return
        try:
            self.stats.delete_older_than(self.retention_days)
        except StorageError as e:
            logger.error(f"Failed to prune old stats: {e}")


def build_scheduler(db: Database, config: AppConfig) -> RefreshScheduler:
    """Wire a RefreshScheduler to stores on `db` and the configured price source."""
    return RefreshScheduler(
        coins=CoinStore(db),
        stats=StatsStore(db),
        source=GateioKryptexSource(config.price_source),
        interval_seconds=config.refresh.interval_seconds,
        retention_days=config.refresh.retention_days,
    )


def run_refresh(config: Optional[AppConfig] = None) -> TickResult:
    """
    Convenience function to run a single refresh tick.

    Seeds the default coin catalog into an empty database first.

    :param config: Optional configuration; defaults from load_config()
    :return: Tick summary
    """
    config = config or load_config()
    db = Database(config.db_path)
    scheduler = build_scheduler(db, config)
    try:
        scheduler.coins.seed()
        return scheduler.run_tick()
    finally:
        scheduler.stop()
        db.close()


if __name__ == "__main__":
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    print("Starting coin stats refresh...")
    result = run_refresh(config_from_env())
    print(f"\nRefresh complete!")
    print(f"  Updated: {', '.join(result.updated) or '-'}")
    print(f"  Failed: {', '.join(result.failed) or '-'}")
