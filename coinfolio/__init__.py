"""
Crypto portfolio tracking package.

This package values users' coin holdings against the latest known prices and
keeps those prices current with a periodic refresh from external APIs.

Modules:
    database: DuckDB connection, schema and transactions
    coin_store: Coin catalog
    stats_store: Time-stamped coin statistics
    portfolio_store: Portfolio entry persistence
    valuation: Decimal valuation of holdings
    portfolio: Valuated portfolio service
    market: Coins joined with their stats
    price_source: Gate.io / Kryptex price client
    scheduler: Periodic stats refresh
"""

from .coin_store import CoinStore
from .config import AppConfig, load_config, config_from_env
from .database import Database
from .errors import (
    CoinfolioError,
    ConflictError,
    NotFoundError,
    StorageError,
    UpstreamDataError,
    ValidationError,
)
from .market import MarketView
from .portfolio import PortfolioAggregator
from .portfolio_store import PortfolioStore
from .price_source import GateioKryptexSource, PriceStatSource
from .scheduler import RefreshScheduler, TickResult, run_refresh
from .stats_store import StatsStore
from .valuation import valuate, summarize

__all__ = [
    "AppConfig",
    "CoinStore",
    "CoinfolioError",
    "ConflictError",
    "Database",
    "GateioKryptexSource",
    "MarketView",
    "NotFoundError",
    "PortfolioAggregator",
    "PortfolioStore",
    "PriceStatSource",
    "RefreshScheduler",
    "StatsStore",
    "StorageError",
    "TickResult",
    "UpstreamDataError",
    "ValidationError",
    "config_from_env",
    "load_config",
    "run_refresh",
    "summarize",
    "valuate",
]
