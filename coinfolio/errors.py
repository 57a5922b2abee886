"""
Exception types shared across the coinfolio package.

Callers catch the specific subclasses; everything derives from CoinfolioError
so a route layer can map the whole family in one place.
"""

from typing import Optional


class CoinfolioError(Exception):
    """Base class for all coinfolio errors."""


class NotFoundError(CoinfolioError, LookupError):
    """Entity is absent, or belongs to another user."""


class ValidationError(CoinfolioError, ValueError):
    """Malformed input: bad id, inverted date range, missing field."""


class ConflictError(CoinfolioError):
    """Write would violate a uniqueness or reference constraint."""


class StorageError(CoinfolioError):
    """Persistence backend failure."""


class UpstreamDataError(CoinfolioError):
    """External price source unavailable or returned unusable data."""

    def __init__(self, message: str, ticker: Optional[str] = None):
        super().__init__(message)
        self.ticker = ticker
