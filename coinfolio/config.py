"""
Configuration for the coinfolio services.

Configuration is a plain nested dict (the same shape can come from JSON, a
settings file or tests) that is validated into dataclasses with dacite.
"""

import copy
import os
from dataclasses import dataclass
from typing import Optional, Dict, Any

import dacite

from .errors import ValidationError

DEFAULT_REFRESH_INTERVAL_SECONDS = 600


@dataclass
class PriceSourceConfig:
    ticker_url: str
    market_cap_url: str
    quote_currency: str
    timeout_seconds: float
    max_retries: int


@dataclass
class RefreshConfig:
    interval_seconds: float
    retention_days: Optional[int] = None


@dataclass
class AppConfig:
    db_path: str
    refresh: RefreshConfig
    price_source: PriceSourceConfig


def default_config() -> Dict[str, Any]:
    """Return the default configuration dict."""
    return {
        "db_path": "coinfolio.duckdb",
        "refresh": {
            "interval_seconds": DEFAULT_REFRESH_INTERVAL_SECONDS,
            "retention_days": None,
        },
        "price_source": {
            "ticker_url": "https://api.gateio.ws/api/v4/spot/tickers",
            "market_cap_url": "https://api.kryptex.network/api/v1/coin/{ticker}/info",
            "quote_currency": "USDT",
            "timeout_seconds": 10,
            "max_retries": 3,
        },
    }


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(overrides: Optional[Dict[str, Any]] = None) -> AppConfig:
    """
    Build an AppConfig from defaults plus optional overrides.

    :param overrides: Partial nested dict; keys present replace defaults
    :return: Validated AppConfig
    :raises ValidationError: If a value has the wrong type or a key is unknown
    """
    data = _merge(default_config(), overrides or {})
    try:
        config = dacite.from_dict(
            data_class=AppConfig,
            data=data,
            config=dacite.Config(cast=[float], strict=True),
        )
    except dacite.DaciteError as e:
        raise ValidationError(f"Invalid configuration: {e}") from e

    if config.refresh.interval_seconds <= 0:
        raise ValidationError("refresh.interval_seconds must be positive")
    if config.refresh.retention_days is not None and config.refresh.retention_days < 0:
        raise ValidationError("refresh.retention_days must not be negative")
    if config.price_source.max_retries < 0:
        raise ValidationError("price_source.max_retries must not be negative")
    return config


def config_from_env(environ: Optional[Dict[str, str]] = None) -> AppConfig:
    """
    Build an AppConfig from COINFOLIO_* environment variables.

    Recognised: COINFOLIO_DB_PATH, COINFOLIO_REFRESH_INTERVAL,
    COINFOLIO_RETENTION_DAYS.
    """
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    refresh: Dict[str, Any] = {}

    if environ.get("COINFOLIO_DB_PATH"):
        overrides["db_path"] = environ["COINFOLIO_DB_PATH"]

    try:
        if environ.get("COINFOLIO_REFRESH_INTERVAL"):
            refresh["interval_seconds"] = float(environ["COINFOLIO_REFRESH_INTERVAL"])
        if environ.get("COINFOLIO_RETENTION_DAYS"):
            refresh["retention_days"] = int(environ["COINFOLIO_RETENTION_DAYS"])
    except ValueError as e:
        raise ValidationError(f"Invalid environment configuration: {e}") from e

    if refresh:
        overrides["refresh"] = refresh
    return load_config(overrides)
