"""
External price source client.

Each coin is looked up with two independent requests: the Gate.io spot ticker
feed (last price, quote volume) and the Kryptex coin info feed (market cap).
Any failure of either feed, or a payload without the expected fields, raises
UpstreamDataError so the caller can skip the coin.
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Optional, Dict, Any, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import PriceSourceConfig
from .errors import UpstreamDataError, ValidationError
from .models import AMOUNT_DIGITS, PRICE_DIGITS, PriceQuote, check_fits, to_decimal

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = [429, 500, 502, 503, 504]

AMOUNT_QUANTUM = Decimal("0.01")


def to_amount(value: Any, field_name: str) -> Decimal:
    """Parse a market cap or volume, rounded half-up to cents."""
    with localcontext() as ctx:
        ctx.prec = 60
        try:
            amount = to_decimal(value, field_name).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise ValidationError(f"{field_name} is out of range: {value!r}") from None
    return check_fits(amount, field_name, *AMOUNT_DIGITS)


class PriceStatSource(Protocol):
    """Anything that can quote a ticker and release its resources."""

    def fetch(self, ticker: str) -> PriceQuote:
        ...

    def close(self) -> None:
        ...


def build_session(max_retries: int) -> requests.Session:
    """HTTP session with retries and backoff on rate limits and server errors."""
    session = requests.Session()
    session.headers.update({"Accept": "application/json"})
    session.mount(
        "https://",
        HTTPAdapter(max_retries=Retry(
            total=max_retries,
            backoff_factor=0.5,
            status_forcelist=RETRY_STATUS_CODES,
            allowed_methods=["GET"],
        )),
    )
    return session


class GateioKryptexSource:
    """
    PriceStatSource backed by the Gate.io and Kryptex public APIs.

    :param config: URLs, quote currency, timeout and retry settings
    :param session: Optional pre-built session (tests pass a mock)
    """

    def __init__(self, config: PriceSourceConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or build_session(config.max_retries)

    def build_ticker_request(self, ticker: str) -> tuple:
        params = {"currency_pair": f"{ticker.upper()}_{self.config.quote_currency}"}
        return self.config.ticker_url, params

    def build_market_cap_url(self, ticker: str) -> str:
        return self.config.market_cap_url.format(ticker=ticker.lower())

    def _get_json(self, url: str, ticker: str, params: Optional[Dict[str, str]] = None) -> Any:
        try:
            response = self.session.get(url, params=params, timeout=self.config.timeout_seconds)
        except requests.RequestException as e:
            raise UpstreamDataError(f"Request to {url} failed for {ticker}: {e}", ticker) from e

        if response.status_code != 200:
            raise UpstreamDataError(
                f"Request to {url} returned status {response.status_code} for {ticker}", ticker
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamDataError(f"Invalid JSON from {url} for {ticker}", ticker) from e

    def _parse_ticker(self, payload: Any, ticker: str) -> tuple:
        if not isinstance(payload, list) or not payload or not isinstance(payload[0], dict):
            raise UpstreamDataError(f"Empty ticker payload for {ticker}", ticker)

        data = payload[0]
        if data.get("last") in (None, ""):
            raise UpstreamDataError(f"Ticker payload for {ticker} has no last price", ticker)

        try:
            price = check_fits(to_decimal(data["last"], "last"), "last", *PRICE_DIGITS)
            volume = data.get("quote_volume")
            volume = to_amount(volume, "quote_volume") if volume not in (None, "") else None
        except ValidationError as e:
            raise UpstreamDataError(f"Malformed ticker payload for {ticker}: {e}", ticker) from e
        return price, volume

    def _parse_market_cap(self, payload: Any, ticker: str):
        if not isinstance(payload, dict) or payload.get("market_cap") in (None, ""):
            raise UpstreamDataError(f"Market cap payload for {ticker} has no market_cap", ticker)
        try:
            return to_amount(payload["market_cap"], "market_cap")
        except ValidationError as e:
            raise UpstreamDataError(f"Malformed market cap for {ticker}: {e}", ticker) from e

    def fetch(self, ticker: str) -> PriceQuote:
        """
        Quote one ticker.

        :return: PriceQuote with price, market cap and 24h volume
        :raises UpstreamDataError: If either feed fails or returns unusable data
        """
        url, params = self.build_ticker_request(ticker)
        ticker_payload = self._get_json(url, ticker, params)
        market_cap_payload = self._get_json(self.build_market_cap_url(ticker), ticker)

        price, volume = self._parse_ticker(ticker_payload, ticker)
        market_cap = self._parse_market_cap(market_cap_payload, ticker)

        logger.debug(f"Fetched {ticker}: price={price} market_cap={market_cap} volume={volume}")
        return PriceQuote(price=price, market_cap=market_cap, volume=volume)

    def close(self) -> None:
        self.session.close()
