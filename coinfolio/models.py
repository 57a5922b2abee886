"""
Typed records passed between the stores, the valuation code and callers.

Persisted records (Coin, CoinStat, PortfolioEntry) are kept apart from the
derived ones (Valuation, ValuatedEntry, PortfolioSummary, CoinWithStats) so that
computed fields can never be written back by accident.

Every record has a to_dict() rendering money and quantities as decimal strings
and timestamps as ISO-8601 with seconds precision.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any

from .errors import ValidationError

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"

ZERO = Decimal("0")

# (integer digits, decimal places) of the DECIMAL(20, 8) and DECIMAL(30, 2) columns
PRICE_DIGITS = (12, 8)
AMOUNT_DIGITS = (28, 2)


# ==================== Conversion helpers ====================

def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """
    Coerce user or API input into an exact Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its binary
    expansion.

    :raises ValidationError: if the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} must be a number, got {value!r}")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value.strip() if isinstance(value, str) else value)
        except InvalidOperation:
            raise ValidationError(f"{field_name} must be a number, got {value!r}") from None
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        raise ValidationError(f"{field_name} must be a number, got {value!r}")

    if not result.is_finite():
        raise ValidationError(f"{field_name} must be finite, got {value!r}")
    # 1E+3 must become 1000; the database driver drops positive exponents
    if result.as_tuple().exponent > 0:
        result = Decimal(format(result, "f"))
    return result


def check_fits(value: Decimal, field_name: str, integer_digits: int, fraction_digits: int) -> Decimal:
    """
    Make sure a value fits a DECIMAL(integer_digits + fraction_digits,
    fraction_digits) column without rounding or overflow.

    Trailing fractional zeros do not count against the scale.

    :raises ValidationError: if the value has too many digits on either side
    """
    if value.is_zero():
        return value
    if abs(value) >= 1 and value.adjusted() + 1 > integer_digits:
        raise ValidationError(
            f"{field_name} must have at most {integer_digits} integer digits, got {value}"
        )
    _, digits, exponent = value.as_tuple()
    digits = list(digits)
    while exponent < 0 and digits and digits[-1] == 0:
        digits.pop()
        exponent += 1
    if -exponent > fraction_digits:
        raise ValidationError(
            f"{field_name} must have at most {fraction_digits} decimal places, got {value}"
        )
    return value


def format_decimal(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return format(value, "f")


def truncate_to_seconds(value: datetime) -> datetime:
    return value.replace(microsecond=0)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat(timespec="seconds")


def parse_timestamp(text: Optional[str], field_name: str = "date") -> datetime:
    """
    Parse a boundary timestamp in yyyy-MM-ddTHH:mm:ss form.

    :raises ValidationError: if the text is blank or malformed
    """
    if text is None or not str(text).strip():
        raise ValidationError(f"{field_name} is required (format: yyyy-MM-ddTHH:mm:ss)")
    try:
        return datetime.strptime(str(text).strip(), TIMESTAMP_FORMAT)
    except ValueError:
        raise ValidationError(
            f"Invalid {field_name} format {text!r}. Use yyyy-MM-ddTHH:mm:ss"
        ) from None


# ==================== Persisted records ====================

@dataclass
class Coin:
    """A tracked coin; ticker is always stored upper-case."""
    id: int
    ticker: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "ticker": self.ticker, "name": self.name}


@dataclass
class CoinStat:
    """Price/market-cap/volume snapshot for one coin at one timestamp."""
    coin_id: int
    current_price: Decimal
    timestamp: datetime
    market_cap: Optional[Decimal] = None
    volume_24h: Optional[Decimal] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "coin_id": self.coin_id,
            "current_price": format_decimal(self.current_price),
            "market_cap": format_decimal(self.market_cap),
            "volume_24h": format_decimal(self.volume_24h),
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass
class PortfolioEntry:
    """A user's holding as stored; carries no derived values."""
    id: int
    user_id: int
    coin_id: int
    quantity: Decimal
    entry_price: Decimal
    entry_date: datetime
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    @property
    def investment(self) -> Decimal:
        return self.entry_price * self.quantity


@dataclass
class PortfolioEntryRequest:
    """Fields a user supplies when creating or updating an entry."""
    coin_id: int
    quantity: Decimal
    entry_price: Decimal
    entry_date: Optional[datetime] = None
    notes: Optional[str] = None


@dataclass
class PriceQuote:
    """What a price source returns for one ticker."""
    price: Decimal
    market_cap: Optional[Decimal]
    volume: Optional[Decimal]


# ==================== Derived records ====================

@dataclass(frozen=True)
class Valuation:
    current_value: Decimal
    profit_loss: Decimal
    profit_loss_percentage: Decimal

    @classmethod
    def zero(cls) -> "Valuation":
        return cls(ZERO, ZERO, ZERO)


@dataclass
class ValuatedEntry:
    """
    A stored entry plus its point-in-time valuation.

    Built from the persisted entry and a separately computed Valuation; the
    entry itself is never modified.
    """
    entry: PortfolioEntry
    ticker: Optional[str]
    name: Optional[str]
    current_price: Decimal
    valuation: Valuation

    @property
    def id(self) -> int:
        return self.entry.id

    @property
    def current_value(self) -> Decimal:
        return self.valuation.current_value

    @property
    def profit_loss(self) -> Decimal:
        return self.valuation.profit_loss

    @property
    def profit_loss_percentage(self) -> Decimal:
        return self.valuation.profit_loss_percentage

    def to_dict(self) -> Dict[str, Any]:
        entry = self.entry
        return {
            "id": entry.id,
            "user_id": entry.user_id,
            "coin_id": entry.coin_id,
            "ticker": self.ticker,
            "name": self.name,
            "quantity": format_decimal(entry.quantity),
            "entry_price": format_decimal(entry.entry_price),
            "entry_date": format_timestamp(entry.entry_date),
            "notes": entry.notes,
            "current_price": format_decimal(self.current_price),
            "current_value": format_decimal(self.valuation.current_value),
            "profit_loss": format_decimal(self.valuation.profit_loss),
            "profit_loss_percentage": format_decimal(self.valuation.profit_loss_percentage),
            "created_at": format_timestamp(entry.created_at),
            "updated_at": format_timestamp(entry.updated_at),
        }


@dataclass
class PortfolioSummary:
    total_investment: Decimal
    total_current_value: Decimal
    total_profit_loss: Decimal
    total_profit_loss_percentage: Decimal
    entries: List[ValuatedEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_investment": format_decimal(self.total_investment),
            "total_current_value": format_decimal(self.total_current_value),
            "total_profit_loss": format_decimal(self.total_profit_loss),
            "total_profit_loss_percentage": format_decimal(self.total_profit_loss_percentage),
            "entries": [entry.to_dict() for entry in self.entries],
        }


@dataclass
class CoinWithStats:
    """A coin joined with one stat; price is 0 when no stat is known."""
    coin: Coin
    current_price: Decimal
    market_cap: Optional[Decimal]
    volume_24h: Optional[Decimal]
    timestamp: Optional[datetime]

    @classmethod
    def from_coin_and_stat(cls, coin: Coin, stat: Optional[CoinStat]) -> "CoinWithStats":
        if stat is None:
            return cls(coin, ZERO, None, None, None)
        return cls(coin, stat.current_price, stat.market_cap, stat.volume_24h, stat.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.coin.to_dict(),
            "current_price": format_decimal(self.current_price),
            "market_cap": format_decimal(self.market_cap),
            "volume_24h": format_decimal(self.volume_24h),
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass
class CoinHistory:
    coin: Coin
    stats: List[CoinStat]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coin": self.coin.to_dict(),
            "history": [
                {
                    "timestamp": format_timestamp(stat.timestamp),
                    "price": format_decimal(stat.current_price),
                    "market_cap": format_decimal(stat.market_cap),
                    "volume": format_decimal(stat.volume_24h),
                }
                for stat in self.stats
            ],
        }
