"""
Point-in-time valuation of holdings.

Pure decimal arithmetic with no I/O. Only percentages are rounded (4 places,
half-up); values and profit/loss stay exact.
"""

from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Optional, Iterable

from .models import Valuation, ValuatedEntry, PortfolioSummary, ZERO

HUNDRED = Decimal("100")
PERCENT_QUANTUM = Decimal("0.0001")

# Enough digits for the product of two DECIMAL(20, 8) columns
PRECISION = 60


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100 rounded half-up to 4 places; 0 when whole is not positive."""
    if whole <= ZERO:
        return ZERO
    return (part * HUNDRED / whole).quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def valuate(
    quantity: Decimal,
    entry_price: Decimal,
    current_price: Optional[Decimal],
) -> Valuation:
    """
    Value a holding at the given price.

    A missing price counts as 0, so the whole investment shows as a loss
    until a stat for the coin arrives.

    :param quantity: Units held
    :param entry_price: Price paid per unit
    :param current_price: Latest known price per unit, or None
    :return: Valuation with current value, profit/loss and percentage
    """
    price = ZERO if current_price is None else current_price
    with localcontext() as ctx:
        ctx.prec = PRECISION
        current_value = price * quantity
        investment = entry_price * quantity
        profit_loss = current_value - investment
    return Valuation(
        current_value=current_value,
        profit_loss=profit_loss,
        profit_loss_percentage=percentage(profit_loss, investment),
    )


def summarize(entries: Iterable[ValuatedEntry]) -> PortfolioSummary:
    """Reduce valuated entries into portfolio totals."""
    entries = list(entries)
    with localcontext() as ctx:
        ctx.prec = PRECISION
        total_investment = sum((item.entry.investment for item in entries), ZERO)
        total_current_value = sum((item.current_value for item in entries), ZERO)
        total_profit_loss = total_current_value - total_investment

    return PortfolioSummary(
        total_investment=total_investment,
        total_current_value=total_current_value,
        total_profit_loss=total_profit_loss,
        total_profit_loss_percentage=percentage(total_profit_loss, total_investment),
        entries=entries,
    )
