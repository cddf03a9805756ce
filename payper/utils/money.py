from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from ..config import settings

CENTS = Decimal("0.01")


def to_money(amount: Any) -> Decimal:
    """Coerce a number to a Decimal rounded to two places."""
    if amount is None:
        return Decimal("0.00")
    return Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)


def format_currency(amount, symbol: str = None) -> str:
    """Formats a number with the restaurant currency symbol."""
    if amount is None:
        return ""
    if symbol is None:
        symbol = settings.CURRENCY_SYMBOL
    return f"{symbol}{to_money(amount):,.2f}"
