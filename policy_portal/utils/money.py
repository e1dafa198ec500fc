"""Money parsing utilities"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")


def to_money(value: Any) -> Optional[Decimal]:
    """Parse a backend amount; None for empty or unparseable values"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            return None
        # quantize raises InvalidOperation past the context precision (e.g. "1e30")
        return quantize(amount)
    except (InvalidOperation, ValueError):
        return None


def quantize(amount: Decimal) -> Decimal:
    """Round to cents"""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)
