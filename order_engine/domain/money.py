"""Currency-safe arithmetic shared by every calculator.

Amounts are carried as ``Decimal`` so that sums of two-decimal values never
drift; ``round2`` is the single rounding rule (half-up to the cent).
"""
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_amount(value) -> Decimal:
    """Coerce a number or numeric string into a Decimal, 0 on bad input."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return ZERO
        try:
            amount = Decimal(text)
        except InvalidOperation:
            logger.warning(f"Non-numeric amount {value!r} coerced to 0")
            return ZERO
    else:
        logger.warning(f"Unsupported amount type {type(value).__name__} coerced to 0")
        return ZERO

    if not amount.is_finite():
        logger.warning(f"Non-finite amount {value!r} coerced to 0")
        return ZERO
    return amount


def round2(value) -> Decimal:
    return to_amount(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(base, pct) -> Decimal:
    return to_amount(base) * to_amount(pct) / 100
