from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

# Type alias for money values
Money = Decimal

ZERO = Decimal("0.00")


def round_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """
    Round monetary value to 2 decimal places using ROUND_HALF_UP.

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money(10.124)
        Decimal('10.12')
        >>> round_money("10.115")
        Decimal('10.12')
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value < 0:
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_DOWN)
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def parse_money(value: object) -> Decimal | None:
    """
    Parse a loosely typed amount (CSV cell, JSON number) into Decimal.

    Thousands separators and a leading currency sign are tolerated.
    Returns None for blank or unparseable input; never defaults to zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).strip().replace(",", "")
    text = text.lstrip("₦$€£").strip()
    if not text:
        return None
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def has_cent_precision(value: Decimal) -> bool:
    """True when value has no more than two decimal places."""
    return value == value.quantize(Decimal("0.01"))
