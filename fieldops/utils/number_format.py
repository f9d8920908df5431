"""Number parsing utilities for line-item prices."""
import re
from decimal import Decimal, InvalidOperation, localcontext
from typing import Union

CENTS = Decimal('0.01')

# Largest magnitude accepted for a single price or rate; anything beyond reads as 0
MAX_AMOUNT = Decimal('1e15')

# Leading numeric prefix, the way a browser's parseFloat reads "12.5 USD"
LEADING_NUMBER_PATTERN = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def _bounded(value: Decimal) -> Decimal:
    if not value.is_finite() or abs(value) >= MAX_AMOUNT:
        return Decimal('0')
    return value


def parse_unit_price(raw: Union[str, int, float, Decimal, None]) -> Decimal:
    """
    Parse a unit price typed into a line-item editor.

    Reads input the way the editor does: surrounding whitespace is ignored, a
    trailing non-numeric suffix is dropped, and anything unparseable,
    non-finite or out of range becomes 0.

    Examples:
        parse_unit_price("125.50") -> Decimal("125.50")
        parse_unit_price(" -20 ") -> Decimal("-20")
        parse_unit_price("abc") -> Decimal("0")
        parse_unit_price("1e30") -> Decimal("0")
    """
    if raw is None or isinstance(raw, bool):
        return Decimal('0')

    if isinstance(raw, Decimal):
        return _bounded(raw)

    if isinstance(raw, (int, float)):
        try:
            value = Decimal(str(raw))
        except (InvalidOperation, ValueError):
            return Decimal('0')
        return _bounded(value)

    match = LEADING_NUMBER_PATTERN.match(str(raw).strip())
    if not match:
        return Decimal('0')

    try:
        value = Decimal(match.group(0))
    except (InvalidOperation, ValueError):
        return Decimal('0')

    return _bounded(value)


def to_cents(value: Decimal) -> Decimal:
    """Round a money amount to cents, whatever its number of integer digits."""
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + 3)
        return value.quantize(CENTS)


def price_to_text(value: Union[Decimal, int, float, None]) -> str:
    """Render a stored price the way the line-item editor shows it ("125.5", "-20")."""
    price = parse_unit_price(value)
    if price == price.to_integral_value():
        return format(price.to_integral_value(), 'f')
    return format(price.normalize(), 'f')
