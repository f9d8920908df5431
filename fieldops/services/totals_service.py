"""Totals calculation for quotes and change orders."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Union

from fieldops.utils.number_format import parse_unit_price, to_cents


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal

    def to_dict(self):
        return {
            'subtotal': str(self.subtotal),
            'tax_amount': str(self.tax_amount),
            'total': str(self.total),
        }


def _item_price(item: Any) -> Decimal:
    if isinstance(item, Mapping):
        raw = item.get('unit_price', item.get('unitPrice'))
    else:
        raw = getattr(item, 'unit_price', None)
    return parse_unit_price(raw)


def compute_totals(items: Iterable[Any], tax_rate: Optional[Union[int, float, Decimal]] = 0) -> Totals:
    """
    Calculate subtotal, tax and total for a list of priced items.

    Items are priced as flat units. Discount items keep their negative sign;
    unparseable or non-finite prices count as zero. ``tax_rate`` is a
    percentage (0-100).
    """
    subtotal = sum((_item_price(item) for item in items), Decimal('0'))
    rate = parse_unit_price(tax_rate)
    tax_amount = subtotal * rate / Decimal('100')
    total = subtotal + tax_amount

    return Totals(
        subtotal=to_cents(subtotal),
        tax_amount=to_cents(tax_amount),
        total=to_cents(total),
    )
