"""Invoice model (read-only view of the remote invoice)."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from fieldops.utils.number_format import parse_unit_price


@dataclass(frozen=True)
class InvoiceRecord:
    """Invoice generated when a quote is accepted. Its balance is owned by the store."""

    id: str
    company_id: str
    deal_id: str
    quote_id: Optional[str]
    invoice_number: str
    status: str = 'unpaid'
    total_amount: Decimal = Decimal('0')
    balance_due: Decimal = Decimal('0')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InvoiceRecord':
        quote_id = data.get('quote_id')
        return cls(
            id=str(data['id']),
            company_id=str(data.get('company_id') or ''),
            deal_id=str(data.get('deal_id') or ''),
            quote_id=str(quote_id) if quote_id is not None else None,
            invoice_number=data.get('invoice_number') or '',
            status=data.get('status') or 'unpaid',
            total_amount=parse_unit_price(data.get('total_amount')),
            balance_due=parse_unit_price(data.get('balance_due')),
        )
