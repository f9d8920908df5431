"""Change order models."""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from fieldops.models.line_item import LineItemRecord
from fieldops.utils.formatters import parse_timestamp


class ChangeOrderStatus(str, enum.Enum):
    """Change order status enum."""
    PENDING = 'pending'
    ACCEPTED = 'accepted'


@dataclass(frozen=True)
class ChangeOrderRecord:
    """
    Change order (supplementary line items negotiated after acceptance).

    For a given quote at most one change order is pending at any time.
    """

    id: str
    company_id: str
    deal_id: str
    quote_id: str
    change_order_number: str
    status: ChangeOrderStatus = ChangeOrderStatus.PENDING
    invoice_id: Optional[str] = None
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: List[LineItemRecord] = field(default_factory=list)

    def __repr__(self):
        return f"<ChangeOrderRecord(id={self.id}, number='{self.change_order_number}', status='{self.status.value}')>"

    @property
    def is_pending(self) -> bool:
        return self.status == ChangeOrderStatus.PENDING

    @property
    def is_accepted(self) -> bool:
        return self.status == ChangeOrderStatus.ACCEPTED

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChangeOrderRecord':
        items = [LineItemRecord.from_dict(item) for item in data.get('items') or []]
        items.sort(key=lambda item: item.position)
        try:
            status = ChangeOrderStatus(str(data.get('status') or 'pending').lower())
        except ValueError:
            status = ChangeOrderStatus.PENDING
        invoice_id = data.get('invoice_id')
        return cls(
            id=str(data['id']),
            company_id=str(data.get('company_id') or ''),
            deal_id=str(data.get('deal_id') or ''),
            quote_id=str(data.get('quote_id') or ''),
            change_order_number=data.get('change_order_number') or '',
            status=status,
            invoice_id=str(invoice_id) if invoice_id is not None else None,
            accepted_at=parse_timestamp(data.get('accepted_at')),
            created_at=parse_timestamp(data.get('created_at')),
            items=items,
        )
