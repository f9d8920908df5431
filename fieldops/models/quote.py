"""Quote models for proposals."""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from fieldops.models.line_item import LineItemRecord
from fieldops.utils.formatters import parse_timestamp


class QuoteStatus(str, enum.Enum):
    """Quote status enum."""
    DRAFT = 'draft'
    SENT = 'sent'
    ACCEPTED = 'accepted'
    DECLINED = 'declined'


# Transitions a user may request; the remote store may report any status.
QUOTE_STATUS_TRANSITIONS = {
    QuoteStatus.DRAFT: {QuoteStatus.SENT},
    QuoteStatus.SENT: {QuoteStatus.ACCEPTED, QuoteStatus.DECLINED},
    QuoteStatus.ACCEPTED: set(),
    QuoteStatus.DECLINED: set(),
}


def normalize_quote_status(value: Any) -> QuoteStatus:
    """Map a raw status string onto QuoteStatus, defaulting to draft."""
    if isinstance(value, QuoteStatus):
        return value
    try:
        return QuoteStatus(str(value or 'draft').lower())
    except ValueError:
        return QuoteStatus.DRAFT


@dataclass(frozen=True)
class QuoteRecord:
    """
    Quote as persisted by the remote store.

    Created on the first save of a draft and updated by every later save.
    """

    id: str
    company_id: str
    deal_id: str
    quote_number: str
    title: str = ''
    client_message: Optional[str] = None
    disclaimer: Optional[str] = None
    status: QuoteStatus = QuoteStatus.DRAFT
    public_share_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    line_items: List[LineItemRecord] = field(default_factory=list)

    def __repr__(self):
        return f"<QuoteRecord(id={self.id}, number='{self.quote_number}', status='{self.status.value}', items={len(self.line_items)})>"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QuoteRecord':
        items = [LineItemRecord.from_dict(item) for item in data.get('line_items') or []]
        items.sort(key=lambda item: item.position)
        return cls(
            id=str(data['id']),
            company_id=str(data.get('company_id') or ''),
            deal_id=str(data.get('deal_id') or ''),
            quote_number=data.get('quote_number') or '',
            title=data.get('title') or '',
            client_message=data.get('client_message'),
            disclaimer=data.get('disclaimer'),
            status=normalize_quote_status(data.get('status')),
            public_share_id=data.get('public_share_id'),
            created_at=parse_timestamp(data.get('created_at')),
            updated_at=parse_timestamp(data.get('updated_at')),
            line_items=items,
        )
