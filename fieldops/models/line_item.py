"""Line item models shared by quotes and change orders."""
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, NewType, Optional

from fieldops.utils.number_format import parse_unit_price, price_to_text

# Locally generated key; the only identity that is stable for the whole
# lifetime of an item in the editor.
ClientId = NewType('ClientId', str)

# Key assigned by the remote store once the item has been persisted.
ServerId = NewType('ServerId', str)


def create_client_id() -> ClientId:
    """Generate a fresh client-side identifier."""
    return ClientId(str(uuid.uuid4()))


@dataclass(frozen=True)
class LineItem:
    """
    Editable quote line item.

    ``unit_price`` keeps the text the user typed until the quote is saved.
    Items are priced as flat units, so ``quantity`` is always 1.
    """

    client_id: ClientId
    name: str = ''
    description: str = ''
    unit_price: str = '0'
    is_discount: bool = False
    id: Optional[ServerId] = None
    quantity: int = 1

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    @property
    def parsed_price(self) -> Decimal:
        return parse_unit_price(self.unit_price)

    @property
    def signed_price(self) -> Decimal:
        """Price as it is persisted: discounts are always negative."""
        price = self.parsed_price
        return -abs(price) if self.is_discount else price

    def with_changes(self, **changes) -> 'LineItem':
        return replace(self, **changes)

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'client_id': self.client_id,
            'name': self.name,
            'description': self.description,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'is_discount': self.is_discount,
        }

    @classmethod
    def blank(cls, is_discount: bool = False) -> 'LineItem':
        return cls(
            client_id=create_client_id(),
            name='Discount' if is_discount else '',
            is_discount=is_discount,
        )

    @classmethod
    def from_record(cls, record: 'LineItemRecord', client_id: Optional[ClientId] = None) -> 'LineItem':
        return cls(
            client_id=client_id or create_client_id(),
            id=record.id,
            name=record.name,
            description=record.description or '',
            unit_price=price_to_text(record.unit_price),
            is_discount=record.unit_price < 0,
        )


@dataclass(frozen=True)
class LineItemRecord:
    """Line item as returned by the remote store."""

    id: Optional[ServerId]
    name: str
    description: Optional[str] = None
    unit_price: Decimal = Decimal('0')
    quantity: int = 1
    position: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LineItemRecord':
        raw_id = data.get('id')
        return cls(
            id=ServerId(str(raw_id)) if raw_id is not None else None,
            name=data.get('name') or '',
            description=data.get('description'),
            unit_price=parse_unit_price(data.get('unit_price', data.get('unitPrice'))),
            quantity=int(data.get('quantity') or 1),
            position=int(data.get('position') or 0),
        )


@dataclass(frozen=True)
class ChangeOrderItem:
    """Item of a change-order draft. ``id`` is a client id until the order is saved."""

    id: str
    name: str
    description: str = ''
    unit_price: Decimal = field(default=Decimal('0'))

    @classmethod
    def from_record(cls, record: LineItemRecord) -> 'ChangeOrderItem':
        return cls(
            id=record.id or create_client_id(),
            name=record.name,
            description=record.description or '',
            unit_price=record.unit_price,
        )
