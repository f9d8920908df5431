"""Product template model (read-only catalog)."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from fieldops.utils.number_format import parse_unit_price


@dataclass(frozen=True)
class ProductTemplate:
    """Catalog entry whose name/description can be copied onto a line item."""

    id: str
    name: str
    description: Optional[str] = None
    unit_price: Decimal = Decimal('0')
    company_id: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProductTemplate':
        return cls(
            id=str(data['id']),
            name=data.get('name') or '',
            description=data.get('description'),
            unit_price=parse_unit_price(data.get('unit_price')),
            company_id=str(data.get('company_id') or ''),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'unit_price': str(self.unit_price),
            'company_id': self.company_id,
        }
