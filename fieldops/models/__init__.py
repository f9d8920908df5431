"""Models package - exports the proposal engine's records and editable types."""
from fieldops.models.line_item import (
    ClientId, ServerId, create_client_id, LineItem, LineItemRecord, ChangeOrderItem
)
from fieldops.models.quote import QuoteRecord, QuoteStatus, QUOTE_STATUS_TRANSITIONS, normalize_quote_status
from fieldops.models.change_order import ChangeOrderRecord, ChangeOrderStatus
from fieldops.models.invoice import InvoiceRecord
from fieldops.models.product_template import ProductTemplate

__all__ = [
    # Line items
    'ClientId', 'ServerId', 'create_client_id', 'LineItem', 'LineItemRecord', 'ChangeOrderItem',
    # Documents
    'QuoteRecord', 'QuoteStatus', 'QUOTE_STATUS_TRANSITIONS', 'normalize_quote_status',
    'ChangeOrderRecord', 'ChangeOrderStatus',
    'InvoiceRecord', 'ProductTemplate',
]
