"""Change Order Service - numbering, acceptance and the per-deal change-order list."""
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from fieldops.exceptions import MissingPrerequisiteError, PersistenceError
from fieldops.metrics import change_order_acceptances_total, change_order_rollbacks_total
from fieldops.models import ChangeOrderRecord, InvoiceRecord
from fieldops.services.notifier import LoggingNotifier, Notifier
from fieldops.services.optimistic import OptimisticUpdate
from fieldops.services.store_client import StoreClient
from fieldops.services.totals_service import Totals, compute_totals
from fieldops.utils.formatters import timestamp_iso

logger = logging.getLogger(__name__)

INVOICE_MISSING_MESSAGE = 'Invoice not found for this proposal. Accept the proposal to generate its invoice.'
ACCEPTED_MESSAGE = 'Change order accepted and added to the invoice.'
ACCEPT_FAILED_MESSAGE = 'Failed to accept change order.'

_SEQUENCE_PATTERN = re.compile(r'^\d+$')


def format_change_order_label(quote_number: str, sequence: int) -> str:
    """Format a change-order number, e.g. ``CO-Q100-003``."""
    return f"CO-{quote_number}-{sequence:03d}"


def calculate_active_sequence(change_orders: Sequence[ChangeOrderRecord], quote_number: str) -> int:
    """
    Next change-order sequence for a quote.

    One past the highest sequence already used with this quote's prefix, and
    never lower than ``len(change_orders) + 1``. Numbers with a non-numeric
    suffix are ignored.
    """
    prefix = f"CO-{quote_number}-"
    max_existing = 0

    for order in change_orders:
        number = order.change_order_number or ''
        if not number.startswith(prefix):
            continue
        suffix = number[len(prefix):]
        if _SEQUENCE_PATTERN.match(suffix):
            max_existing = max(max_existing, int(suffix))

    return max(max_existing + 1, len(change_orders) + 1)


def change_order_totals(order: ChangeOrderRecord, tax_rate=0) -> Totals:
    return compute_totals(order.items, tax_rate)


class AcceptanceCoordinator:
    """
    Accepts a change order against the quote's invoice.

    Invoice amounts are never computed here: the store adds the change order
    to the invoice, and cached invoice lookups are dropped so the next read
    returns the store's balance.
    """

    def __init__(self, client: StoreClient):
        self.client = client

    def accept(
        self,
        change_order_id: str,
        invoice_id: Optional[str],
        signer: Optional[Dict[str, str]] = None
    ) -> ChangeOrderRecord:
        """
        Accept a pending change order.

        Args:
            change_order_id: Change order to accept
            invoice_id: Invoice generated for the parent quote
            signer: Optional signer_name / signer_email / signature_text

        Raises:
            MissingPrerequisiteError: If the quote has no invoice yet
            PersistenceError: If the store rejects the acceptance
        """
        if not invoice_id:
            change_order_acceptances_total.labels(outcome='missing_invoice').inc()
            raise MissingPrerequisiteError(INVOICE_MISSING_MESSAGE)

        payload: Dict[str, Any] = {'invoice_id': invoice_id}
        if signer:
            payload.update({k: v for k, v in signer.items() if v})

        try:
            saved = self.client.accept_change_order(change_order_id, payload)
        except PersistenceError:
            change_order_acceptances_total.labels(outcome='failure').inc()
            raise

        if saved.quote_id:
            self.client.invalidate_invoice(saved.quote_id)

        change_order_acceptances_total.labels(outcome='success').inc()
        logger.info(f"[CHANGE-ORDER] Accepted {saved.change_order_number} ({saved.id}) on invoice {invoice_id}")
        return saved


class ChangeOrderBoard:
    """
    Change orders of one deal, split into accepted and pending, plus the
    invoice of the quote being edited.
    """

    def __init__(
        self,
        client: StoreClient,
        coordinator: AcceptanceCoordinator,
        deal_id: str,
        quote_id: Optional[str] = None,
        notifier: Optional[Notifier] = None
    ):
        self.client = client
        self.coordinator = coordinator
        self.deal_id = deal_id
        self.quote_id = quote_id
        self.notifier = notifier or LoggingNotifier()

        self.change_orders: List[ChangeOrderRecord] = []
        self.quote_invoice: Optional[InvoiceRecord] = None
        self.is_loading = False
        self.load_error: Optional[str] = None
        self.accepting_id: Optional[str] = None
        self.deleting_id: Optional[str] = None

    def load(self) -> List[ChangeOrderRecord]:
        """Fetch the deal's change orders and, when a quote is set, its invoice."""
        self.is_loading = True
        self.load_error = None
        try:
            self.change_orders = self.client.list_change_orders(self.deal_id)
        except PersistenceError as e:
            logger.error(f"[CHANGE-ORDER] Failed to load change orders for deal {self.deal_id}: {e.message}")
            self.load_error = e.message or 'Failed to load change orders.'
            return self.change_orders
        finally:
            self.is_loading = False

        self.refresh_invoice()
        return self.change_orders

    def refresh_invoice(self) -> Optional[InvoiceRecord]:
        if not self.quote_id:
            self.quote_invoice = None
            return None

        try:
            self.quote_invoice = self.client.get_invoice_by_quote_id(self.quote_id)
        except PersistenceError as e:
            # A missing invoice blocks acceptance but not editing
            logger.warning(f"[CHANGE-ORDER] Invoice lookup failed for quote {self.quote_id}: {e.message}")
            self.quote_invoice = None
        return self.quote_invoice

    @property
    def accepted(self) -> List[ChangeOrderRecord]:
        return [order for order in self.change_orders if order.is_accepted]

    @property
    def pending(self) -> List[ChangeOrderRecord]:
        return [order for order in self.change_orders if order.is_pending]

    def for_quote(self, quote_id: Optional[str] = None) -> List[ChangeOrderRecord]:
        target = quote_id or self.quote_id
        return [order for order in self.change_orders if order.quote_id == target]

    def find(self, change_order_id: str) -> Optional[ChangeOrderRecord]:
        for order in self.change_orders:
            if order.id == change_order_id:
                return order
        return None

    def apply_saved(self, saved: ChangeOrderRecord) -> None:
        """Merge a record returned by the store: replace by id, or append."""
        if self.find(saved.id) is not None:
            self.change_orders = [saved if order.id == saved.id else order for order in self.change_orders]
        else:
            self.change_orders = self.change_orders + [saved]

    def remove(self, change_order_id: str) -> None:
        self.change_orders = [order for order in self.change_orders if order.id != change_order_id]

    def accept_existing(self, change_order_id: str) -> Optional[ChangeOrderRecord]:
        """Accept one of the listed pending change orders."""
        invoice_id = self.quote_invoice.id if self.quote_invoice else None
        self.accepting_id = change_order_id
        self.notifier.error(None)
        self.notifier.message(None)

        try:
            saved = self.coordinator.accept(change_order_id, invoice_id)
        except MissingPrerequisiteError as e:
            self.notifier.error(e.message)
            return None
        except PersistenceError as e:
            self.notifier.error(e.message or ACCEPT_FAILED_MESSAGE)
            return None
        finally:
            self.accepting_id = None

        self.apply_saved(saved)
        self.refresh_invoice()
        self.notifier.message(ACCEPTED_MESSAGE)
        return saved

    def delete_pending(self, change_order_id: str) -> bool:
        """Remove a pending change order, restoring the list if the store refuses."""
        order = self.find(change_order_id)
        if order is None or not order.is_pending:
            return False

        self.deleting_id = change_order_id
        update = OptimisticUpdate(
            self,
            ('change_orders',),
            apply=lambda: self.remove(change_order_id),
            request=lambda: self.client.delete_change_order(change_order_id),
        )

        def on_failure(error: PersistenceError) -> None:
            change_order_rollbacks_total.labels(operation='delete_change_order').inc()
            self.notifier.error(error.message or 'Failed to delete change order.')

        try:
            update.run(on_failure=on_failure)
        finally:
            self.deleting_id = None

        if update.rolled_back:
            return False

        logger.info(f"[CHANGE-ORDER] Deleted pending change order {order.change_order_number} ({change_order_id})")
        self.notifier.message('Change order deleted.')
        return True

    def to_state(self, tax_rate=0) -> Dict[str, Any]:
        def serialize(order: ChangeOrderRecord) -> Dict[str, Any]:
            return {
                'id': order.id,
                'quote_id': order.quote_id,
                'change_order_number': order.change_order_number,
                'status': order.status.value,
                'invoice_id': order.invoice_id,
                'accepted_at': timestamp_iso(order.accepted_at),
                'items': [
                    {
                        'id': item.id,
                        'name': item.name,
                        'description': item.description,
                        'unit_price': str(item.unit_price),
                    }
                    for item in order.items
                ],
                'totals': change_order_totals(order, tax_rate).to_dict(),
            }

        return {
            'deal_id': self.deal_id,
            'quote_id': self.quote_id,
            'accepted': [serialize(order) for order in self.accepted],
            'pending': [serialize(order) for order in self.pending],
            'quote_invoice': {
                'id': self.quote_invoice.id,
                'invoice_number': self.quote_invoice.invoice_number,
                'status': self.quote_invoice.status,
                'total_amount': str(self.quote_invoice.total_amount),
                'balance_due': str(self.quote_invoice.balance_due),
            } if self.quote_invoice else None,
            'load_error': self.load_error,
            'accepting_id': self.accepting_id,
        }
