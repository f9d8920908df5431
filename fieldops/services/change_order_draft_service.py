"""Change Order Draft Service - the single pending change order of a quote."""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from fieldops.exceptions import MissingPrerequisiteError, PersistenceError
from fieldops.metrics import change_order_operations_total, change_order_rollbacks_total
from fieldops.models import ChangeOrderItem, ChangeOrderRecord, InvoiceRecord, ProductTemplate, create_client_id
from fieldops.services.change_order_service import (
    ACCEPT_FAILED_MESSAGE, ACCEPTED_MESSAGE, AcceptanceCoordinator,
    calculate_active_sequence, format_change_order_label
)
from fieldops.services.notifier import LoggingNotifier, Notifier
from fieldops.services.optimistic import OptimisticUpdate
from fieldops.services.store_client import StoreClient
from fieldops.services.totals_service import Totals, compute_totals
from fieldops.utils.number_format import parse_unit_price, price_to_text, to_cents

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = 'Failed to save change order.'
DELETE_FAILED_MESSAGE = 'Failed to delete item.'

FORM_FIELDS = ('name', 'description', 'unit_price')


class ChangeOrderDraftManager:
    """
    Editor for the pending change order of one quote.

    Item edits are applied locally first and then persisted by replacing the
    whole item list of the pending change order; if the store rejects the
    request the previous items come back. Only one change order per quote is
    pending at a time, so the first save creates it and later saves replace
    its items.

    ``on_saved`` / ``on_removed`` let the owning board merge the store's
    answer into its list.
    """

    def __init__(
        self,
        client: StoreClient,
        coordinator: AcceptanceCoordinator,
        company_id: str,
        deal_id: str,
        quote_id: Optional[str],
        quote_number: str,
        notifier: Optional[Notifier] = None,
        on_saved: Optional[Callable[[ChangeOrderRecord], None]] = None,
        on_removed: Optional[Callable[[str], None]] = None
    ):
        self.client = client
        self.coordinator = coordinator
        self.company_id = company_id
        self.deal_id = deal_id
        self.quote_id = quote_id
        self.quote_number = quote_number
        self.notifier = notifier or LoggingNotifier()
        self.on_saved = on_saved
        self.on_removed = on_removed

        self.items: Tuple[ChangeOrderItem, ...] = ()
        self.draft_change_order_id: Optional[str] = None
        self.draft_change_order_number: Optional[str] = None

        # Item form
        self.show_form = False
        self.editing_item_id: Optional[str] = None
        self.name = ''
        self.description = ''
        self.unit_price = '0'

        self.is_saving = False
        self.accepting_id: Optional[str] = None
        self.change_orders: List[ChangeOrderRecord] = []
        self.quote_invoice: Optional[InvoiceRecord] = None

    def __repr__(self):
        return f"<ChangeOrderDraftManager(quote_id={self.quote_id}, draft={self.draft_change_order_id}, items={len(self.items)})>"

    # ------------------------------------------------------------------
    # Synchronisation with the deal's change-order list
    # ------------------------------------------------------------------

    def sync(self, change_orders: Sequence[ChangeOrderRecord], quote_invoice: Optional[InvoiceRecord] = None) -> None:
        """Align the local draft with the latest list from the store."""
        self.change_orders = list(change_orders)
        self.quote_invoice = quote_invoice

        # Tracked draft was accepted or deleted elsewhere
        if self.draft_change_order_id is not None:
            still_pending = any(
                order.id == self.draft_change_order_id and order.is_pending
                for order in self.change_orders
            )
            if not still_pending:
                self._clear_draft()

        if not self.quote_id:
            return

        pending_for_quote = [
            order for order in self.change_orders
            if order.quote_id == self.quote_id and order.is_pending
        ]

        if pending_for_quote:
            if self.draft_change_order_id is None:
                self._adopt(pending_for_quote[-1])
            return

        if self.draft_change_order_id is None and self.items:
            self.items = ()
            self.draft_change_order_number = None

    def _adopt(self, order: ChangeOrderRecord) -> None:
        self.draft_change_order_id = order.id
        self.draft_change_order_number = order.change_order_number or None
        self.items = tuple(ChangeOrderItem.from_record(record) for record in order.items)

    def _clear_draft(self) -> None:
        self.draft_change_order_id = None
        self.draft_change_order_number = None
        self.items = ()

    @property
    def active_sequence(self) -> int:
        return calculate_active_sequence(self.change_orders, self.quote_number)

    @property
    def active_label(self) -> str:
        return self.draft_change_order_number or format_change_order_label(self.quote_number, self.active_sequence)

    # ------------------------------------------------------------------
    # Item form
    # ------------------------------------------------------------------

    def open_form(self) -> None:
        self.show_form = True

    def close_form(self) -> None:
        self.show_form = False
        self.reset_form()

    def reset_form(self) -> None:
        self.editing_item_id = None
        self.name = ''
        self.description = ''
        self.unit_price = '0'

    def update_form(self, **values) -> None:
        for field, value in values.items():
            if field in FORM_FIELDS and value is not None:
                setattr(self, field, value)

    def find_item(self, item_id: str) -> Optional[ChangeOrderItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def edit_item(self, item_id: str) -> None:
        item = self.find_item(item_id)
        if item is None:
            return

        self.editing_item_id = item.id
        self.name = item.name
        self.description = item.description
        self.unit_price = price_to_text(item.unit_price)
        self.show_form = True

    def apply_template(self, template_id: str, templates: Iterable[ProductTemplate]) -> None:
        template = next((t for t in templates if t.id == template_id), None)
        if template is None:
            return

        self.name = template.name
        self.description = template.description or ''
        if not self.editing_item_id:
            self.unit_price = '0'

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def build_payload(self, items: Sequence[ChangeOrderItem], label: str) -> Dict[str, Any]:
        return {
            'company_id': self.company_id,
            'deal_id': self.deal_id,
            'quote_id': self.quote_id,
            'invoice_id': self.quote_invoice.id if self.quote_invoice else None,
            'change_order_number': label,
            'items': [
                {
                    'name': item.name,
                    'description': item.description or None,
                    'unit_price': float(item.unit_price),
                    'unitPrice': float(item.unit_price),
                    'position': position,
                }
                for position, item in enumerate(items)
            ],
        }

    def _adopt_saved(self, saved: ChangeOrderRecord, label: str, fallback_items: Tuple[ChangeOrderItem, ...]) -> None:
        self.draft_change_order_id = saved.id or self.draft_change_order_id
        self.draft_change_order_number = saved.change_order_number or label
        synced = tuple(ChangeOrderItem.from_record(record) for record in saved.items)
        self.items = synced or fallback_items
        if self.on_saved:
            self.on_saved(saved)

    def add_or_edit_item(self) -> Optional[ChangeOrderRecord]:
        """
        Add the form's item to the draft, or update the item being edited.

        Returns the saved change order, or None when validation failed or the
        store rejected the save (the items and the form come back exactly as
        they were before the call).
        """
        name = self.name.strip()
        if not name:
            self.notifier.error('Enter a product or service name.')
            return None

        price = max(parse_unit_price(self.unit_price), 0)
        if price <= 0:
            self.notifier.error('Price must be greater than zero.')
            return None

        if not self.quote_id:
            self.notifier.error('Save the proposal before adding change orders.')
            return None

        was_editing = self.editing_item_id
        next_item = ChangeOrderItem(
            id=was_editing or create_client_id(),
            name=name,
            description=self.description.strip(),
            unit_price=to_cents(price),
        )
        if self.find_item(next_item.id) is not None:
            next_items = tuple(next_item if item.id == next_item.id else item for item in self.items)
        else:
            next_items = self.items + (next_item,)

        label = self.active_label
        payload = self.build_payload(next_items, label)

        def apply() -> None:
            self.items = next_items
            self.show_form = False
            self.notifier.error(None)
            self.notifier.message('Change order item updated.' if was_editing else 'Change order item added.')
            self.reset_form()

        def on_success(saved: ChangeOrderRecord) -> None:
            self._adopt_saved(saved, label, next_items)
            self.show_form = False
            change_order_operations_total.labels(operation='save_item', outcome='success').inc()
            self.notifier.message('Change order saved.')

        def on_failure(error: PersistenceError) -> None:
            change_order_operations_total.labels(operation='save_item', outcome='failure').inc()
            change_order_rollbacks_total.labels(operation='save_item').inc()
            self.notifier.error(error.message or SAVE_FAILED_MESSAGE)

        update = OptimisticUpdate(
            self,
            ('items', 'show_form', 'editing_item_id') + FORM_FIELDS,
            apply=apply,
            request=lambda: self.client.create_or_replace_change_order(payload),
        )

        self.is_saving = True
        try:
            return update.run(on_success=on_success, on_failure=on_failure)
        finally:
            self.is_saving = False

    def delete_item(self, item_id: str) -> bool:
        """
        Remove an item from the draft.

        Removing the last item drops the draft; if it was already persisted
        the pending change order is deleted so the next sync does not bring
        it back.
        """
        if not self.quote_id or self.find_item(item_id) is None:
            return False

        next_items = tuple(item for item in self.items if item.id != item_id)
        draft_id = self.draft_change_order_id

        def apply() -> None:
            self.items = next_items
            self.notifier.error(None)
            self.notifier.message('Item deleted.')
            if not next_items:
                self.draft_change_order_id = None
                self.draft_change_order_number = None

        def on_failure(error: PersistenceError) -> None:
            change_order_operations_total.labels(operation='delete_item', outcome='failure').inc()
            change_order_rollbacks_total.labels(operation='delete_item').inc()
            self.notifier.error(error.message or DELETE_FAILED_MESSAGE)

        if not next_items:
            if draft_id is None:
                apply()
                return True

            update = OptimisticUpdate(
                self,
                ('items', 'draft_change_order_id', 'draft_change_order_number'),
                apply=apply,
                request=lambda: self.client.delete_change_order(draft_id),
            )
            update.run(on_failure=on_failure)
            if update.rolled_back:
                return False

            change_order_operations_total.labels(operation='delete_item', outcome='success').inc()
            logger.info(f"[CHANGE-ORDER] Removed empty draft {draft_id} for quote {self.quote_id}")
            if self.on_removed:
                self.on_removed(draft_id)
            return True

        label = self.active_label
        payload = self.build_payload(next_items, label)

        def on_success(saved: ChangeOrderRecord) -> None:
            self._adopt_saved(saved, label, next_items)
            change_order_operations_total.labels(operation='delete_item', outcome='success').inc()

        update = OptimisticUpdate(
            self,
            ('items',),
            apply=apply,
            request=lambda: self.client.create_or_replace_change_order(payload),
        )

        self.is_saving = True
        try:
            update.run(on_success=on_success, on_failure=on_failure)
        finally:
            self.is_saving = False
        return not update.rolled_back

    def accept_draft(self, invoice: Optional[InvoiceRecord] = None) -> Optional[ChangeOrderRecord]:
        """Accept the pending draft onto the quote's invoice. The draft is kept on failure."""
        draft_id = self.draft_change_order_id
        if not draft_id:
            return None

        invoice = invoice or self.quote_invoice
        self.accepting_id = draft_id
        self.notifier.error(None)
        self.notifier.message(None)

        try:
            saved = self.coordinator.accept(draft_id, invoice.id if invoice else None)
        except MissingPrerequisiteError as e:
            self.notifier.error(e.message)
            return None
        except PersistenceError as e:
            self.notifier.error(e.message or ACCEPT_FAILED_MESSAGE)
            return None
        finally:
            self.accepting_id = None

        self._clear_draft()
        self.notifier.message(ACCEPTED_MESSAGE)
        if self.on_saved:
            self.on_saved(saved)
        return saved

    # ------------------------------------------------------------------
    # View state
    # ------------------------------------------------------------------

    def totals(self, tax_rate=0) -> Totals:
        return compute_totals(self.items, tax_rate)

    def to_state(self, tax_rate=0) -> Dict[str, Any]:
        return {
            'quote_id': self.quote_id,
            'draft_change_order_id': self.draft_change_order_id,
            'draft_change_order_number': self.draft_change_order_number,
            'active_label': self.active_label,
            'items': [
                {
                    'id': item.id,
                    'name': item.name,
                    'description': item.description,
                    'unit_price': str(item.unit_price),
                }
                for item in self.items
            ],
            'form': {
                'show': self.show_form,
                'editing_item_id': self.editing_item_id,
                'name': self.name,
                'description': self.description,
                'unit_price': self.unit_price,
            },
            'is_saving': self.is_saving,
            'accepting_id': self.accepting_id,
            'totals': self.totals(tax_rate).to_dict(),
        }
