"""Quote Draft Service - editable proposal kept in sync with the remote store."""

import json
import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from fieldops.exceptions import PersistenceError, ValidationError
from fieldops.metrics import quote_saves_total
from fieldops.models import (
    ClientId, LineItem, ProductTemplate, QuoteRecord, QuoteStatus, ServerId,
    QUOTE_STATUS_TRANSITIONS, normalize_quote_status
)
from fieldops.services.line_item_reconciler import reconcile_line_items
from fieldops.services.notifier import LoggingNotifier, Notifier
from fieldops.services.store_client import StoreClient
from fieldops.services.totals_service import Totals, compute_totals
from fieldops.utils.formatters import timestamp_iso
from fieldops.utils.number_format import to_cents

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_MESSAGE = 'Thank you for considering our services. We look forward to working with you.'
DEFAULT_DISCLAIMER = 'This quote is valid for the next 30 days, after which values may be subject to change.'

SAVE_ERROR_MESSAGE = "We couldn't save this quote. Please try again."

EDITABLE_LINE_ITEM_FIELDS = ('name', 'description')
EDITABLE_QUOTE_FIELDS = ('quote_number', 'client_message', 'disclaimer')


class QuoteDraftStore:
    """
    Owns one editable quote: metadata, line items, pending deletions and the
    save/reconcile cycle.

    Line-item mutations are silent no-ops while the proposal is locked
    (accepted, or its deal archived); the view is expected to have disabled
    them already. Saves are serialized per store: a save requested while
    another is in flight waits, then sends the newest state.
    """

    def __init__(
        self,
        client: StoreClient,
        company_id: str,
        deal_id: str,
        initial_quote: Optional[QuoteRecord] = None,
        default_quote_number: str = '',
        product_templates: Iterable[ProductTemplate] = (),
        is_archived: bool = False,
        notifier: Optional[Notifier] = None,
        default_client_message: str = DEFAULT_CLIENT_MESSAGE,
        default_disclaimer: str = DEFAULT_DISCLAIMER
    ):
        self.client = client
        self.company_id = company_id
        self.deal_id = deal_id
        self.default_quote_number = default_quote_number
        self.is_archived = is_archived
        self.notifier = notifier or LoggingNotifier()

        quote = initial_quote
        self.quote_id: Optional[str] = quote.id if quote else None
        self.public_share_id: Optional[str] = quote.public_share_id if quote else None
        self.status: QuoteStatus = quote.status if quote else QuoteStatus.DRAFT
        self.quote_number: str = quote.quote_number if quote else default_quote_number
        self.created_at: Optional[datetime] = quote.created_at if quote else None
        self.client_message: str = (
            quote.client_message if quote and quote.client_message is not None else default_client_message
        )
        self.disclaimer: str = (
            quote.disclaimer if quote and quote.disclaimer is not None else default_disclaimer
        )
        if quote and quote.line_items:
            self.line_items: Tuple[LineItem, ...] = tuple(reconcile_line_items(quote.line_items, ()))
        else:
            self.line_items = (LineItem.blank(),)
        self.deleted_line_item_ids: Tuple[ServerId, ...] = ()
        self.last_saved_at: Optional[datetime] = quote.updated_at if quote else None

        self.editing_line_items: Set[ClientId] = set()
        self.is_saving = False
        self.save_error: Optional[str] = None
        self.is_deleting = False
        self.delete_error: Optional[str] = None
        self.is_accepting = False
        self.accept_error: Optional[str] = None
        self.invoice_id: Optional[str] = None
        self.has_pending_changes = False

        self._last_saved_snapshot: Optional[str] = None
        self._save_lock = threading.Lock()

        self.product_templates: List[ProductTemplate] = sorted(
            product_templates, key=lambda template: template.name.lower()
        )
        self._templates_by_id: Dict[str, ProductTemplate] = {
            template.id: template for template in self.product_templates
        }

        self._refresh_pending_changes()

    def __repr__(self):
        return f"<QuoteDraftStore(quote_id={self.quote_id}, status='{self.status.value}', items={len(self.line_items)})>"

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def is_locked(self) -> bool:
        return self.status == QuoteStatus.ACCEPTED or self.is_archived

    def find_line_item(self, client_id: str) -> Optional[LineItem]:
        for item in self.line_items:
            if item.client_id == client_id:
                return item
        return None

    def totals(self, tax_rate=0) -> Totals:
        return compute_totals([{'unit_price': item.signed_price} for item in self.line_items], tax_rate)

    def snapshot_with(self, **overrides) -> str:
        """
        Serialized dirty-detection projection of the current state.

        ``overrides`` replaces top-level keys, letting a caller declare the
        snapshot of an edit it is about to apply (see ``save``).
        """
        state = {
            'quoteNumber': self.quote_number,
            'clientMessage': self.client_message,
            'disclaimer': self.disclaimer,
            'status': self.status.value,
            'lineItems': [item.to_snapshot() for item in self.line_items],
            'deletedLineItemIds': list(self.deleted_line_item_ids),
        }
        for key, value in overrides.items():
            state[key] = value.value if isinstance(value, QuoteStatus) else value
        return json.dumps(state, sort_keys=True)

    def build_snapshot(self) -> str:
        return self.snapshot_with()

    def _refresh_pending_changes(self) -> None:
        snapshot = self.build_snapshot()

        if self._last_saved_snapshot is None:
            self._last_saved_snapshot = snapshot
            self.has_pending_changes = False
            return

        # No flicker while a save or delete is in flight
        if self.is_saving or self.is_deleting:
            return

        self.has_pending_changes = snapshot != self._last_saved_snapshot

    # ------------------------------------------------------------------
    # Line-item editing
    # ------------------------------------------------------------------

    def _replace_line_item(self, client_id: str, **changes) -> None:
        self.line_items = tuple(
            item.with_changes(**changes) if item.client_id == client_id else item
            for item in self.line_items
        )
        self._refresh_pending_changes()

    def add_line_item(self, is_discount: bool = False) -> Optional[LineItem]:
        if self.is_locked:
            return None

        item = LineItem.blank(is_discount=is_discount)
        self.line_items = self.line_items + (item,)
        self._refresh_pending_changes()
        return item

    def edit_field(self, client_id: str, field: str, value: str) -> None:
        if self.is_locked:
            return
        if field not in EDITABLE_LINE_ITEM_FIELDS:
            raise ValidationError(f'Line item field "{field}" cannot be edited.')

        self._replace_line_item(client_id, **{field: value})

    def edit_price(self, client_id: str, value: str) -> None:
        """Store the price exactly as typed; it is parsed on save."""
        if self.is_locked:
            return

        self._replace_line_item(client_id, unit_price=value)

    def apply_template(self, client_id: str, template_id: str) -> None:
        if self.is_locked or not template_id:
            return

        template = self._templates_by_id.get(template_id)
        if not template:
            return

        self._replace_line_item(
            client_id,
            name=template.name,
            description=template.description or '',
            quantity=1
        )

    def delete_line_item(self, client_id: str) -> None:
        if self.is_locked:
            return

        target = self.find_line_item(client_id)
        if target is not None and target.is_persisted and target.id not in self.deleted_line_item_ids:
            self.deleted_line_item_ids = self.deleted_line_item_ids + (target.id,)

        self.line_items = tuple(item for item in self.line_items if item.client_id != client_id)
        self.editing_line_items.discard(client_id)
        self._refresh_pending_changes()

    def toggle_line_item_edit(self, client_id: str) -> None:
        if self.is_locked:
            return

        if client_id in self.editing_line_items:
            self.editing_line_items.discard(client_id)
        else:
            self.editing_line_items.add(client_id)

    # ------------------------------------------------------------------
    # Quote metadata
    # ------------------------------------------------------------------

    def edit_quote_field(self, field: str, value: str) -> None:
        if field not in EDITABLE_QUOTE_FIELDS:
            raise ValidationError(f'Quote field "{field}" cannot be edited.')

        setattr(self, field, value)
        self._refresh_pending_changes()

    def set_status(self, status: Any) -> None:
        """Apply a user-requested status transition (draft→sent, sent→accepted/declined)."""
        new_status = normalize_quote_status(status)
        if new_status == self.status:
            return

        if new_status not in QUOTE_STATUS_TRANSITIONS[self.status]:
            raise ValidationError(
                f'A {self.status.value} quote cannot be marked as {new_status.value}.'
            )

        self.status = new_status
        if self.is_locked:
            self.editing_line_items.clear()
        self._refresh_pending_changes()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def build_save_payload(self) -> Dict[str, Any]:
        quote_number = self.quote_number.strip() or self.default_quote_number

        quote = {
            'id': self.quote_id,
            'company_id': self.company_id,
            'deal_id': self.deal_id,
            'quote_number': quote_number,
            'title': quote_number,
            'client_message': self.client_message if self.client_message.strip() else None,
            'disclaimer': self.disclaimer if self.disclaimer.strip() else None,
            'status': self.status.value,
        }

        line_items = []
        for position, item in enumerate(self.line_items):
            price = float(to_cents(item.signed_price))
            line_items.append({
                'id': item.id,
                'name': item.name.strip(),
                'description': item.description,
                'quantity': 1,
                'unit_price': price,
                'unitPrice': price,
                'position': position,
            })

        return {
            'quote': quote,
            'lineItems': line_items,
            'deletedLineItemIds': list(self.deleted_line_item_ids),
        }

    def save(self, snapshot_override: Optional[str] = None) -> Optional[QuoteRecord]:
        """
        Persist the draft and reconcile the store's answer into it.

        ``snapshot_override`` becomes the new dirty-detection baseline instead
        of the post-save snapshot. Callers that apply an edit right after the
        save (e.g. marking the quote sent) pass ``snapshot_with(...)`` of that
        edit so it does not show up as a pending change.

        Returns the saved record, or None when the store rejected the save
        (``save_error`` is set and the draft is left untouched).
        """
        with self._save_lock:
            self.is_saving = True
            self.save_error = None

            previous_items = self.line_items
            saved = None

            try:
                saved = self.client.upsert_quote(self.build_save_payload())
            except PersistenceError as e:
                logger.error(f"[QUOTE] Failed to save quote {self.quote_id or '(new)'}: {e.message}")
                quote_saves_total.labels(outcome='failure').inc()
                self.save_error = SAVE_ERROR_MESSAGE
                self.notifier.error(SAVE_ERROR_MESSAGE)
            finally:
                self.is_saving = False

            if saved is None:
                self._refresh_pending_changes()
                return None

            self._adopt_saved(saved, previous_items, snapshot_override)
            quote_saves_total.labels(outcome='success').inc()
            logger.info(f"[QUOTE] Saved quote {saved.id} ({len(saved.line_items)} items, status={saved.status.value})")
            return saved

    def send(self) -> Optional[QuoteRecord]:
        """Mark the draft as sent and persist it. A rejected save leaves the status as it was."""
        previous_status = self.status
        self.set_status(QuoteStatus.SENT)

        saved = self.save()
        if saved is None and self.status != previous_status:
            self.status = previous_status
            self._refresh_pending_changes()
        return saved

    def _adopt_saved(self, saved: QuoteRecord, previous_items: Tuple[LineItem, ...], snapshot_override: Optional[str]) -> None:
        self.line_items = tuple(reconcile_line_items(saved.line_items, previous_items))
        self.quote_id = saved.id
        self.public_share_id = saved.public_share_id
        self.status = saved.status
        self.quote_number = saved.quote_number
        self.created_at = saved.created_at
        self.client_message = saved.client_message or ''
        self.disclaimer = saved.disclaimer or ''
        self.deleted_line_item_ids = ()
        self.last_saved_at = saved.updated_at

        live_ids = {item.client_id for item in self.line_items}
        self.editing_line_items &= live_ids
        if self.is_locked:
            self.editing_line_items.clear()

        self._last_saved_snapshot = snapshot_override or self.build_snapshot()
        self.has_pending_changes = False

    def accept_without_signature(self) -> Optional[str]:
        """
        Accept the proposal on the customer's behalf.

        Returns the generated invoice id (may be None), or None on failure
        with ``accept_error`` set.
        """
        if self.is_accepting:
            return None
        if not self.quote_id:
            self.accept_error = 'Save the quote before accepting it.'
            self.notifier.error(self.accept_error)
            return None

        self.is_accepting = True
        self.accept_error = None
        try:
            result = self.client.accept_quote_without_signature(self.quote_id)
        except PersistenceError as e:
            logger.error(f"[QUOTE] Failed to accept quote {self.quote_id}: {e.message}")
            self.accept_error = e.message or 'Failed to accept quote. Please try again.'
            self.notifier.error(self.accept_error)
            return None
        finally:
            self.is_accepting = False

        # The store already persisted the new status; move the baseline with it
        self._rebase_status(normalize_quote_status(result.get('status') or QuoteStatus.ACCEPTED))
        self.invoice_id = result.get('invoice_id')
        if self.invoice_id is not None:
            self.invoice_id = str(self.invoice_id)
        logger.info(f"[QUOTE] Quote {self.quote_id} accepted without signature (invoice {self.invoice_id})")
        return self.invoice_id

    def _rebase_status(self, status: QuoteStatus) -> None:
        self.status = status
        if self._last_saved_snapshot is not None:
            baseline = json.loads(self._last_saved_snapshot)
            baseline['status'] = status.value
            self._last_saved_snapshot = json.dumps(baseline, sort_keys=True)
        if self.is_locked:
            self.editing_line_items.clear()
        self._refresh_pending_changes()

    def delete_quote(self) -> bool:
        """Delete the persisted quote. Returns True when the store confirmed it."""
        if not self.quote_id:
            return False

        self.is_deleting = True
        self.delete_error = None
        try:
            self.client.delete_quote(self.deal_id, self.quote_id)
        except PersistenceError as e:
            logger.error(f"[QUOTE] Failed to delete quote {self.quote_id}: {e.message}")
            self.delete_error = e.message or "We couldn't delete this quote. Please try again."
            self.notifier.error(self.delete_error)
            return False
        finally:
            self.is_deleting = False

        logger.info(f"[QUOTE] Deleted quote {self.quote_id}")
        return True

    # ------------------------------------------------------------------
    # View state
    # ------------------------------------------------------------------

    def to_state(self, tax_rate=0) -> Dict[str, Any]:
        return {
            'quote_id': self.quote_id,
            'company_id': self.company_id,
            'deal_id': self.deal_id,
            'public_share_id': self.public_share_id,
            'status': self.status.value,
            'quote_number': self.quote_number,
            'client_message': self.client_message,
            'disclaimer': self.disclaimer,
            'created_at': timestamp_iso(self.created_at),
            'last_saved_at': timestamp_iso(self.last_saved_at),
            'line_items': [item.to_snapshot() for item in self.line_items],
            'deleted_line_item_ids': list(self.deleted_line_item_ids),
            'editing_line_items': sorted(self.editing_line_items),
            'is_locked': self.is_locked,
            'is_saving': self.is_saving,
            'save_error': self.save_error,
            'is_deleting': self.is_deleting,
            'delete_error': self.delete_error,
            'accept_error': self.accept_error,
            'invoice_id': self.invoice_id,
            'has_pending_changes': self.has_pending_changes,
            'totals': self.totals(tax_rate).to_dict(),
            'product_templates': [template.to_dict() for template in self.product_templates],
        }


class QuoteCreator:
    """
    Single explicit call site for creating a quote before the editor opens.

    A second ``create`` while one is in flight is ignored, so a double click
    (or a duplicated effect) cannot create two quotes.
    """

    def __init__(
        self,
        client: StoreClient,
        notifier: Optional[Notifier] = None,
        default_client_message: str = DEFAULT_CLIENT_MESSAGE,
        default_disclaimer: str = DEFAULT_DISCLAIMER
    ):
        self.client = client
        self.notifier = notifier or LoggingNotifier()
        self.default_client_message = default_client_message
        self.default_disclaimer = default_disclaimer
        self.is_creating = False
        self._lock = threading.Lock()

    def create(self, company_id: str, deal_id: str) -> Optional[QuoteRecord]:
        if not self._lock.acquire(blocking=False):
            logger.info(f"[QUOTE] Ignoring duplicate create for deal {deal_id}")
            return None

        self.is_creating = True
        try:
            quote = self.client.upsert_quote({
                'quote': {
                    'company_id': company_id,
                    'deal_id': deal_id,
                    'quote_number': '',  # Store assigns the number
                    'title': '',
                    'client_message': self.default_client_message,
                    'disclaimer': self.default_disclaimer,
                    'status': QuoteStatus.DRAFT.value,
                },
                'lineItems': [],
                'deletedLineItemIds': [],
            })
        except PersistenceError as e:
            logger.error(f"[QUOTE] Failed to create quote for deal {deal_id}: {e.message}")
            self.notifier.error(f"Failed to create quote: {e.message}")
            return None
        finally:
            self.is_creating = False
            self._lock.release()

        logger.info(f"[QUOTE] Created quote {quote.id} ({quote.quote_number}) for deal {deal_id}")
        return quote
