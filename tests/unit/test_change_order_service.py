"""
Unit tests for change-order numbering, acceptance and the change-order board.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fieldops.exceptions import MissingPrerequisiteError, PersistenceError
from fieldops.models import ChangeOrderRecord, ChangeOrderStatus
from fieldops.services.change_order_service import (
    ACCEPTED_MESSAGE, INVOICE_MISSING_MESSAGE, calculate_active_sequence, format_change_order_label
)


def order(number, status=ChangeOrderStatus.PENDING, quote_id='q-1'):
    return ChangeOrderRecord(
        id=f'co-{number}',
        company_id='company-1',
        deal_id='deal-1',
        quote_id=quote_id,
        change_order_number=number,
        status=status,
    )


class TestNumbering:
    """Tests for change-order labels."""

    def test_format_label_pads_sequence(self):
        assert format_change_order_label('Q100', 3) == 'CO-Q100-003'
        assert format_change_order_label('Q100', 1234) == 'CO-Q100-1234'

    def test_next_after_highest_existing(self):
        orders = [order('CO-Q100-001'), order('CO-Q100-002')]
        assert calculate_active_sequence(orders, 'Q100') == 3

    def test_gap_uses_highest(self):
        orders = [order('CO-Q100-001'), order('CO-Q100-007')]
        assert calculate_active_sequence(orders, 'Q100') == 8

    def test_floored_at_list_length(self):
        """Other quotes' change orders on the deal still push the sequence up."""
        orders = [order('CO-Q200-001'), order('CO-Q200-002'), order('CO-Q100-001')]
        assert calculate_active_sequence(orders, 'Q100') == 4

    def test_non_numeric_suffix_is_ignored(self):
        orders = [order('CO-Q100-abc')]
        assert calculate_active_sequence(orders, 'Q100') == 2

    def test_first_change_order(self):
        assert calculate_active_sequence([], 'Q100') == 1


class TestAcceptanceCoordinator:
    """Tests for AcceptanceCoordinator."""

    def test_missing_invoice_raises_before_request(self, coordinator, store, saved_quote):
        pending = store.seed_change_order(saved_quote, 'CO-Q100-001')

        with pytest.raises(MissingPrerequisiteError) as exc_info:
            coordinator.accept(pending['id'], None)

        assert exc_info.value.message == INVOICE_MISSING_MESSAGE
        assert exc_info.value.status_code == 409
        assert store.requests_to('PATCH', '/change-orders') == []

    def test_accept_adds_to_invoice_on_the_store(self, coordinator, store, accepted_quote):
        pending = store.seed_change_order(accepted_quote, 'CO-Q100-001', items=[('Extra outlet', 150.0)])
        invoice = next(iter(store.invoices.values()))

        saved = coordinator.accept(pending['id'], invoice['id'])

        assert saved.is_accepted
        assert saved.invoice_id == invoice['id']
        assert Decimal(invoice['balance_due']) == Decimal('1500.0')

    def test_signer_details_are_forwarded(self, coordinator, store, accepted_quote):
        pending = store.seed_change_order(accepted_quote, 'CO-Q100-001')
        invoice = next(iter(store.invoices.values()))

        coordinator.accept(pending['id'], invoice['id'], signer={'signer_name': 'Dana Reyes', 'signer_email': ''})

        _, _, payload = store.requests_to('PATCH', '/change-orders')[-1]
        assert payload == {'invoice_id': invoice['id'], 'signer_name': 'Dana Reyes'}

    def test_store_rejection_propagates(self, coordinator, store, accepted_quote):
        pending = store.seed_change_order(accepted_quote, 'CO-Q100-001')
        store.fail_on('PATCH', '/change-orders', message='Invoice is paid')

        with pytest.raises(PersistenceError):
            coordinator.accept(pending['id'], 'inv-x')


class TestChangeOrderBoard:
    """Tests for ChangeOrderBoard."""

    def test_load_splits_by_status(self, board, store, saved_quote):
        store.seed_change_order(saved_quote, 'CO-Q100-001', status='accepted')
        store.seed_change_order(saved_quote, 'CO-Q100-002')

        board.load()

        assert [o.change_order_number for o in board.accepted] == ['CO-Q100-001']
        assert [o.change_order_number for o in board.pending] == ['CO-Q100-002']
        assert len(board.for_quote()) == 2
        assert board.quote_invoice is None

    def test_load_failure_sets_load_error(self, board, store):
        store.fail_on('GET', '/change-orders', message='Timed out')

        board.load()

        assert board.load_error == 'Timed out'
        assert board.is_loading is False

    def test_accept_existing_without_invoice(self, board, store, saved_quote, notifier):
        pending = store.seed_change_order(saved_quote, 'CO-Q100-001')
        board.load()

        assert board.accept_existing(pending['id']) is None
        assert notifier.last_error == INVOICE_MISSING_MESSAGE
        assert board.pending[0].id == pending['id']
        assert board.accepting_id is None

    def test_accept_existing(self, board, store, accepted_quote, notifier):
        pending = store.seed_change_order(accepted_quote, 'CO-Q100-001')
        board.load()

        saved = board.accept_existing(pending['id'])

        assert saved.is_accepted
        assert board.pending == []
        assert notifier.last_message == ACCEPTED_MESSAGE
        assert board.quote_invoice.balance_due == Decimal('1500.0')

    def test_apply_saved_replaces_or_appends(self, board):
        first = order('CO-Q100-001')
        board.apply_saved(first)
        board.apply_saved(order('CO-Q100-001', status=ChangeOrderStatus.ACCEPTED))
        board.apply_saved(order('CO-Q100-002'))

        assert [o.change_order_number for o in board.change_orders] == ['CO-Q100-001', 'CO-Q100-002']
        assert board.change_orders[0].is_accepted

    def test_delete_pending(self, board, store, saved_quote):
        pending = store.seed_change_order(saved_quote, 'CO-Q100-001')
        board.load()

        assert board.delete_pending(pending['id']) is True
        assert board.change_orders == []
        assert pending['id'] not in store.change_orders

    def test_delete_pending_rolls_back(self, board, store, saved_quote, notifier):
        pending = store.seed_change_order(saved_quote, 'CO-Q100-001')
        board.load()
        store.fail_on('DELETE', '/change-orders', message='Already accepted')

        assert board.delete_pending(pending['id']) is False
        assert [o.id for o in board.change_orders] == [pending['id']]
        assert notifier.last_error == 'Already accepted'

    def test_accepted_orders_cannot_be_deleted(self, board, store, saved_quote):
        accepted = store.seed_change_order(saved_quote, 'CO-Q100-001', status='accepted')
        board.load()

        assert board.delete_pending(accepted['id']) is False
        assert store.requests_to('DELETE', '/change-orders') == []

    def test_to_state_includes_totals(self, board, store, saved_quote):
        store.seed_change_order(saved_quote, 'CO-Q100-001', items=[('Outlet', 100.0), ('Credit', -20.0)])
        board.load()

        state = board.to_state(10)

        assert state['pending'][0]['totals'] == {'subtotal': '80.00', 'tax_amount': '8.00', 'total': '88.00'}

    def test_to_state_serializes_acceptance_time(self, board, store, saved_quote):
        store.seed_change_order(saved_quote, 'CO-Q100-001', status='accepted')
        store.seed_change_order(saved_quote, 'CO-Q100-002')
        board.load()

        state = board.to_state()

        assert state['accepted'][0]['accepted_at'].startswith(str(datetime.now(timezone.utc).year))
        assert state['pending'][0]['accepted_at'] is None
