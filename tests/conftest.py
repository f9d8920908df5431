import copy
import itertools
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fieldops import create_app
from fieldops.exceptions import PersistenceError
from fieldops.services.change_order_draft_service import ChangeOrderDraftManager
from fieldops.services.change_order_service import AcceptanceCoordinator, ChangeOrderBoard
from fieldops.services.draft_registry import DraftRegistry
from fieldops.services.notifier import RecordingNotifier
from fieldops.services.quote_draft_service import QuoteDraftStore
from fieldops.services.store_client import StoreClient


def _now():
    return datetime.now(timezone.utc).isoformat()


class FakeStore(StoreClient):
    """
    In-memory remote store.

    Routes the client's HTTP calls to dictionaries, so the real StoreClient
    parsing runs. Mirrors the server contract: line-item diffing on quote
    upsert (unmentioned items survive unless listed for deletion), one
    pending change order per quote, invoices created on acceptance.
    """

    def __init__(self):
        super().__init__('http://store.test', access_token='test-token')
        self.quotes = {}
        self.change_orders = {}
        self.invoices = {}
        self.templates = []
        self.calls = []
        self.failures = []
        self._ids = itertools.count(1)

    def next_id(self, prefix):
        return f"{prefix}-{next(self._ids)}"

    def fail_on(self, method, endpoint_prefix, message='Store unavailable', status=500):
        """Make the next matching request fail."""
        self.failures.append((method, endpoint_prefix, message, status))

    def requests_to(self, method, endpoint_prefix):
        return [call for call in self.calls if call[0] == method and call[1].startswith(endpoint_prefix)]

    def _request(self, method, endpoint, payload=None, params=None):
        self.calls.append((method, endpoint, copy.deepcopy(payload)))

        for failure in list(self.failures):
            fail_method, prefix, message, status = failure
            if fail_method == method and endpoint.startswith(prefix):
                self.failures.remove(failure)
                raise PersistenceError(message, upstream_status=status)

        parts = endpoint.strip('/').split('/')

        if parts == ['quotes'] and method == 'POST':
            return self._upsert_quote(payload)
        if parts[0] == 'quotes' and len(parts) == 2 and method == 'GET':
            return copy.deepcopy(self._quote(parts[1]))
        if parts[0] == 'quotes' and parts[-1] == 'accept-without-signature':
            return self._accept_quote(parts[1])
        if parts[0] == 'deals' and method == 'DELETE':
            self._quote(parts[3])
            del self.quotes[parts[3]]
            return None
        if parts == ['change-orders'] and method == 'GET':
            return [copy.deepcopy(order) for order in self.change_orders.values()
                    if order['deal_id'] == params['dealId']]
        if parts == ['change-orders'] and method == 'POST':
            return self._save_change_order(payload)
        if parts[0] == 'change-orders' and parts[-1] == 'accept':
            return self._accept_change_order(parts[1], payload)
        if parts[0] == 'change-orders' and method == 'DELETE':
            if parts[1] not in self.change_orders:
                raise PersistenceError('Change order not found', upstream_status=404)
            del self.change_orders[parts[1]]
            return None
        if parts == ['invoices']:
            return [copy.deepcopy(invoice) for invoice in self.invoices.values()
                    if invoice['quote_id'] == params['quote_id']]
        if parts == ['product-templates']:
            return [dict(template) for template in self.templates
                    if template['company_id'] == params['companyId']]

        raise PersistenceError(f'No route for {method} {endpoint}', upstream_status=404)

    # Quotes

    def _quote(self, quote_id):
        if quote_id not in self.quotes:
            raise PersistenceError('Quote not found', upstream_status=404)
        return self.quotes[quote_id]

    def _upsert_quote(self, payload):
        incoming = payload['quote']
        quote_id = incoming.get('id')
        if quote_id:
            quote = self._quote(quote_id)
        else:
            quote_id = self.next_id('q')
            quote = {
                'id': quote_id,
                'public_share_id': self.next_id('share'),
                'created_at': _now(),
                'line_items': [],
            }
            self.quotes[quote_id] = quote

        quote.update({
            'company_id': incoming['company_id'],
            'deal_id': incoming['deal_id'],
            'quote_number': incoming.get('quote_number') or f"Q{100 + len(self.quotes) - 1}",
            'title': incoming.get('title') or '',
            'client_message': incoming.get('client_message'),
            'disclaimer': incoming.get('disclaimer'),
            'status': incoming.get('status') or 'draft',
            'updated_at': _now(),
        })

        deleted = set(payload.get('deletedLineItemIds') or [])
        existing = {item['id']: item for item in quote['line_items'] if item['id'] not in deleted}
        items = []
        for position, item in enumerate(payload.get('lineItems') or []):
            item_id = item.get('id') if item.get('id') in existing else self.next_id('li')
            existing.pop(item_id, None)
            items.append({
                'id': item_id,
                'name': item['name'],
                'description': item.get('description'),
                'quantity': item.get('quantity', 1),
                'unit_price': item.get('unit_price'),
                'position': position,
            })
        for leftover in existing.values():
            leftover['position'] = len(items)
            items.append(leftover)
        quote['line_items'] = items

        return copy.deepcopy(quote)

    def _accept_quote(self, quote_id):
        quote = self._quote(quote_id)
        quote['status'] = 'accepted'
        total = sum(Decimal(str(item['unit_price'])) for item in quote['line_items'])
        invoice_id = self.next_id('inv')
        self.invoices[invoice_id] = {
            'id': invoice_id,
            'company_id': quote['company_id'],
            'deal_id': quote['deal_id'],
            'quote_id': quote_id,
            'invoice_number': f"INV-{quote['quote_number']}",
            'status': 'unpaid',
            'total_amount': str(total),
            'balance_due': str(total),
        }
        return {'status': 'accepted', 'invoiceId': invoice_id}

    # Change orders

    def _save_change_order(self, payload):
        order = next(
            (order for order in self.change_orders.values()
             if order['quote_id'] == payload['quote_id'] and order['status'] == 'pending'),
            None
        )
        if order is None:
            order_id = self.next_id('co')
            order = {
                'id': order_id,
                'company_id': payload['company_id'],
                'deal_id': payload['deal_id'],
                'quote_id': payload['quote_id'],
                'change_order_number': payload['change_order_number'],
                'status': 'pending',
                'invoice_id': payload.get('invoice_id'),
                'accepted_at': None,
                'created_at': _now(),
            }
            self.change_orders[order_id] = order

        order['items'] = [
            {
                'id': self.next_id('coi'),
                'name': item['name'],
                'description': item.get('description'),
                'unit_price': item['unit_price'],
                'position': item['position'],
            }
            for item in payload['items']
        ]
        return copy.deepcopy(order)

    def _accept_change_order(self, change_order_id, payload):
        order = self.change_orders.get(change_order_id)
        if order is None:
            raise PersistenceError('Change order not found', upstream_status=404)
        invoice = self.invoices.get(payload['invoice_id'])
        if invoice is None:
            raise PersistenceError('Invoice not found', upstream_status=404)

        amount = sum(Decimal(str(item['unit_price'])) for item in order['items'])
        invoice['total_amount'] = str(Decimal(invoice['total_amount']) + amount)
        invoice['balance_due'] = str(Decimal(invoice['balance_due']) + amount)
        order.update({'status': 'accepted', 'invoice_id': invoice['id'], 'accepted_at': _now()})
        return copy.deepcopy(order)

    # Seeding helpers

    def seed_quote(self, company_id='company-1', deal_id='deal-1', quote_number='Q100', items=(), status='draft'):
        return self._upsert_quote({
            'quote': {
                'company_id': company_id,
                'deal_id': deal_id,
                'quote_number': quote_number,
                'title': quote_number,
                'client_message': 'Thanks!',
                'disclaimer': 'Valid 30 days.',
                'status': status,
            },
            'lineItems': [
                {'name': name, 'description': '', 'unit_price': price}
                for name, price in items
            ],
            'deletedLineItemIds': [],
        })

    def seed_change_order(self, quote, number, items=(('Extra outlet', 150.0),), status='pending'):
        order_id = self.next_id('co')
        self.change_orders[order_id] = {
            'id': order_id,
            'company_id': quote['company_id'],
            'deal_id': quote['deal_id'],
            'quote_id': quote['id'],
            'change_order_number': number,
            'status': status,
            'invoice_id': None,
            'accepted_at': _now() if status == 'accepted' else None,
            'created_at': _now(),
            'items': [
                {'id': self.next_id('coi'), 'name': name, 'description': None, 'unit_price': price, 'position': index}
                for index, (name, price) in enumerate(items)
            ],
        }
        return copy.deepcopy(self.change_orders[order_id])


@pytest.fixture(scope='function')
def store():
    """In-memory remote store."""
    return FakeStore()


@pytest.fixture(scope='function')
def notifier():
    """Notifier that records messages for assertions."""
    return RecordingNotifier()


@pytest.fixture(scope='function')
def app(store):
    """Create application instance wired to the in-memory store."""
    app = create_app('config.TestConfig')
    app.extensions['store_client'] = store
    app.extensions['draft_registry'] = DraftRegistry.from_config(app.config, store)
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def saved_quote(store):
    """A persisted quote with two priced line items."""
    return store.seed_quote(items=[('Panel upgrade', 1200.0), ('Permit', 150.0)])


@pytest.fixture(scope='function')
def quote_store(store, saved_quote, notifier):
    """Draft store opened on the saved quote."""
    from fieldops.models import QuoteRecord, ProductTemplate

    templates = [
        ProductTemplate(id='tpl-2', name='wire run', description='Per 10 ft', company_id='company-1'),
        ProductTemplate(id='tpl-1', name='Breaker', description='20A breaker', company_id='company-1'),
    ]
    return QuoteDraftStore(
        store,
        company_id='company-1',
        deal_id='deal-1',
        initial_quote=QuoteRecord.from_dict(saved_quote),
        default_quote_number='Q100',
        product_templates=templates,
        notifier=notifier,
    )


@pytest.fixture(scope='function')
def accepted_quote(store, saved_quote):
    """The saved quote, accepted, with its invoice generated."""
    store._accept_quote(saved_quote['id'])
    return store.quotes[saved_quote['id']]


@pytest.fixture(scope='function')
def coordinator(store):
    return AcceptanceCoordinator(store)


@pytest.fixture(scope='function')
def board(store, coordinator, saved_quote, notifier):
    """Change-order board for the saved quote's deal."""
    return ChangeOrderBoard(store, coordinator, 'deal-1', quote_id=saved_quote['id'], notifier=notifier)


@pytest.fixture(scope='function')
def draft_manager(store, coordinator, board, saved_quote, notifier):
    """Change-order draft manager wired to the board like a workspace."""
    return ChangeOrderDraftManager(
        store,
        coordinator,
        company_id='company-1',
        deal_id='deal-1',
        quote_id=saved_quote['id'],
        quote_number=saved_quote['quote_number'],
        notifier=notifier,
        on_saved=board.apply_saved,
        on_removed=board.remove,
    )
