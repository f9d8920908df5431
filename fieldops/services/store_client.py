"""Remote store client for quotes, change orders, invoices and product templates."""
import logging
from typing import Any, Dict, List, Optional

import requests

from fieldops.exceptions import PersistenceError
from fieldops.models import ChangeOrderRecord, InvoiceRecord, ProductTemplate, QuoteRecord
from fieldops.services.cache_service import LookupCache

logger = logging.getLogger(__name__)


class StoreClient:
    """
    Client for the authoritative HTTP store.

    The store performs create-or-update plus line-item diffing server-side;
    this client only moves JSON documents and turns failures into
    PersistenceError.
    """

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        timeout: float = 10,
        cache: Optional[LookupCache] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the store client.

        Args:
            base_url: Store root URL, e.g. https://api.example.com
            access_token: Bearer token sent with every request
            timeout: Seconds before a request is abandoned
            cache: Optional cache for the template catalog and invoice lookups
            session: Optional requests session (shared connection pool)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.cache = cache
        self.session = session or requests.Session()
        self.headers = {'Content-Type': 'application/json'}
        if access_token:
            self.headers['Authorization'] = f'Bearer {access_token}'

    @classmethod
    def from_config(cls, config: Dict[str, Any], cache: Optional[LookupCache] = None) -> 'StoreClient':
        """Build a client from a Flask config mapping."""
        return cls(
            base_url=config['FIELDOPS_API_URL'],
            access_token=config.get('FIELDOPS_API_TOKEN'),
            timeout=config.get('FIELDOPS_API_TIMEOUT', 10),
            cache=cache,
        )

    def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """Send a request and return the decoded JSON body (None for empty bodies)."""
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=self.headers,
                json=payload,
                params=params,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"[STORE] {method} {endpoint} failed: {e}")
            raise PersistenceError(f"Could not reach the store: {e}") from e

        if not response.ok:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {}
            if not isinstance(error_data, dict):
                error_data = {}
            message = (
                error_data.get('error')
                or error_data.get('message')
                or f"API request failed: {response.reason}"
            )
            logger.error(f"[STORE] {method} {endpoint} -> {response.status_code}: {message}")
            raise PersistenceError(message, upstream_status=response.status_code, payload={'details': error_data})

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise PersistenceError(f"Invalid response from the store for {endpoint}") from e

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def upsert_quote(self, payload: Dict[str, Any]) -> QuoteRecord:
        """Create or update a quote with its line items in one call."""
        quote_id = (payload.get('quote') or {}).get('id')
        logger.info(f"[STORE] Upserting quote {quote_id or '(new)'} with {len(payload.get('lineItems') or [])} items")
        data = self._request('POST', '/quotes', payload=payload)
        return QuoteRecord.from_dict(data)

    def get_quote(self, quote_id: str) -> QuoteRecord:
        data = self._request('GET', f'/quotes/{quote_id}')
        return QuoteRecord.from_dict(data)

    def accept_quote_without_signature(self, quote_id: str) -> Dict[str, Any]:
        """Mark a quote accepted on the customer's behalf. Returns {status, invoice_id}."""
        data = self._request('POST', f'/quotes/{quote_id}/accept-without-signature') or {}
        return {
            'status': data.get('status'),
            'invoice_id': data.get('invoiceId', data.get('invoice_id')),
        }

    def delete_quote(self, deal_id: str, quote_id: str) -> None:
        self._request('DELETE', f'/deals/{deal_id}/quotes/{quote_id}')

    # ------------------------------------------------------------------
    # Change orders
    # ------------------------------------------------------------------

    def list_change_orders(self, deal_id: str) -> List[ChangeOrderRecord]:
        data = self._request('GET', '/change-orders', params={'dealId': deal_id}) or []
        return [ChangeOrderRecord.from_dict(item) for item in data]

    def create_or_replace_change_order(self, payload: Dict[str, Any]) -> ChangeOrderRecord:
        """Create the pending change order of a quote, or replace its items."""
        logger.info(
            f"[STORE] Saving change order {payload.get('change_order_number')} "
            f"for quote {payload.get('quote_id')} ({len(payload.get('items') or [])} items)"
        )
        data = self._request('POST', '/change-orders', payload=payload)
        return ChangeOrderRecord.from_dict(data)

    def accept_change_order(self, change_order_id: str, payload: Dict[str, Any]) -> ChangeOrderRecord:
        data = self._request('PATCH', f'/change-orders/{change_order_id}/accept', payload=payload)
        return ChangeOrderRecord.from_dict(data)

    def delete_change_order(self, change_order_id: str) -> None:
        self._request('DELETE', f'/change-orders/{change_order_id}')

    # ------------------------------------------------------------------
    # Invoices and catalog (cached)
    # ------------------------------------------------------------------

    def get_invoice_by_quote_id(self, quote_id: str) -> Optional[InvoiceRecord]:
        """Return the invoice generated for a quote, or None if there is none yet."""
        def load():
            invoices = self._request('GET', '/invoices', params={'quote_id': quote_id})
            if isinstance(invoices, list) and invoices:
                return invoices[0]
            return None

        if self.cache is not None:
            data = self.cache.quote_invoice(quote_id, load)
        else:
            data = load()
        return InvoiceRecord.from_dict(data) if data else None

    def invalidate_invoice(self, quote_id: str) -> None:
        """Drop cached invoice data so the next read returns the store's balance."""
        if self.cache is not None:
            self.cache.forget_quote_invoice(quote_id)

    def list_product_templates(self, company_id: str) -> List[ProductTemplate]:
        def load():
            return self._request('GET', '/product-templates', params={'companyId': company_id}) or []

        if self.cache is not None:
            data = self.cache.company_templates(company_id, load)
        else:
            data = load()
        return [ProductTemplate.from_dict(item) for item in data]
