"""Draft Registry - open quote editors, one workspace per (owner, quote)."""
import logging
import threading
from typing import Any, Dict, Optional, Tuple

from fieldops.exceptions import NotFoundError, PersistenceError
from fieldops.models import QuoteRecord
from fieldops.services.change_order_draft_service import ChangeOrderDraftManager
from fieldops.services.change_order_service import AcceptanceCoordinator, ChangeOrderBoard
from fieldops.services.notifier import Notifier, RecordingNotifier
from fieldops.services.quote_draft_service import (
    DEFAULT_CLIENT_MESSAGE, DEFAULT_DISCLAIMER, QuoteCreator, QuoteDraftStore
)
from fieldops.services.store_client import StoreClient

logger = logging.getLogger(__name__)


class DraftWorkspace:
    """Everything one quote view owns: the draft, its change orders and the message channel."""

    def __init__(
        self,
        store: QuoteDraftStore,
        board: ChangeOrderBoard,
        manager: ChangeOrderDraftManager,
        notifier: RecordingNotifier
    ):
        self.store = store
        self.board = board
        self.manager = manager
        self.notifier = notifier

    @property
    def quote_id(self) -> Optional[str]:
        return self.store.quote_id

    def sync_change_orders(self) -> None:
        """Push the board's list into the draft manager, following the quote's identity."""
        self.board.quote_id = self.store.quote_id
        self.manager.quote_id = self.store.quote_id
        self.manager.quote_number = self.store.quote_number
        self.manager.sync(self.board.change_orders, self.board.quote_invoice)

    def reload_change_orders(self) -> None:
        self.board.load()
        self.sync_change_orders()

    def to_state(self, tax_rate=0) -> Dict[str, Any]:
        return {
            'quote': self.store.to_state(tax_rate),
            'change_orders': self.board.to_state(tax_rate),
            'change_order_draft': self.manager.to_state(tax_rate),
            'notice': self.notifier.to_dict(),
        }


class DraftRegistry:
    """
    In-process map of open workspaces.

    Flask may serve requests on several threads, so the map is guarded by a
    lock; each workspace is owned by a single browser session.
    """

    def __init__(
        self,
        client: StoreClient,
        default_client_message: str = DEFAULT_CLIENT_MESSAGE,
        default_disclaimer: str = DEFAULT_DISCLAIMER
    ):
        self.client = client
        self.coordinator = AcceptanceCoordinator(client)
        self.default_client_message = default_client_message
        self.default_disclaimer = default_disclaimer
        self._workspaces: Dict[Tuple[str, str], DraftWorkspace] = {}
        self._creators: Dict[Tuple[str, str], QuoteCreator] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Dict[str, Any], client: StoreClient) -> 'DraftRegistry':
        return cls(
            client,
            default_client_message=config.get('QUOTE_DEFAULT_CLIENT_MESSAGE', DEFAULT_CLIENT_MESSAGE),
            default_disclaimer=config.get('QUOTE_DEFAULT_DISCLAIMER', DEFAULT_DISCLAIMER),
        )

    def creator_for(self, owner: str, deal_id: str, notifier: Optional[Notifier] = None) -> QuoteCreator:
        """The creator guarding quote creation for one session and deal."""
        with self._lock:
            creator = self._creators.get((owner, deal_id))
            if creator is None:
                creator = QuoteCreator(
                    self.client,
                    notifier=notifier,
                    default_client_message=self.default_client_message,
                    default_disclaimer=self.default_disclaimer,
                )
                self._creators[(owner, deal_id)] = creator
            return creator

    def create(self, owner: str, company_id: str, deal_id: str, is_archived: bool = False) -> Optional[DraftWorkspace]:
        """
        Create a quote in the store, then open it. None if a creation is already running.

        Raises:
            PersistenceError: If the store rejected the new quote
        """
        notifier = RecordingNotifier()
        creator = self.creator_for(owner, deal_id, notifier)

        try:
            quote = creator.create(company_id, deal_id)
        finally:
            if not creator.is_creating:
                with self._lock:
                    if self._creators.get((owner, deal_id)) is creator:
                        del self._creators[(owner, deal_id)]

        if quote is None:
            if notifier.last_error:
                raise PersistenceError(notifier.last_error)
            return None
        return self.open(owner, company_id, deal_id, quote=quote, is_archived=is_archived, notifier=notifier)

    def open(
        self,
        owner: str,
        company_id: str,
        deal_id: str,
        quote_id: Optional[str] = None,
        quote: Optional[QuoteRecord] = None,
        is_archived: bool = False,
        notifier: Optional[RecordingNotifier] = None
    ) -> DraftWorkspace:
        """
        Build a workspace for an existing quote and register it.

        Raises:
            PersistenceError: If the quote or the template catalog cannot be loaded
        """
        if quote is None:
            if not quote_id:
                raise NotFoundError('Quote id is required to open a draft')
            quote = self.client.get_quote(quote_id)

        notifier = notifier or RecordingNotifier()
        templates = self.client.list_product_templates(company_id)

        store = QuoteDraftStore(
            self.client,
            company_id=company_id,
            deal_id=deal_id,
            initial_quote=quote,
            default_quote_number=quote.quote_number,
            product_templates=templates,
            is_archived=is_archived,
            notifier=notifier,
            default_client_message=self.default_client_message,
            default_disclaimer=self.default_disclaimer,
        )
        board = ChangeOrderBoard(self.client, self.coordinator, deal_id, quote_id=quote.id, notifier=notifier)
        manager = ChangeOrderDraftManager(
            self.client,
            self.coordinator,
            company_id=company_id,
            deal_id=deal_id,
            quote_id=quote.id,
            quote_number=quote.quote_number,
            notifier=notifier,
            on_saved=board.apply_saved,
            on_removed=board.remove,
        )
        workspace = DraftWorkspace(store, board, manager, notifier)
        workspace.reload_change_orders()

        with self._lock:
            self._workspaces[(owner, quote.id)] = workspace

        logger.info(f"[DRAFTS] Opened quote {quote.id} for {owner}")
        return workspace

    def get(self, owner: str, quote_id: str) -> DraftWorkspace:
        with self._lock:
            workspace = self._workspaces.get((owner, quote_id))
        if workspace is None:
            raise NotFoundError(f'Quote draft {quote_id} is not open')
        return workspace

    def close(self, owner: str, quote_id: str) -> None:
        with self._lock:
            self._workspaces.pop((owner, quote_id), None)

    def __len__(self):
        with self._lock:
            return len(self._workspaces)
