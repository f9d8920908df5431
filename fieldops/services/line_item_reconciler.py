"""Reconciliation of server line items with the editor's client identities."""
from typing import Dict, List, Optional, Sequence, Set

from fieldops.models import ClientId, LineItem, LineItemRecord, create_client_id


def reconcile_line_items(saved: Sequence[LineItemRecord], previous: Sequence[LineItem]) -> List[LineItem]:
    """
    Map a freshly saved (or loaded) line-item list back onto editor items.

    Server values are authoritative for id, name, description and price.
    Each item keeps the client id it had before the round-trip:

    1. when its server id matches a previously known id;
    2. otherwise, when the previous item at the same position had never been
       persisted (the item was just created by this save);
    3. otherwise it gets a new client id.

    A client id is never handed out twice, so reordering by the server
    cannot make two rows share one identity.
    """
    by_server_id: Dict[str, LineItem] = {
        item.id: item for item in previous if item.id is not None
    }
    used: Set[ClientId] = set()
    reconciled: List[LineItem] = []

    for index, record in enumerate(saved):
        match: Optional[LineItem] = None

        if record.id is not None:
            candidate = by_server_id.get(record.id)
            if candidate is not None and candidate.client_id not in used:
                match = candidate

        if match is None and index < len(previous):
            positional = previous[index]
            if not positional.is_persisted and positional.client_id not in used:
                match = positional

        client_id = match.client_id if match is not None else create_client_id()
        used.add(client_id)

        item = LineItem.from_record(record, client_id=client_id)
        # A zero-priced discount row stays a discount row
        if match is not None and match.is_discount and not item.is_discount:
            item = item.with_changes(is_discount=True)
        reconciled.append(item)

    return reconciled
