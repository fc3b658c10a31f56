from __future__ import annotations

import logging
from typing import Optional

from ..models import Batch
from ..models.rpc import int_or_none
from .client import SorobanRpcClient

logger = logging.getLogger(__name__)


class LedgerFetcher:
    """Adapts the RPC client to "give me what follows this position".

    With a stored resume token the upstream paginates exactly; without one
    the scan restarts at the ledger after `after_ledger` (or the configured
    start ledger on a fresh store) and anything at or below `after_ledger`
    is dropped.
    """

    def __init__(self, client: SorobanRpcClient, contract_id: str, *, start_ledger: int = 0):
        self.client = client
        self.contract_id = contract_id
        self.start_ledger = start_ledger

    def fetch_next(self, after_ledger: int, after_cursor: Optional[str], max_batch: int) -> Batch:
        if after_cursor:
            page = self.client.get_events(self.contract_id, cursor=after_cursor, limit=max_batch)
            events = list(page.events)
        else:
            start = max(after_ledger + 1, self.start_ledger)
            page = self.client.get_events(self.contract_id, start_ledger=start, limit=max_batch)
            events = [e for e in page.events if not _at_or_before(e, after_ledger)]
            if len(events) != len(page.events):
                logger.debug(f"Dropped {len(page.events) - len(events)} event(s) at or before ledger {after_ledger}")

        if len(events) > max_batch:
            kept = _cut_at_ledger_boundary(events, max_batch)
            if kept is not None:
                # The page's token points past the dropped tail; resume by ledger instead.
                return Batch(events=kept, cursor=None, latest_ledger=page.latest_ledger)
            logger.warning(
                f"Page of {len(events)} events exceeds max batch {max_batch} within one ledger; keeping it whole"
            )
        return Batch(events=events, cursor=page.cursor, latest_ledger=page.latest_ledger)


def _cut_at_ledger_boundary(events: list, max_batch: int) -> Optional[list]:
    """Longest prefix of at most `max_batch` items that ends on a complete ledger."""
    first_dropped = int_or_none(events[max_batch].get("ledger")) if isinstance(events[max_batch], dict) else None
    kept = events[:max_batch]
    while kept and first_dropped is not None:
        last = kept[-1]
        if not isinstance(last, dict) or int_or_none(last.get("ledger")) != first_dropped:
            break
        kept.pop()
    return kept or None


def _at_or_before(raw: object, ledger: int) -> bool:
    if not isinstance(raw, dict):
        return False
    n = int_or_none(raw.get("ledger"))
    return n is not None and n <= ledger
