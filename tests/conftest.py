"""Pytest fixtures for the PIFP indexer tests."""

import json
from typing import Any, Optional

import pytest

from pifp_indexer.models import Batch
from pifp_indexer.store import open_store

CONTRACT = "CONTRACT1"


def make_raw_event(
    symbol: str = "funded",
    ledger: Any = 100,
    project: Optional[str] = "42",
    tx_hash: Optional[str] = "TX1",
    value: Any = None,
    closed_at: Optional[str] = "2024-01-01T00:00:00Z",
    contract_id: Optional[str] = CONTRACT,
) -> dict:
    """Build a raw `getEvents` record the way the Soroban RPC returns it."""
    topic = [json.dumps({"type": "symbol", "value": symbol})]
    if project is not None:
        topic.append(json.dumps({"type": "u64", "value": project}))
    raw = {
        "topic": topic,
        "value": value if value is not None else {"donator": "GABC123", "amount": "5000"},
        "ledger": ledger,
        "ledgerClosedAt": closed_at,
        "inSuccessfulContractCall": True,
    }
    if contract_id is not None:
        raw["contractId"] = contract_id
    if tx_hash is not None:
        raw["txHash"] = tx_hash
    return raw


class FakeFetcher:
    """Scripted stand-in for LedgerFetcher.

    Each queued item is a Batch to return or an exception to raise; once the
    script runs out every call returns an empty batch.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.calls: list[tuple[int, Optional[str], int]] = []

    def queue(self, *items) -> None:
        self.script.extend(items)

    def fetch_next(self, after_ledger: int, after_cursor: Optional[str], max_batch: int) -> Batch:
        self.calls.append((after_ledger, after_cursor, max_batch))
        if not self.script:
            return Batch()
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def raw_event():
    """Factory for raw RPC event payloads."""
    return make_raw_event


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "state" / "events.sqlite"


@pytest.fixture
def conn(db_path):
    """Open, schema-initialised store connection."""
    c = open_store(db_path)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def make_fetcher():
    """Factory for scripted fetchers: make_fetcher(batch_or_exc, ...)."""
    return FakeFetcher
