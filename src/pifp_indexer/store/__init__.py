"""Durable event log and cursor bookmark (SQLite)."""

from .cursor import CursorStore
from .db import connect, create_schema, open_store, transaction
from .events import AppendResult, EventStore

__all__ = [
    "AppendResult",
    "CursorStore",
    "EventStore",
    "connect",
    "create_schema",
    "open_store",
    "transaction",
]
