"""Models for the PIFP event indexer."""

from .cursor import CursorState
from .event import Event, EventKind, EventRecord
from .rpc import Batch, EventsPage

__all__ = [
    "CursorState",
    "Event",
    "EventKind",
    "EventRecord",
    # RPC
    "Batch",
    "EventsPage",
]
