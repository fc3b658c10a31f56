from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


def int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


@dataclass(frozen=True)
class EventsPage:
    """One `getEvents` response page."""

    events: list[dict[str, Any]]
    cursor: Optional[str]
    latest_ledger: Optional[int]


@dataclass(frozen=True)
class Batch:
    """Raw payloads strictly following a stored position, plus the new resume token."""

    events: list[dict[str, Any]] = field(default_factory=list)
    cursor: Optional[str] = None
    latest_ledger: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.events

    @property
    def highest_ledger(self) -> Optional[int]:
        ledgers = [
            n for n in (int_or_none(e.get("ledger")) for e in self.events if isinstance(e, dict)) if n is not None
        ]
        return max(ledgers) if ledgers else None
