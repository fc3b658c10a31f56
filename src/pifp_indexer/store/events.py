from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Sequence

from ..errors import DuplicateEventError, StorageError
from ..models import Event, EventKind, EventRecord
from .db import transaction

_COLUMNS = "id, event_type, project_id, actor, amount, ledger, timestamp, contract_id, tx_hash, created_at"


@dataclass(frozen=True)
class AppendResult:
    inserted: int
    duplicates: int


def _row_to_record(row: sqlite3.Row) -> EventRecord:
    return EventRecord(
        id=int(row["id"]),
        event_type=row["event_type"],
        project_id=row["project_id"],
        actor=row["actor"],
        amount=row["amount"],
        ledger=int(row["ledger"]),
        timestamp=int(row["timestamp"]),
        contract_id=row["contract_id"],
        tx_hash=row["tx_hash"],
        created_at=int(row["created_at"]),
    )


def _type_value(event_type: "EventKind | str") -> str:
    if isinstance(event_type, EventKind):
        return event_type.value
    return str(event_type)


def _params(ev: Event) -> tuple:
    return (
        ev.event_type.value,
        ev.project_id,
        ev.actor,
        ev.amount,
        ev.ledger,
        ev.timestamp,
        ev.contract_id,
        ev.tx_hash,
    )


class EventStore:
    """Append-only log of decoded contract events.

    Reads are lazy and ordered by the local surrogate id, which follows
    ledger order because ingestion is sequential.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def append(self, events: Sequence[Event]) -> int:
        """Append all events or none.

        Raises:
            DuplicateEventError: if any event collides with a stored one (or
                another in the batch); nothing from the batch is kept.
        """
        if not events:
            return 0
        try:
            with transaction(self.conn):
                self.conn.executemany(
                    """
                    INSERT INTO events(event_type, project_id, actor, amount, ledger, timestamp, contract_id, tx_hash)
                    VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [_params(ev) for ev in events],
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateEventError(f"Batch rejected, duplicate event: {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"Failed to append {len(events)} event(s): {e}") from e
        return len(events)

    def exists(self, event: Event) -> bool:
        row = self.conn.execute(
            """
            SELECT 1 FROM events
            WHERE contract_id = ? AND COALESCE(tx_hash, '') = ? AND event_type = ? AND ledger = ?
            LIMIT 1
            """,
            event.dedupe_key,
        ).fetchone()
        return row is not None

    def filter_new(self, events: Iterable[Event]) -> list[Event]:
        """Drop events already stored, and repeats within `events`."""
        seen: set[tuple[str, str, str, int]] = set()
        fresh: list[Event] = []
        for ev in events:
            key = ev.dedupe_key
            if key in seen:
                continue
            seen.add(key)
            if self.exists(ev):
                continue
            fresh.append(ev)
        return fresh

    def append_new(self, events: Sequence[Event]) -> AppendResult:
        with transaction(self.conn):
            fresh = self.filter_new(events)
            inserted = self.append(fresh)
        return AppendResult(inserted=inserted, duplicates=len(events) - inserted)

    def _iter(self, where: str, params: tuple, limit: Optional[int]) -> Iterator[EventRecord]:
        sql = f"SELECT {_COLUMNS} FROM events {where} ORDER BY id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params = params + (int(limit),)
        for row in self.conn.execute(sql, params):
            yield _row_to_record(row)

    def query_by_project(self, project_id: str, *, limit: Optional[int] = None) -> Iterator[EventRecord]:
        return self._iter("WHERE project_id = ?", (project_id,), limit)

    def query_by_type(self, event_type: str, *, limit: Optional[int] = None) -> Iterator[EventRecord]:
        return self._iter("WHERE event_type = ?", (_type_value(event_type),), limit)

    def query_by_ledger_range(self, lo: int, hi: int, *, limit: Optional[int] = None) -> Iterator[EventRecord]:
        """Events with `lo <= ledger <= hi`."""
        return self._iter("WHERE ledger BETWEEN ? AND ?", (int(lo), int(hi)), limit)

    def query(
        self,
        *,
        project_id: Optional[str] = None,
        event_type: Optional[str] = None,
        from_ledger: Optional[int] = None,
        to_ledger: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Iterator[EventRecord]:
        clauses: list[str] = []
        params: list = []
        if project_id is not None:
            clauses.append("project_id = ?")
            params.append(project_id)
        if event_type is not None:
            clauses.append("event_type = ?")
            params.append(_type_value(event_type))
        if from_ledger is not None:
            clauses.append("ledger >= ?")
            params.append(int(from_ledger))
        if to_ledger is not None:
            clauses.append("ledger <= ?")
            params.append(int(to_ledger))
        where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
        return self._iter(where, tuple(params), limit)

    def count(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) AS c FROM events").fetchone()
        return int(row["c"])

    def count_by_type(self) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT event_type, COUNT(*) AS c FROM events GROUP BY event_type ORDER BY event_type"
        ).fetchall()
        return {r["event_type"]: int(r["c"]) for r in rows}
