from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..errors import StorageError

CURSOR_ROW_ID = 1


def connect(db_path: Path, *, read_only: bool = False) -> sqlite3.Connection:
    """Open the store with explicit transaction control.

    `isolation_level=None` disables the sqlite3 module's implicit BEGINs so
    that `transaction()` is the only transaction boundary.

    With `read_only` the file is opened in SQLite's `mode=ro`: it must already
    exist and any write fails.
    """
    if read_only:
        uri = f"{Path(db_path).resolve().as_uri()}?mode=ro"
        conn = sqlite3.connect(uri, uri=True, isolation_level=None, check_same_thread=False)
    else:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path), isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000")
    if not read_only:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = FULL")
    return conn


def create_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS events(
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          event_type TEXT NOT NULL,
          project_id TEXT,
          actor TEXT,
          amount TEXT,
          ledger INTEGER NOT NULL,
          timestamp INTEGER NOT NULL,
          contract_id TEXT NOT NULL,
          tx_hash TEXT,
          created_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now'))
        );

        CREATE INDEX IF NOT EXISTS idx_events_project_id ON events(project_id);
        CREATE INDEX IF NOT EXISTS idx_events_event_type ON events(event_type);
        CREATE INDEX IF NOT EXISTS idx_events_ledger ON events(ledger);

        -- NULL tx_hash values would never collide in a plain UNIQUE index.
        CREATE UNIQUE INDEX IF NOT EXISTS uq_events_dedupe
          ON events(contract_id, COALESCE(tx_hash, ''), event_type, ledger);

        CREATE TABLE IF NOT EXISTS indexer_cursor(
          id INTEGER PRIMARY KEY CHECK (id = 1),
          last_ledger INTEGER NOT NULL DEFAULT 0,
          last_cursor TEXT
        );

        INSERT OR IGNORE INTO indexer_cursor(id, last_ledger, last_cursor) VALUES(1, 0, NULL);
        """
    )


def open_store(db_path: Path) -> sqlite3.Connection:
    conn = connect(db_path)
    try:
        create_schema(conn)
    except sqlite3.Error as e:
        conn.close()
        raise StorageError(f"Failed to initialise event store at {db_path}: {e}") from e
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Scoped unit of work: commit on clean exit, roll back on any exception.

    Joins the enclosing transaction when one is already open, so the outer
    scope alone decides commit or rollback.
    """
    if conn.in_transaction:
        yield conn
        return

    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as e:
        raise StorageError(f"Could not begin transaction: {e}") from e

    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    try:
        conn.commit()
    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.rollback()
        raise StorageError(f"Commit failed: {e}") from e
