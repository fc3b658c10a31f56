from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from ..errors import InvalidProgressError, StorageError
from ..models import CursorState
from .db import CURSOR_ROW_ID, transaction

logger = logging.getLogger(__name__)


class CursorStore:
    """Accessor for the singleton `indexer_cursor` row."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def read(self) -> CursorState:
        row = self.conn.execute(
            "SELECT last_ledger, last_cursor FROM indexer_cursor WHERE id = ?", (CURSOR_ROW_ID,)
        ).fetchone()
        if row is None:
            # Schema not seeded; behave as the seed would.
            return CursorState(last_ledger=0, last_cursor=None)
        return CursorState(last_ledger=int(row["last_ledger"]), last_cursor=row["last_cursor"])

    def advance(self, new_ledger: int, new_cursor: Optional[str]) -> CursorState:
        """Move the bookmark forward inside the caller's transaction.

        Raises:
            RuntimeError: if called outside a transaction
            InvalidProgressError: if `new_ledger` is below the stored ledger
        """
        if not self.conn.in_transaction:
            raise RuntimeError("CursorStore.advance must run inside the commit transaction")

        current = self.read()
        if new_ledger < current.last_ledger:
            raise InvalidProgressError(current.last_ledger, new_ledger)

        self.conn.execute(
            "UPDATE indexer_cursor SET last_ledger = ?, last_cursor = ? WHERE id = ?",
            (int(new_ledger), new_cursor, CURSOR_ROW_ID),
        )
        return CursorState(last_ledger=int(new_ledger), last_cursor=new_cursor)

    def reseed(self, ledger: int) -> CursorState:
        """Operator re-seed after an invalid cursor: jump forward and drop the resume token."""
        try:
            with transaction(self.conn):
                state = self.advance(ledger, None)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to re-seed cursor: {e}") from e
        logger.warning(f"Cursor re-seeded to ledger {ledger}; resume token cleared")
        return state
