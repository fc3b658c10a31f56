import sqlite3

import pytest

from pifp_indexer.errors import InvalidProgressError
from pifp_indexer.store import CursorStore, open_store, transaction


def test_seeded_cursor_starts_at_genesis(conn):
    state = CursorStore(conn).read()
    assert state.last_ledger == 0
    assert state.last_cursor is None
    assert state.is_fresh


def test_cursor_table_is_a_singleton(conn):
    conn.executescript("INSERT OR IGNORE INTO indexer_cursor(id, last_ledger) VALUES(1, 0);")
    assert conn.execute("SELECT COUNT(*) AS c FROM indexer_cursor").fetchone()["c"] == 1
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("INSERT INTO indexer_cursor(id, last_ledger) VALUES(2, 0)")


def test_reopening_does_not_reset_progress(db_path):
    conn = open_store(db_path)
    with transaction(conn):
        CursorStore(conn).advance(50, "tok")
    conn.close()

    conn2 = open_store(db_path)
    try:
        state = CursorStore(conn2).read()
        assert (state.last_ledger, state.last_cursor) == (50, "tok")
    finally:
        conn2.close()


def test_advance_is_monotonic(conn):
    cursor = CursorStore(conn)
    seen = []
    for ledger in (10, 10, 12, 30):
        with transaction(conn):
            cursor.advance(ledger, f"c{ledger}")
        seen.append(cursor.read().last_ledger)
    assert seen == sorted(seen)


def test_regression_raises_and_leaves_state_unchanged(conn):
    cursor = CursorStore(conn)
    with transaction(conn):
        cursor.advance(102, "abc")

    with pytest.raises(InvalidProgressError) as exc_info:
        with transaction(conn):
            cursor.advance(101, "zzz")

    assert exc_info.value.current_ledger == 102
    assert exc_info.value.requested_ledger == 101
    state = cursor.read()
    assert (state.last_ledger, state.last_cursor) == (102, "abc")


def test_advance_requires_a_transaction(conn):
    with pytest.raises(RuntimeError, match="inside the commit transaction"):
        CursorStore(conn).advance(5, None)
    assert CursorStore(conn).read().last_ledger == 0


def test_reseed_moves_forward_and_clears_token(conn):
    cursor = CursorStore(conn)
    with transaction(conn):
        cursor.advance(100, "stale-token")

    state = cursor.reseed(5000)
    assert (state.last_ledger, state.last_cursor) == (5000, None)
    assert cursor.read() == state

    with pytest.raises(InvalidProgressError):
        cursor.reseed(10)
