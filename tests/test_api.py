import pytest
from fastapi.testclient import TestClient

from pifp_indexer import __version__
from pifp_indexer.api import create_app
from pifp_indexer.decoder import decode_event
from pifp_indexer.store import CursorStore, EventStore, transaction

from conftest import make_raw_event


@pytest.fixture
def client(conn, db_path):
    events = [
        decode_event(make_raw_event("created", ledger=10, project="1", tx_hash="A", value={"creator": "GC", "goal": "100"})),
        decode_event(make_raw_event("funded", ledger=11, project="1", tx_hash="B")),
        decode_event(make_raw_event("funded", ledger=12, project="2", tx_hash="C")),
        decode_event(make_raw_event("paused", ledger=13, project=None, tx_hash="D", value="GADMIN")),
    ]
    with transaction(conn):
        EventStore(conn).append(events)
        CursorStore(conn).advance(13, "tok-13")
    return TestClient(create_app(db_path))


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": __version__}


def test_events_lists_in_ingestion_order(client):
    body = client.get("/events").json()
    assert body["count"] == 4
    assert [e["ledger"] for e in body["events"]] == [10, 11, 12, 13]
    assert body["events"][0]["event_type"] == "project_created"
    assert body["events"][0]["amount"] == "100"


def test_events_filters(client):
    body = client.get("/events", params={"event_type": "project_funded", "from_ledger": 12}).json()
    assert [e["tx_hash"] for e in body["events"]] == ["C"]

    body = client.get("/events", params={"to_ledger": 11, "limit": 1}).json()
    assert body["count"] == 1
    assert body["events"][0]["tx_hash"] == "A"


def test_events_rejects_unknown_type_and_bad_limit(client):
    assert client.get("/events", params={"event_type": "bogus"}).status_code == 422
    assert client.get("/events", params={"limit": 0}).status_code == 422


def test_project_events(client):
    body = client.get("/projects/1/events").json()
    assert body["project_id"] == "1"
    assert [e["event_type"] for e in body["events"]] == ["project_created", "project_funded"]

    assert client.get("/projects/999/events").json()["count"] == 0


def test_cursor(client):
    assert client.get("/cursor").json() == {"last_ledger": 13, "last_cursor": "tok-13"}


def test_missing_store_is_unavailable_and_not_created(tmp_path):
    missing = tmp_path / "missing.sqlite"
    client = TestClient(create_app(missing))

    assert client.get("/cursor").status_code == 503
    assert not missing.exists()


def test_missing_schema_is_server_error(tmp_path):
    empty = tmp_path / "empty.sqlite"
    empty.touch()
    client = TestClient(create_app(empty))
    assert client.get("/cursor").status_code == 500
