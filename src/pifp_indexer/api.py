"""Read-only HTTP API over the event store."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel

from . import __version__
from .models import EventKind, EventRecord
from .store import CursorStore, EventStore, connect

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str
    version: str


class EventsResponse(BaseModel):
    count: int
    events: list[EventRecord]


class ProjectEventsResponse(EventsResponse):
    project_id: str


class CursorResponse(BaseModel):
    last_ledger: int
    last_cursor: Optional[str]


def create_app(db_path: Path) -> FastAPI:
    """Build the API bound to the store at `db_path`.

    Each request gets its own connection; the API never writes.
    """
    app = FastAPI(title="PIFP event indexer", version=__version__)

    def get_conn() -> Iterator[sqlite3.Connection]:
        try:
            conn = connect(db_path, read_only=True)
        except sqlite3.Error as e:
            logger.error(f"Cannot open event store {db_path}: {e}")
            raise HTTPException(status_code=503, detail="event store unavailable")
        try:
            yield conn
        finally:
            conn.close()

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    @app.get("/events", response_model=EventsResponse)
    def get_events(
        event_type: Optional[EventKind] = None,
        from_ledger: Optional[int] = Query(default=None, ge=0),
        to_ledger: Optional[int] = Query(default=None, ge=0),
        limit: int = Query(default=100, ge=1, le=1000),
        conn: sqlite3.Connection = Depends(get_conn),
    ) -> EventsResponse:
        try:
            events = list(
                EventStore(conn).query(
                    event_type=event_type,
                    from_ledger=from_ledger,
                    to_ledger=to_ledger,
                    limit=limit,
                )
            )
        except sqlite3.Error as e:
            logger.error(f"Event query failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return EventsResponse(count=len(events), events=events)

    @app.get("/projects/{project_id}/events", response_model=ProjectEventsResponse)
    def get_project_events(
        project_id: str,
        conn: sqlite3.Connection = Depends(get_conn),
    ) -> ProjectEventsResponse:
        try:
            events = list(EventStore(conn).query_by_project(project_id))
        except sqlite3.Error as e:
            logger.error(f"Project event query failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return ProjectEventsResponse(project_id=project_id, count=len(events), events=events)

    @app.get("/cursor", response_model=CursorResponse)
    def get_cursor(conn: sqlite3.Connection = Depends(get_conn)) -> CursorResponse:
        try:
            state = CursorStore(conn).read()
        except sqlite3.Error as e:
            logger.error(f"Cursor read failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return CursorResponse(last_ledger=state.last_ledger, last_cursor=state.last_cursor)

    return app
