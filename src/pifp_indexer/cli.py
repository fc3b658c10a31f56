"""Typer-based CLI for the PIFP event indexer."""

import logging
import signal
import sqlite3
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .api import create_app
from .config import IndexerConfig
from .errors import IndexerError
from .indexer import Indexer
from .store import CursorStore, EventStore, open_store

app = typer.Typer(
    name="pifp-indexer",
    help="PIFP indexer - persist Soroban contract events to SQLite, resumably",
    add_completion=False,
)

console = Console()


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=debug)],
        force=True,
    )
    # requests/urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _load_config(
    database: Optional[str],
    contract_id: Optional[str] = None,
    *,
    require_contract: bool = False,
) -> IndexerConfig:
    try:
        return IndexerConfig.from_env(
            cli_database=database,
            cli_contract_id=contract_id,
            require_contract=require_contract,
        )
    except IndexerError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)


def _open(cfg: IndexerConfig) -> sqlite3.Connection:
    try:
        return open_store(cfg.database_path)
    except IndexerError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)


DatabaseOption = typer.Option(
    None,
    "--database",
    "-d",
    help="SQLite database path or sqlite: URL (default: DATABASE_URL env or ./pifp_events.db)",
)


@app.command("init-db")
def init_db(database: Optional[str] = DatabaseOption):
    """Create the schema and seed the cursor row. Idempotent."""
    cfg = _load_config(database)
    conn = _open(cfg)
    try:
        state = CursorStore(conn).read()
    finally:
        conn.close()
    console.print(f"[green]+[/green] Store ready: {cfg.database_path}")
    console.print(f"[dim]Cursor at ledger {state.last_ledger}[/dim]")


@app.command()
def run(
    database: Optional[str] = DatabaseOption,
    contract_id: Optional[str] = typer.Option(None, "--contract", "-c", help="Contract id (default: CONTRACT_ID env)"),
    once: bool = typer.Option(False, "--once", help="Run a single fetch/commit cycle and exit"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Run the indexing loop until interrupted."""
    _setup_logging(debug)
    cfg = _load_config(database, contract_id, require_contract=True)

    conn = _open(cfg)

    indexer = Indexer.from_config(cfg, conn)

    def _request_stop(signum, frame):
        console.print("[yellow]Stop requested; finishing current iteration...[/yellow]")
        indexer.stop()

    previous_int = signal.signal(signal.SIGINT, _request_stop)
    previous_term = signal.signal(signal.SIGTERM, _request_stop)
    try:
        stats = indexer.run(max_iterations=1 if once else None)
    except IndexerError as e:
        console.print(f"[bold red]Indexing halted:[/bold red] {e}")
        console.print("[yellow]Operator action required (see `pifp-indexer reseed --help`)[/yellow]")
        raise typer.Exit(code=2)
    finally:
        signal.signal(signal.SIGINT, previous_int)
        signal.signal(signal.SIGTERM, previous_term)
        conn.close()

    console.print(
        f"[bold green]Summary:[/bold green] {stats.events_stored} stored, "
        f"{stats.duplicates_skipped} duplicate(s), {stats.malformed_skipped} malformed, "
        f"{stats.backoffs} backoff(s)"
    )


@app.command()
def status(database: Optional[str] = DatabaseOption):
    """Show indexing progress and stored event counts."""
    cfg = _load_config(database)
    conn = _open(cfg)
    try:
        state = CursorStore(conn).read()
        store = EventStore(conn)
        total = store.count()
        by_type = store.count_by_type()
    finally:
        conn.close()

    console.print(f"[bold]Store:[/bold]        {cfg.database_path}")
    console.print(f"[bold]Last ledger:[/bold]  {state.last_ledger}")
    console.print(f"[bold]Resume token:[/bold] {state.last_cursor or '-'}")
    console.print(f"[bold]Events:[/bold]       {total}")

    if by_type:
        table = Table(title="Events by type")
        table.add_column("Type", style="magenta")
        table.add_column("Count", justify="right")
        for event_type, n in by_type.items():
            table.add_row(event_type, str(n))
        console.print(table)


@app.command()
def events(
    database: Optional[str] = DatabaseOption,
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Filter by project id"),
    event_type: Optional[str] = typer.Option(None, "--type", "-t", help="Filter by event type"),
    from_ledger: Optional[int] = typer.Option(None, "--from-ledger", help="Lowest ledger (inclusive)"),
    to_ledger: Optional[int] = typer.Option(None, "--to-ledger", help="Highest ledger (inclusive)"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum rows to show"),
):
    """List stored events in ingestion order."""
    cfg = _load_config(database)
    conn = _open(cfg)
    try:
        rows = list(
            EventStore(conn).query(
                project_id=project,
                event_type=event_type,
                from_ledger=from_ledger,
                to_ledger=to_ledger,
                limit=limit,
            )
        )
    finally:
        conn.close()

    if not rows:
        console.print("[dim]No matching events[/dim]")
        return

    table = Table(title=f"{len(rows)} event(s)")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Ledger", justify="right")
    table.add_column("Type", style="magenta")
    table.add_column("Project")
    table.add_column("Actor")
    table.add_column("Amount", justify="right")
    table.add_column("Tx", style="dim")
    for ev in rows:
        table.add_row(
            str(ev.id),
            str(ev.ledger),
            ev.event_type.value,
            ev.project_id or "-",
            ev.actor or "-",
            ev.amount or "-",
            (ev.tx_hash or "-")[:12],
        )
    console.print(table)


@app.command()
def reseed(
    ledger: int = typer.Argument(..., help="Ledger to resume after (must not be below the current one)"),
    database: Optional[str] = DatabaseOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Re-seed the cursor after an invalid-cursor halt, accepting a gap."""
    cfg = _load_config(database)
    conn = _open(cfg)
    try:
        store = CursorStore(conn)
        current = store.read()
        if not yes:
            typer.confirm(
                f"Move cursor from ledger {current.last_ledger} to {ledger} and drop the resume token? "
                "Events in between will never be indexed",
                abort=True,
            )
        state = store.reseed(ledger)
    except IndexerError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    finally:
        conn.close()
    console.print(f"[green]Cursor re-seeded to ledger {state.last_ledger}[/green]")


@app.command()
def serve(
    database: Optional[str] = DatabaseOption,
    host: Optional[str] = typer.Option(None, "--host", help="Bind host (default: API_HOST env or 0.0.0.0)"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (default: API_PORT env or 3001)"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Serve the read-only HTTP API."""
    _setup_logging(debug)
    cfg = _load_config(database)
    _open(cfg).close()

    bind_host = host or cfg.api_host
    bind_port = port or cfg.api_port
    console.print(f"[green]API listening on http://{bind_host}:{bind_port}[/green]")
    uvicorn.run(create_app(cfg.database_path), host=bind_host, port=bind_port, log_level="debug" if debug else "info")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
