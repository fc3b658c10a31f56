"""Indexing loop: fetch, decode, dedupe, then persist events and advance the cursor atomically."""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_when_event_set, wait_exponential

from .config import BackoffConfig, IndexerConfig
from .decoder import decode_events
from .errors import ConfigError, DuplicateEventError, IndexerError, StorageError, UnavailableError
from .rpc import LedgerFetcher, SorobanRpcClient
from .store import CursorStore, EventStore, transaction

logger = logging.getLogger(__name__)


class IndexerPhase(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DECODING = "decoding"
    COMMITTING = "committing"
    BACKOFF = "backoff"
    HALTED = "halted"
    STOPPED = "stopped"


@dataclass(frozen=True)
class IterationSummary:
    from_ledger: int
    to_ledger: int
    fetched: int
    decoded: int
    malformed: int
    duplicates: int
    stored: int
    latest_ledger: Optional[int] = None

    @property
    def caught_up(self) -> bool:
        return self.fetched == 0

    @property
    def lag(self) -> Optional[int]:
        """Ledgers between the committed position and the upstream tip, if known."""
        if self.latest_ledger is None:
            return None
        return max(self.latest_ledger - self.to_ledger, 0)


@dataclass
class IndexerStats:
    iterations: int = 0
    batches_committed: int = 0
    events_stored: int = 0
    malformed_skipped: int = 0
    duplicates_skipped: int = 0
    backoffs: int = 0


class Indexer:
    """Single-writer commit coordinator.

    Owns the store connection for writing. Every batch is committed in one
    transaction together with the cursor advance, so a crash leaves either
    both or neither. `stop()` is honoured between iterations only.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        fetcher: LedgerFetcher,
        *,
        contract_id: Optional[str] = None,
        max_batch_size: int = 100,
        poll_interval_seconds: float = 5.0,
        backoff: Optional[BackoffConfig] = None,
    ):
        self.conn = conn
        self.fetcher = fetcher
        self.contract_id = contract_id
        self.max_batch_size = max_batch_size
        self.poll_interval_seconds = poll_interval_seconds
        self.backoff = backoff or BackoffConfig()
        self.events = EventStore(conn)
        self.cursor = CursorStore(conn)
        self.stats = IndexerStats()
        self.phase = IndexerPhase.IDLE
        self._stop = threading.Event()

    @classmethod
    def from_config(cls, cfg: IndexerConfig, conn: sqlite3.Connection) -> "Indexer":
        if not cfg.contract_id:
            raise ConfigError("CONTRACT_ID environment variable is required")
        client = SorobanRpcClient(cfg.rpc_url, timeout=cfg.fetch_timeout_seconds)
        fetcher = LedgerFetcher(client, cfg.contract_id, start_ledger=cfg.start_ledger)
        return cls(
            conn,
            fetcher,
            contract_id=cfg.contract_id,
            max_batch_size=cfg.max_batch_size,
            poll_interval_seconds=cfg.poll_interval_seconds,
            backoff=cfg.backoff,
        )

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def _sleep(self, seconds: float) -> None:
        if seconds > 0:
            self._stop.wait(seconds)

    def run_once(self) -> IterationSummary:
        """One fetch/decode/commit cycle.

        Raises:
            UnavailableError: upstream is temporarily unreachable; nothing changed
            StorageError: the store could not be read or the commit was rolled back; nothing changed
            InvalidCursorError, InvalidProgressError, RpcError: fatal
        """
        self.stats.iterations += 1
        try:
            state = self.cursor.read()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read cursor: {e}") from e

        self.phase = IndexerPhase.FETCHING
        batch = self.fetcher.fetch_next(state.last_ledger, state.last_cursor, self.max_batch_size)
        if batch.is_empty:
            self.phase = IndexerPhase.IDLE
            logger.debug(f"Caught up at ledger {state.last_ledger}")
            return IterationSummary(
                state.last_ledger, state.last_ledger, 0, 0, 0, 0, 0, latest_ledger=batch.latest_ledger
            )

        self.phase = IndexerPhase.DECODING
        decoded = decode_events(batch.events, self.contract_id)
        highest = batch.highest_ledger
        new_ledger = highest if highest is not None else state.last_ledger

        self.phase = IndexerPhase.COMMITTING
        try:
            with transaction(self.conn):
                fresh = self.events.filter_new(decoded.events)
                stored = self.events.append(fresh)
                self.cursor.advance(new_ledger, batch.cursor)
        except DuplicateEventError as e:
            raise StorageError(f"Commit rolled back: {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"Commit rolled back: {e}") from e
        finally:
            self.phase = IndexerPhase.IDLE

        duplicates = len(decoded.events) - stored
        self.stats.batches_committed += 1
        self.stats.events_stored += stored
        self.stats.malformed_skipped += decoded.malformed
        self.stats.duplicates_skipped += duplicates

        summary = IterationSummary(
            from_ledger=state.last_ledger,
            to_ledger=new_ledger,
            fetched=len(batch.events),
            decoded=len(decoded.events),
            malformed=decoded.malformed,
            duplicates=duplicates,
            stored=stored,
            latest_ledger=batch.latest_ledger,
        )
        behind = f", {summary.lag} behind tip" if summary.lag is not None else ""
        logger.info(
            f"Ledger {summary.from_ledger} -> {summary.to_ledger}: {summary.fetched} fetched, "
            f"{summary.stored} stored, {summary.duplicates} duplicate(s), {summary.malformed} malformed{behind}"
        )
        return summary

    def _attempt(self) -> Optional[IterationSummary]:
        if self._stop.is_set():
            return None
        return self.run_once()

    def _count_backoff(self, retry_state: RetryCallState) -> None:
        self.phase = IndexerPhase.BACKOFF
        self.stats.backoffs += 1

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        logger.warning(
            f"{retry_state.outcome.exception()} "
            f"(retry {retry_state.attempt_number} in {retry_state.next_action.sleep:.1f}s)"
        )

    def run(self, *, max_iterations: Optional[int] = None) -> IndexerStats:
        """Loop until stopped (or `max_iterations` cycles, for tests and `--once`).

        Transient failures back off exponentially and retry from step 1 for
        as long as the loop runs. Fatal errors are logged at CRITICAL and
        re-raised.
        """
        logger.info(f"Indexer starting (contract: {self.contract_id})")
        first = self.stats.iterations

        def out_of_passes(retry_state: Optional[RetryCallState] = None) -> bool:
            return max_iterations is not None and self.stats.iterations - first >= max_iterations

        while not self._stop.is_set() and not out_of_passes():
            retrying = Retrying(
                retry=retry_if_exception_type((UnavailableError, StorageError)),
                wait=wait_exponential(
                    multiplier=self.backoff.initial_seconds,
                    exp_base=self.backoff.multiplier,
                    max=self.backoff.max_seconds,
                ),
                stop=stop_when_event_set(self._stop) | out_of_passes,
                sleep=self._sleep,
                after=self._count_backoff,
                before_sleep=self._log_backoff,
                reraise=True,
            )
            try:
                summary = retrying(self._attempt)
            except (UnavailableError, StorageError) as e:
                self.phase = IndexerPhase.IDLE
                logger.warning(f"{e} (not retried: loop is ending)")
                break
            except IndexerError as e:
                self.phase = IndexerPhase.HALTED
                logger.critical(f"Indexing halted: {type(e).__name__}: {e}")
                raise

            if summary is None:
                break
            if summary.caught_up and not out_of_passes():
                self._sleep(self.poll_interval_seconds)

        self.phase = IndexerPhase.STOPPED
        logger.info(f"Indexer stopped after {self.stats.iterations - first} iteration(s)")
        return self.stats
