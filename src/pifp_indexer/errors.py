"""Error taxonomy for the PIFP event indexer."""

from __future__ import annotations


class IndexerError(Exception):
    """Base class for all indexer errors."""

    fatal: bool = False


class ConfigError(IndexerError):
    """Raised when configuration is missing or invalid."""

    fatal = True


class UnavailableError(IndexerError):
    """Transient upstream failure (network, timeout, rate limit). Retried with backoff."""


class InvalidCursorError(IndexerError):
    """The upstream rejected the stored resume position.

    Not retried automatically: the stored bookmark no longer matches the
    upstream's retention window and an operator has to re-seed.
    """

    fatal = True


class RpcError(IndexerError):
    """Non-retryable protocol error returned by the RPC endpoint."""

    fatal = True

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class MalformedEventError(IndexerError):
    """A single raw event payload could not be decoded.

    Recovered locally: the item is skipped and counted.
    """

    def __init__(self, message: str, raw: object = None):
        super().__init__(message)
        self.raw = raw


class InvalidProgressError(IndexerError):
    """An attempt was made to move the cursor backwards."""

    fatal = True

    def __init__(self, current_ledger: int, requested_ledger: int):
        super().__init__(
            f"Refusing to move cursor from ledger {current_ledger} back to {requested_ledger}"
        )
        self.current_ledger = current_ledger
        self.requested_ledger = requested_ledger


class DuplicateEventError(IndexerError):
    """A strict append hit the duplicate-suppression key."""


class StorageError(IndexerError):
    """The durable store failed; the enclosing transaction was rolled back."""
