"""Pydantic models for indexed PIFP contract events."""

import re
from enum import Enum

from pydantic import BaseModel, Field, field_validator

DECIMAL_RE = re.compile(r"^-?\d+(\.\d+)?$")


class EventKind(str, Enum):
    """Semantic kinds of events emitted by the PIFP protocol contract."""

    PROJECT_CREATED = "project_created"
    PROJECT_FUNDED = "project_funded"
    PROJECT_VERIFIED = "project_verified"
    FUNDS_RELEASED = "funds_released"
    ROLE_SET = "role_set"
    ROLE_DEL = "role_del"
    PROTOCOL_PAUSED = "protocol_paused"
    PROTOCOL_UNPAUSED = "protocol_unpaused"
    UNKNOWN = "unknown"

    @classmethod
    def from_topic(cls, symbol: str) -> "EventKind":
        """Map the leading topic symbol emitted by the contract to a kind."""
        return _TOPIC_KINDS.get(symbol, cls.UNKNOWN)


_TOPIC_KINDS = {
    "created": EventKind.PROJECT_CREATED,
    "funded": EventKind.PROJECT_FUNDED,
    "verified": EventKind.PROJECT_VERIFIED,
    "released": EventKind.FUNDS_RELEASED,
    "role_set": EventKind.ROLE_SET,
    "role_del": EventKind.ROLE_DEL,
    "paused": EventKind.PROTOCOL_PAUSED,
    "unpaused": EventKind.PROTOCOL_UNPAUSED,
}


class Event(BaseModel):
    """A decoded contract event, ready to be appended to the event store.

    Immutable once built. `amount` is kept as text so no precision is lost.
    """

    event_type: EventKind = Field(description="Semantic kind of the event")
    project_id: str | None = Field(default=None, description="Project the event pertains to")
    actor: str | None = Field(default=None, description="Principal that triggered the event")
    amount: str | None = Field(default=None, description="Decimal amount as text")
    ledger: int = Field(ge=0, description="Ledger sequence the event was observed in")
    timestamp: int = Field(description="Ledger close time, seconds since epoch")
    contract_id: str = Field(min_length=1, description="Emitting contract id")
    tx_hash: str | None = Field(default=None, description="Transaction hash if any")

    model_config = {"frozen": True}

    @field_validator("amount")
    @classmethod
    def _amount_is_decimal(cls, value: str | None) -> str | None:
        if value is not None and not DECIMAL_RE.match(value):
            raise ValueError(f"amount is not a decimal string: {value!r}")
        return value

    @property
    def dedupe_key(self) -> tuple[str, str, str, int]:
        """Key that identifies the source event uniquely."""
        return (self.contract_id, self.tx_hash or "", self.event_type.value, self.ledger)


class EventRecord(Event):
    """An event as stored, with store-assigned fields."""

    id: int = Field(description="Local surrogate key, ordering only")
    created_at: int = Field(description="Local ingestion time, seconds since epoch")
