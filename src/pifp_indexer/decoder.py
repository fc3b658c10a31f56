"""Decode raw Soroban `getEvents` records into typed events."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from .errors import MalformedEventError
from .models import Event, EventKind

logger = logging.getLogger(__name__)


@dataclass
class DecodeResult:
    events: list[Event] = field(default_factory=list)
    errors: list[MalformedEventError] = field(default_factory=list)

    @property
    def malformed(self) -> int:
        return len(self.errors)


def _topic_value(raw: Any) -> Any:
    """Unwrap a topic entry: `{"type": ..., "value": ...}` as JSON text or mapping, else as-is."""
    if isinstance(raw, dict):
        return raw.get("value", raw)
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return raw
        if isinstance(parsed, dict) and "value" in parsed:
            return parsed["value"]
    return raw


def extract_symbol(raw: Any) -> Optional[str]:
    value = _topic_value(raw)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def extract_u64_or_raw(raw: Any) -> Optional[str]:
    value = _topic_value(raw)
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, str)):
        return str(value)
    return None


def parse_iso_to_unix(ts: str) -> Optional[int]:
    """RFC 3339 timestamp to epoch seconds, or None if it does not parse."""
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None
    if dt.tzinfo is None:
        return None
    return int(dt.timestamp())


def _scalar_text(v: Any) -> Optional[str]:
    if isinstance(v, bool):
        return None
    if isinstance(v, str):
        return v
    if isinstance(v, int):
        return str(v)
    return None


def extract_field(value: Any, keys: list[str]) -> Optional[str]:
    if not isinstance(value, dict):
        return None
    for key in keys:
        if key in value:
            s = _scalar_text(value[key])
            if s is not None:
                return s
    return None


def extract_amount(value: Any, key: str) -> Optional[str]:
    """Amount under `key`, unwrapping `{"type": "i128", "value": ...}` scalars.

    Absent or null is None. Any other shape raises ValueError rather than
    being dropped.
    """
    if not isinstance(value, dict) or value.get(key) is None:
        return None
    amount = value[key]
    if isinstance(amount, dict) and "value" in amount:
        amount = amount["value"]
    s = _scalar_text(amount)
    if s is None:
        raise ValueError(f"amount has unsupported shape: {amount!r}")
    return s


def find_nested(value: Any, key: str) -> Optional[str]:
    if isinstance(value, dict):
        for k, v in value.items():
            if k == key and isinstance(v, str):
                return v
            found = find_nested(v, key)
            if found is not None:
                return found
    return None


def _decode_data(value: Any, kind: EventKind) -> tuple[Optional[str], Optional[str]]:
    """Pull (actor, amount) out of the event's data blob."""
    if kind is EventKind.PROJECT_CREATED:
        actor = extract_field(value, ["creator", "address"]) or find_nested(value, "creator")
        return actor, extract_amount(value, "goal")
    if kind is EventKind.PROJECT_FUNDED:
        return extract_field(value, ["donator", "funder", "address"]), extract_amount(value, "amount")
    if kind is EventKind.PROJECT_VERIFIED:
        return extract_field(value, ["oracle", "verifier", "address"]), None
    if kind is EventKind.FUNDS_RELEASED:
        return None, extract_amount(value, "amount")
    if kind in (EventKind.ROLE_SET, EventKind.ROLE_DEL):
        if isinstance(value, str):
            return value, None
        return extract_field(value, ["address", "caller", "by"]), None
    if kind in (EventKind.PROTOCOL_PAUSED, EventKind.PROTOCOL_UNPAUSED):
        if isinstance(value, str):
            return value, None
        return extract_field(value, ["address"]), None
    return None, None


def _require_ledger(raw: dict[str, Any]) -> int:
    ledger = raw.get("ledger")
    if isinstance(ledger, bool):
        ledger = None
    if isinstance(ledger, str) and ledger.isdigit():
        ledger = int(ledger)
    if not isinstance(ledger, int) or ledger < 0:
        raise MalformedEventError(f"missing or invalid ledger: {raw.get('ledger')!r}", raw)
    return ledger


def _require_timestamp(raw: dict[str, Any]) -> int:
    closed_at = raw.get("ledgerClosedAt")
    ts = parse_iso_to_unix(closed_at) if isinstance(closed_at, str) else None
    if ts is None:
        raise MalformedEventError(f"missing or invalid ledgerClosedAt: {closed_at!r}", raw)
    return ts


def decode_event(raw: Any, default_contract_id: Optional[str] = None) -> Event:
    """Decode one raw `getEvents` record.

    Pure; raises MalformedEventError for anything that cannot become a valid Event.
    """
    if not isinstance(raw, dict):
        raise MalformedEventError(f"event payload is not an object: {type(raw).__name__}", raw)

    topics = raw.get("topic")
    if not isinstance(topics, list) or not topics:
        raise MalformedEventError("event has no topics", raw)
    symbol = extract_symbol(topics[0])
    if symbol is None:
        raise MalformedEventError(f"first topic is not a symbol: {topics[0]!r}", raw)
    kind = EventKind.from_topic(symbol)

    ledger = _require_ledger(raw)
    timestamp = _require_timestamp(raw)

    contract_id = raw.get("contractId") or default_contract_id
    if not isinstance(contract_id, str) or not contract_id:
        raise MalformedEventError("missing contractId", raw)

    project_id = extract_u64_or_raw(topics[1]) if len(topics) > 1 else None
    try:
        actor, amount = _decode_data(raw.get("value"), kind)
    except ValueError as e:
        raise MalformedEventError(f"invalid event fields: {e}", raw) from e
    tx_hash = raw.get("txHash") if isinstance(raw.get("txHash"), str) else None

    try:
        return Event(
            event_type=kind,
            project_id=project_id,
            actor=actor,
            amount=amount,
            ledger=ledger,
            timestamp=timestamp,
            contract_id=contract_id,
            tx_hash=tx_hash or None,
        )
    except ValidationError as e:
        raise MalformedEventError(f"invalid event fields: {e.errors()[0]['msg']}", raw) from e


def decode_events(raws: Iterable[Any], default_contract_id: Optional[str] = None) -> DecodeResult:
    """Decode a batch; malformed items are skipped, logged, and reported."""
    result = DecodeResult()
    for i, raw in enumerate(raws):
        try:
            result.events.append(decode_event(raw, default_contract_id))
        except MalformedEventError as e:
            ident = raw.get("id") if isinstance(raw, dict) else None
            logger.warning(f"Skipping malformed event #{i} (id={ident}): {e}")
            result.errors.append(e)
    return result
