import json

import pytest

from pifp_indexer.decoder import (
    decode_event,
    decode_events,
    extract_symbol,
    extract_u64_or_raw,
    parse_iso_to_unix,
)
from pifp_indexer.errors import MalformedEventError
from pifp_indexer.models import EventKind


def test_event_kind_from_topic():
    assert EventKind.from_topic("created") is EventKind.PROJECT_CREATED
    assert EventKind.from_topic("funded") is EventKind.PROJECT_FUNDED
    assert EventKind.from_topic("verified") is EventKind.PROJECT_VERIFIED
    assert EventKind.from_topic("released") is EventKind.FUNDS_RELEASED
    assert EventKind.from_topic("role_set") is EventKind.ROLE_SET
    assert EventKind.from_topic("role_del") is EventKind.ROLE_DEL
    assert EventKind.from_topic("paused") is EventKind.PROTOCOL_PAUSED
    assert EventKind.from_topic("unpaused") is EventKind.PROTOCOL_UNPAUSED
    assert EventKind.from_topic("something_else") is EventKind.UNKNOWN


def test_event_kind_storage_values():
    assert EventKind.PROJECT_CREATED.value == "project_created"
    assert EventKind.FUNDS_RELEASED.value == "funds_released"
    assert EventKind.ROLE_DEL.value == "role_del"


def test_extract_symbol_from_json_and_raw():
    assert extract_symbol('{"type":"symbol","value":"funded"}') == "funded"
    assert extract_symbol({"type": "symbol", "value": "paused"}) == "paused"
    assert extract_symbol("verified") == "verified"
    assert extract_symbol("") is None


def test_extract_project_id_variants():
    assert extract_u64_or_raw('{"type":"u64","value":42}') == "42"
    assert extract_u64_or_raw('{"type":"u64","value":"42"}') == "42"
    assert extract_u64_or_raw("7") == "7"


def test_parse_iso_timestamp():
    assert parse_iso_to_unix("2024-01-01T00:00:00Z") == 1_704_067_200
    assert parse_iso_to_unix("2024-01-01T01:00:00+01:00") == 1_704_067_200
    assert parse_iso_to_unix("yesterday") is None
    # naive timestamps are ambiguous
    assert parse_iso_to_unix("2024-01-01T00:00:00") is None


def test_decode_funded_event(raw_event):
    ev = decode_event(raw_event(symbol="funded", ledger=1000, project="42", tx_hash="TX1"), "CONTRACT1")
    assert ev.event_type is EventKind.PROJECT_FUNDED
    assert ev.project_id == "42"
    assert ev.actor == "GABC123"
    assert ev.amount == "5000"
    assert ev.ledger == 1000
    assert ev.timestamp == 1_704_067_200
    assert ev.contract_id == "CONTRACT1"
    assert ev.tx_hash == "TX1"


def test_decode_role_set_event_uses_string_value_as_actor(raw_event):
    raw = raw_event(symbol="role_set", project=None, value="GCALLER", ledger=1001)
    raw["topic"].append(json.dumps({"type": "address", "value": "GADMIN123"}))
    ev = decode_event(raw)
    assert ev.event_type is EventKind.ROLE_SET
    assert ev.actor == "GCALLER"
    assert ev.amount is None


def test_decode_created_event_finds_nested_creator(raw_event):
    raw = raw_event(symbol="created", value={"project": {"creator": "GCREATOR"}, "goal": 10000})
    ev = decode_event(raw)
    assert ev.event_type is EventKind.PROJECT_CREATED
    assert ev.actor == "GCREATOR"
    assert ev.amount == "10000"


def test_decode_released_and_verified(raw_event):
    released = decode_event(raw_event(symbol="released", value={"amount": "250.5"}))
    assert released.actor is None
    assert released.amount == "250.5"

    verified = decode_event(raw_event(symbol="verified", value={"oracle": "GORACLE"}))
    assert verified.actor == "GORACLE"
    assert verified.amount is None


def test_unknown_symbol_is_kept_as_unknown(raw_event):
    ev = decode_event(raw_event(symbol="upgraded", value={"whatever": 1}))
    assert ev.event_type is EventKind.UNKNOWN
    assert ev.actor is None
    assert ev.amount is None


def test_global_event_with_all_optionals_absent(raw_event):
    ev = decode_event(raw_event(symbol="paused", project=None, tx_hash=None, value={}))
    assert ev.event_type is EventKind.PROTOCOL_PAUSED
    assert (ev.project_id, ev.actor, ev.amount, ev.tx_hash) == (None, None, None, None)


def test_contract_id_falls_back_to_configured(raw_event):
    ev = decode_event(raw_event(contract_id=None), "CFALLBACK")
    assert ev.contract_id == "CFALLBACK"


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda r: r.pop("topic"), "no topics"),
        (lambda r: r.update(topic=[]), "no topics"),
        (lambda r: r.update(topic=[json.dumps({"type": "symbol", "value": ""})]), "not a symbol"),
        (lambda r: r.pop("ledger"), "ledger"),
        (lambda r: r.update(ledger="abc"), "ledger"),
        (lambda r: r.update(ledger=-1), "ledger"),
        (lambda r: r.pop("ledgerClosedAt"), "ledgerClosedAt"),
        (lambda r: r.update(ledgerClosedAt="not a date"), "ledgerClosedAt"),
        (lambda r: r.update(value={"donator": "G", "amount": "12abc"}), "amount"),
        (lambda r: r.update(value={"donator": "G", "amount": "1e5"}), "amount"),
        (lambda r: r.update(value={"donator": "G", "amount": 12.5}), "amount"),
        (lambda r: r.update(value={"donator": "G", "amount": True}), "amount"),
        (lambda r: r.update(value={"donator": "G", "amount": ["5000"]}), "amount"),
        (lambda r: r.update(value={"donator": "G", "amount": {"type": "i128", "value": 1.5}}), "amount"),
        (lambda r: r.update(value={"donator": "G", "amount": {"lo": 5, "hi": 0}}), "amount"),
    ],
)
def test_malformed_payloads_raise(raw_event, mutate, message):
    raw = raw_event()
    mutate(raw)
    with pytest.raises(MalformedEventError, match=message) as exc_info:
        decode_event(raw, "CONTRACT1")
    assert exc_info.value.raw is raw


def test_typed_amount_scalar_is_unwrapped(raw_event):
    ev = decode_event(raw_event(value={"donator": "G", "amount": {"type": "i128", "value": "5000"}}))
    assert ev.amount == "5000"


def test_null_amount_is_absent(raw_event):
    ev = decode_event(raw_event(value={"donator": "G", "amount": None}))
    assert ev.amount is None


def test_missing_contract_id_without_fallback_is_malformed(raw_event):
    with pytest.raises(MalformedEventError, match="contractId"):
        decode_event(raw_event(contract_id=None))


def test_non_object_payload_is_malformed():
    with pytest.raises(MalformedEventError):
        decode_event(["not", "a", "dict"])


def test_decode_events_skips_malformed_and_keeps_the_rest(raw_event):
    raws = [
        raw_event(ledger=100, tx_hash="A"),
        raw_event(ledger="bad", tx_hash="B"),
        raw_event(ledger=101, tx_hash="C"),
    ]
    result = decode_events(raws, "CONTRACT1")
    assert [e.tx_hash for e in result.events] == ["A", "C"]
    assert result.malformed == 1
    assert isinstance(result.errors[0], MalformedEventError)


def test_decoding_is_pure(raw_event):
    raw = raw_event()
    snapshot = json.dumps(raw, sort_keys=True)
    decode_event(raw)
    assert json.dumps(raw, sort_keys=True) == snapshot
