"""Tests for payload encoding and sealing."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from pcrm.errors import CodecError, PayloadError
from pcrm.schemas.payloads import (
    ContactPayload,
    DealPayload,
    InteractionLogPayload,
    format_timestamp,
    parse_timestamp,
)
from pcrm.sync.codec import PayloadCodec, decode_payload, derive_key, encode_payload

from pcrm.tests.conftest import TEST_APP_ID, TEST_SEED, TEST_USER_ID


def test_timestamps_are_rfc3339_utc():
    ts = datetime(2025, 3, 1, 12, 30, 5, 999, tzinfo=timezone(timedelta(hours=2)))
    assert format_timestamp(ts) == "2025-03-01T10:30:05Z"
    assert parse_timestamp("2025-03-01T10:30:05Z") == datetime(2025, 3, 1, 10, 30, 5, tzinfo=timezone.utc)
    assert parse_timestamp("2025-03-01T12:30:05+02:00") == datetime(2025, 3, 1, 10, 30, 5, tzinfo=timezone.utc)


def test_parse_timestamp_rejects_naive_and_garbage():
    with pytest.raises(ValueError):
        parse_timestamp("2025-03-01T10:30:05")
    with pytest.raises(ValueError):
        parse_timestamp("yesterday")


def test_encode_omits_null_times_and_keeps_empty_strings():
    payload = ContactPayload(id="c1", name="Alice")
    raw = json.loads(encode_payload(payload))
    assert "last_contacted_at" not in raw
    assert raw["email"] == ""
    assert raw["company_id"] == ""


def test_decode_ignores_unknown_fields():
    data = json.dumps({"id": "d1", "title": "Big", "amount": 500, "future_field": True}).encode()
    payload = decode_payload("deal", data)
    assert isinstance(payload, DealPayload)
    assert payload.amount == 500


def test_decode_round_trips_interaction():
    original = InteractionLogPayload(
        id="i1",
        contact_id="c1",
        interaction_type="call",
        interacted_at="2025-01-01T00:00:00Z",
        metadata={"topic": "renewal"},
    )
    decoded = decode_payload("interaction_log", encode_payload(original))
    assert decoded == original


def test_decode_unknown_entity_returns_none():
    assert decode_payload("hologram", b"{}") is None


@pytest.mark.parametrize("data", [b"not json", b"[1, 2]", b'{"name": "no id"}'])
def test_decode_malformed_payload(data):
    with pytest.raises(PayloadError):
        decode_payload("contact", data)


def test_seal_and_open():
    codec = PayloadCodec.from_seed(TEST_SEED, app_id=TEST_APP_ID, user_id=TEST_USER_ID)
    sealed = codec.seal("contact", "upsert", "c1", b'{"id": "c1"}')
    assert "c1" not in sealed
    assert codec.open("contact", "upsert", "c1", sealed) == b'{"id": "c1"}'


def test_open_rejects_mismatched_envelope():
    codec = PayloadCodec.from_seed(TEST_SEED, app_id=TEST_APP_ID, user_id=TEST_USER_ID)
    sealed = codec.seal("contact", "upsert", "c1", b"{}")
    with pytest.raises(CodecError):
        codec.open("contact", "delete", "c1", sealed)


def test_open_with_other_device_key_fails():
    mine = PayloadCodec.from_seed(TEST_SEED, app_id=TEST_APP_ID, user_id=TEST_USER_ID)
    theirs = PayloadCodec.from_seed(TEST_SEED, app_id=TEST_APP_ID, user_id="someone-else")
    sealed = mine.seal("company", "upsert", "co1", b"{}")
    with pytest.raises(CodecError):
        theirs.open("company", "upsert", "co1", sealed)


@pytest.mark.parametrize("sealed", ["%%%not-base64%%%", "AAAA"])
def test_open_rejects_garbage(sealed):
    codec = PayloadCodec.from_seed(TEST_SEED, app_id=TEST_APP_ID, user_id=TEST_USER_ID)
    with pytest.raises(CodecError):
        codec.open("contact", "upsert", "c1", sealed)


def test_derive_key_validates_seed():
    assert len(derive_key(TEST_SEED, app_id=TEST_APP_ID, user_id=TEST_USER_ID)) == 32
    with pytest.raises(CodecError):
        derive_key("zz-not-hex", app_id=TEST_APP_ID, user_id=TEST_USER_ID)
    with pytest.raises(CodecError):
        derive_key("", app_id=TEST_APP_ID, user_id=TEST_USER_ID)
