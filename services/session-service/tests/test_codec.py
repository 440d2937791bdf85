from datetime import datetime, timedelta, timezone

import itsdangerous
import pytest
from bson import ObjectId

from mongostore import (
    CookieCodec,
    CookieDecodeError,
    InvalidSessionValue,
    KeyPair,
    codecs_from_pairs,
    decode_multi,
    encode_multi,
)


def _flip(token, i):
    c = token[i]
    return token[:i] + ("A" if c != "A" else "B") + token[i + 1:]


def test_values_round_trip():
    codecs = codecs_from_pairs("hash-key")
    values = {
        "user": "alice",
        "count": 3,
        "big": 2**40,
        "ratio": 0.25,
        "admin": False,
        "nothing": None,
        "tags": ["a", "b"],
        "nested": {"x": {"y": [1, 2]}},
        "modified": datetime(2026, 1, 1, 12, 30, 15, 123456, tzinfo=timezone.utc),
        "local": datetime(2026, 3, 4, 5, 6, 7, 890123, tzinfo=timezone(timedelta(hours=5, minutes=30))),
        "naive": datetime(2026, 1, 1, 8, 0, 0, 1),
        "ref": ObjectId("65a1b2c3d4e5f60718293a4b"),
    }
    token = encode_multi("sid", values, codecs)
    assert decode_multi("sid", token, codecs) == values


def test_encrypted_round_trip_hides_payload():
    codec = CookieCodec("hash-key", "block-key")
    token = codec.encode("sid", {"user": "alice"})
    assert "alice" not in token
    assert codec.decode("sid", token) == {"user": "alice"}


def test_every_character_is_authenticated():
    codec = CookieCodec("hash-key")
    token = codec.encode("sid", "65a1b2c3d4e5f60718293a4b")
    for i in range(len(token)):
        with pytest.raises(CookieDecodeError):
            codec.decode("sid", _flip(token, i))


def test_encrypted_token_tamper_rejected():
    codec = CookieCodec("hash-key", "block-key")
    token = codec.encode("sid", {"user": "alice"})
    for i in (0, len(token) // 2, len(token) - 1):
        with pytest.raises(CookieDecodeError):
            codec.decode("sid", _flip(token, i))


def test_name_scoped_signature():
    codec = CookieCodec("hash-key")
    token = codec.encode("sid", "value")
    with pytest.raises(CookieDecodeError):
        codec.decode("other", token)


def test_key_rotation_keeps_old_cookies_valid():
    old_token = encode_multi("sid", "value", codecs_from_pairs("old-key"))

    rotated = codecs_from_pairs(KeyPair("new-key"), KeyPair("old-key"))
    assert decode_multi("sid", old_token, rotated) == "value"

    # new cookies are written with the first pair only
    new_token = encode_multi("sid", "value", rotated)
    with pytest.raises(CookieDecodeError):
        decode_multi("sid", new_token, codecs_from_pairs("old-key"))


def test_unknown_key_rejected():
    token = encode_multi("sid", "value", codecs_from_pairs("a-key"))
    with pytest.raises(CookieDecodeError):
        decode_multi("sid", token, codecs_from_pairs("b-key", ("c-key", "block")))


def test_block_key_mismatch_rejected():
    token = CookieCodec("hash-key", "block-one").encode("sid", {"a": 1})
    with pytest.raises(CookieDecodeError):
        CookieCodec("hash-key", "block-two").decode("sid", token)


def test_expired_token_rejected(monkeypatch):
    codec = CookieCodec("hash-key", max_age=60)
    monkeypatch.setattr(itsdangerous.TimestampSigner, "get_timestamp", lambda self: 1_800_000_000)
    token = codec.encode("sid", "value")

    monkeypatch.setattr(itsdangerous.TimestampSigner, "get_timestamp", lambda self: 1_800_000_030)
    assert codec.decode("sid", token) == "value"

    monkeypatch.setattr(itsdangerous.TimestampSigner, "get_timestamp", lambda self: 1_800_000_061)
    with pytest.raises(CookieDecodeError):
        codec.decode("sid", token)


def test_zero_max_age_skips_expiry_check(monkeypatch):
    codec = CookieCodec("hash-key", max_age=0)
    monkeypatch.setattr(itsdangerous.TimestampSigner, "get_timestamp", lambda self: 1_800_000_000)
    token = codec.encode("sid", "value")
    monkeypatch.setattr(itsdangerous.TimestampSigner, "get_timestamp", lambda self: 1_900_000_000)
    assert codec.decode("sid", token) == "value"


def test_garbage_rejected():
    codecs = codecs_from_pairs("hash-key")
    for token in ("", "not-a-token", "a.b.c", "..."):
        with pytest.raises(CookieDecodeError):
            decode_multi("sid", token, codecs)


def test_empty_codec_chain_is_a_config_error():
    with pytest.raises(ValueError):
        encode_multi("sid", "value", [])
    with pytest.raises(ValueError):
        decode_multi("sid", "token", [])
    with pytest.raises(ValueError):
        CookieCodec("")


def test_datetimes_keep_precision_and_offset():
    codecs = codecs_from_pairs("hash-key")
    local = datetime(2026, 3, 4, 5, 6, 7, 890123, tzinfo=timezone(timedelta(hours=5, minutes=30)))
    naive = datetime(2026, 1, 1, 8, 0, 0, 1)

    out = decode_multi("sid", encode_multi("sid", {"local": local, "naive": naive, "at": [local]}, codecs), codecs)

    assert out["local"].microsecond == 890123
    assert out["local"].utcoffset() == timedelta(hours=5, minutes=30)
    assert out["naive"] == naive
    assert out["naive"].tzinfo is None
    assert out["at"] == [local]


@pytest.mark.parametrize(
    "values",
    [
        {"ref": {"$oid": "65a1b2c3d4e5f60718293a4b"}},
        {"when": {"$date": "2026-01-01T00:00:00Z"}},
        {"n": {"$numberLong": "5"}},
        {"$dt": "2026-01-01T00:00:00"},
        {"items": [{"ok": 1}, {"$oid": "65a1b2c3d4e5f60718293a4b"}]},
    ],
)
def test_dollar_keys_rejected(values):
    codecs = codecs_from_pairs("hash-key")
    with pytest.raises(InvalidSessionValue):
        encode_multi("sid", values, codecs)


def test_non_string_keys_rejected():
    codecs = codecs_from_pairs("hash-key")
    with pytest.raises(InvalidSessionValue, match="not a string"):
        encode_multi("sid", {"counts": {1: "one"}}, codecs)


def test_plain_dollar_strings_survive():
    codecs = codecs_from_pairs("hash-key")
    values = {"price": "$5", "tag": {"name": "$dt"}}
    assert decode_multi("sid", encode_multi("sid", values, codecs), codecs) == values
