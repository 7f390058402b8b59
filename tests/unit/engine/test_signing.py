"""Tests for HMAC request signing."""

from edujobs.engine.signing import sign, verify

KEY = "signing-secret"
BODY = b'{"name": "user/deleted", "data": {"user_id": "u1"}}'


def test_signed_body_verifies():
    header = sign(KEY, BODY, timestamp=1_700_000_000)
    assert verify(KEY, BODY, header, now=1_700_000_010)


def test_header_format():
    header = sign(KEY, BODY, timestamp=1_700_000_000)
    assert header.startswith("t=1700000000&s=")


def test_tampered_body_fails():
    header = sign(KEY, BODY, timestamp=1_700_000_000)
    assert not verify(KEY, BODY + b" ", header, now=1_700_000_000)


def test_wrong_key_fails():
    header = sign("other-key", BODY, timestamp=1_700_000_000)
    assert not verify(KEY, BODY, header, now=1_700_000_000)


def test_stale_timestamp_fails():
    header = sign(KEY, BODY, timestamp=1_700_000_000)
    assert not verify(KEY, BODY, header, tolerance_s=300, now=1_700_000_301)


def test_missing_or_malformed_header_fails():
    assert not verify(KEY, BODY, None)
    assert not verify(KEY, BODY, "")
    assert not verify(KEY, BODY, "garbage")
    assert not verify(KEY, BODY, "t=notanumber&s=abc")
