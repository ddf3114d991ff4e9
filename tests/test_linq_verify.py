"""Tests for Linq webhook signature verification."""

from __future__ import annotations

import hashlib
import hmac

import pytest

from linqgate.linq.verify import (
    INVALID_TIMESTAMP,
    MALFORMED_SIGNATURE,
    MISSING_CREDENTIALS,
    REPLAY_FUTURE,
    REPLAY_TOO_OLD,
    SIGNATURE_MISMATCH,
    SignatureVerificationError,
    check_signature,
    compute_signature,
    verify_signature,
)

SECRET = "whsec_test"
BODY = b'{"event_type":"message.received","data":{}}'
NOW = 1_700_000_000.0
TS = str(int(NOW))


def _sign(body: bytes = BODY, ts: str = TS, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), ts.encode() + b"." + body, hashlib.sha256).hexdigest()


class TestComputeSignature:
    def test_matches_hmac_over_timestamp_dot_body(self):
        assert compute_signature(BODY, TS, SECRET) == _sign()

    def test_str_body_same_as_bytes(self):
        assert compute_signature(BODY.decode(), TS, SECRET) == compute_signature(BODY, TS, SECRET)


class TestVerifySignature:
    def test_valid_signature(self):
        verify_signature(BODY, _sign(), TS, SECRET, now=NOW)

    def test_sha256_prefix_accepted(self):
        verify_signature(BODY, "sha256=" + _sign(), TS, SECRET, now=NOW)

    def test_uppercase_hex_accepted(self):
        verify_signature(BODY, _sign().upper(), TS, SECRET, now=NOW)

    @pytest.mark.parametrize("sig,ts", [(None, TS), ("abc", None), ("", TS), ("abc", "")])
    def test_missing_headers(self, sig, ts):
        with pytest.raises(SignatureVerificationError) as exc:
            verify_signature(BODY, sig, ts, SECRET, now=NOW)
        assert exc.value.reason == MISSING_CREDENTIALS

    @pytest.mark.parametrize("ts", ["not-a-number", "nan", "inf"])
    def test_invalid_timestamp(self, ts):
        with pytest.raises(SignatureVerificationError) as exc:
            verify_signature(BODY, _sign(ts=ts), ts, SECRET, now=NOW)
        assert exc.value.reason == INVALID_TIMESTAMP

    def test_timestamp_too_old(self):
        ts = str(int(NOW) - 301)
        with pytest.raises(SignatureVerificationError) as exc:
            verify_signature(BODY, _sign(ts=ts), ts, SECRET, now=NOW)
        assert exc.value.reason == REPLAY_TOO_OLD

    def test_timestamp_in_future(self):
        ts = str(int(NOW) + 301)
        with pytest.raises(SignatureVerificationError) as exc:
            verify_signature(BODY, _sign(ts=ts), ts, SECRET, now=NOW)
        assert exc.value.reason == REPLAY_FUTURE

    def test_window_edges_accepted(self):
        for offset in (-300, 300):
            ts = str(int(NOW) + offset)
            verify_signature(BODY, _sign(ts=ts), ts, SECRET, now=NOW)

    def test_tampered_body_rejected(self):
        with pytest.raises(SignatureVerificationError) as exc:
            verify_signature(BODY + b" ", _sign(), TS, SECRET, now=NOW)
        assert exc.value.reason == SIGNATURE_MISMATCH

    def test_wrong_secret_rejected(self):
        with pytest.raises(SignatureVerificationError) as exc:
            verify_signature(BODY, _sign(secret="other"), TS, SECRET, now=NOW)
        assert exc.value.reason == SIGNATURE_MISMATCH

    def test_short_signature_rejected_as_mismatch(self):
        with pytest.raises(SignatureVerificationError) as exc:
            verify_signature(BODY, _sign()[:32], TS, SECRET, now=NOW)
        assert exc.value.reason == SIGNATURE_MISMATCH

    def test_non_hex_signature_malformed(self):
        with pytest.raises(SignatureVerificationError) as exc:
            verify_signature(BODY, "zz" * 32, TS, SECRET, now=NOW)
        assert exc.value.reason == MALFORMED_SIGNATURE

    @pytest.mark.parametrize("sig", [
        " ".join(_sign()[i:i + 2] for i in range(0, 64, 2)),
        _sign() + "\n",
        " " + _sign(),
    ])
    def test_whitespace_in_signature_malformed(self, sig):
        with pytest.raises(SignatureVerificationError) as exc:
            verify_signature(BODY, sig, TS, SECRET, now=NOW)
        assert exc.value.reason == MALFORMED_SIGNATURE

    def test_odd_length_signature_malformed(self):
        with pytest.raises(SignatureVerificationError) as exc:
            verify_signature(BODY, _sign()[:-1], TS, SECRET, now=NOW)
        assert exc.value.reason == MALFORMED_SIGNATURE

    def test_signature_over_exact_bytes(self):
        """Re-serialising the JSON would change the bytes and the signature."""
        body = b'{ "a" : 1 }'
        verify_signature(body, _sign(body=body), TS, SECRET, now=NOW)
        with pytest.raises(SignatureVerificationError):
            verify_signature(b'{"a":1}', _sign(body=body), TS, SECRET, now=NOW)

    def test_error_message_is_human_readable(self):
        with pytest.raises(SignatureVerificationError) as exc:
            verify_signature(BODY, "00" * 32, TS, SECRET, now=NOW)
        assert str(exc.value) == "signature mismatch"


class TestCheckSignature:
    def test_valid(self):
        result = check_signature(BODY, _sign(), TS, SECRET, now=NOW)
        assert result.valid is True
        assert result.reason is None
        assert result.message is None

    def test_invalid_carries_reason(self):
        result = check_signature(BODY, None, TS, SECRET, now=NOW)
        assert result.valid is False
        assert result.reason == MISSING_CREDENTIALS
        assert result.message == "missing signature or timestamp header"
