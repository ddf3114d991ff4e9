"""Linq webhook signature verification (HMAC-SHA256 with replay window).

Linq signs each delivery with:
    X-Webhook-Signature: [sha256=]<hex digest>
    X-Webhook-Timestamp: <unix epoch seconds>

The signed payload is "<timestamp>.<raw body>" using the exact body bytes
as received. Never log the secret or the signature.
"""

from __future__ import annotations

import hashlib
import hmac
import math
import re
import time
from dataclasses import dataclass

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"

# Symmetric clock-skew tolerance (milliseconds)
MAX_TIMESTAMP_AGE_MS = 5 * 60 * 1000

_SIGNATURE_PREFIX = "sha256="
_HEX_PATTERN = re.compile(r"[0-9a-fA-F]+")

MISSING_CREDENTIALS = "MissingCredentials"
INVALID_TIMESTAMP = "InvalidTimestamp"
REPLAY_TOO_OLD = "ReplayTooOld"
REPLAY_FUTURE = "ReplayFuture"
SIGNATURE_MISMATCH = "SignatureMismatch"
MALFORMED_SIGNATURE = "MalformedSignature"

_REASON_MESSAGES = {
    MISSING_CREDENTIALS: "missing signature or timestamp header",
    INVALID_TIMESTAMP: "invalid timestamp",
    REPLAY_TOO_OLD: "timestamp too old (replay protection)",
    REPLAY_FUTURE: "timestamp in the future",
    SIGNATURE_MISMATCH: "signature mismatch",
    MALFORMED_SIGNATURE: "malformed signature",
}


class SignatureVerificationError(Exception):
    """Raised when a webhook request fails authentication.

    Attributes:
        reason: One of the reason codes defined in this module.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(_REASON_MESSAGES.get(reason, reason))


@dataclass(frozen=True)
class VerifyResult:
    """Outcome of check_signature()."""

    valid: bool
    reason: str | None = None

    @property
    def message(self) -> str | None:
        return _REASON_MESSAGES.get(self.reason) if self.reason else None


def compute_signature(raw_body: bytes | str, timestamp: str, signing_secret: str) -> str:
    """Hex HMAC-SHA256 of "<timestamp>.<raw body>" under signing_secret."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    signed_payload = timestamp.encode("utf-8") + b"." + raw_body
    return hmac.new(
        key=signing_secret.encode("utf-8"),
        msg=signed_payload,
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_signature(
    raw_body: bytes | str,
    signature_header: str | None,
    timestamp_header: str | None,
    signing_secret: str,
    *,
    now: float | None = None,
) -> None:
    """Verify a Linq webhook request.

    Args:
        raw_body: Request body exactly as received.
        signature_header: X-Webhook-Signature value, optionally "sha256=" prefixed.
        timestamp_header: X-Webhook-Timestamp value (unix seconds).
        signing_secret: Secret returned when the subscription was created.
        now: Current unix time in seconds (defaults to time.time()).

    Raises:
        SignatureVerificationError: With the reason code of the first failed check.
    """
    if not signature_header or not timestamp_header:
        raise SignatureVerificationError(MISSING_CREDENTIALS)

    try:
        timestamp_sec = float(timestamp_header)
    except ValueError:
        raise SignatureVerificationError(INVALID_TIMESTAMP) from None
    if not math.isfinite(timestamp_sec):
        raise SignatureVerificationError(INVALID_TIMESTAMP)

    current = time.time() if now is None else now
    age_ms = (current - timestamp_sec) * 1000
    if age_ms > MAX_TIMESTAMP_AGE_MS:
        raise SignatureVerificationError(REPLAY_TOO_OLD)
    if age_ms < -MAX_TIMESTAMP_AGE_MS:
        raise SignatureVerificationError(REPLAY_FUTURE)

    expected_sig = compute_signature(raw_body, timestamp_header, signing_secret)

    provided_sig = signature_header
    if provided_sig.startswith(_SIGNATURE_PREFIX):
        provided_sig = provided_sig[len(_SIGNATURE_PREFIX):]

    if not _HEX_PATTERN.fullmatch(provided_sig) or len(provided_sig) % 2:
        raise SignatureVerificationError(MALFORMED_SIGNATURE)
    provided = bytes.fromhex(provided_sig)
    expected = bytes.fromhex(expected_sig)

    # compare_digest is constant-time for equal lengths; a length
    # mismatch is rejected the same way.
    if len(provided) != len(expected) or not hmac.compare_digest(expected, provided):
        raise SignatureVerificationError(SIGNATURE_MISMATCH)


def check_signature(
    raw_body: bytes | str,
    signature_header: str | None,
    timestamp_header: str | None,
    signing_secret: str,
    *,
    now: float | None = None,
) -> VerifyResult:
    """Non-raising form of verify_signature()."""
    try:
        verify_signature(
            raw_body, signature_header, timestamp_header, signing_secret, now=now
        )
    except SignatureVerificationError as e:
        return VerifyResult(valid=False, reason=e.reason)
    return VerifyResult(valid=True)
