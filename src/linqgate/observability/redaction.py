"""Redaction helpers for safe logging. All external data must pass through these.

Recipients are phone numbers or handles, webhook secrets and API tokens
are bearer credentials: none of them may reach a log line verbatim.
"""

import re
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_BEARER_PATTERN = re.compile(r"Bearer\s+\S+", re.IGNORECASE)
# sha256 hex digests (signatures, signing secrets)
_HEX_DIGEST_PATTERN = re.compile(r"(sha256=)?\b[0-9a-fA-F]{64}\b")

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact PII and credential patterns from a string."""
    result = _BEARER_PATTERN.sub(_REDACTED, value)
    result = _HEX_DIGEST_PATTERN.sub(_REDACTED, result)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # Structure only
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
