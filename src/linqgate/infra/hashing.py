"""Hashing utilities for log-safe identifiers.

Recipient phone numbers and handles never appear in logs; log lines carry
a short, non-reversible digest instead so one conversation can still be
followed across entries.
"""

import hashlib


def hash_identifier(value: str) -> str:
    """Return the first 12 hex chars of sha256(value)."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]
