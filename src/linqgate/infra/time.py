"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    """Milliseconds since the Unix epoch, as recorded in runtime state."""
    return int(utc_now().timestamp() * 1000)
