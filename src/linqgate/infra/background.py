"""Detached best-effort calls.

Typing indicators, read receipts, ack reactions and session bookkeeping
must never hold up or fail the reply flow. They run on a daemon thread;
the outcome is only logged.
"""

import contextvars
import threading
from typing import Any, Callable

from linqgate.observability.logging import get_logger
from linqgate.observability.redaction import safe_log_context

logger = get_logger(__name__)


def run_best_effort(label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> bool:
    """Call fn synchronously, logging and swallowing any failure.

    Returns:
        True if the call completed, False if it raised.
    """
    try:
        fn(*args, **kwargs)
    except Exception as e:
        logger.warning(
            "best-effort call failed",
            extra={
                "extra_fields": safe_log_context(
                    operation=label,
                    error_type=type(e).__name__,
                )
            },
        )
        return False
    return True


def fire_and_forget(label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> threading.Thread:
    """Start fn on a daemon thread and return immediately.

    The caller's context (correlation/account ids) is copied so log lines
    from the detached call stay attributable.

    Args:
        label: Short operation name used in the failure log line.
        fn: Callable to run.

    Returns:
        The started thread (tests join it; production code ignores it).
    """
    ctx = contextvars.copy_context()
    thread = threading.Thread(
        target=ctx.run,
        args=(run_best_effort, label, fn, *args),
        kwargs=kwargs,
        name=f"linq-{label}",
        daemon=True,
    )
    thread.start()
    return thread
