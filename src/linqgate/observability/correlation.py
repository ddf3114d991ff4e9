"""Correlation and account context for log lines.

Both values live in context variables so they follow a webhook request
through the ack and into its background processing.
"""

import uuid
from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
account_id_var: ContextVar[str] = ContextVar("account_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    correlation_id_var.reset(token)


def get_account_id() -> str:
    return account_id_var.get()


def set_account_id(account_id: str) -> Token[str]:
    """Tag log lines emitted in this context with a Linq account id."""
    return account_id_var.set(account_id)


def reset_account_id(token: Token[str]) -> None:
    account_id_var.reset(token)
