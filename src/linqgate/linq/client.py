"""Linq Partner API client.

Every call is one HTTP request through _request(), which applies the
retry policy uniformly:
- retryable: HTTP 429, HTTP >= 500, connection-level failures
- up to MAX_RETRIES retries, sleeping RETRY_BASE_SECONDS * 2**(attempt-1)
  before attempt k (1s, 2s, 4s)
- any other non-2xx is terminal and raised immediately

Security: NEVER log the API token, recipients or message content.
"""

from __future__ import annotations

import json
import os
import time
from typing import Any, Iterable
from urllib.parse import quote, urlencode

import requests

from linqgate.observability.correlation import get_correlation_id
from linqgate.observability.logging import get_logger
from linqgate.observability.redaction import safe_log_context

from .models import REACTION_TYPES, WEBHOOK_EVENT_TYPES, MessagePart

logger = get_logger(__name__)

DEFAULT_API_BASE = "https://api.linqapp.com/api/partner"

MAX_RETRIES = 3
RETRY_BASE_SECONDS = 1.0

DEFAULT_HTTP_TIMEOUT = 30.0

# Connection-level failures; HTTP status failures are classified separately
_TRANSPORT_ERRORS = (requests.ConnectionError, requests.Timeout)


class LinqApiError(Exception):
    """A Linq API call failed.

    Attributes:
        method: HTTP method.
        path: Request path (relative to the API base).
        status: HTTP status, or None for a transport failure.
        body: Response body text (or transport error description).
    """

    def __init__(self, method: str, path: str, status: int | None, body: str) -> None:
        self.method = method
        self.path = path
        self.status = status
        self.body = body
        label = status if status is not None else "network error"
        super().__init__(f"Linq API {method} {path} failed ({label}): {body}")

    @property
    def retryable(self) -> bool:
        return is_retryable_status(self.status)


def is_retryable_status(status: int | None) -> bool:
    """429, 5xx and transport failures (status None) are retryable."""
    if status is None:
        return True
    return status == 429 or status >= 500


def retry_delay(attempt: int) -> float:
    """Seconds to wait before the given attempt (attempt 0 is immediate)."""
    if attempt <= 0:
        return 0.0
    return RETRY_BASE_SECONDS * (2 ** (attempt - 1))


def _chat_path(chat_id: str, suffix: str = "") -> str:
    return f"/v3/chats/{quote(chat_id, safe='')}{suffix}"


def _default_timeout() -> float:
    try:
        return float(os.environ.get("LINQ_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT))
    except ValueError:
        return DEFAULT_HTTP_TIMEOUT


class LinqClient:
    """Thin wrapper over the Linq Partner API v3.

    Usage:
        client = LinqClient(api_token="...")
        chat = client.create_chat("+15550001111", ["+15550002222"])
        client.send_message(chat["chat"]["id"], [TextPart("hi")])
    """

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_token: Partner API bearer token.
            base_url: API base URL. Defaults to LINQ_API_BASE_URL env var, then
                the public partner endpoint.
            timeout: Per-request timeout in seconds (defaults to LINQ_HTTP_TIMEOUT).
            session: requests session to use (tests inject a fake one).

        Raises:
            RuntimeError: If no API token is provided.
        """
        if not api_token:
            raise RuntimeError("Linq API token not provided")
        self._api_token = api_token
        self._base_url = (
            base_url or os.environ.get("LINQ_API_BASE_URL") or DEFAULT_API_BASE
        ).rstrip("/")
        self._timeout = timeout if timeout is not None else _default_timeout()
        self._owns_session = session is None
        self._session = session or requests.Session()

    def close(self) -> None:
        """Release pooled connections of a session this client created."""
        if self._owns_session:
            self._session.close()

    # Chats

    def create_chat(
        self,
        from_number: str,
        to: list[str],
        *,
        initial_parts: Iterable[MessagePart] | None = None,
        service: str | None = None,
    ) -> dict[str, Any]:
        """POST /v3/chats. Returns {"chat": {...}, "trace_id": ...}."""
        body: dict[str, Any] = {"from": from_number, "to": list(to)}
        if initial_parts is not None:
            initial: dict[str, Any] = {"parts": [p.to_dict() for p in initial_parts]}
            if service:
                initial["service"] = service
            body["initial_message"] = initial
        return self._request("POST", "/v3/chats", body)

    def list_chats(self, from_number: str | None = None, cursor: str | None = None) -> dict[str, Any]:
        """GET /v3/chats. Returns {"chats": [...], "next_cursor"?: ...}."""
        params = {}
        if from_number:
            params["from"] = from_number
        if cursor:
            params["cursor"] = cursor
        path = "/v3/chats"
        if params:
            path = f"{path}?{urlencode(params)}"
        return self._request("GET", path)

    # Messages

    def send_message(
        self,
        chat_id: str,
        parts: Iterable[MessagePart],
        *,
        service: str | None = None,
        reply_to_message_id: str | None = None,
    ) -> dict[str, Any]:
        """POST /v3/chats/{chat_id}/messages."""
        message: dict[str, Any] = {"parts": [p.to_dict() for p in parts]}
        if reply_to_message_id:
            message["reply_to_message_id"] = reply_to_message_id
        body: dict[str, Any] = {"message": message}
        if service:
            body["service"] = service
        return self._request("POST", _chat_path(chat_id, "/messages"), body)

    # Typing indicators and read receipts

    def start_typing(self, chat_id: str) -> None:
        self._request("POST", _chat_path(chat_id, "/typing"))

    def stop_typing(self, chat_id: str) -> None:
        self._request("DELETE", _chat_path(chat_id, "/typing"))

    def mark_read(self, chat_id: str) -> None:
        self._request("POST", _chat_path(chat_id, "/read"))

    # Reactions

    def add_reaction(self, message_id: str, reaction_type: str) -> None:
        self._react(message_id, reaction_type, "add")

    def remove_reaction(self, message_id: str, reaction_type: str) -> None:
        self._react(message_id, reaction_type, "remove")

    def _react(self, message_id: str, reaction_type: str, operation: str) -> None:
        if reaction_type not in REACTION_TYPES:
            raise ValueError(f"unsupported reaction type: {reaction_type}")
        self._request(
            "POST",
            f"/v3/messages/{quote(message_id, safe='')}/reactions",
            {"operation": operation, "type": reaction_type},
        )

    # Webhook subscriptions

    def create_webhook_subscription(
        self, target_url: str, events: Iterable[str] = WEBHOOK_EVENT_TYPES
    ) -> dict[str, Any]:
        """POST /v3/webhook-subscriptions (all event types by default).

        The response carries the signing secret, returned only once.
        """
        body = {"target_url": target_url, "subscribed_events": list(events)}
        return self._request("POST", "/v3/webhook-subscriptions", body)

    def list_webhook_subscriptions(self) -> dict[str, Any]:
        return self._request("GET", "/v3/webhook-subscriptions")

    def delete_webhook_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._request(
            "DELETE", f"/v3/webhook-subscriptions/{quote(subscription_id, safe='')}"
        )

    # HTTP

    def _headers(self, has_body: bool) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_token}",
            "Accept": "application/json",
        }
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _request(self, method: str, path: str, body: Any = None) -> Any:
        """Execute one API call with the retry policy.

        Returns:
            Decoded JSON body, or an empty dict for 204 No Content.

        Raises:
            LinqApiError: Terminal status, or last retryable failure once the
                attempt budget is spent.
        """
        url = f"{self._base_url}{path}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        headers = self._headers(body is not None)

        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            method=method,
            path=path.split("?", 1)[0],
        )

        last_error: LinqApiError | None = None

        for attempt in range(MAX_RETRIES + 1):
            if attempt > 0:
                delay = retry_delay(attempt)
                logger.warning(
                    "linq api call failed, retrying",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx,
                            attempt=attempt,
                            delay_s=delay,
                            status=last_error.status if last_error else None,
                        )
                    },
                )
                time.sleep(delay)

            try:
                response = self._session.request(
                    method, url, data=data, headers=headers, timeout=self._timeout
                )
            except _TRANSPORT_ERRORS as e:
                last_error = LinqApiError(method, path, None, str(e))
                last_error.__cause__ = e
                continue

            status = response.status_code
            if 200 <= status < 300:
                if status == 204 or not response.content:
                    return {}
                return response.json()

            error = LinqApiError(method, path, status, response.text)
            if error.retryable:
                last_error = error
                continue

            logger.error(
                "linq api call rejected",
                extra={"extra_fields": safe_log_context(**log_ctx, attempt=attempt, status=status)},
            )
            raise error

        logger.error(
            "linq api call failed after retries",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx,
                    attempts=MAX_RETRIES + 1,
                    status=last_error.status if last_error else None,
                )
            },
        )
        if last_error:
            raise last_error
        raise LinqApiError(method, path, None, "failed after retries")
