"""Shared test helper functions for linqgate tests.

This module contains helpers that can be imported by individual test
files. These are NOT fixtures - they are regular functions and classes.
"""

from __future__ import annotations

import json
import time
from typing import Any

from linqgate.linq.verify import SIGNATURE_HEADER, TIMESTAMP_HEADER, compute_signature

TEST_SECRET = "whsec_test_secret"
TEST_TOKEN = "linq_test_token"
FROM_NUMBER = "+15550001111"
SENDER = "+15550002222"


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs):
        self._record("exception", *args, **kwargs)

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        parts = []
        for _, args, kwargs in self.calls:
            parts.append(str(args))
            parts.append(str(kwargs))
        return " ".join(parts)

    def messages(self, level: str | None = None) -> list[str]:
        return [args[0] for lvl, args, _ in self.calls if level is None or lvl == level]


class FakeResponse:
    """Stand-in for requests.Response with the attributes the client reads."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: str | None = None):
        self.status_code = status_code
        self._payload = payload
        if text is not None:
            self.text = text
        elif payload is not None:
            self.text = json.dumps(payload)
        else:
            self.text = ""
        self.content = self.text.encode("utf-8")

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """Records requests and replays queued responses (or raises queued errors)."""

    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "body": json.loads(data) if data else None,
                "headers": headers or {},
                "timeout": timeout,
            }
        )
        if not self._responses:
            raise AssertionError(f"unexpected request {method} {url}")
        result = self._responses.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

    def close(self):
        self.closed = True


def signed_headers(body: bytes, secret: str = TEST_SECRET, timestamp: str | None = None) -> dict:
    """Headers for a correctly signed Linq webhook delivery."""
    ts = timestamp if timestamp is not None else str(int(time.time()))
    return {
        SIGNATURE_HEADER: compute_signature(body, ts, secret),
        TIMESTAMP_HEADER: ts,
        "Content-Type": "application/json",
    }


def message_received_payload(
    *,
    message_id: str = "msg_001",
    chat_id: str = "chat_001",
    sender: str = SENDER,
    parts: list[dict] | None = None,
) -> dict:
    """Minimal message.received envelope."""
    return {
        "api_version": "v3",
        "webhook_version": "2025-01-01",
        "event_type": "message.received",
        "event_id": "evt_001",
        "created_at": "2025-01-01T00:00:00Z",
        "trace_id": "trace_001",
        "partner_id": "partner_001",
        "data": {
            "id": message_id,
            "chat": {"id": chat_id, "owner_handle": {"handle": FROM_NUMBER}},
            "sender_handle": {"handle": sender},
            "parts": parts if parts is not None else [{"type": "text", "value": "hello"}],
            "service": "iMessage",
            "sent_at": "2025-01-01T00:00:00Z",
        },
    }


def linq_cfg(**overrides) -> dict:
    """Host config with a configured default Linq account."""
    section = {
        "enabled": True,
        "apiToken": TEST_TOKEN,
        "fromNumber": FROM_NUMBER,
        "webhookSecret": TEST_SECRET,
    }
    section.update(overrides)
    return {"channels": {"linq": section}}
