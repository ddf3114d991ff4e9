"""Linq webhook envelope -> normalized domain events.

The envelope (api/webhook versions, trace id, partner id, event id) is not
kept past parsing; each event carries only what the adapter acts on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

STATUS_EVENT_TYPES = ("message.delivered", "message.read", "message.failed")
REACTION_EVENT_TYPES = ("reaction.added", "reaction.removed")
TYPING_EVENT_TYPES = ("chat.typing_indicator.started", "chat.typing_indicator.stopped")


class InvalidPayloadError(Exception):
    """Raised when a recognised event type carries a malformed data blob."""

    pass


@dataclass(frozen=True)
class Attachment:
    """Media attached to an inbound message."""

    url: str
    mime_type: str | None = None
    filename: str | None = None


@dataclass(frozen=True)
class InboundMessage:
    """message.received.

    sender and recipient are PII (phone numbers / handles): never log them.
    """

    message_id: str
    chat_id: str
    sender: str
    recipient: str
    text: str
    attachments: tuple[Attachment, ...] = ()
    service: str | None = None
    sent_at: str | None = None
    kind: Literal["message"] = field(default="message", init=False)


@dataclass(frozen=True)
class StatusEvent:
    """message.delivered / message.read / message.failed."""

    message_id: str
    chat_id: str
    status: str
    kind: Literal["status"] = field(default="status", init=False)


@dataclass(frozen=True)
class ReactionEvent:
    """reaction.added / reaction.removed."""

    message_id: str
    chat_id: str
    sender: str
    reaction: str
    added: bool
    kind: Literal["reaction"] = field(default="reaction", init=False)


@dataclass(frozen=True)
class TypingEvent:
    """chat.typing_indicator.started / stopped."""

    chat_id: str
    sender: str
    started: bool
    kind: Literal["typing"] = field(default="typing", init=False)


WebhookEvent = Union[InboundMessage, StatusEvent, ReactionEvent, TypingEvent]


def parse_webhook_event(payload: dict[str, Any]) -> WebhookEvent | None:
    """Map one decoded webhook envelope to a normalized event.

    Args:
        payload: Decoded JSON body ({"event_type": ..., "data": {...}, ...}).

    Returns:
        The normalized event, or None for event types this adapter does not
        handle.

    Raises:
        InvalidPayloadError: If a handled event type has a malformed data blob.
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError("webhook body is not an object")

    event_type = payload.get("event_type")
    data = payload.get("data")

    if event_type == "message.received":
        return _parse_message_received(_require_dict(data, "data"))
    if event_type in STATUS_EVENT_TYPES:
        return _parse_status(event_type, _require_dict(data, "data"))
    if event_type in REACTION_EVENT_TYPES:
        return _parse_reaction(event_type, _require_dict(data, "data"))
    if event_type in TYPING_EVENT_TYPES:
        return _parse_typing(event_type, _require_dict(data, "data"))
    return None


def _parse_message_received(data: dict[str, Any]) -> InboundMessage:
    text = ""
    attachments: list[Attachment] = []

    parts = data.get("parts") or []
    if not isinstance(parts, list):
        raise InvalidPayloadError("parts is not a list")

    for part in parts:
        if not isinstance(part, dict):
            continue
        if part.get("type") == "text":
            # Leading empty parts add no separator.
            text += ("\n" if text else "") + str(part.get("value") or "")
        elif part.get("type") == "media":
            attachments.append(
                Attachment(
                    url=str(part.get("url") or ""),
                    mime_type=part.get("mime_type"),
                    filename=part.get("filename"),
                )
            )

    chat = _require_dict(data.get("chat"), "chat")
    sender_handle = _require_dict(data.get("sender_handle"), "sender_handle")
    owner_handle = chat.get("owner_handle") or {}

    return InboundMessage(
        message_id=_require_str(data, "id"),
        chat_id=_require_str(chat, "id"),
        sender=_require_str(sender_handle, "handle"),
        recipient=str(owner_handle.get("handle") or "") if isinstance(owner_handle, dict) else "",
        text=text,
        attachments=tuple(attachments),
        service=data.get("service"),
        sent_at=data.get("sent_at"),
    )


def _parse_status(event_type: str, data: dict[str, Any]) -> StatusEvent:
    chat = _require_dict(data.get("chat"), "chat")
    return StatusEvent(
        message_id=_require_str(data, "id"),
        chat_id=_require_str(chat, "id"),
        status=event_type.removeprefix("message."),
    )


def _parse_reaction(event_type: str, data: dict[str, Any]) -> ReactionEvent:
    return ReactionEvent(
        message_id=_require_str(data, "message_id"),
        chat_id=_require_str(data, "chat_id"),
        sender=str(data.get("from") or ""),
        reaction=str(data.get("reaction_type") or ""),
        added=event_type == "reaction.added",
    )


def _parse_typing(event_type: str, data: dict[str, Any]) -> TypingEvent:
    return TypingEvent(
        chat_id=_require_str(data, "chat_id"),
        sender=str(data.get("from") or ""),
        started=event_type == "chat.typing_indicator.started",
    )


def _require_dict(value: Any, name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise InvalidPayloadError(f"missing or invalid {name}")
    return value


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not value or not isinstance(value, str):
        raise InvalidPayloadError(f"missing or invalid {key}")
    return value
