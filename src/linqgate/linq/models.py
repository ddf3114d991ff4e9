"""Linq Partner API v3 shapes.

Request parts are serialised with to_dict(); responses are parsed with
from_dict() and keep only the fields this adapter reads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

Service = Literal["iMessage", "RCS", "SMS"]

ReactionType = Literal["love", "like", "dislike", "laugh", "emphasize", "question"]

REACTION_TYPES: tuple[str, ...] = ("love", "like", "dislike", "laugh", "emphasize", "question")

WEBHOOK_EVENT_TYPES: tuple[str, ...] = (
    "message.received",
    "message.delivered",
    "message.read",
    "message.failed",
    "reaction.added",
    "reaction.removed",
    "chat.typing_indicator.started",
    "chat.typing_indicator.stopped",
)


@dataclass(frozen=True)
class TextPart:
    """Text content of a message."""

    value: str
    type: Literal["text"] = field(default="text", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "value": self.value}


@dataclass(frozen=True)
class MediaPart:
    """Media reference of a message (the provider fetches the URL)."""

    url: str
    mime_type: str | None = None
    filename: str | None = None
    type: Literal["media"] = field(default="media", init=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "media", "url": self.url}
        if self.mime_type:
            data["mime_type"] = self.mime_type
        if self.filename:
            data["filename"] = self.filename
        return data


MessagePart = Union[TextPart, MediaPart]


def part_from_dict(data: dict[str, Any]) -> MessagePart | None:
    """Parse one wire part. Unknown part types yield None."""
    part_type = data.get("type")
    if part_type == "text":
        return TextPart(value=str(data.get("value") or ""))
    if part_type == "media":
        return MediaPart(
            url=str(data.get("url") or ""),
            mime_type=data.get("mime_type"),
            filename=data.get("filename"),
        )
    return None


@dataclass(frozen=True)
class Chat:
    """Provider-side conversation between a from number and participants."""

    id: str
    from_number: str
    participants: tuple[str, ...] = ()
    service: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Chat":
        return cls(
            id=str(data.get("id", "")),
            from_number=str(data.get("from", "")),
            participants=tuple(data.get("participants") or ()),
            service=data.get("service"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class ChatPage:
    """One page of GET /v3/chats."""

    chats: tuple[Chat, ...]
    next_cursor: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatPage":
        return cls(
            chats=tuple(Chat.from_dict(c) for c in data.get("chats") or ()),
            next_cursor=data.get("next_cursor"),
        )


@dataclass(frozen=True)
class SentMessage:
    """Result of POST /v3/chats/{id}/messages."""

    id: str
    chat_id: str | None
    status: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SentMessage":
        message = data.get("message") or {}
        # Top-level chat_id is not part of the documented response; the
        # message's own chat_id is.
        chat_id = data.get("chat_id") or message.get("chat_id")
        return cls(
            id=str(message.get("id") or ""),
            chat_id=chat_id or None,
            status=message.get("status"),
        )


@dataclass(frozen=True)
class WebhookSubscription:
    """Webhook subscription. signing_secret is only returned on create."""

    id: str
    target_url: str
    subscribed_events: tuple[str, ...]
    is_active: bool
    signing_secret: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WebhookSubscription":
        return cls(
            id=str(data.get("id", "")),
            target_url=str(data.get("target_url", "")),
            subscribed_events=tuple(data.get("subscribed_events") or ()),
            is_active=bool(data.get("is_active", False)),
            signing_secret=data.get("signing_secret"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
