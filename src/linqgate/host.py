"""Collaborators the Linq channel consumes from the host bot runtime.

The host owns routing, sessions, media storage, reply generation, text
chunking and HTTP route registration; the channel only talks to it
through HostRuntime.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Protocol

from fastapi import APIRouter


@dataclass(frozen=True)
class AgentRoute:
    """Where an inbound conversation is routed."""

    agent_id: str
    session_key: str
    account_id: str


@dataclass(frozen=True)
class StoredMedia:
    """An inbound attachment after the host downloaded and stored it."""

    path: str
    content_type: str | None = None


@dataclass(frozen=True)
class InboundContext:
    """Normalized inbound envelope handed to the host reply pipeline.

    sender_id, from_address and text fields are PII: never log them.
    """

    body: str
    sender_id: str
    from_address: str
    to_address: str
    session_key: str
    account_id: str
    message_id: str
    chat_id: str
    timestamp_ms: int
    media: tuple[StoredMedia, ...] = ()
    chat_type: str = "direct"
    provider: str = "linq"

    @property
    def media_paths(self) -> list[str]:
        return [m.path for m in self.media]

    @property
    def media_types(self) -> list[str]:
        return [m.content_type for m in self.media if m.content_type]


@dataclass(frozen=True)
class ReplyPayload:
    """One block of the agent's reply."""

    text: str = ""
    media_urls: tuple[str, ...] = field(default_factory=tuple)


Deliver = Callable[[ReplyPayload], None]


class HostRuntime(Protocol):
    """Host services used by LinqChannel."""

    def resolve_agent_route(self, *, channel: str, account_id: str, peer_id: str) -> AgentRoute:
        """Pick the agent/session for a direct conversation."""
        ...

    def fetch_media(self, url: str, mime_type: str | None, max_bytes: int) -> StoredMedia:
        """Download a remote attachment and store it locally."""
        ...

    def record_inbound_session(self, route: AgentRoute, ctx: InboundContext) -> None:
        """Update session metadata from an inbound message."""
        ...

    def resolve_ack_reaction(self, agent_id: str, *, is_direct: bool) -> str | None:
        """Emoji to acknowledge an inbound message with, or None."""
        ...

    def dispatch_reply(
        self,
        ctx: InboundContext,
        deliver: Deliver,
        on_error: Callable[[BaseException], None],
    ) -> None:
        """Run the reply pipeline, calling deliver for each reply block."""
        ...

    def chunk_text(self, text: str, limit: int) -> list[str]:
        ...

    def format_pairing_approve_hint(self, channel: str) -> str:
        """Instructions shown to an unknown sender on how to get approved."""
        ...

    def register_route(self, path: str, router: APIRouter) -> Callable[[], None]:
        """Mount an HTTP router; returns the unregister callable."""
        ...
