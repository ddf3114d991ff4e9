"""Outbound messaging via Linq: chat resolution + send, typing, read receipts.

Security: NEVER log recipients or message text. Only log hashes and counts.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Callable, Iterable

from linqgate.infra.hashing import hash_identifier
from linqgate.observability.logging import get_logger
from linqgate.observability.redaction import safe_log_context

from .chat_store import ChatStore, describe_entry
from .client import LinqClient
from .models import Chat, MediaPart, MessagePart, SentMessage, TextPart

logger = get_logger(__name__)

_TARGET_PREFIX = re.compile(r"^linq:", re.IGNORECASE)

ClientFactory = Callable[..., LinqClient]


def strip_target_prefix(to: str) -> str:
    """Remove the adapter's "linq:" prefix from a recipient identifier."""
    return _TARGET_PREFIX.sub("", to)


def filter_parts(parts: Iterable[MessagePart]) -> list[MessagePart]:
    """Drop text parts that are blank after trimming; keep all media."""
    return [p for p in parts if not isinstance(p, TextPart) or p.value.strip()]


def _default_client(api_token: str, timeout: float | None = None) -> LinqClient:
    return LinqClient(api_token=api_token, timeout=timeout)


@dataclass(frozen=True)
class SendResult:
    """message_id is "" when nothing was sent."""

    message_id: str
    chat_id: str

    def to_dict(self) -> dict[str, str]:
        return {"message_id": self.message_id, "chat_id": self.chat_id}


class OutboundDispatcher:
    """Send and chat-scoped operations for one adapter instance.

    Chat ids come from the owned ChatStore; a chat is created on the first
    send to a recipient. Typing and read receipts need an existing chat and
    are skipped otherwise.
    """

    def __init__(self, store: ChatStore, client_factory: ClientFactory | None = None) -> None:
        self._store = store
        self._client_factory = client_factory or _default_client
        self._clients: dict[tuple[str, float | None], LinqClient] = {}
        self._clients_lock = threading.Lock()

    @property
    def store(self) -> ChatStore:
        return self._store

    def client(self, api_token: str, timeout: float | None = None) -> LinqClient:
        """Shared client for one account token. timeout=None keeps the default."""
        key = (api_token, timeout)
        with self._clients_lock:
            client = self._clients.get(key)
            if client is None:
                if timeout is None:
                    client = self._client_factory(api_token)
                else:
                    client = self._client_factory(api_token, timeout=timeout)
                self._clients[key] = client
            return client

    def close(self) -> None:
        """Close every cached client."""
        with self._clients_lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            client.close()

    def resolve_chat_id(self, recipient: str, *, client: LinqClient, from_number: str) -> str:
        """Cached chat id for recipient, creating the chat on a miss."""
        chat_id = self._store.lookup(recipient)
        if chat_id:
            return chat_id

        response = client.create_chat(from_number, [recipient])
        chat = Chat.from_dict(response.get("chat") or {})
        if not chat.id:
            raise RuntimeError("Linq create chat response missing chat id")

        self._store.write(recipient, chat.id)
        logger.info("linq chat created", extra={"extra_fields": describe_entry(recipient, chat.id)})
        return chat.id

    def send_message(
        self,
        to: str,
        parts: Iterable[MessagePart],
        *,
        api_token: str,
        from_number: str,
        preferred_service: str | None = None,
    ) -> SendResult:
        """Resolve (or create) the chat for `to` and send the non-empty parts.

        Args:
            to: Recipient phone number or handle, optionally "linq:" prefixed.
                NEVER logged.
            parts: Message parts in order.
            api_token: Partner API token.
            from_number: Sending number, used when a chat must be created.
            preferred_service: Optional delivery hint (iMessage/RCS/SMS).

        Returns:
            SendResult; message_id is "" when every part was filtered out.

        Raises:
            LinqApiError: On API failure (after retries where applicable).
        """
        recipient = strip_target_prefix(to)
        client = self.client(api_token)

        chat_id = self.resolve_chat_id(recipient, client=client, from_number=from_number)

        valid_parts = filter_parts(parts)
        log_ctx = safe_log_context(
            to_hash=hash_identifier(recipient),
            chat_id=chat_id,
            part_count=len(valid_parts),
        )
        if not valid_parts:
            logger.info("linq send skipped, no content", extra={"extra_fields": log_ctx})
            return SendResult(message_id="", chat_id=chat_id)

        response = client.send_message(chat_id, valid_parts, service=preferred_service)
        sent = SentMessage.from_dict(response)

        logger.info(
            "linq message sent",
            extra={"extra_fields": safe_log_context(**log_ctx, message_id=sent.id)},
        )
        # The chat id echoed by the API wins when present; otherwise keep
        # the one we resolved.
        return SendResult(message_id=sent.id, chat_id=sent.chat_id or chat_id)

    def send_text(
        self,
        to: str,
        text: str,
        *,
        api_token: str,
        from_number: str,
        preferred_service: str | None = None,
    ) -> SendResult:
        return self.send_message(
            to,
            [TextPart(text)],
            api_token=api_token,
            from_number=from_number,
            preferred_service=preferred_service,
        )

    def send_media(
        self,
        to: str,
        media_url: str,
        text: str | None = None,
        *,
        api_token: str,
        from_number: str,
        preferred_service: str | None = None,
    ) -> SendResult:
        """Send a media URL, preceded by an optional caption part."""
        parts: list[MessagePart] = []
        if text:
            parts.append(TextPart(text))
        parts.append(MediaPart(url=media_url))
        return self.send_message(
            to,
            parts,
            api_token=api_token,
            from_number=from_number,
            preferred_service=preferred_service,
        )

    def start_typing(self, to: str, *, api_token: str) -> bool:
        return self._with_known_chat(to, api_token, "start_typing")

    def stop_typing(self, to: str, *, api_token: str) -> bool:
        return self._with_known_chat(to, api_token, "stop_typing")

    def mark_read(self, to: str, *, api_token: str) -> bool:
        return self._with_known_chat(to, api_token, "mark_read")

    def _with_known_chat(self, to: str, api_token: str, operation: str) -> bool:
        """Run a chat-scoped client call; no-op when the chat is unknown.

        Returns:
            True if the call was made, False if skipped.
        """
        recipient = strip_target_prefix(to)
        chat_id = self._store.lookup(recipient)
        if not chat_id:
            logger.debug(
                "no known chat, skipping",
                extra={
                    "extra_fields": safe_log_context(
                        operation=operation,
                        to_hash=hash_identifier(recipient),
                    )
                },
            )
            return False

        getattr(self.client(api_token), operation)(chat_id)
        return True
