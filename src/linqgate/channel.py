"""Linq channel: the adapter the host bot runtime talks to.

One LinqChannel owns its chat store, its outbound dispatcher and the
runtime state of every account it started. Host-facing entry points:
resolve_account, start, stop, send_text, send_media, probe, handle_action.

Security: NEVER log sender/recipient identifiers, message text or tokens.
"""

from __future__ import annotations

import re
from typing import Any, Callable

import requests

from linqgate.api.routes.webhooks_linq import create_webhook_router
from linqgate.config import (
    DEFAULT_WEBHOOK_PATH,
    ResolvedAccount,
    linq_section,
    list_account_ids,
    normalize_account_id,
    require_api_token,
    require_from_number,
    resolve_account,
)
from linqgate.host import HostRuntime, InboundContext, ReplyPayload, StoredMedia
from linqgate.infra.background import fire_and_forget
from linqgate.infra.time import epoch_ms
from linqgate.linq.chat_store import ChatStore
from linqgate.linq.client import LinqApiError
from linqgate.linq.events import InboundMessage
from linqgate.linq.models import ChatPage
from linqgate.linq.outbound import OutboundDispatcher, SendResult
from linqgate.linq.reactions import DEFAULT_REACTION, DEFAULT_REACTION_EMOJI, emoji_to_reaction
from linqgate.observability.correlation import reset_account_id, set_account_id
from linqgate.observability.logging import get_logger
from linqgate.observability.redaction import safe_log_context

logger = get_logger(__name__)

CHANNEL_ID = "linq"
TARGET_PREFIX = "linq:"
TEXT_CHUNK_LIMIT = 10000
MAX_INBOUND_MEDIA_BYTES = 10 * 1024 * 1024
MEDIA_PLACEHOLDER = "<media:image>"
DEFAULT_PROBE_TIMEOUT = 10.0
DEFAULT_DM_POLICY = "pairing"
DEFAULT_GROUP_POLICY = "allowlist"

CAPABILITIES: dict[str, Any] = {
    "chat_types": ["direct", "group"],
    "reactions": True,
    "threads": True,
    "media": True,
    "native_commands": False,
    "block_streaming": True,
}

MESSAGE_TOOL_HINTS = (
    "You can react to messages using iMessage tapbacks via the react action (with the message tool). "
    "Available reaction types: love (❤️), like (👍), dislike (👎), laugh (😂), emphasize (‼️), question (❓).",
    "Use reactions naturally as part of conversation, the way a real person would in iMessage:",
    '- 👍 (like) when a simple acknowledgment is enough and no text reply is needed (e.g. "sounds good", "ok got it")',
    "- ❤️ (love) for heartfelt, kind, or appreciative messages",
    "- 😂 (laugh) for genuinely funny messages",
    "- ‼️ (emphasize) for important or exciting news",
    "- ❓ (question) when something is confusing or you need clarification",
    "You can react AND reply, or just react when a tapback alone says it all. Don't overuse reactions.",
)

_PREFIX_PATTERN = re.compile(r"^linq:", re.IGNORECASE)
_ID_PATTERN = re.compile(r"^\+?\d{10,15}$")
_PHONE_CHARS = re.compile(r"^\+?[\d\s\-().]+$")

Background = Callable[..., Any]


class LinqActionError(ValueError):
    """An agent action was called with invalid parameters."""

    pass


def normalize_target(raw: str | None) -> str | None:
    """Normalize a user-supplied target to a Linq recipient.

    Strips the "linq:" prefix; phone-looking values become E.164
    ("+" and digits), anything else is returned as a handle.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        return None
    cleaned = _PREFIX_PATTERN.sub("", trimmed).strip()
    if not cleaned:
        return None
    if _PHONE_CHARS.match(cleaned):
        digits = re.sub(r"\D", "", cleaned)
        if 7 <= len(digits) <= 15:
            return f"+{digits}"
    return cleaned


def looks_like_id(raw: str | None) -> bool:
    trimmed = (raw or "").strip()
    if not trimmed:
        return False
    return bool(_ID_PATTERN.match(trimmed) or _PREFIX_PATTERN.match(trimmed))


def collect_status_issues(snapshots: list[dict[str, Any]]) -> list[dict[str, str]]:
    """Config and runtime issues for a list of account snapshots."""
    issues: list[dict[str, str]] = []
    for snapshot in snapshots:
        account_id = snapshot.get("account_id") or "default"
        if not snapshot.get("configured"):
            issues.append({
                "channel": CHANNEL_ID,
                "account_id": account_id,
                "kind": "config",
                "message": "Linq API token or fromNumber not configured",
            })
        last_error = snapshot.get("last_error")
        if isinstance(last_error, str) and last_error.strip():
            issues.append({
                "channel": CHANNEL_ID,
                "account_id": account_id,
                "kind": "runtime",
                "message": f"Channel error: {last_error.strip()}",
            })
    return issues


class LinqChannel:
    """Linq (iMessage/RCS/SMS) channel adapter.

    Args:
        host: Host runtime collaborators.
        store: Chat store (defaults to the file under the state directory).
        dispatcher: Outbound dispatcher (defaults to one over `store`).
        background: Runner for best-effort calls, fire_and_forget by default.
    """

    def __init__(
        self,
        host: HostRuntime,
        *,
        store: ChatStore | None = None,
        dispatcher: OutboundDispatcher | None = None,
        background: Background = fire_and_forget,
    ) -> None:
        self._host = host
        self._dispatcher = dispatcher or OutboundDispatcher(store or ChatStore())
        self._store = self._dispatcher.store
        self._background = background
        self._runtime_state: dict[str, dict[str, Any]] = {}
        self._running: dict[str, Callable[[], None]] = {}

    @property
    def store(self) -> ChatStore:
        return self._store

    @property
    def capabilities(self) -> dict[str, Any]:
        return dict(CAPABILITIES)

    @property
    def dispatcher(self) -> OutboundDispatcher:
        return self._dispatcher

    # Accounts

    def resolve_account(self, cfg: dict[str, Any], account_id: str | None = None) -> ResolvedAccount:
        return resolve_account(cfg, account_id)

    def list_account_ids(self, cfg: dict[str, Any]) -> list[str]:
        return list_account_ids(cfg)

    def is_configured(self, account: ResolvedAccount) -> bool:
        return account.configured

    def describe_account(self, account: ResolvedAccount) -> dict[str, Any]:
        return {
            "account_id": account.account_id,
            "name": account.name,
            "enabled": account.enabled,
            "configured": account.configured,
            "token_source": account.token_source,
            "from_number": account.from_number,
        }

    # Security

    def resolve_allow_from(self, cfg: dict[str, Any], account_id: str | None = None) -> list[str]:
        return [str(entry) for entry in self.resolve_account(cfg, account_id).config.allow_from or []]

    def format_allow_from(self, allow_from: list[Any]) -> list[str]:
        return [str(entry).strip() for entry in allow_from if str(entry).strip()]

    def resolve_dm_policy(self, cfg: dict[str, Any], account: ResolvedAccount) -> dict[str, Any]:
        """Direct-message policy settings for the host to enforce.

        Paths point at the account section when the account has one,
        otherwise at the base channels.linq section.
        """
        accounts = linq_section(cfg).get("accounts") or {}
        has_account_section = any(normalize_account_id(key) == account.account_id for key in accounts)
        base_path = (
            f"channels.linq.accounts.{account.account_id}."
            if has_account_section
            else "channels.linq."
        )
        return {
            "policy": account.config.dm_policy or DEFAULT_DM_POLICY,
            "allow_from": list(account.config.allow_from or []),
            "policy_path": f"{base_path}dmPolicy",
            "allow_from_path": base_path,
            "approve_hint": self._host.format_pairing_approve_hint(CHANNEL_ID),
        }

    def collect_warnings(self, cfg: dict[str, Any], account: ResolvedAccount) -> list[str]:
        """Config warnings; an open group policy lets any member trigger the agent."""
        defaults = ((cfg or {}).get("channels") or {}).get("defaults") or {}
        group_policy = account.config.group_policy or defaults.get("groupPolicy") or DEFAULT_GROUP_POLICY
        if group_policy != "open":
            return []
        return [
            '- Linq groups: groupPolicy="open" allows any member to trigger. '
            'Set channels.linq.groupPolicy="allowlist" to restrict.'
        ]

    def list_actions(self) -> list[str]:
        return ["send", "react"]

    def message_tool_hints(self) -> list[str]:
        return list(MESSAGE_TOOL_HINTS)

    def chunk_text(self, text: str) -> list[str]:
        return self._host.chunk_text(text, TEXT_CHUNK_LIMIT)

    # Lifecycle

    def start(self, cfg: dict[str, Any], account_id: str | None = None) -> None:
        """Start receiving webhooks for one account.

        Resets the chat store cache, probes the API (failure is only
        logged) and registers the webhook route with the host.

        Raises:
            LinqConfigError: If the API token or from number is missing.
        """
        account = self.resolve_account(cfg, account_id)
        require_api_token(account)
        require_from_number(account)

        if account.account_id in self._running:
            self.stop(account.account_id)

        self._store.reset_cache()
        self._record_state(
            account.account_id,
            running=True,
            last_start_at=epoch_ms(),
            last_error=None,
        )

        probe = self.probe(account)
        if probe["ok"]:
            logger.info(
                "linq connected",
                extra={
                    "extra_fields": safe_log_context(
                        account_id=account.account_id,
                        chat_count=probe["chat_count"],
                    )
                },
            )
        else:
            logger.warning(
                "linq probe failed",
                extra={
                    "extra_fields": safe_log_context(
                        account_id=account.account_id,
                        error=probe["error"],
                    )
                },
            )

        webhook_path = account.config.webhook_path or DEFAULT_WEBHOOK_PATH
        router = create_webhook_router(
            path=webhook_path,
            webhook_secret=(account.config.webhook_secret or "").strip(),
            on_message=lambda msg: self.handle_inbound_message(account, msg),
            on_error=lambda err: self._on_webhook_error(account, err),
        )
        self._running[account.account_id] = self._host.register_route(webhook_path, router)

        logger.info(
            "linq webhook registered",
            extra={
                "extra_fields": safe_log_context(
                    account_id=account.account_id,
                    path=webhook_path,
                )
            },
        )

    def stop(self, account_id: str) -> None:
        """Unregister the account's webhook route. In-flight sends are not cancelled."""
        unregister = self._running.pop(account_id, None)
        if unregister is None:
            return
        logger.info(
            "stopping linq provider",
            extra={"extra_fields": safe_log_context(account_id=account_id)},
        )
        unregister()
        self._record_state(account_id, running=False, last_stop_at=epoch_ms())

    def is_running(self, account_id: str) -> bool:
        return account_id in self._running

    def close(self) -> None:
        """Stop every account and release pooled API connections."""
        for account_id in list(self._running):
            self.stop(account_id)
        self._dispatcher.close()

    # Inbound

    def handle_inbound_message(self, account: ResolvedAccount, msg: InboundMessage) -> None:
        """Hand one inbound message to the host reply pipeline.

        Called after the webhook ack. Best-effort steps (read receipt, ack
        reaction, typing indicator, session bookkeeping, media download)
        never abort delivery of the reply.
        """
        token = set_account_id(account.account_id)
        try:
            self._handle_inbound(account, msg)
        finally:
            reset_account_id(token)

    def _handle_inbound(self, account: ResolvedAccount, msg: InboundMessage) -> None:
        account_id = account.account_id
        api_token = account.api_token
        self._record_state(account_id, last_inbound_at=epoch_ms())

        # The provider already owns this chat; remember it for replies.
        self._store.write(msg.sender, msg.chat_id)

        media = self._download_attachments(msg)

        raw_body = msg.text or (MEDIA_PLACEHOLDER if media else "")
        if not raw_body:
            logger.info(
                "linq inbound message without content dropped",
                extra={"extra_fields": safe_log_context(message_id=msg.message_id)},
            )
            return

        route = self._host.resolve_agent_route(
            channel=CHANNEL_ID,
            account_id=account_id,
            peer_id=msg.sender,
        )

        ctx = InboundContext(
            body=raw_body,
            sender_id=msg.sender,
            from_address=f"{TARGET_PREFIX}{msg.sender}",
            to_address=f"{TARGET_PREFIX}{account.from_number}",
            session_key=route.session_key,
            account_id=route.account_id,
            message_id=msg.message_id,
            chat_id=msg.chat_id,
            timestamp_ms=epoch_ms(),
            media=tuple(media),
        )

        self._background("record_session", self._host.record_inbound_session, route, ctx)
        self._background("mark_read", self._dispatcher.mark_read, msg.sender, api_token=api_token)
        self._maybe_ack_reaction(account, route.agent_id, msg.message_id)
        self._background("start_typing", self._dispatcher.start_typing, msg.sender, api_token=api_token)

        def deliver(payload: ReplyPayload) -> None:
            opts = {
                "api_token": api_token,
                "from_number": account.from_number,
                "preferred_service": account.preferred_service,
            }
            if payload.text:
                self._dispatcher.send_text(msg.sender, payload.text, **opts)
            for url in payload.media_urls:
                self._dispatcher.send_media(msg.sender, url, None, **opts)
            self._record_state(account_id, last_outbound_at=epoch_ms())

        def on_error(err: BaseException) -> None:
            logger.error(
                "linq reply delivery failed",
                extra={
                    "extra_fields": safe_log_context(
                        error_type=type(err).__name__,
                        status=getattr(err, "status", None),
                    )
                },
            )

        try:
            self._host.dispatch_reply(ctx, deliver, on_error)
        finally:
            self._background("stop_typing", self._dispatcher.stop_typing, msg.sender, api_token=api_token)

    def _download_attachments(self, msg: InboundMessage) -> list[StoredMedia]:
        stored: list[StoredMedia] = []
        for index, attachment in enumerate(msg.attachments):
            try:
                stored.append(
                    self._host.fetch_media(
                        attachment.url,
                        attachment.mime_type,
                        MAX_INBOUND_MEDIA_BYTES,
                    )
                )
            except Exception as e:
                logger.warning(
                    "failed to download attachment",
                    extra={
                        "extra_fields": safe_log_context(
                            message_id=msg.message_id,
                            index=index,
                            error_type=type(e).__name__,
                        )
                    },
                )
        return stored

    def _maybe_ack_reaction(self, account: ResolvedAccount, agent_id: str, message_id: str) -> None:
        if not message_id:
            return
        emoji = self._host.resolve_ack_reaction(agent_id, is_direct=True)
        if not emoji:
            return
        reaction = emoji_to_reaction(emoji)
        if not reaction:
            return
        client = self._dispatcher.client(account.api_token)
        self._background("ack_reaction", client.add_reaction, message_id, reaction)

    def _on_webhook_error(self, account: ResolvedAccount, err: BaseException) -> None:
        logger.error(
            "linq webhook error",
            extra={
                "extra_fields": safe_log_context(
                    account_id=account.account_id,
                    error_type=type(err).__name__,
                )
            },
        )
        self._record_state(account.account_id, last_error=type(err).__name__)

    # Outbound

    def _send_options(self, account: ResolvedAccount) -> dict[str, str]:
        return {
            "api_token": require_api_token(account),
            "from_number": account.from_number,
            "preferred_service": account.preferred_service,
        }

    def send_text(
        self,
        cfg: dict[str, Any],
        to: str,
        text: str,
        account_id: str | None = None,
    ) -> dict[str, str]:
        """Send a text message. Blank text is a no-op."""
        if not (text or "").strip():
            return {"channel": CHANNEL_ID, "message_id": "", "chat_id": ""}
        account = self.resolve_account(cfg, account_id)
        result = self._dispatcher.send_text(to, text, **self._send_options(account))
        self._record_state(account.account_id, last_outbound_at=epoch_ms())
        return {"channel": CHANNEL_ID, **result.to_dict()}

    def send_media(
        self,
        cfg: dict[str, Any],
        to: str,
        media_url: str,
        text: str | None = None,
        account_id: str | None = None,
    ) -> dict[str, str]:
        """Send a media URL with an optional caption."""
        account = self.resolve_account(cfg, account_id)
        result = self._dispatcher.send_media(to, media_url, text or None, **self._send_options(account))
        self._record_state(account.account_id, last_outbound_at=epoch_ms())
        return {"channel": CHANNEL_ID, **result.to_dict()}

    def notify_approval(self, cfg: dict[str, Any], sender_id: str, message: str) -> SendResult:
        """Tell a sender their pairing request was approved."""
        account = self.resolve_account(cfg)
        return self._dispatcher.send_text(sender_id, message, **self._send_options(account))

    # Agent actions

    def handle_action(
        self,
        action: str,
        params: dict[str, Any],
        cfg: dict[str, Any],
        account_id: str | None = None,
    ) -> dict[str, Any]:
        """Run an agent-initiated action ("send" or "react").

        Raises:
            LinqConfigError: If the API token is missing.
            LinqActionError: If parameters are invalid or the action is unknown.
            LinqApiError: If the API call fails.
        """
        account = self.resolve_account(cfg, account_id)
        require_api_token(account)

        if action == "react":
            return self._react(account, params)
        if action == "send":
            return self._send_action(account, params)
        raise LinqActionError(f"Action {action} is not supported for channel linq.")

    def _react(self, account: ResolvedAccount, params: dict[str, Any]) -> dict[str, Any]:
        message_id = params.get("messageId") or params.get("message_id")
        if not message_id:
            raise LinqActionError("messageId is required for react action")
        emoji = str(params.get("emoji") or DEFAULT_REACTION_EMOJI).strip()
        remove = params.get("remove") is True
        reaction = emoji_to_reaction(emoji) or DEFAULT_REACTION

        client = self._dispatcher.client(account.api_token)
        if remove:
            client.remove_reaction(message_id, reaction)
        else:
            client.add_reaction(message_id, reaction)
        return {"ok": True, "action": "removed" if remove else "added", "reaction": reaction}

    def _send_action(self, account: ResolvedAccount, params: dict[str, Any]) -> dict[str, Any]:
        to = str(params.get("to") or "").strip()
        if not to:
            raise LinqActionError("to is required for send action")
        text = str(params.get("message") or "")
        media_url = str(params.get("media") or "").strip()
        if not text and not media_url:
            raise LinqActionError("message or media is required for send action")

        opts = self._send_options(account)
        if media_url:
            result = self._dispatcher.send_media(to, media_url, text or None, **opts)
        else:
            result = self._dispatcher.send_text(to, text, **opts)
        self._record_state(account.account_id, last_outbound_at=epoch_ms())
        return {"ok": True, **result.to_dict()}

    # Status

    def probe(self, account: ResolvedAccount, timeout: float = DEFAULT_PROBE_TIMEOUT) -> dict[str, Any]:
        """List chats from the account's number to check credentials. Never raises."""
        if not account.api_token:
            return {"ok": False, "error": "No API token"}
        try:
            client = self._dispatcher.client(account.api_token, timeout=timeout)
            page = ChatPage.from_dict(client.list_chats(account.from_number or None))
        except (LinqApiError, requests.RequestException, RuntimeError, ValueError) as e:
            self._record_state(account.account_id, last_probe_at=epoch_ms())
            return {"ok": False, "error": str(e)}
        self._record_state(account.account_id, last_probe_at=epoch_ms())
        return {"ok": True, "chat_count": len(page.chats)}

    def runtime_state(self, account_id: str) -> dict[str, Any]:
        state = {
            "account_id": account_id,
            "running": False,
            "last_start_at": None,
            "last_stop_at": None,
            "last_error": None,
        }
        state.update(self._runtime_state.get(account_id, {}))
        return state

    def build_account_snapshot(
        self,
        account: ResolvedAccount,
        probe: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        runtime = self.runtime_state(account.account_id)
        return {
            **self.describe_account(account),
            "running": runtime["running"],
            "last_start_at": runtime["last_start_at"],
            "last_stop_at": runtime["last_stop_at"],
            "last_error": runtime["last_error"],
            "last_inbound_at": runtime.get("last_inbound_at"),
            "last_outbound_at": runtime.get("last_outbound_at"),
            "last_probe_at": runtime.get("last_probe_at"),
            "mode": "webhook",
            "probe": probe,
        }

    def _record_state(self, account_id: str, **state: Any) -> None:
        self._runtime_state.setdefault(account_id, {}).update(state)

