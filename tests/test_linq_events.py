"""Tests for Linq webhook event parsing."""

from __future__ import annotations

import pytest

from linqgate.linq.events import (
    InboundMessage,
    InvalidPayloadError,
    ReactionEvent,
    StatusEvent,
    TypingEvent,
    parse_webhook_event,
)

from .helpers import FROM_NUMBER, SENDER, message_received_payload


class TestMessageReceived:
    def test_text_message(self):
        event = parse_webhook_event(message_received_payload())

        assert isinstance(event, InboundMessage)
        assert event.kind == "message"
        assert event.message_id == "msg_001"
        assert event.chat_id == "chat_001"
        assert event.sender == SENDER
        assert event.recipient == FROM_NUMBER
        assert event.text == "hello"
        assert event.attachments == ()
        assert event.service == "iMessage"

    def test_text_parts_joined_with_newline(self):
        payload = message_received_payload(
            parts=[{"type": "text", "value": "first"}, {"type": "text", "value": "second"}]
        )
        assert parse_webhook_event(payload).text == "first\nsecond"

    def test_leading_empty_part_adds_no_newline(self):
        payload = message_received_payload(
            parts=[{"type": "text", "value": ""}, {"type": "text", "value": "b"}]
        )
        assert parse_webhook_event(payload).text == "b"

    def test_media_between_text_parts_adds_no_newline(self):
        payload = message_received_payload(
            parts=[
                {"type": "text", "value": "a"},
                {"type": "media", "url": "https://cdn.example.com/a.jpg", "mime_type": "image/jpeg"},
                {"type": "text", "value": "b"},
            ]
        )
        assert parse_webhook_event(payload).text == "a\nb"

    def test_media_parts_become_attachments(self):
        payload = message_received_payload(
            parts=[
                {"type": "media", "url": "https://cdn.example.com/a.jpg", "mime_type": "image/jpeg"},
                {"type": "text", "value": "caption"},
            ]
        )
        event = parse_webhook_event(payload)

        assert event.text == "caption"
        assert len(event.attachments) == 1
        assert event.attachments[0].url == "https://cdn.example.com/a.jpg"
        assert event.attachments[0].mime_type == "image/jpeg"

    def test_no_parts_gives_empty_text(self):
        event = parse_webhook_event(message_received_payload(parts=[]))
        assert event.text == ""

    def test_missing_sender_handle_is_invalid(self):
        payload = message_received_payload()
        del payload["data"]["sender_handle"]
        with pytest.raises(InvalidPayloadError):
            parse_webhook_event(payload)

    def test_missing_chat_is_invalid(self):
        payload = message_received_payload()
        payload["data"]["chat"] = None
        with pytest.raises(InvalidPayloadError):
            parse_webhook_event(payload)

    def test_data_not_object_is_invalid(self):
        with pytest.raises(InvalidPayloadError):
            parse_webhook_event({"event_type": "message.received", "data": "oops"})


class TestOtherEvents:
    @pytest.mark.parametrize("event_type,status", [
        ("message.delivered", "delivered"),
        ("message.read", "read"),
        ("message.failed", "failed"),
    ])
    def test_status_events(self, event_type, status):
        event = parse_webhook_event(
            {"event_type": event_type, "data": {"id": "msg_9", "chat": {"id": "chat_9"}}}
        )
        assert isinstance(event, StatusEvent)
        assert event.status == status
        assert event.message_id == "msg_9"
        assert event.chat_id == "chat_9"

    def test_reaction_added(self):
        event = parse_webhook_event({
            "event_type": "reaction.added",
            "data": {"message_id": "msg_1", "chat_id": "chat_1", "from": SENDER, "reaction_type": "love"},
        })
        assert isinstance(event, ReactionEvent)
        assert event.added is True
        assert event.reaction == "love"

    def test_reaction_removed(self):
        event = parse_webhook_event({
            "event_type": "reaction.removed",
            "data": {"message_id": "msg_1", "chat_id": "chat_1", "reaction_type": "like"},
        })
        assert event.added is False

    def test_typing_started_and_stopped(self):
        started = parse_webhook_event({
            "event_type": "chat.typing_indicator.started",
            "data": {"chat_id": "chat_1", "from": SENDER},
        })
        stopped = parse_webhook_event({
            "event_type": "chat.typing_indicator.stopped",
            "data": {"chat_id": "chat_1"},
        })
        assert isinstance(started, TypingEvent)
        assert started.started is True
        assert stopped.started is False


class TestUnknownEvents:
    def test_unknown_event_type_returns_none(self):
        assert parse_webhook_event({"event_type": "chat.created", "data": {}}) is None

    def test_missing_event_type_returns_none(self):
        assert parse_webhook_event({"data": {}}) is None

    def test_non_object_body_is_invalid(self):
        with pytest.raises(InvalidPayloadError):
            parse_webhook_event(["not", "an", "object"])
