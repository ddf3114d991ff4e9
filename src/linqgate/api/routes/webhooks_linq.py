"""Linq webhook route.

Request lifecycle:
- GET:  health probe, 200 "OK"
- POST: read raw body -> verify signature -> 401 on failure, otherwise
        200 {"status": "ok"} is sent BEFORE the event is parsed and
        dispatched (background task after the response)
- other methods: 405

Once the ack is sent, processing failures are only logged: the provider
never sees an error for an authenticated delivery.

Security: NEVER log the signing secret, the signature, sender handles or
message text.
"""

from __future__ import annotations

import json
from typing import Any, Callable

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.background import BackgroundTask

from linqgate.infra.hashing import hash_identifier
from linqgate.linq.events import (
    InboundMessage,
    InvalidPayloadError,
    WebhookEvent,
    parse_webhook_event,
)
from linqgate.linq.verify import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    SignatureVerificationError,
    verify_signature,
)
from linqgate.observability.correlation import (
    get_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from linqgate.observability.logging import get_logger
from linqgate.observability.redaction import safe_log_context

logger = get_logger(__name__)

MessageHandler = Callable[[InboundMessage], Any]
EventHandler = Callable[[WebhookEvent], Any]
ErrorHandler = Callable[[BaseException], Any]

_ALLOWED_METHODS = "GET, POST"
_OTHER_METHODS = ["PUT", "PATCH", "DELETE", "OPTIONS"]


def process_webhook_body(
    raw_body: bytes,
    *,
    on_message: MessageHandler,
    on_event: EventHandler | None = None,
    on_error: ErrorHandler | None = None,
    correlation_id: str = "",
) -> None:
    """Parse and dispatch one authenticated delivery. Never raises.

    Args:
        raw_body: Verified request body.
        on_message: Called with each inbound message.
        on_event: Called with status/reaction/typing events, if given.
        on_error: Called with any exception raised while dispatching.
        correlation_id: Correlation id of the originating request.
    """
    token = set_correlation_id(correlation_id) if correlation_id else None
    try:
        _dispatch(raw_body, on_message, on_event)
    except Exception as e:
        logger.exception(
            "linq webhook processing failed",
            extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
        )
        if on_error is not None:
            try:
                on_error(e)
            except Exception:
                logger.exception("linq webhook error handler failed")
    finally:
        if token is not None:
            reset_correlation_id(token)


def _dispatch(
    raw_body: bytes,
    on_message: MessageHandler,
    on_event: EventHandler | None,
) -> None:
    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning("linq webhook body is not valid JSON")
        return

    try:
        event = parse_webhook_event(payload)
    except InvalidPayloadError as e:
        logger.warning(
            "linq webhook payload malformed",
            extra={
                "extra_fields": safe_log_context(
                    event_type=payload.get("event_type") if isinstance(payload, dict) else None,
                    error=str(e),
                )
            },
        )
        return

    if event is None:
        logger.info(
            "unhandled linq webhook event type",
            extra={"extra_fields": safe_log_context(event_type=str(payload.get("event_type")))},
        )
        return

    if isinstance(event, InboundMessage):
        logger.info(
            "linq inbound message",
            extra={
                "extra_fields": safe_log_context(
                    from_hash=hash_identifier(event.sender),
                    chat_id=event.chat_id,
                    text_len=len(event.text),
                    attachments=len(event.attachments),
                )
            },
        )
        on_message(event)
        return

    if event.kind == "status":
        log_ctx = safe_log_context(message_id=event.message_id, status=event.status)
    elif event.kind == "reaction":
        log_ctx = safe_log_context(
            message_id=event.message_id,
            reaction=event.reaction,
            added=event.added,
            from_hash=hash_identifier(event.sender),
        )
    else:
        log_ctx = safe_log_context(
            chat_id=event.chat_id,
            started=event.started,
            from_hash=hash_identifier(event.sender),
        )
    logger.info(f"linq {event.kind} event", extra={"extra_fields": log_ctx})

    if on_event is not None:
        on_event(event)


def create_webhook_router(
    *,
    path: str,
    webhook_secret: str,
    on_message: MessageHandler,
    on_event: EventHandler | None = None,
    on_error: ErrorHandler | None = None,
) -> APIRouter:
    """Build the webhook router for one Linq account.

    Args:
        path: Route path (e.g. "/__linq__/webhook").
        webhook_secret: Subscription signing secret. Empty rejects every POST.
        on_message: Inbound message callback (runs after the ack).
        on_event: Optional callback for non-message events.
        on_error: Optional callback for failures, before or after the ack.

    Returns:
        APIRouter to be mounted by the host.
    """
    router = APIRouter(tags=["webhooks"])

    @router.get(path)
    async def linq_webhook_health() -> Response:
        return PlainTextResponse("OK", status_code=200)

    @router.api_route(path, methods=_OTHER_METHODS)
    async def linq_webhook_method_not_allowed() -> Response:
        return JSONResponse(
            {"error": "Method Not Allowed"},
            status_code=405,
            headers={"Allow": _ALLOWED_METHODS},
        )

    @router.post(path)
    async def linq_webhook(request: Request) -> Response:
        """Receive a Linq webhook delivery.

        Returns:
            200 {"status": "ok"} once authenticated (processing happens after).
            401 {"error": "Unauthorized", "reason": ...} on failed verification.
            500 {"error": "Internal server error"} on unexpected failure before the ack.
        """
        correlation_id = get_correlation_id()
        try:
            raw_body = await request.body()

            if not webhook_secret:
                logger.warning("linq webhook rejected, no signing secret configured")
                return JSONResponse(
                    {"error": "Unauthorized", "reason": "webhook secret not configured"},
                    status_code=401,
                )

            try:
                verify_signature(
                    raw_body,
                    request.headers.get(SIGNATURE_HEADER),
                    request.headers.get(TIMESTAMP_HEADER),
                    webhook_secret,
                )
            except SignatureVerificationError as e:
                logger.warning(
                    "linq webhook signature rejected",
                    extra={
                        "extra_fields": safe_log_context(
                            correlationId=correlation_id,
                            reason=e.reason,
                        )
                    },
                )
                return JSONResponse(
                    {"error": "Unauthorized", "reason": str(e)},
                    status_code=401,
                )

            task = BackgroundTask(
                process_webhook_body,
                raw_body,
                on_message=on_message,
                on_event=on_event,
                on_error=on_error,
                correlation_id=correlation_id,
            )
            return JSONResponse({"status": "ok"}, status_code=200, background=task)

        except Exception as e:
            logger.exception(
                "linq webhook failed before ack",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
            )
            if on_error is not None:
                try:
                    on_error(e)
                except Exception:
                    logger.exception("linq webhook error handler failed")
            return JSONResponse({"error": "Internal server error"}, status_code=500)

    return router
