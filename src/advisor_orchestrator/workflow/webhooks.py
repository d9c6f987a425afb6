"""Normalize Gmail and Calendar webhook bodies into resume event payloads."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class WebhookEvent:
    event_kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    incoming: bool = True


def parse_gmail_webhook(body: dict[str, Any]) -> WebhookEvent:
    """Accept a Pub/Sub push envelope or a direct message payload.

    Raises ValueError when the envelope cannot be decoded.
    """
    message = body.get("message")
    if isinstance(message, dict) and "data" in message:
        data = _decode_pubsub_data(message["data"])
        payload = {
            "message_id": data.get("messageId") or data.get("message_id") or message.get("messageId"),
            "thread_id": data.get("threadId") or data.get("thread_id"),
            "history_id": data.get("historyId") or data.get("history_id"),
            "email_address": data.get("emailAddress") or data.get("email_address"),
            "from": data.get("from"),
            "subject": data.get("subject"),
            "body": data.get("body") or data.get("snippet"),
            "labels": list(data.get("labelIds") or data.get("labels") or []),
        }
    else:
        payload = {
            "message_id": body.get("message_id") or body.get("id"),
            "thread_id": body.get("thread_id") or body.get("threadId"),
            "from": body.get("from"),
            "subject": body.get("subject"),
            "body": body.get("body") or body.get("snippet"),
            "labels": list(body.get("labels") or body.get("labelIds") or []),
        }

    payload = {key: value for key, value in payload.items() if value not in (None, "", [])}
    incoming = (
        bool(payload.get("from"))
        or "INBOX" in payload.get("labels", [])
        or needs_history_fetch(payload)
    )
    return WebhookEvent(event_kind="email_reply", payload=payload, incoming=incoming)


def needs_history_fetch(payload: dict[str, Any]) -> bool:
    """A Gmail push names only a history id; the messages must be fetched."""
    return bool(payload.get("history_id")) and not payload.get("from")


def parse_calendar_webhook(body: dict[str, Any]) -> WebhookEvent:
    event_id = body.get("event_id") or body.get("eventId") or body.get("id")
    if not event_id:
        raise ValueError("calendar webhook is missing an event id")
    attendee = body.get("attendee") or body.get("attendee_email")
    payload = {
        "event_id": str(event_id),
        "from": attendee,
        "response_status": body.get("response_status") or body.get("responseStatus"),
        "subject": body.get("summary") or body.get("subject"),
        "body": body.get("comment") or f"Calendar response: {body.get('response_status', 'unknown')}",
    }
    payload = {key: value for key, value in payload.items() if value not in (None, "")}
    return WebhookEvent(event_kind="calendar_response", payload=payload)


def _decode_pubsub_data(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, str) or not raw:
        raise ValueError("Pub/Sub message data must be a non-empty base64 string")
    padded = raw + "=" * (-len(raw) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, UnicodeError, json.JSONDecodeError) as exc:
        raise ValueError("Pub/Sub message data is not base64-encoded JSON") from exc
    if not isinstance(data, dict):
        raise ValueError("Pub/Sub message data must decode to a JSON object")
    return data
