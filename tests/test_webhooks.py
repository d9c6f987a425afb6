import base64
import json

import pytest

from advisor_orchestrator.workflow.webhooks import (
    needs_history_fetch,
    parse_calendar_webhook,
    parse_gmail_webhook,
)


def _envelope(data: dict) -> dict:
    raw = base64.urlsafe_b64encode(json.dumps(data).encode("utf-8")).decode("ascii").rstrip("=")
    return {"message": {"data": raw, "messageId": "pubsub-1"}, "subscription": "projects/x/subs/y"}


def test_pubsub_envelope_is_decoded() -> None:
    event = parse_gmail_webhook(
        _envelope(
            {
                "emailAddress": "advisor@firm.example",
                "historyId": "991",
                "threadId": "thread-7",
                "from": "sarah@acme.com",
                "snippet": "Works for me",
                "labelIds": ["INBOX", "UNREAD"],
            }
        )
    )

    assert event.event_kind == "email_reply"
    assert event.incoming
    assert event.payload["thread_id"] == "thread-7"
    assert event.payload["body"] == "Works for me"
    assert event.payload["message_id"] == "pubsub-1"
    assert event.payload["labels"] == ["INBOX", "UNREAD"]


def test_history_only_notification_needs_a_fetch() -> None:
    event = parse_gmail_webhook(_envelope({"emailAddress": "advisor@firm.example", "historyId": "5"}))

    assert event.incoming
    assert needs_history_fetch(event.payload)
    assert event.payload == {
        "message_id": "pubsub-1",
        "history_id": "5",
        "email_address": "advisor@firm.example",
    }


def test_sent_message_without_sender_is_not_incoming() -> None:
    event = parse_gmail_webhook(_envelope({"messageId": "m-3", "labelIds": ["SENT"]}))

    assert not event.incoming
    assert not needs_history_fetch(event.payload)


def test_direct_payload_is_accepted() -> None:
    event = parse_gmail_webhook(
        {"id": "m-1", "threadId": "thread-2", "from": "bob@example.com", "subject": "Re: hi"}
    )

    assert event.incoming
    assert event.payload == {
        "message_id": "m-1",
        "thread_id": "thread-2",
        "from": "bob@example.com",
        "subject": "Re: hi",
    }


@pytest.mark.parametrize("data", ["", "!!!not-base64!!!", base64.b64encode(b"[1, 2]").decode("ascii")])
def test_bad_envelopes_raise(data: str) -> None:
    with pytest.raises(ValueError):
        parse_gmail_webhook({"message": {"data": data}})


def test_calendar_response_payload() -> None:
    event = parse_calendar_webhook(
        {"eventId": "evt-9", "attendee": "sarah@acme.com", "responseStatus": "accepted"}
    )

    assert event.event_kind == "calendar_response"
    assert event.payload["event_id"] == "evt-9"
    assert event.payload["from"] == "sarah@acme.com"
    assert event.payload["response_status"] == "accepted"


def test_calendar_webhook_requires_event_id() -> None:
    with pytest.raises(ValueError):
        parse_calendar_webhook({"attendee": "sarah@acme.com"})
