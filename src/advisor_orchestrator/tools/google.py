"""Gmail and Google Calendar REST adapters."""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from email.message import EmailMessage
from email.utils import getaddresses
from typing import Any

from advisor_orchestrator.errors import ToolInvocationError
from advisor_orchestrator.tools.http import request_json
from advisor_orchestrator.tools.schemas import (
    ContactEmail,
    CreateEventInput,
    CreateEventOutput,
    FindContactInput,
    FindContactOutput,
    SendEmailInput,
    SendEmailOutput,
)
from advisor_orchestrator.users import UserContext

logger = logging.getLogger(__name__)


class GoogleWorkspaceClient:
    """Thin wrapper over Gmail v1 and Calendar v3 using the user's OAuth token."""

    def __init__(
        self,
        *,
        gmail_base_url: str = "https://gmail.googleapis.com/gmail/v1",
        calendar_base_url: str = "https://www.googleapis.com/calendar/v3",
        timeout_s: float = 15.0,
        contact_search_limit: int = 5,
    ) -> None:
        self.gmail_base_url = gmail_base_url.rstrip("/")
        self.calendar_base_url = calendar_base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.contact_search_limit = contact_search_limit
        self._history_lock = threading.Lock()
        self._history_cursor: dict[str, str] = {}

    def find_contact(self, user: UserContext, payload: FindContactInput) -> FindContactOutput:
        token = _google_token(user)
        listing = request_json(
            "GET",
            f"{self.gmail_base_url}/users/me/messages",
            token=token,
            params={"q": f"from:{payload.name}", "maxResults": self.contact_search_limit},
            timeout_s=self.timeout_s,
        )
        found: dict[str, ContactEmail] = {}
        name_lower = payload.name.lower()
        for item in listing.get("messages", []) or []:
            message_id = item.get("id")
            if not message_id:
                continue
            message = request_json(
                "GET",
                f"{self.gmail_base_url}/users/me/messages/{message_id}",
                token=token,
                params={"format": "metadata", "metadataHeaders": ["From", "Reply-To"]},
                timeout_s=self.timeout_s,
            )
            for display_name, address in _header_addresses(message):
                key = address.lower()
                if key in found:
                    continue
                if name_lower in display_name.lower() or name_lower in key:
                    found[key] = ContactEmail(email=address, name=display_name or None)
        logger.info(
            "tool_call event=find_contact user_id=%s name=%s matches=%d",
            user.user_id,
            payload.name,
            len(found),
        )
        return FindContactOutput(emails_found=list(found.values()))

    def send_email(self, user: UserContext, payload: SendEmailInput) -> SendEmailOutput:
        token = _google_token(user)
        message = EmailMessage()
        message["To"] = ", ".join(payload.to)
        if payload.cc:
            message["Cc"] = ", ".join(payload.cc)
        if user.email:
            message["From"] = user.email
        message["Subject"] = payload.subject
        message.set_content(payload.body)
        raw = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")

        sent = request_json(
            "POST",
            f"{self.gmail_base_url}/users/me/messages/send",
            token=token,
            payload={"raw": raw},
            timeout_s=self.timeout_s,
        )
        message_id = sent.get("id")
        if not message_id:
            raise ToolInvocationError("Gmail send response did not include a message id")
        return SendEmailOutput(
            message_id=str(message_id),
            thread_id=sent.get("threadId"),
            to=list(payload.to),
            subject=payload.subject,
        )

    def create_event(self, user: UserContext, payload: CreateEventInput) -> CreateEventOutput:
        token = _google_token(user)
        body: dict[str, Any] = {
            "summary": payload.title,
            "description": payload.description,
            "start": {"dateTime": payload.start_time},
            "end": {"dateTime": payload.end_time},
            "attendees": [{"email": address} for address in payload.attendees],
        }
        created = request_json(
            "POST",
            f"{self.calendar_base_url}/calendars/primary/events",
            token=token,
            payload=body,
            params={"sendUpdates": "all"},
            timeout_s=self.timeout_s,
        )
        event_id = created.get("id")
        if not event_id:
            raise ToolInvocationError("Calendar response did not include an event id")
        return CreateEventOutput(
            event_id=str(event_id),
            html_link=created.get("htmlLink"),
            start_time=payload.start_time,
            end_time=payload.end_time,
            attendees=list(payload.attendees),
        )

    def fetch_new_messages(self, user: UserContext, history_id: str) -> list[dict[str, Any]]:
        """Return incoming messages added to the mailbox since the last push seen for `user`.

        Gmail push notifications carry only a history id. History is listed from
        the user's previous cursor (the pushed id on first contact) and every
        added INBOX message that is not also SENT is fetched in full.
        """
        token = _google_token(user)
        with self._history_lock:
            start = self._history_cursor.get(user.user_id, history_id)
        history = request_json(
            "GET",
            f"{self.gmail_base_url}/users/me/history",
            token=token,
            params={"startHistoryId": start, "historyTypes": "messageAdded"},
            timeout_s=self.timeout_s,
        )

        message_ids: list[str] = []
        for record in history.get("history", []) or []:
            for added in record.get("messagesAdded", []) or []:
                message_id = (added.get("message") or {}).get("id")
                if message_id and message_id not in message_ids:
                    message_ids.append(message_id)

        messages: list[dict[str, Any]] = []
        for message_id in message_ids:
            message = request_json(
                "GET",
                f"{self.gmail_base_url}/users/me/messages/{message_id}",
                token=token,
                params={"format": "full"},
                timeout_s=self.timeout_s,
            )
            labels = list(message.get("labelIds") or [])
            if "INBOX" not in labels or "SENT" in labels:
                continue
            messages.append(_incoming_payload(message, history_id))

        with self._history_lock:
            self._history_cursor[user.user_id] = str(history.get("historyId") or history_id)
        logger.info(
            "gmail_history event=fetched user_id=%s start=%s added=%d incoming=%d",
            user.user_id,
            start,
            len(message_ids),
            len(messages),
        )
        return messages


def _google_token(user: UserContext) -> str:
    if not user.google_access_token:
        raise ToolInvocationError(f"User {user.user_id} has no Google credentials")
    return user.google_access_token


def _header_addresses(message: dict[str, Any]) -> list[tuple[str, str]]:
    headers = (message.get("payload") or {}).get("headers") or []
    values = [
        str(header.get("value", ""))
        for header in headers
        if header.get("name") in {"From", "Reply-To"}
    ]
    return [(name, address) for name, address in getaddresses(values) if "@" in address]


def _incoming_payload(message: dict[str, Any], history_id: str) -> dict[str, Any]:
    part = message.get("payload") or {}
    headers = part.get("headers") or []
    payload = {
        "message_id": message.get("id"),
        "thread_id": message.get("threadId"),
        "history_id": history_id,
        "from": _header(headers, "From"),
        "to": _header(headers, "To"),
        "subject": _header(headers, "Subject"),
        "body": _plain_text(part) or message.get("snippet"),
        "labels": list(message.get("labelIds") or []),
    }
    return {key: value for key, value in payload.items() if value not in (None, "", [])}


def _header(headers: list[dict[str, Any]], name: str) -> str | None:
    for header in headers:
        if str(header.get("name", "")).lower() == name.lower():
            return str(header.get("value", ""))
    return None


def _plain_text(part: dict[str, Any]) -> str:
    """Depth-first search for the first text/plain body in a Gmail message part tree."""
    data = (part.get("body") or {}).get("data")
    if data and str(part.get("mimeType", "text/plain")).startswith("text/plain"):
        padded = data + "=" * (-len(data) % 4)
        try:
            return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")
        except (binascii.Error, UnicodeEncodeError):
            return ""
    for child in part.get("parts") or []:
        text = _plain_text(child)
        if text:
            return text
    return ""
