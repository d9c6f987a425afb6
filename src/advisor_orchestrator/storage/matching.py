"""Match incoming webhook events against the criteria stored on waiting tasks."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Any

from advisor_orchestrator.storage.models import Task

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
MEETING_SUBJECT_TERMS = ("meeting", "available", "availability", "schedule", "appointment")


def matches_event(
    task: Task,
    event_payload: dict[str, Any],
    *,
    now: datetime,
    recent_window_minutes: int = 0,
) -> bool:
    """Return True when any matching strategy links the event to the waiting task."""
    criteria = task.waiting_for_data or {}
    strategies = {
        "thread": _thread_match(criteria, event_payload),
        "event": _event_id_match(criteria, event_payload),
        "sender": _sender_match(criteria, event_payload),
        "subject": _subject_match(task, event_payload),
        "name": _name_match(task, event_payload),
        "recent": _recent_match(task, now=now, window_minutes=recent_window_minutes),
    }
    matched = any(strategies.values())
    logger.debug(
        "task_match event=evaluated task_id=%s matched=%s strategies=%s",
        task.task_id,
        matched,
        strategies,
    )
    return matched


def extract_address(value: str) -> str:
    """Pull the bare address out of values like 'Sarah <sarah@acme.com>'."""
    match = EMAIL_PATTERN.search(value)
    if match:
        return match.group(1).lower()
    return value.strip().lower()


def recipient_name(task: Task) -> str | None:
    recipient = task.workflow_state.get("recipient")
    if isinstance(recipient, dict):
        name = recipient.get("name")
        if isinstance(name, str) and name.strip():
            return name.strip()
    return None


def _thread_match(criteria: dict[str, Any], payload: dict[str, Any]) -> bool:
    expected = criteria.get("thread_id")
    actual = payload.get("thread_id")
    return isinstance(expected, str) and isinstance(actual, str) and expected == actual


def _event_id_match(criteria: dict[str, Any], payload: dict[str, Any]) -> bool:
    expected = criteria.get("event_id")
    actual = payload.get("event_id")
    return isinstance(expected, str) and isinstance(actual, str) and expected == actual


def _sender_match(criteria: dict[str, Any], payload: dict[str, Any]) -> bool:
    expected = criteria.get("recipient_email")
    sender = payload.get("from")
    if not isinstance(expected, str) or not isinstance(sender, str):
        return False
    if not expected.strip() or not sender.strip():
        return False
    sender_lower = sender.lower()
    expected_lower = expected.lower()
    return sender_lower == expected_lower or (
        extract_address(sender_lower) == extract_address(expected_lower)
    )


def _subject_match(task: Task, payload: dict[str, Any]) -> bool:
    subject = payload.get("subject")
    if not isinstance(subject, str):
        return False
    subject_lower = subject.lower().strip()
    if not subject_lower.startswith("re:"):
        return False
    if any(term in subject_lower for term in MEETING_SUBJECT_TERMS):
        return True
    name = recipient_name(task)
    return bool(name) and name.lower() in subject_lower


def _name_match(task: Task, payload: dict[str, Any]) -> bool:
    sender = payload.get("from")
    name = recipient_name(task)
    if not isinstance(sender, str) or not name:
        return False
    sender_lower = sender.lower()
    parts = [part for part in name.lower().split() if len(part) > 2]
    return any(part in sender_lower for part in parts)


def _recent_match(task: Task, *, now: datetime, window_minutes: int) -> bool:
    if window_minutes <= 0:
        return False
    return now - task.created_at <= timedelta(minutes=window_minutes)
