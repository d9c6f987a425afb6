"""Fixed outbound email templates keyed by request purpose."""

from __future__ import annotations

from typing import Any

TOPIC_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("investment", "portfolio"), "Investment Discussion"),
    (("retirement", "planning"), "Retirement Planning"),
    (("review", "account"), "Account Review"),
    (("strategy", "strategies"), "Strategy Discussion"),
)
DAY_LABELS = {
    "tomorrow": "Tomorrow",
    "today": "Today",
    "next week": "Next Week",
    "this week": "This Week",
}
SIGN_OFF = "Best regards"


def timing_phrase(timing: dict[str, Any] | None) -> str:
    """Render a timing map as e.g. 'Tomorrow 4-5pm'; empty when nothing was mentioned."""
    timing = timing or {}
    parts: list[str] = []
    day = timing.get("day")
    if isinstance(day, str) and day:
        parts.append(DAY_LABELS.get(day, day.title()))
    clock = timing.get("time_range") or timing.get("clock_time")
    if isinstance(clock, str) and clock:
        parts.append(clock)
    return " ".join(parts)


def extract_topic(original_request: str, *, default: str = "General Discussion") -> str:
    lowered = original_request.lower()
    for keywords, topic in TOPIC_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return topic
    return default


def compose_email(
    *,
    purpose: str,
    recipient_name: str | None,
    timing: dict[str, Any] | None,
    original_request: str,
) -> tuple[str, str]:
    """Return `(subject, body)` for the given purpose."""
    greeting = f"Hi {recipient_name}," if recipient_name else "Hi there,"
    when = timing_phrase(timing)
    topic = extract_topic(original_request)

    if purpose == "availability_check":
        slot = when or "in the coming days"
        subject = f"Availability Check - {when}" if when else "Availability Check"
        lines = [
            f"I wanted to check whether you would be available {slot} for a short meeting.",
            "Please let me know if that time works for you, or suggest an alternative that suits you better.",
        ]
    elif purpose == "meeting_request":
        subject = f"Meeting Request - {when}" if when else "Meeting Request"
        slot = f" {when}" if when else ""
        lines = [
            f"I would like to schedule a meeting with you{slot} to go over {topic.lower()}.",
            "Could you confirm whether that works for you?",
        ]
    elif purpose == "follow_up":
        subject = f"Following Up - {recipient_name}" if recipient_name else "Following Up"
        lines = [
            "I'm following up on our recent conversation.",
            "Please let me know if you have any questions or if there is anything else I can help with.",
        ]
    elif purpose == "information_sharing":
        subject = f"Information - {topic}"
        lines = [
            f"I wanted to share some information with you regarding {topic.lower()}.",
            "Feel free to reach out if you would like to discuss any of the details.",
        ]
    else:
        subject = f"Inquiry - {extract_topic(original_request, default='Quick Question')}"
        lines = [
            "I'm reaching out regarding the following:",
            original_request.strip(),
        ]

    body = "\n\n".join([greeting, *lines, SIGN_OFF])
    return subject, body
