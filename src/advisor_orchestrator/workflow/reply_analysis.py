"""Prompting and lexical bucketing for replies to outbound emails."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Literal

from advisor_orchestrator.storage.models import Task

ResponseType = Literal[
    "positive",
    "negative",
    "alternative_suggested",
    "information_requested",
    "unclear",
]

LABELS: dict[str, ResponseType] = {
    "ACCEPTED": "positive",
    "DECLINED": "negative",
    "ALTERNATIVE": "alternative_suggested",
    "INFO_REQUESTED": "information_requested",
    "UNCLEAR": "unclear",
}

# Checked in order; negatives before positives so "not available" never reads as a yes.
KEYWORD_BUCKETS: tuple[tuple[ResponseType, tuple[str, ...]], ...] = (
    (
        "alternative_suggested",
        (
            "alternative",
            "another time",
            "different time",
            "instead",
            "how about",
            "counter",
            "propose",
            "suggest",
        ),
    ),
    (
        "negative",
        (
            "can't",
            "cannot",
            "can not",
            "won't",
            "decline",
            "unable",
            "not available",
            "unavailable",
            "not interested",
            "reject",
        ),
    ),
    (
        "information_requested",
        (
            "more information",
            "more details",
            "further details",
            "clarify",
            "clarification",
            "question",
            "what is",
            "could you explain",
        ),
    ),
    ("unclear", ("unclear", "ambiguous", "not clear", "uncertain")),
    (
        "positive",
        (
            "works for",
            "accept",
            "confirm",
            "agree",
            "yes",
            "sounds good",
            "happy to",
            "looking forward",
            "see you",
        ),
    ),
)


@dataclass(frozen=True)
class ReplyOutcome:
    response_type: ResponseType
    needs_follow_up: bool
    needs_manual_review: bool

    @property
    def is_positive(self) -> bool:
        return self.response_type == "positive"


def build_analysis_prompt(task: Task, reply: dict[str, Any]) -> str:
    return (
        "Analyze this email reply to a message sent on the advisor's behalf.\n\n"
        f"Original request: {task.original_request}\n"
        f"Reply from: {reply.get('from') or 'unknown'}\n"
        f"Reply subject: {reply.get('subject') or 'unknown'}\n"
        f"Reply body: {reply.get('body') or reply.get('snippet') or 'unknown'}\n\n"
        "Start your answer with exactly one label: ACCEPTED, DECLINED, ALTERNATIVE, "
        "INFO_REQUESTED or UNCLEAR. Then summarize the sender's intent in one sentence."
    )


def classify_analysis(analysis: str) -> ReplyOutcome:
    """Bucket the model's free-text analysis; anything unrecognized is `unclear`."""
    response_type = _leading_label(analysis) or _keyword_bucket(analysis.lower()) or "unclear"
    return ReplyOutcome(
        response_type=response_type,
        needs_follow_up=response_type
        in {"negative", "alternative_suggested", "information_requested"},
        needs_manual_review=response_type == "unclear",
    )


def _leading_label(analysis: str) -> ResponseType | None:
    match = re.match(r"\s*[\"'*]*([A-Z_]+)\b", analysis)
    if match is None:
        return None
    return LABELS.get(match.group(1))


def _keyword_bucket(lowered: str) -> ResponseType | None:
    for response_type, keywords in KEYWORD_BUCKETS:
        if any(re.search(rf"\b{re.escape(keyword)}", lowered) for keyword in keywords):
            return response_type
    return None
