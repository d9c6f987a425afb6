"""Deterministic request classification: single action or multi-step workflow.

Classification runs before any task is persisted, so it is plain keyword and
regex matching with no model round-trip. Rules are evaluated in order and the
first matching rule decides the workflow type.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from advisor_orchestrator.workflow.steps import WorkflowStep

ActionKind = Literal["email", "calendar", "crm", "unknown"]

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
NAME_PATTERN = re.compile(r"\b(?i:to|with|email|contact)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)")
TIME_RANGE_PATTERN = re.compile(r"\b(\d{1,2})\s*-\s*(\d{1,2})\s*([ap]m)\b")
CLOCK_TIME_PATTERN = re.compile(r"\b\d{1,2}(?::\d{2})?\s*[ap]m\b")

# Phrases that only appear in prompts this service generates itself.
ANALYSIS_INDICATORS = (
    "analyze this",
    "provide a json response",
    "determine the next steps",
    "extract recipient information",
    "original request:",
    "completed steps:",
)
SEARCH_AND_SEND_PATTERNS = (
    re.compile(r"search\s+.+\s+and\s+send\s+.+@.+"),
    re.compile(r"search for .+ (?:info|information) and send to .+"),
    re.compile(r"(?:gather|find|get) .+ (?:info|information) .+ and (?:send|email) .+"),
)
FOLLOW_UP_PATTERNS = (
    re.compile(r"\bask\b.*\band\b.*\b(?:schedule|set up|book)\b"),
    re.compile(r"\bcheck\b.*\bavailab(?:le|ility)\b.*\band\b"),
    re.compile(r"\bfollow[- ]?up\b.*\b(?:schedule|meeting|call)\b"),
    re.compile(r"\bif\b.*\b(?:available|accepts|agrees|confirms)\b.*\b(?:schedule|book|set up|send)\b"),
)
OUTREACH_TERMS = ("email", "contact", "reach out", "send")
SCHEDULING_TERMS = ("meeting", "schedule", "calendar", "available", "appointment")
INFORMATION_PHRASES = ("ask about", "inquire about", "get information", "find out")
ACTION_PATTERNS: tuple[tuple[re.Pattern[str], WorkflowStep], ...] = (
    (re.compile(r"^send (?:an? )?email to .+"), WorkflowStep.SEND_EMAIL),
    (re.compile(r"^email .+ about .+"), WorkflowStep.SEND_EMAIL),
    (re.compile(r"^send .+ (?:an? )?message"), WorkflowStep.SEND_EMAIL),
    (re.compile(r"^schedule (?:a )?meeting with .+"), WorkflowStep.CREATE_CALENDAR_EVENT),
    (re.compile(r"^create (?:a )?calendar event .+"), WorkflowStep.CREATE_CALENDAR_EVENT),
    (re.compile(r"^add .+ to hubspot"), WorkflowStep.UPSERT_CRM_CONTACT),
    (re.compile(r"^create .+ contact"), WorkflowStep.UPSERT_CRM_CONTACT),
    (re.compile(r"^update .+ in hubspot"), WorkflowStep.UPSERT_CRM_CONTACT),
    (re.compile(r"^cancel .+ meeting"), WorkflowStep.DELEGATE_TO_ASSISTANT),
    (re.compile(r"^reschedule .+"), WorkflowStep.DELEGATE_TO_ASSISTANT),
    (re.compile(r"^delete .+"), WorkflowStep.DELEGATE_TO_ASSISTANT),
    (re.compile(r"^archive .+"), WorkflowStep.DELEGATE_TO_ASSISTANT),
)

GROUP_TERMS = ("team", "clients")
NOT_A_NAME = frozenset({"The", "My", "Our", "Me", "Him", "Her", "Them", "Tomorrow", "Today", "Next"})
PURPOSE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("availability_check", ("available", "availability", "free")),
    ("follow_up", ("follow up", "follow-up", "followup", "check in", "checking in")),
    ("meeting_request", ("meeting", "schedule", "appointment", "meet")),
    ("information_sharing", ("share", "information", "info", "update", "report")),
)
DAY_KEYWORDS = ("tomorrow", "next week", "this week", "today")
URGENT_TERMS = ("urgent", "asap", "as soon as possible", "immediately")


@dataclass(frozen=True)
class SingleAction:
    kind: ActionKind


@dataclass(frozen=True)
class WorkflowNeeded:
    workflow_type: str
    initial_step: WorkflowStep
    extracted_data: dict[str, Any] = field(default_factory=dict)


Classification = SingleAction | WorkflowNeeded
Predicate = Callable[[str, str], bool]
Extractor = Callable[[str, str], dict[str, Any]]


@dataclass(frozen=True)
class ClassifierRule:
    workflow_type: str
    predicate: Predicate
    extractor: Extractor


def is_analysis_prompt(lowered: str) -> bool:
    return any(indicator in lowered for indicator in ANALYSIS_INDICATORS)


def is_follow_up_request(lowered: str, original: str) -> bool:
    return any(pattern.search(lowered) for pattern in FOLLOW_UP_PATTERNS)


def is_meeting_coordination(lowered: str, original: str) -> bool:
    has_outreach = any(term in lowered for term in OUTREACH_TERMS) or bool(
        EMAIL_PATTERN.search(original)
    )
    has_scheduling = any(term in lowered for term in SCHEDULING_TERMS)
    return has_outreach and has_scheduling


def is_information_gathering(lowered: str, original: str) -> bool:
    return any(phrase in lowered for phrase in INFORMATION_PHRASES)


def action_step(lowered: str) -> WorkflowStep | None:
    for pattern, step in ACTION_PATTERNS:
        if pattern.search(lowered):
            return step
    return None


def extract_workflow_data(lowered: str, original: str) -> dict[str, Any]:
    timing = extract_timing(lowered)
    return {
        "recipient": extract_recipient(original),
        "purpose": extract_purpose(lowered),
        "timing": timing,
        "context_clues": {
            "urgent": any(term in lowered for term in URGENT_TERMS),
            "timing_mentioned": bool(timing),
        },
    }


RULES: tuple[ClassifierRule, ...] = (
    ClassifierRule("communication_follow_up", is_follow_up_request, extract_workflow_data),
    ClassifierRule("meeting_coordination", is_meeting_coordination, extract_workflow_data),
    ClassifierRule("information_gathering", is_information_gathering, extract_workflow_data),
)


def classify(request: str) -> Classification:
    original = " ".join(request.split())
    lowered = original.lower()

    if is_analysis_prompt(lowered):
        return SingleAction(kind=coarse_kind(lowered))
    if any(pattern.search(lowered) for pattern in SEARCH_AND_SEND_PATTERNS):
        return SingleAction(kind="email")

    for rule in RULES:
        if rule.predicate(lowered, original):
            return WorkflowNeeded(
                workflow_type=rule.workflow_type,
                initial_step=WorkflowStep.SEND_EMAIL,
                extracted_data=rule.extractor(lowered, original),
            )

    step = action_step(lowered)
    if step is not None:
        return WorkflowNeeded(
            workflow_type="simple_action",
            initial_step=step,
            extracted_data=extract_workflow_data(lowered, original),
        )
    return SingleAction(kind=coarse_kind(lowered))


def coarse_kind(lowered: str) -> ActionKind:
    if any(term in lowered for term in ("email", "send", "message", "write")):
        return "email"
    if any(term in lowered for term in ("schedule", "calendar", "meeting", "appointment")):
        return "calendar"
    if any(term in lowered for term in ("hubspot", "crm", "contact", "deal", "note")):
        return "crm"
    return "unknown"


def extract_recipient(original: str) -> dict[str, str]:
    email = EMAIL_PATTERN.search(original)
    if email:
        return {"email": email.group(0).lower()}

    for match in NAME_PATTERN.finditer(original):
        name = match.group(1)
        if name.split()[0] not in NOT_A_NAME:
            return {"name": name}

    lowered = original.lower()
    for term in GROUP_TERMS:
        if re.search(rf"\b{term}\b", lowered):
            return {"group": term}
    return {}


def extract_purpose(lowered: str) -> str:
    for purpose, keywords in PURPOSE_KEYWORDS:
        if any(re.search(rf"\b{re.escape(keyword)}\b", lowered) for keyword in keywords):
            return purpose
    return "general_communication"


def extract_timing(lowered: str) -> dict[str, str]:
    timing: dict[str, str] = {}
    time_range = TIME_RANGE_PATTERN.search(lowered)
    if time_range:
        timing["time_range"] = re.sub(r"\s+", "", time_range.group(0))
    clock_time = CLOCK_TIME_PATTERN.search(lowered)
    if clock_time:
        timing["clock_time"] = re.sub(r"\s+", "", clock_time.group(0))
    for keyword in DAY_KEYWORDS:
        if keyword in lowered:
            timing["day"] = keyword
            break
    return timing
