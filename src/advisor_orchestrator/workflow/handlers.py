"""Step handlers: each reads a task and returns the result of running one step.

Handlers talk to external collaborators but never write to storage; the
engine persists whatever they return.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from advisor_orchestrator.errors import (
    ContactResolutionError,
    LLMGatewayError,
    ToolInvocationError,
    UnsupportedRecipientError,
)
from advisor_orchestrator.llm.gateway import LLMGateway
from advisor_orchestrator.storage.models import Task
from advisor_orchestrator.tools import ToolExecutor, tool_schemas
from advisor_orchestrator.users import UserContext
from advisor_orchestrator.workflow.reply_analysis import build_analysis_prompt, classify_analysis
from advisor_orchestrator.workflow.scheduling import parse_meeting_time
from advisor_orchestrator.workflow.steps import (
    Completed,
    Continue,
    Failed,
    StepResult,
    Waiting,
    WorkflowStep,
)
from advisor_orchestrator.workflow.templates import compose_email

logger = logging.getLogger(__name__)

REPLY_EXPECTED_TYPES = frozenset({"meeting_coordination", "information_gathering"})
REPLY_EXPECTED_PURPOSES = frozenset({"availability_check", "meeting_request"})
DELEGATE_SYSTEM_PROMPT = (
    "You are an assistant for a financial advisor with access to Gmail, Google Calendar "
    "and HubSpot tools. Carry out the user's request with the available tools."
)


@dataclass(frozen=True)
class StepContext:
    user: UserContext
    tools: ToolExecutor
    llm: LLMGateway
    now: datetime
    timezone: str = "UTC"


Handler = Callable[[StepContext, Task], StepResult]


def expects_reply(task: Task) -> bool:
    purpose = task.workflow_state.get("purpose")
    return task.task_type in REPLY_EXPECTED_TYPES or purpose in REPLY_EXPECTED_PURPOSES


def send_email(ctx: StepContext, task: Task) -> StepResult:
    recipient = _recipient(task)
    try:
        _reject_group(recipient)
        resolved = _resolve_email(ctx, task, recipient)
    except (UnsupportedRecipientError, ContactResolutionError) as exc:
        return Failed(str(exc), retryable=False)
    except ToolInvocationError as exc:
        return Failed(str(exc), retryable=True)
    if resolved is None:
        return Failed("Could not determine who the email should go to", retryable=False)

    name = recipient.get("name")
    subject, body = compose_email(
        purpose=str(task.workflow_state.get("purpose") or "general_communication"),
        recipient_name=name,
        timing=task.workflow_state.get("timing"),
        original_request=task.original_request,
    )
    result = ctx.tools.execute(
        ctx.user, "send_email", {"to": [resolved], "subject": subject, "body": body}
    )
    if result["status"] != "ok":
        return Failed(f"Failed to send email: {result['error']}", retryable=True)

    output = result["output"]
    delta = {
        "resolved_recipient": {"email": resolved, "name": name},
        "email_sent": {
            "message_id": output["message_id"],
            "thread_id": output.get("thread_id"),
            "to": output["to"],
            "subject": subject,
            "sent_at": ctx.now.isoformat(),
        },
    }
    if expects_reply(task):
        return Waiting(
            reason="email_reply",
            criteria={
                "message_id": output["message_id"],
                "thread_id": output.get("thread_id"),
                "recipient_email": resolved,
            },
            next_step=WorkflowStep.PROCESS_REPLY,
            delta=delta,
        )
    return Completed(delta, summary=f"Email '{subject}' sent to {resolved}.")


def process_reply(ctx: StepContext, task: Task) -> StepResult:
    reply = task.workflow_state.get("reply_data")
    if not isinstance(reply, dict) or not reply:
        return Failed("No reply data is attached to the task", retryable=False)

    prompt = build_analysis_prompt(task, reply)
    try:
        analysis = ctx.llm.analyze(ctx.user, prompt)
    except LLMGatewayError as exc:
        return Failed(f"Failed to analyze reply: {exc}", retryable=False)

    outcome = classify_analysis(analysis)
    delta = {
        "reply_analysis": analysis,
        "response_type": outcome.response_type,
        "needs_follow_up": outcome.needs_follow_up,
        "needs_manual_review": outcome.needs_manual_review,
    }
    if outcome.is_positive and task.task_type == "meeting_coordination":
        return Continue(WorkflowStep.CREATE_CALENDAR_EVENT, delta)

    sender = reply.get("from") or "the recipient"
    summaries = {
        "positive": f"{sender} replied positively.",
        "negative": f"{sender} declined; follow-up may be needed.",
        "alternative_suggested": f"{sender} suggested an alternative; follow-up needed.",
        "information_requested": f"{sender} asked for more information; follow-up needed.",
        "unclear": f"The reply from {sender} was unclear and needs manual review.",
    }
    return Completed(delta, summary=summaries[outcome.response_type])


def create_calendar_event(ctx: StepContext, task: Task) -> StepResult:
    state = task.workflow_state
    timing = state.get("timing") if isinstance(state.get("timing"), dict) else {}
    expression = timing.get("time_range") or task.original_request
    start, end = parse_meeting_time(expression, now=ctx.now, timezone=ctx.timezone)

    recipient = _recipient(task)
    resolved_recipient = state.get("resolved_recipient")
    attendee = resolved_recipient.get("email") if isinstance(resolved_recipient, dict) else None
    if not attendee:
        try:
            attendee = _resolve_email(ctx, task, recipient, required=False)
        except ToolInvocationError as exc:
            return Failed(str(exc), retryable=True)

    who = recipient.get("name") or attendee
    title = f"Meeting with {who}" if who else "Meeting"
    description = (
        "Meeting scheduled following email confirmation"
        if state.get("reply_data")
        else f"Requested: {task.original_request}"
    )
    result = ctx.tools.execute(
        ctx.user,
        "create_calendar_event",
        {
            "title": title,
            "start_time": start.isoformat(),
            "end_time": end.isoformat(),
            "attendees": [attendee] if attendee else [],
            "description": description,
        },
    )
    if result["status"] != "ok":
        return Failed(f"Failed to create calendar event: {result['error']}", retryable=True)
    return Completed(
        {"calendar_event": result["output"]},
        summary=f"Calendar event '{title}' created for {start.isoformat()}.",
    )


def upsert_crm_contact(ctx: StepContext, task: Task) -> StepResult:
    recipient = _recipient(task)
    try:
        resolved = _resolve_email(ctx, task, recipient)
    except ContactResolutionError as exc:
        return Failed(str(exc), retryable=False)
    except ToolInvocationError as exc:
        return Failed(str(exc), retryable=True)
    if resolved is None:
        return Failed("Could not determine which contact to create or update", retryable=False)

    first_name, last_name = _split_name(recipient.get("name"))
    result = ctx.tools.execute(
        ctx.user,
        "upsert_crm_contact",
        {"email": resolved, "first_name": first_name, "last_name": last_name},
    )
    if result["status"] != "ok":
        return Failed(f"Failed to update CRM contact: {result['error']}", retryable=True)
    output = result["output"]
    verb = "Created" if output.get("created") else "Updated"
    return Completed({"crm_contact": output}, summary=f"{verb} CRM contact {resolved}.")


def delegate_to_assistant(ctx: StepContext, task: Task) -> StepResult:
    messages: list[dict[str, Any]] = [
        {"role": "system", "content": DELEGATE_SYSTEM_PROMPT},
        {"role": "user", "content": task.original_request},
    ]
    try:
        reply = ctx.llm.complete(messages, tools=tool_schemas(ctx.tools.registry))
    except LLMGatewayError as exc:
        return Failed(f"Assistant request failed: {exc}", retryable=False)
    if not reply.tool_calls:
        # No registered tool cancels, deletes, reschedules or archives anything.
        return Failed(
            f"'{task.original_request}' is not yet implemented: no available tool can carry it out",
            retryable=False,
        )

    tool_results = [
        ctx.tools.execute(ctx.user, invocation.name, invocation.arguments)
        for invocation in reply.tool_calls
    ]
    failed = [item["tool"] for item in tool_results if item["status"] != "ok"]
    summary = reply.content or "Request handed to the assistant."
    if failed:
        summary = f"{summary} (failed tools: {', '.join(failed)})"
    return Completed(
        {"assistant_response": reply.content, "tool_results": tool_results},
        summary=summary,
    )


HANDLERS: dict[WorkflowStep, Handler] = {
    WorkflowStep.SEND_EMAIL: send_email,
    WorkflowStep.PROCESS_REPLY: process_reply,
    WorkflowStep.CREATE_CALENDAR_EVENT: create_calendar_event,
    WorkflowStep.UPSERT_CRM_CONTACT: upsert_crm_contact,
    WorkflowStep.DELEGATE_TO_ASSISTANT: delegate_to_assistant,
}


def _recipient(task: Task) -> dict[str, Any]:
    recipient = task.workflow_state.get("recipient")
    return recipient if isinstance(recipient, dict) else {}


def _reject_group(recipient: dict[str, Any]) -> None:
    if "group" in recipient:
        raise UnsupportedRecipientError(
            f"Sending to a group ('{recipient['group']}') is not yet implemented; "
            "name a single recipient instead"
        )


def _resolve_email(
    ctx: StepContext,
    task: Task,
    recipient: dict[str, Any],
    *,
    required: bool = True,
) -> str | None:
    """Explicit address first, then a contact lookup by name.

    Raises `ContactResolutionError` when a required lookup finds nothing and
    `ToolInvocationError` when the lookup itself fails.
    """
    email = recipient.get("email")
    if isinstance(email, str) and email:
        return email
    name = recipient.get("name")
    if not isinstance(name, str) or not name:
        return None

    lookup = ctx.tools.execute(
        ctx.user, "find_contact", {"name": name, "context_hint": task.original_request}
    )
    if lookup["status"] != "ok":
        raise ToolInvocationError(f"Contact lookup for {name} failed: {lookup['error']}")
    found = lookup["output"].get("emails_found") or []
    if not found:
        logger.info("contact_lookup event=not_found task_id=%s name=%s", task.task_id, name)
        if required:
            raise ContactResolutionError(f"No email found for {name}")
        return None
    return str(found[0]["email"])


def _split_name(name: str | None) -> tuple[str | None, str | None]:
    if not name:
        return None, None
    first, _, last = name.partition(" ")
    return first, last or None
