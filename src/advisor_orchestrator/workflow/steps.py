"""Workflow step names, step results, and the task transition they imply."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from advisor_orchestrator.storage.models import Task, WaitingFor


class WorkflowStep(StrEnum):
    SEND_EMAIL = "send_email"
    PROCESS_REPLY = "process_reply"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    UPSERT_CRM_CONTACT = "upsert_crm_contact"
    DELEGATE_TO_ASSISTANT = "delegate_to_assistant"


@dataclass(frozen=True)
class Completed:
    delta: dict[str, Any] = field(default_factory=dict)
    summary: str = "Task completed."


@dataclass(frozen=True)
class Waiting:
    reason: WaitingFor
    criteria: dict[str, Any]
    next_step: WorkflowStep
    delta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Failed:
    reason: str
    retryable: bool = False
    delta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Continue:
    next_step: WorkflowStep
    delta: dict[str, Any] = field(default_factory=dict)


StepResult = Completed | Waiting | Failed | Continue


def should_retry(task: Task, result: StepResult) -> bool:
    return isinstance(result, Failed) and result.retryable and task.can_retry


def transition(task: Task, step: str, result: StepResult) -> dict[str, Any]:
    """Translate a step result into the field changes to persist for `task`.

    Deltas are merged into `workflow_state`; existing keys may be overwritten
    but never dropped. A retryable failure with budget left keeps the task on
    the same step and only bumps `retry_count`.
    """
    state = {**task.workflow_state, **result.delta}

    if isinstance(result, Failed):
        if should_retry(task, result):
            return {
                "status": "in_progress",
                "workflow_state": state,
                "retry_count": task.retry_count + 1,
                "failure_reason": result.reason,
            }
        return {
            "status": "failed",
            "workflow_state": state,
            "failure_reason": result.reason,
            "next_step": None,
        }

    steps = [*task.steps_completed, str(step)]
    if isinstance(result, Completed):
        return {
            "status": "completed",
            "workflow_state": state,
            "steps_completed": steps,
            "next_step": None,
            "failure_reason": None,
        }
    if isinstance(result, Waiting):
        return {
            "status": "waiting",
            "workflow_state": state,
            "steps_completed": steps,
            "next_step": result.next_step.value,
            "waiting_for": result.reason,
            "waiting_for_data": dict(result.criteria),
            "failure_reason": None,
        }
    return {
        "status": "in_progress",
        "workflow_state": state,
        "steps_completed": steps,
        "next_step": result.next_step.value,
        "failure_reason": None,
    }


def outcome_label(result: StepResult) -> str:
    if isinstance(result, Completed):
        return "completed"
    if isinstance(result, Waiting):
        return "waiting"
    if isinstance(result, Failed):
        return "failed"
    return "continue"
