from datetime import UTC, datetime

from advisor_orchestrator.storage.models import Task
from advisor_orchestrator.workflow.steps import (
    Completed,
    Continue,
    Failed,
    Waiting,
    WorkflowStep,
    outcome_label,
    should_retry,
    transition,
)


def _task(**overrides) -> Task:
    now = datetime(2025, 6, 23, 10, 0, tzinfo=UTC)
    fields = {
        "task_id": "t-1",
        "user_id": "advisor-1",
        "title": "Meeting Coordination: test",
        "status": "in_progress",
        "task_type": "meeting_coordination",
        "original_request": "Schedule a meeting with Sarah",
        "workflow_state": {"recipient": {"name": "Sarah"}},
        "next_step": "send_email",
        "last_activity_at": now,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Task(**fields)


def test_waiting_records_criteria_and_step() -> None:
    result = Waiting(
        reason="email_reply",
        criteria={"thread_id": "thread-1"},
        next_step=WorkflowStep.PROCESS_REPLY,
        delta={"email_sent": {"message_id": "msg-1"}},
    )

    changes = transition(_task(), "send_email", result)

    assert changes["status"] == "waiting"
    assert changes["waiting_for"] == "email_reply"
    assert changes["waiting_for_data"] == {"thread_id": "thread-1"}
    assert changes["next_step"] == "process_reply"
    assert changes["steps_completed"] == ["send_email"]
    assert changes["workflow_state"] == {
        "recipient": {"name": "Sarah"},
        "email_sent": {"message_id": "msg-1"},
    }


def test_completed_clears_next_step() -> None:
    task = _task(steps_completed=["send_email"], next_step="process_reply")

    changes = transition(task, "process_reply", Completed(delta={"response_type": "negative"}))

    assert changes["status"] == "completed"
    assert changes["next_step"] is None
    assert changes["steps_completed"] == ["send_email", "process_reply"]
    assert changes["workflow_state"]["response_type"] == "negative"


def test_continue_moves_to_next_step() -> None:
    result = Continue(WorkflowStep.CREATE_CALENDAR_EVENT)
    changes = transition(_task(next_step="process_reply"), "process_reply", result)

    assert changes["status"] == "in_progress"
    assert changes["next_step"] == "create_calendar_event"
    assert changes["steps_completed"] == ["process_reply"]


def test_retryable_failure_keeps_step_and_bumps_count() -> None:
    task = _task(retry_count=1, max_retries=3)
    result = Failed("Gmail unavailable", retryable=True)

    assert should_retry(task, result)
    changes = transition(task, "send_email", result)

    assert changes["status"] == "in_progress"
    assert changes["retry_count"] == 2
    assert "next_step" not in changes
    assert "steps_completed" not in changes


def test_retry_budget_exhausted_fails_task() -> None:
    task = _task(retry_count=3, max_retries=3)
    result = Failed("Gmail unavailable", retryable=True)

    assert not should_retry(task, result)
    changes = transition(task, "send_email", result)

    assert changes["status"] == "failed"
    assert changes["failure_reason"] == "Gmail unavailable"
    assert changes["next_step"] is None


def test_non_retryable_failure_fails_immediately() -> None:
    changes = transition(_task(), "send_email", Failed("No email found for Sarah"))

    assert changes["status"] == "failed"
    assert "retry_count" not in changes


def test_outcome_labels() -> None:
    assert outcome_label(Completed()) == "completed"
    assert outcome_label(Failed("x")) == "failed"
    assert outcome_label(Continue(WorkflowStep.SEND_EMAIL)) == "continue"
    assert outcome_label(Waiting("email_reply", {}, WorkflowStep.PROCESS_REPLY)) == "waiting"
