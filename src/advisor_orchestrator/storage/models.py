"""Task record shared by storage backends, the workflow engine, and the API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, get_args

from pydantic import BaseModel, Field, model_validator

TaskStatus = Literal["pending", "in_progress", "waiting", "completed", "failed"]
WaitingFor = Literal[
    "email_reply",
    "calendar_response",
    "external_approval",
    "scheduled_time",
    "user_input",
]

ALL_STATUSES: tuple[str, ...] = get_args(TaskStatus)
ACTIVE_STATUSES: frozenset[str] = frozenset({"pending", "in_progress", "waiting"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

# Workflow fields frozen once a task is completed or failed.
TERMINAL_LOCKED_FIELDS: frozenset[str] = frozenset(
    {"status", "workflow_state", "next_step", "waiting_for", "waiting_for_data", "steps_completed"}
)


class Task(BaseModel):
    """Durable record of a multi-step request and its execution progress."""

    task_id: str
    user_id: str
    title: str
    status: TaskStatus = "pending"
    task_type: str
    original_request: str
    workflow_state: dict[str, Any] = Field(default_factory=dict)
    steps_completed: list[str] = Field(default_factory=list)
    next_step: str | None = None
    waiting_for: WaitingFor | None = None
    waiting_for_data: dict[str, Any] = Field(default_factory=dict)
    scheduled_for: datetime | None = None
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    failure_reason: str | None = None
    failed_at: datetime | None = None
    completed_at: datetime | None = None
    parent_task_id: str | None = None
    # Optimistic concurrency revision, bumped by every successful update.
    version: int = 1
    last_activity_at: datetime
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _check_status_invariants(self) -> Task:
        if self.status == "waiting" and self.waiting_for is None:
            raise ValueError("waiting tasks must declare waiting_for")
        if self.status != "waiting" and self.waiting_for is not None:
            raise ValueError("only waiting tasks may declare waiting_for")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries


class NewTask(BaseModel):
    """Fields accepted by `TaskStorage.create_task`."""

    user_id: str
    task_type: str
    original_request: str
    title: str | None = None
    workflow_state: dict[str, Any] = Field(default_factory=dict)
    next_step: str | None = None
    max_retries: int = Field(default=3, ge=0)
    scheduled_for: datetime | None = None
    parent_task_id: str | None = None


def build_title(task_type: str, original_request: str) -> str:
    label = task_type.replace("_", " ").title()
    snippet = " ".join(original_request.split())
    if len(snippet) > 60:
        snippet = snippet[:57].rstrip() + "..."
    return f"{label}: {snippet}"
