"""Storage interfaces for workflow task persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from advisor_orchestrator.errors import TaskOwnershipError, TerminalTaskError
from advisor_orchestrator.storage.models import (
    TERMINAL_LOCKED_FIELDS,
    NewTask,
    Task,
    TaskStatus,
)

UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "status",
        "workflow_state",
        "steps_completed",
        "next_step",
        "waiting_for",
        "waiting_for_data",
        "scheduled_for",
        "retry_count",
        "max_retries",
        "failure_reason",
        "failed_at",
        "completed_at",
    }
)


class TaskStorage(Protocol):
    def migrate(self) -> None: ...

    def create_task(self, new_task: NewTask) -> Task: ...

    def get_task(self, task_id: str) -> Task | None: ...

    def get_owned_task(self, task_id: str, user_id: str) -> Task: ...

    def update_task(
        self,
        task_id: str,
        *,
        expected_version: int,
        changes: dict[str, Any],
    ) -> Task: ...

    def find_waiting_matching(
        self,
        user_id: str,
        event_kind: str,
        event_payload: dict[str, Any],
    ) -> list[Task]: ...

    def list_tasks(
        self,
        user_id: str,
        *,
        statuses: list[TaskStatus] | None = None,
    ) -> list[Task]: ...

    def task_stats(self, user_id: str) -> dict[str, int]: ...

    def find_stale_waiting(self, older_than: datetime) -> list[Task]: ...


def ensure_owner(task: Task, user_id: str) -> Task:
    if task.user_id != user_id:
        raise TaskOwnershipError(f"Task {task.task_id} is not owned by user {user_id}")
    return task


def apply_changes(current: Task, changes: dict[str, Any], *, now: datetime) -> Task:
    """Validate a partial update against task invariants and return the next revision."""
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported task fields: {sorted(unknown)}")

    if current.is_terminal and TERMINAL_LOCKED_FIELDS & set(changes):
        raise TerminalTaskError(
            f"Task {current.task_id} is {current.status}; workflow fields are frozen"
        )

    steps = changes.get("steps_completed")
    if steps is not None and list(steps[: len(current.steps_completed)]) != list(
        current.steps_completed
    ):
        raise ValueError("steps_completed is append-only")

    state = changes.get("workflow_state")
    if state is not None and not set(current.workflow_state).issubset(state):
        raise ValueError("workflow_state keys cannot be removed")

    payload = current.model_dump()
    payload.update(changes)
    status = payload["status"]
    if status == "completed" and payload.get("completed_at") is None:
        payload["completed_at"] = now
    if status == "failed" and payload.get("failed_at") is None:
        payload["failed_at"] = now
    payload["version"] = current.version + 1
    payload["updated_at"] = now
    payload["last_activity_at"] = now
    # model_validate (not model_copy) so the status/waiting_for invariant is re-checked.
    return Task.model_validate(payload)
