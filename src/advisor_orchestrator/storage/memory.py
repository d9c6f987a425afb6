"""In-memory storage backend for tests and single-process deployments."""

from __future__ import annotations

import threading
from collections import Counter
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from advisor_orchestrator.errors import TaskNotFoundError, VersionConflictError
from advisor_orchestrator.storage.base import apply_changes, ensure_owner
from advisor_orchestrator.storage.matching import matches_event
from advisor_orchestrator.storage.models import (
    ALL_STATUSES,
    NewTask,
    Task,
    TaskStatus,
    build_title,
)


class InMemoryTaskStorage:
    """Lock-guarded dict of tasks with compare-and-set updates."""

    def __init__(self, *, recent_window_minutes: int = 0) -> None:
        self._tasks: dict[str, Task] = {}
        self._lock = threading.Lock()
        self.recent_window_minutes = recent_window_minutes

    def migrate(self) -> None:
        return None

    def create_task(self, new_task: NewTask) -> Task:
        now = datetime.now(UTC)
        task = Task(
            task_id=str(uuid4()),
            user_id=new_task.user_id,
            title=new_task.title or build_title(new_task.task_type, new_task.original_request),
            status="pending",
            task_type=new_task.task_type,
            original_request=new_task.original_request,
            workflow_state=dict(new_task.workflow_state),
            next_step=new_task.next_step,
            max_retries=new_task.max_retries,
            scheduled_for=new_task.scheduled_for,
            parent_task_id=new_task.parent_task_id,
            last_activity_at=now,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._tasks[task.task_id] = task
        return task.model_copy(deep=True)

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    def get_owned_task(self, task_id: str, user_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return ensure_owner(task, user_id)

    def update_task(
        self,
        task_id: str,
        *,
        expected_version: int,
        changes: dict[str, Any],
    ) -> Task:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            if current.version != expected_version:
                raise VersionConflictError(task_id, expected_version, current.version)
            updated = apply_changes(current, changes, now=datetime.now(UTC))
            self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    def find_waiting_matching(
        self,
        user_id: str,
        event_kind: str,
        event_payload: dict[str, Any],
    ) -> list[Task]:
        now = datetime.now(UTC)
        candidates = [
            task
            for task in self._snapshot()
            if task.user_id == user_id
            and task.status == "waiting"
            and task.waiting_for == event_kind
        ]
        candidates.sort(key=lambda task: task.created_at, reverse=True)
        return [
            task
            for task in candidates
            if matches_event(
                task,
                event_payload,
                now=now,
                recent_window_minutes=self.recent_window_minutes,
            )
        ]

    def list_tasks(
        self,
        user_id: str,
        *,
        statuses: list[TaskStatus] | None = None,
    ) -> list[Task]:
        tasks = [
            task
            for task in self._snapshot()
            if task.user_id == user_id and (statuses is None or task.status in statuses)
        ]
        tasks.sort(key=lambda task: task.created_at, reverse=True)
        return tasks

    def task_stats(self, user_id: str) -> dict[str, int]:
        counts = Counter(task.status for task in self._snapshot() if task.user_id == user_id)
        stats = {status: counts.get(status, 0) for status in ALL_STATUSES}
        stats["total"] = sum(counts.values())
        return stats

    def find_stale_waiting(self, older_than: datetime) -> list[Task]:
        return [
            task
            for task in self._snapshot()
            if task.status == "waiting" and task.last_activity_at < older_than
        ]

    def _snapshot(self) -> list[Task]:
        with self._lock:
            return [task.model_copy(deep=True) for task in self._tasks.values()]
