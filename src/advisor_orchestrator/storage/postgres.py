"""PostgreSQL-backed task storage with automatic table migration."""

from __future__ import annotations

import json
import threading
import uuid
from collections import Counter
from datetime import UTC, datetime
from typing import Any

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


class PostgresTaskStorage:
    """Persist workflow tasks in PostgreSQL with a version column for compare-and-set."""

    def __init__(self, database_url: str, *, recent_window_minutes: int = 0) -> None:
        if not database_url:
            raise ValueError("ADVISOR_AGENT_DATABASE_URL is required")
        self.database_url = database_url
        self.recent_window_minutes = recent_window_minutes
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS workflow_tasks (
                    task_id UUID PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    status TEXT NOT NULL,
                    task_type TEXT NOT NULL,
                    original_request TEXT NOT NULL,
                    workflow_state JSONB NOT NULL DEFAULT '{}'::jsonb,
                    steps_completed JSONB NOT NULL DEFAULT '[]'::jsonb,
                    next_step TEXT,
                    waiting_for TEXT,
                    waiting_for_data JSONB NOT NULL DEFAULT '{}'::jsonb,
                    scheduled_for TIMESTAMPTZ,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    max_retries INTEGER NOT NULL DEFAULT 3,
                    failure_reason TEXT,
                    failed_at TIMESTAMPTZ,
                    completed_at TIMESTAMPTZ,
                    parent_task_id UUID REFERENCES workflow_tasks(task_id) ON DELETE SET NULL,
                    version INTEGER NOT NULL DEFAULT 1,
                    last_activity_at TIMESTAMPTZ NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_workflow_tasks_user_status
                ON workflow_tasks(user_id, status)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_workflow_tasks_waiting
                ON workflow_tasks(user_id, waiting_for)
                WHERE status = 'waiting'
                """)
            conn.commit()

    def create_task(self, new_task: NewTask) -> Task:
        task_id = uuid.uuid4()
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO workflow_tasks (
                    task_id,
                    user_id,
                    title,
                    status,
                    task_type,
                    original_request,
                    workflow_state,
                    steps_completed,
                    next_step,
                    waiting_for_data,
                    scheduled_for,
                    max_retries,
                    parent_task_id,
                    version,
                    last_activity_at,
                    created_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    task_id,
                    new_task.user_id,
                    new_task.title or build_title(new_task.task_type, new_task.original_request),
                    "pending",
                    new_task.task_type,
                    new_task.original_request,
                    self._json_wrapper(new_task.workflow_state),
                    self._json_wrapper([]),
                    new_task.next_step,
                    self._json_wrapper({}),
                    new_task.scheduled_for,
                    new_task.max_retries,
                    uuid.UUID(new_task.parent_task_id) if new_task.parent_task_id else None,
                    1,
                    now,
                    now,
                    now,
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist task")
        return self._row_to_task(row)

    def get_task(self, task_id: str) -> Task | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM workflow_tasks WHERE task_id::text = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

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
        current = self.get_task(task_id)
        if current is None:
            raise TaskNotFoundError(task_id)
        if current.version != expected_version:
            raise VersionConflictError(task_id, expected_version, current.version)
        updated = apply_changes(current, changes, now=datetime.now(tz=UTC))

        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                UPDATE workflow_tasks
                SET status = %s,
                    workflow_state = %s,
                    steps_completed = %s,
                    next_step = %s,
                    waiting_for = %s,
                    waiting_for_data = %s,
                    scheduled_for = %s,
                    retry_count = %s,
                    max_retries = %s,
                    failure_reason = %s,
                    failed_at = %s,
                    completed_at = %s,
                    version = %s,
                    last_activity_at = %s,
                    updated_at = %s
                WHERE task_id::text = %s AND version = %s
                RETURNING *
                """,
                (
                    updated.status,
                    self._json_wrapper(updated.workflow_state),
                    self._json_wrapper(updated.steps_completed),
                    updated.next_step,
                    updated.waiting_for,
                    self._json_wrapper(updated.waiting_for_data),
                    updated.scheduled_for,
                    updated.retry_count,
                    updated.max_retries,
                    updated.failure_reason,
                    updated.failed_at,
                    updated.completed_at,
                    updated.version,
                    updated.last_activity_at,
                    updated.updated_at,
                    task_id,
                    expected_version,
                ),
            ).fetchone()
            conn.commit()

        if row is None:
            # Another writer bumped the version between our read and the guarded UPDATE.
            latest = self.get_task(task_id)
            raise VersionConflictError(
                task_id, expected_version, latest.version if latest else None
            )
        return self._row_to_task(row)

    def find_waiting_matching(
        self,
        user_id: str,
        event_kind: str,
        event_payload: dict[str, Any],
    ) -> list[Task]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM workflow_tasks
                WHERE user_id = %s AND status = 'waiting' AND waiting_for = %s
                ORDER BY created_at DESC
                """,
                (user_id, event_kind),
            ).fetchall()
        now = datetime.now(tz=UTC)
        tasks = [self._row_to_task(row) for row in rows]
        return [
            task
            for task in tasks
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
        query = "SELECT * FROM workflow_tasks WHERE user_id = %s"
        params: list[Any] = [user_id]
        if statuses:
            query += " AND status = ANY(%s)"
            params.append(list(statuses))
        query += " ORDER BY created_at DESC"
        with self._lock, self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def task_stats(self, user_id: str) -> dict[str, int]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT status, COUNT(*) AS total
                FROM workflow_tasks
                WHERE user_id = %s
                GROUP BY status
                """,
                (user_id,),
            ).fetchall()
        counts = Counter({row["status"]: int(row["total"]) for row in rows})
        stats = {status: counts.get(status, 0) for status in ALL_STATUSES}
        stats["total"] = sum(counts.values())
        return stats

    def find_stale_waiting(self, older_than: datetime) -> list[Task]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM workflow_tasks
                WHERE status = 'waiting' AND last_activity_at < %s
                ORDER BY last_activity_at ASC
                """,
                (older_than,),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json(raw: Any, *, default: Any) -> Any:
        if raw is None:
            return default
        if isinstance(raw, (str, bytes)):
            return json.loads(raw)
        return raw

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime | None:
        if raw is None:
            return None
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_task(cls, row: Any) -> Task:
        parent = row.get("parent_task_id")
        return Task(
            task_id=str(row["task_id"]),
            user_id=str(row["user_id"]),
            title=row["title"],
            status=row["status"],
            task_type=row["task_type"],
            original_request=row["original_request"],
            workflow_state=cls._parse_json(row.get("workflow_state"), default={}),
            steps_completed=cls._parse_json(row.get("steps_completed"), default=[]),
            next_step=row.get("next_step"),
            waiting_for=row.get("waiting_for"),
            waiting_for_data=cls._parse_json(row.get("waiting_for_data"), default={}),
            scheduled_for=cls._parse_datetime(row.get("scheduled_for")),
            retry_count=int(row.get("retry_count") or 0),
            max_retries=int(row.get("max_retries") if row.get("max_retries") is not None else 3),
            failure_reason=row.get("failure_reason"),
            failed_at=cls._parse_datetime(row.get("failed_at")),
            completed_at=cls._parse_datetime(row.get("completed_at")),
            parent_task_id=str(parent) if parent is not None else None,
            version=int(row["version"]),
            last_activity_at=cls._parse_datetime(row["last_activity_at"]),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )
