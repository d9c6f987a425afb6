"""Expire tasks that have been waiting on an external event for too long."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from advisor_orchestrator.errors import TerminalTaskError, VersionConflictError
from advisor_orchestrator.storage.base import TaskStorage
from advisor_orchestrator.storage.models import Task

logger = logging.getLogger(__name__)


def sweep_stale_waiting(
    storage: TaskStorage,
    *,
    stale_after_hours: float | None,
    now: datetime | None = None,
) -> list[Task]:
    """Fail waiting tasks idle longer than `stale_after_hours`; a None threshold disables the sweep."""
    if stale_after_hours is None:
        return []
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(hours=stale_after_hours)

    expired: list[Task] = []
    for task in storage.find_stale_waiting(cutoff):
        try:
            updated = storage.update_task(
                task.task_id,
                expected_version=task.version,
                changes={
                    "status": "failed",
                    "waiting_for": None,
                    "next_step": None,
                    "failure_reason": f"Timed out waiting for {task.waiting_for}",
                },
            )
        except (VersionConflictError, TerminalTaskError):
            # Resumed or finished concurrently; leave it to its new owner.
            logger.info("sweep event=skipped task_id=%s", task.task_id)
            continue
        expired.append(updated)
        logger.info(
            "sweep event=expired task_id=%s waiting_for=%s",
            task.task_id,
            task.waiting_for,
        )
    logger.info("sweep event=finished cutoff=%s expired=%d", cutoff.isoformat(), len(expired))
    return expired
