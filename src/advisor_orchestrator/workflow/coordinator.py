"""Resume waiting tasks when an external event (email reply, calendar response) arrives."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from advisor_orchestrator.errors import VersionConflictError
from advisor_orchestrator.storage.base import TaskStorage
from advisor_orchestrator.storage.models import Task
from advisor_orchestrator.users import UserContext
from advisor_orchestrator.workflow.engine import WorkflowEngine
from advisor_orchestrator.workflow.steps import WorkflowStep

logger = logging.getLogger(__name__)

RESUME_STEPS: dict[str, WorkflowStep] = {
    "email_reply": WorkflowStep.PROCESS_REPLY,
    "calendar_response": WorkflowStep.PROCESS_REPLY,
}


@dataclass(frozen=True)
class ResumeOutcome:
    task_id: str
    outcome: str
    detail: str = ""

    def as_dict(self) -> dict[str, str]:
        return {"task_id": self.task_id, "outcome": self.outcome, "detail": self.detail}


class ResumeCoordinator:
    def __init__(self, *, storage: TaskStorage, engine: WorkflowEngine) -> None:
        self.storage = storage
        self.engine = engine

    def resume_from_event(
        self,
        user: UserContext,
        event_payload: dict[str, Any],
        *,
        event_kind: str = "email_reply",
    ) -> list[ResumeOutcome]:
        """Resume every waiting task of `user` that matches the event.

        A failure while resuming one task marks that task failed and does not
        stop the remaining matches from being processed.
        """
        candidates = self.storage.find_waiting_matching(user.user_id, event_kind, event_payload)
        logger.info(
            "resume event=matched user_id=%s kind=%s count=%d",
            user.user_id,
            event_kind,
            len(candidates),
        )

        outcomes: list[ResumeOutcome] = []
        for task in candidates:
            try:
                outcomes.append(self._resume_one(task, user, event_kind, event_payload))
            except Exception as exc:  # noqa: BLE001
                logger.exception("resume event=error task_id=%s", task.task_id)
                self.engine.fail_task(
                    self.storage.get_task(task.task_id) or task,
                    f"Resume failed: {exc}",
                )
                outcomes.append(ResumeOutcome(task.task_id, "failed", str(exc)))
        return outcomes

    def _resume_one(
        self,
        task: Task,
        user: UserContext,
        event_kind: str,
        event_payload: dict[str, Any],
    ) -> ResumeOutcome:
        resumed = self._attach_event(task, event_kind, event_payload)
        if resumed is None:
            logger.info("resume event=skipped task_id=%s", task.task_id)
            return ResumeOutcome(task.task_id, "skipped", "task is no longer waiting")

        logger.info("resume event=resumed task_id=%s next_step=%s", resumed.task_id, resumed.next_step)
        outcome = self.engine.drive(resumed, user)
        return ResumeOutcome(task.task_id, outcome.task.status, outcome.summary)

    def _attach_event(
        self,
        task: Task,
        event_kind: str,
        event_payload: dict[str, Any],
    ) -> Task | None:
        current: Task | None = task
        next_step = RESUME_STEPS.get(event_kind, WorkflowStep.PROCESS_REPLY)
        for _ in range(self.engine.settings.update_conflict_retries + 1):
            if current is None or current.status != "waiting" or current.waiting_for != event_kind:
                return None
            state = {
                **current.workflow_state,
                "reply_data": dict(event_payload),
                "reply_received_at": datetime.now(UTC).isoformat(),
            }
            try:
                return self.storage.update_task(
                    current.task_id,
                    expected_version=current.version,
                    changes={
                        "status": "in_progress",
                        "waiting_for": None,
                        "workflow_state": state,
                        "next_step": next_step.value,
                    },
                )
            except VersionConflictError:
                logger.info("resume event=version_conflict task_id=%s", current.task_id)
                current = self.storage.get_task(current.task_id)
        return None
