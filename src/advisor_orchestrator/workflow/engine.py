"""Workflow engine: drives persisted tasks through their step state machine."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable

from advisor_orchestrator.config.settings import Settings
from advisor_orchestrator.errors import VersionConflictError
from advisor_orchestrator.llm.gateway import LLMGateway
from advisor_orchestrator.storage.base import TaskStorage
from advisor_orchestrator.storage.models import NewTask, Task
from advisor_orchestrator.tools import ToolExecutor
from advisor_orchestrator.users import UserContext
from advisor_orchestrator.workflow.classifier import WorkflowNeeded
from advisor_orchestrator.workflow.handlers import HANDLERS, StepContext
from advisor_orchestrator.workflow.steps import (
    Continue,
    Failed,
    StepResult,
    WorkflowStep,
    outcome_label,
    should_retry,
    transition,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriveOutcome:
    task: Task
    result: StepResult | None
    steps_run: int = 0

    @property
    def summary(self) -> str:
        task = self.task
        if task.status == "completed":
            result = self.result
            return getattr(result, "summary", None) or "Task completed."
        if task.status == "failed":
            return f"Task failed: {task.failure_reason}"
        if task.status == "waiting":
            return waiting_message(task)
        return f"Task is {task.status}; next step is {task.next_step}."


def waiting_message(task: Task) -> str:
    messages = {
        "email_reply": (
            "I've sent the email and I'm now waiting for a reply. "
            "I'll automatically continue when a response is received."
        ),
        "calendar_response": (
            "I've created the calendar event and I'm waiting for attendee responses."
        ),
        "external_approval": "The request has been submitted for approval.",
        "scheduled_time": f"This task is scheduled to continue at {task.scheduled_for}.",
        "user_input": "I need additional information from you to continue.",
    }
    return messages.get(
        task.waiting_for or "",
        "The task is waiting for an external event to continue.",
    )


class WorkflowEngine:
    """Execute one step at a time and persist each outcome with compare-and-set updates."""

    def __init__(
        self,
        *,
        storage: TaskStorage,
        tools: ToolExecutor,
        llm: LLMGateway,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.storage = storage
        self.tools = tools
        self.llm = llm
        self.settings = settings or Settings()
        self.clock = clock or (lambda: datetime.now(UTC))

    def create_task(self, user_id: str, request: str, classification: WorkflowNeeded) -> Task:
        task = self.storage.create_task(
            NewTask(
                user_id=user_id,
                task_type=classification.workflow_type,
                original_request=request,
                workflow_state=dict(classification.extracted_data),
                next_step=classification.initial_step.value,
                max_retries=self.settings.task_max_retries,
            )
        )
        logger.info(
            "task event=created task_id=%s user_id=%s type=%s next_step=%s",
            task.task_id,
            user_id,
            task.task_type,
            task.next_step,
        )
        return task

    def start(self, user: UserContext, request: str, classification: WorkflowNeeded) -> DriveOutcome:
        task = self.create_task(user.user_id, request, classification)
        return self.drive(task, user)

    def execute_step(self, task: Task, user: UserContext) -> StepResult:
        """Run the task's current step and return its result without persisting anything."""
        try:
            step = WorkflowStep(task.next_step)
        except ValueError:
            return Failed(f"Unknown workflow step: {task.next_step}", retryable=False)

        ctx = StepContext(
            user=user,
            tools=self.tools,
            llm=self.llm,
            now=self.clock(),
            timezone=self.settings.meeting_timezone,
        )
        logger.info("task_step event=started task_id=%s step=%s", task.task_id, step.value)
        try:
            result = HANDLERS[step](ctx, task)
        except Exception as exc:  # noqa: BLE001
            logger.exception("task_step event=crashed task_id=%s step=%s", task.task_id, step.value)
            result = Failed(f"Step {step.value} raised: {exc}", retryable=False)
        logger.info(
            "task_step event=finished task_id=%s step=%s outcome=%s",
            task.task_id,
            step.value,
            outcome_label(result),
        )
        return result

    def drive(self, task: Task, user: UserContext) -> DriveOutcome:
        """Execute steps until the task completes, fails, waits, or hits the step guard."""
        last_result: StepResult | None = None
        steps_run = 0

        while steps_run < self.settings.max_steps_per_drive:
            if task.is_terminal or task.status == "waiting" or task.next_step is None:
                break

            claimed = self._claim(task)
            if claimed is None:
                # Another driver owns this revision of the task.
                latest = self.storage.get_task(task.task_id)
                return DriveOutcome(task=latest or task, result=last_result, steps_run=steps_run)
            task = claimed

            step_name = task.next_step
            last_result = self.execute_step(task, user)
            steps_run += 1
            retrying = should_retry(task, last_result)

            committed = self._commit(task, step_name, last_result)
            if committed is None:
                latest = self.storage.get_task(task.task_id)
                return DriveOutcome(task=latest or task, result=last_result, steps_run=steps_run)
            task = committed

            if retrying:
                logger.warning(
                    "task_step event=retry task_id=%s step=%s retry_count=%d reason=%s",
                    task.task_id,
                    step_name,
                    task.retry_count,
                    getattr(last_result, "reason", ""),
                )
                if self.settings.task_retry_backoff_s > 0:
                    time.sleep(self.settings.task_retry_backoff_s)
                continue
            if not isinstance(last_result, Continue):
                break
        else:
            logger.warning(
                "task event=step_guard task_id=%s max_steps=%d next_step=%s",
                task.task_id,
                self.settings.max_steps_per_drive,
                task.next_step,
            )

        if task.status == "failed":
            logger.warning("task event=failed task_id=%s reason=%s", task.task_id, task.failure_reason)
        elif task.status == "waiting":
            logger.info("task event=waiting task_id=%s waiting_for=%s", task.task_id, task.waiting_for)
        elif task.status == "completed":
            logger.info("task event=completed task_id=%s", task.task_id)
        return DriveOutcome(task=task, result=last_result, steps_run=steps_run)

    def fail_task(self, task: Task, reason: str) -> Task | None:
        """Force a non-terminal task to `failed`, re-reading on version conflicts."""
        current: Task | None = task
        for _ in range(self.settings.update_conflict_retries + 1):
            if current is None or current.is_terminal:
                return current
            try:
                return self.storage.update_task(
                    current.task_id,
                    expected_version=current.version,
                    changes={
                        "status": "failed",
                        "failure_reason": reason,
                        "next_step": None,
                        "waiting_for": None,
                    },
                )
            except VersionConflictError:
                logger.info("task event=version_conflict task_id=%s op=fail", current.task_id)
                current = self.storage.get_task(current.task_id)
        return current

    def _claim(self, task: Task) -> Task | None:
        try:
            return self.storage.update_task(
                task.task_id,
                expected_version=task.version,
                changes={"status": "in_progress"},
            )
        except VersionConflictError:
            logger.info("task event=claim_lost task_id=%s version=%d", task.task_id, task.version)
            return None

    def _commit(self, task: Task, step: str, result: StepResult) -> Task | None:
        current = task
        for attempt in range(self.settings.update_conflict_retries + 1):
            changes = transition(current, step, result)
            try:
                return self.storage.update_task(
                    current.task_id,
                    expected_version=current.version,
                    changes=changes,
                )
            except VersionConflictError:
                logger.info(
                    "task event=version_conflict task_id=%s attempt=%d",
                    task.task_id,
                    attempt + 1,
                )
                latest = self.storage.get_task(task.task_id)
                # Only recompute against a revision still sitting on the step we just ran.
                if latest is None or latest.is_terminal or latest.next_step != task.next_step:
                    return None
                current = latest
        return None
