"""Background webhook jobs with observable status.

Each job expands a Gmail history notification into concrete messages when
needed, runs the user's proactive rules for every event, and then resumes the
waiting tasks that match it.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Literal
from uuid import uuid4

from advisor_orchestrator.rules import TRIGGER_FOR_EVENT_KIND, RuleEngine
from advisor_orchestrator.users import UserContext
from advisor_orchestrator.workflow.coordinator import ResumeCoordinator
from advisor_orchestrator.workflow.webhooks import needs_history_fetch

logger = logging.getLogger(__name__)

JobStatus = Literal["queued", "running", "done", "error"]
MessageFetcher = Callable[[UserContext, str], list[dict[str, Any]]]


@dataclass
class ResumeJob:
    job_id: str
    user_id: str
    event_kind: str
    status: JobStatus = "queued"
    events: int = 0
    outcomes: list[dict[str, str]] = field(default_factory=list)
    rule_results: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    submitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "user_id": self.user_id,
            "event_kind": self.event_kind,
            "status": self.status,
            "events": self.events,
            "outcomes": list(self.outcomes),
            "rule_results": list(self.rule_results),
            "error": self.error,
            "submitted_at": self.submitted_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class ResumeQueue:
    """Hand webhook events to worker threads and record what each job did.

    Only the most recent `max_finished_jobs` finished jobs stay queryable.
    """

    def __init__(
        self,
        coordinator: ResumeCoordinator,
        *,
        max_workers: int = 2,
        max_finished_jobs: int = 500,
        message_fetcher: MessageFetcher | None = None,
        rule_engine: RuleEngine | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.max_finished_jobs = max_finished_jobs
        self.message_fetcher = message_fetcher
        self.rule_engine = rule_engine
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="resume")
        self._lock = threading.Lock()
        self._jobs: dict[str, ResumeJob] = {}
        self._futures: dict[str, Future[None]] = {}
        self._finished: deque[str] = deque()

    def submit(self, user: UserContext, event_kind: str, payload: dict[str, Any]) -> str:
        job = ResumeJob(job_id=str(uuid4()), user_id=user.user_id, event_kind=event_kind)
        with self._lock:
            self._jobs[job.job_id] = job
            self._futures[job.job_id] = self._pool.submit(
                self._run, job.job_id, user, event_kind, dict(payload)
            )
        logger.info(
            "resume_job event=queued job_id=%s user_id=%s kind=%s",
            job.job_id,
            user.user_id,
            event_kind,
        )
        return job.job_id

    def get(self, job_id: str) -> ResumeJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def wait(self, job_id: str, timeout: float | None = None) -> ResumeJob | None:
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.get(job_id)

    def shutdown(self, *, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def _run(self, job_id: str, user: UserContext, event_kind: str, payload: dict[str, Any]) -> None:
        self._set(job_id, status="running")
        outcomes: list[dict[str, str]] = []
        rule_results: list[dict[str, Any]] = []
        try:
            events = self._expand(user, event_kind, payload)
            trigger = TRIGGER_FOR_EVENT_KIND.get(event_kind)
            for event in events:
                if self.rule_engine is not None and trigger is not None:
                    results = self.rule_engine.process_event(user, trigger, event)
                    rule_results.extend(result.as_dict() for result in results)
                resumed = self.coordinator.resume_from_event(user, event, event_kind=event_kind)
                outcomes.extend(outcome.as_dict() for outcome in resumed)
        except Exception as exc:  # noqa: BLE001
            logger.exception("resume_job event=error job_id=%s", job_id)
            self._finish(
                job_id,
                status="error",
                error=str(exc),
                outcomes=outcomes,
                rule_results=rule_results,
            )
            return
        self._finish(
            job_id,
            status="done",
            events=len(events),
            outcomes=outcomes,
            rule_results=rule_results,
        )
        logger.info(
            "resume_job event=done job_id=%s events=%d resumed=%d rules=%d",
            job_id,
            len(events),
            len(outcomes),
            len(rule_results),
        )

    def _expand(
        self,
        user: UserContext,
        event_kind: str,
        payload: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Turn a history-only Gmail notification into the messages it announces."""
        if (
            event_kind != "email_reply"
            or self.message_fetcher is None
            or not needs_history_fetch(payload)
        ):
            return [payload]
        return self.message_fetcher(user, str(payload["history_id"]))

    def _set(self, job_id: str, **fields: Any) -> None:
        with self._lock:
            job = self._jobs[job_id]
            for key, value in fields.items():
                setattr(job, key, value)

    def _finish(self, job_id: str, **fields: Any) -> None:
        with self._lock:
            job = self._jobs[job_id]
            for key, value in fields.items():
                setattr(job, key, value)
            job.finished_at = datetime.now(UTC)
            self._futures.pop(job_id, None)
            self._finished.append(job_id)
            while len(self._finished) > self.max_finished_jobs:
                self._jobs.pop(self._finished.popleft(), None)
