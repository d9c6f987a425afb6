from datetime import UTC, datetime, timedelta

from advisor_orchestrator.workflow.classifier import classify
from advisor_orchestrator.workflow.sweeper import sweep_stale_waiting

REQUEST = "Schedule a meeting with sarah@acme.com tomorrow 4-5pm"


def test_sweep_is_disabled_without_threshold(engine, user, storage) -> None:
    engine.start(user, REQUEST, classify(REQUEST))

    assert sweep_stale_waiting(storage, stale_after_hours=None) == []


def test_sweep_fails_only_expired_waiting_tasks(engine, user, storage) -> None:
    waiting = engine.start(user, REQUEST, classify(REQUEST)).task
    crm_request = "Create a HubSpot contact for lee@client.example"
    done = engine.start(user, crm_request, classify(crm_request)).task

    fresh = sweep_stale_waiting(storage, stale_after_hours=24)
    later = sweep_stale_waiting(
        storage,
        stale_after_hours=24,
        now=datetime.now(UTC) + timedelta(hours=25),
    )

    assert fresh == []
    assert [task.task_id for task in later] == [waiting.task_id]
    expired = storage.get_task(waiting.task_id)
    assert expired.status == "failed"
    assert expired.failure_reason == "Timed out waiting for email_reply"
    assert expired.waiting_for is None
    assert storage.get_task(done.task_id).status == "completed"


def test_sweep_skips_tasks_resumed_concurrently(engine, user, storage, monkeypatch) -> None:
    waiting = engine.start(user, REQUEST, classify(REQUEST)).task
    stale_snapshot = storage.get_task(waiting.task_id)
    storage.update_task(
        waiting.task_id,
        expected_version=waiting.version,
        changes={"status": "in_progress", "waiting_for": None},
    )
    monkeypatch.setattr(storage, "find_stale_waiting", lambda cutoff: [stale_snapshot])

    assert sweep_stale_waiting(storage, stale_after_hours=1) == []
    assert storage.get_task(waiting.task_id).status == "in_progress"
