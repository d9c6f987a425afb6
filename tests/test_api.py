from __future__ import annotations

import base64
import json

from fastapi.testclient import TestClient

MEETING_REQUEST = "Schedule a meeting with sarah@acme.com tomorrow 4-5pm"


def _start_meeting(client: TestClient) -> dict:
    response = client.post(
        "/assistant/requests",
        json={"user_id": "advisor-1", "text": MEETING_REQUEST},
    )
    assert response.status_code == 200
    return response.json()


def test_health_and_tools(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok", "service": "advisor-orchestrator"}
    assert client.get("/tools").json() == {
        "tools": ["create_calendar_event", "find_contact", "send_email", "upsert_crm_contact"]
    }


def test_workflow_request_waits_for_reply(client: TestClient) -> None:
    payload = _start_meeting(client)

    assert payload["waiting"] is True
    assert payload["tools_used"] == ["send_email"]
    task = payload["task"]
    assert task["status"] == "waiting"
    assert task["waiting_for"] == "email_reply"

    fetched = client.get(f"/tasks/{task['task_id']}", params={"user_id": "advisor-1"})
    assert fetched.status_code == 200
    assert fetched.json()["version"] == task["version"]


def test_tasks_are_scoped_to_their_owner(client: TestClient) -> None:
    task_id = _start_meeting(client)["task"]["task_id"]

    assert client.get(f"/tasks/{task_id}", params={"user_id": "advisor-2"}).status_code == 404
    assert client.get("/tasks/nope", params={"user_id": "advisor-1"}).status_code == 404
    assert client.get("/users/advisor-2/tasks").json() == []


def test_list_and_stats(client: TestClient) -> None:
    _start_meeting(client)

    listed = client.get("/users/advisor-1/tasks", params={"status": "waiting"})
    assert [task["status"] for task in listed.json()] == ["waiting"]
    assert client.get("/users/advisor-1/tasks", params={"status": "completed"}).json() == []
    assert client.get("/users/advisor-1/tasks", params={"status": "bogus"}).status_code == 422

    stats = client.get("/users/advisor-1/tasks/stats").json()
    assert stats["waiting"] == 1
    assert stats["total"] == 1


def test_resume_endpoint_completes_meeting(client: TestClient, workspace) -> None:
    task_id = _start_meeting(client)["task"]["task_id"]

    response = client.post(
        "/resume",
        json={
            "user_id": "advisor-1",
            "event_kind": "email_reply",
            "payload": {"from": "sarah@acme.com", "body": "Yes, that works for me."},
        },
    )

    assert response.status_code == 200
    (resumed,) = response.json()["resumed"]
    assert resumed["task_id"] == task_id
    assert resumed["outcome"] == "completed"
    assert len(workspace.calls_to("create_calendar_event")) == 1


def test_resume_rejects_unknown_event_kind(client: TestClient) -> None:
    response = client.post("/resume", json={"user_id": "advisor-1", "event_kind": "sms", "payload": {}})

    assert response.status_code == 422


def test_retry_failed_task(client: TestClient, workspace) -> None:
    failed = client.post(
        "/assistant/requests",
        json={"user_id": "advisor-1", "text": "Email Jane Doe to schedule a meeting next week"},
    ).json()["task"]
    assert failed["status"] == "failed"
    assert failed["failure_reason"] == "No email found for Jane Doe"

    workspace.contacts["Jane Doe"] = ["jane@doe.example"]
    response = client.post(f"/tasks/{failed['task_id']}/retry", params={"user_id": "advisor-1"})

    assert response.status_code == 200
    retried = response.json()["task"]
    assert retried["task_id"] != failed["task_id"]
    assert retried["status"] == "waiting"
    assert retried["workflow_state"]["retried_from"] == failed["task_id"]


def test_retry_requires_failed_task(client: TestClient) -> None:
    task_id = _start_meeting(client)["task"]["task_id"]

    response = client.post(f"/tasks/{task_id}/retry", params={"user_id": "advisor-1"})

    assert response.status_code == 409


def test_gmail_webhook_queues_resume(client: TestClient) -> None:
    task_id = _start_meeting(client)["task"]["task_id"]
    data = {"threadId": "thread-1", "from": "Sarah <sarah@acme.com>", "snippet": "Sounds good"}
    envelope = {"message": {"data": base64.urlsafe_b64encode(json.dumps(data).encode()).decode()}}

    response = client.post("/webhooks/gmail/advisor-1", json=envelope)

    assert response.status_code == 200
    assert response.json()["status"] == "queued"
    job_id = response.json()["job_id"]
    client.app.state.resume_queue.wait(job_id, timeout=5)

    job = client.get(f"/resume-jobs/{job_id}").json()
    assert job["status"] == "done"
    assert job["outcomes"][0]["task_id"] == task_id
    assert client.get(f"/tasks/{task_id}", params={"user_id": "advisor-1"}).json()["status"] == "completed"


def test_gmail_webhook_ignores_outgoing_and_rejects_garbage(client: TestClient) -> None:
    sent = b'{"messageId": "m-9", "labelIds": ["SENT"]}'
    outgoing = {"message": {"data": base64.b64encode(sent).decode()}}

    assert client.post("/webhooks/gmail/advisor-1", json=outgoing).json()["status"] == "ignored"
    assert client.post("/webhooks/gmail/advisor-1", json={"message": {"data": "%%%"}}).status_code == 400


def test_calendar_webhook_requires_event_id(client: TestClient) -> None:
    response = client.post("/webhooks/calendar/advisor-1", json={"attendee": "sarah@acme.com"})

    assert response.status_code == 400


def test_unknown_resume_job(client: TestClient) -> None:
    assert client.get("/resume-jobs/missing").status_code == 404


def test_saved_credentials_are_used(client: TestClient) -> None:
    response = client.put(
        "/users/advisor-9/credentials",
        json={"email": "new@firm.example", "google_access_token": "tok"},
    )

    assert response.json() == {
        "user_id": "advisor-9",
        "google_connected": True,
        "hubspot_connected": False,
    }
    assert client.app.state.users.get("advisor-9").email == "new@firm.example"


def test_sweep_is_disabled_by_default(client: TestClient) -> None:
    _start_meeting(client)

    assert client.post("/maintenance/sweep-stale").json() == {"enabled": False, "expired": []}


def test_gmail_history_push_fetches_messages_and_resumes(client: TestClient, workspace) -> None:
    task_id = _start_meeting(client)["task"]["task_id"]
    workspace.history["12345"] = [
        {
            "message_id": "m-77",
            "thread_id": "thread-1",
            "history_id": "12345",
            "from": "Sarah <sarah@acme.com>",
            "subject": "Re: Meeting Request - Tomorrow 4-5pm",
            "body": "Yes, that works for me.",
            "labels": ["INBOX"],
        }
    ]
    push = {"emailAddress": "advisor@firm.example", "historyId": "12345"}
    envelope = {"message": {"data": base64.b64encode(json.dumps(push).encode()).decode()}}

    response = client.post("/webhooks/gmail/advisor-1", json=envelope)

    assert response.json()["status"] == "queued"
    job_id = response.json()["job_id"]
    client.app.state.resume_queue.wait(job_id, timeout=5)
    job = client.get(f"/resume-jobs/{job_id}").json()
    assert job["status"] == "done"
    assert job["events"] == 1
    assert [item["task_id"] for item in job["outcomes"]] == [task_id]
    assert workspace.calls_to("fetch_new_messages") == [{"history_id": "12345"}]
    task = client.get(f"/tasks/{task_id}", params={"user_id": "advisor-1"}).json()
    assert task["status"] == "completed"
    assert task["workflow_state"]["reply_data"]["message_id"] == "m-77"


def test_rules_run_on_incoming_gmail_webhook(client: TestClient, workspace) -> None:
    created = client.post(
        "/users/advisor-1/rules",
        json={
            "name": "Forward client mail",
            "description": "Tell me whenever someone from acme writes in",
            "trigger_type": "email_received",
            "trigger_conditions": {"from": "contains:@acme.com"},
            "actions": {
                "send_email": {
                    "to": "advisor@firm.example",
                    "subject": "New mail: {{subject}}",
                    "body": "{{from}} wrote: {{body}}",
                },
                "send_notification": {"message": "Mail from {{from}}"},
            },
            "is_active": True,
        },
    )
    assert created.status_code == 200
    rule = created.json()
    assert rule["user_id"] == "advisor-1"
    assert [item["rule_id"] for item in client.get("/users/advisor-1/rules").json()] == [
        rule["rule_id"]
    ]

    data = {
        "threadId": "thread-42",
        "from": "kim@acme.com",
        "subject": "Quarterly review",
        "snippet": "Hi",
    }
    envelope = {"message": {"data": base64.b64encode(json.dumps(data).encode()).decode()}}
    job_id = client.post("/webhooks/gmail/advisor-1", json=envelope).json()["job_id"]
    client.app.state.resume_queue.wait(job_id, timeout=5)

    job = client.get(f"/resume-jobs/{job_id}").json()
    assert job["outcomes"] == []
    (result,) = job["rule_results"]
    assert result["success"] is True
    assert [action["action"] for action in result["actions"]] == ["send_email", "send_notification"]
    assert result["actions"][1]["result"] == {"message": "Mail from kim@acme.com"}
    (sent,) = workspace.calls_to("send_email")
    assert sent["to"] == ["advisor@firm.example"]
    assert sent["subject"] == "New mail: Quarterly review"
    assert sent["body"] == "kim@acme.com wrote: Hi"


def test_invalid_rules_are_rejected(client: TestClient) -> None:
    base = {"name": "r", "description": "d", "trigger_type": "email_received"}

    assert client.post("/users/advisor-1/rules", json={**base, "actions": {}}).status_code == 422
    bad_trigger = {**base, "trigger_type": "sms_received", "actions": {"send_notification": {}}}
    assert client.post("/users/advisor-1/rules", json=bad_trigger).status_code == 422
    bad_regex = {
        **base,
        "trigger_conditions": {"subject": "regex:(unclosed"},
        "actions": {"send_notification": {}},
    }
    assert client.post("/users/advisor-1/rules", json=bad_regex).status_code == 422
