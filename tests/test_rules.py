from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from advisor_orchestrator.rules import InMemoryRuleStore, ProactiveRule, RuleEngine
from advisor_orchestrator.rules.engine import interpolate
from advisor_orchestrator.rules.store import matches_condition, rule_matches_event
from advisor_orchestrator.tools import ToolExecutor

from conftest import FakeWorkspace

EVENT = {
    "from": "Kim Lee <kim@acme.com>",
    "subject": "Invoice 2291 overdue",
    "body": "Please advise.",
    "meta": {"priority": 2, "sender": {"domain": "acme.com"}},
}


def _rule(**overrides) -> ProactiveRule:
    fields = {
        "user_id": "advisor-1",
        "name": "Invoice alerts",
        "description": "Notify me about invoices",
        "trigger_type": "email_received",
        "actions": {"send_notification": {"message": "Invoice mail: {{subject}}"}},
        "is_active": True,
    }
    fields.update(overrides)
    return ProactiveRule(**fields)


def test_rule_requires_at_least_one_action() -> None:
    with pytest.raises(ValidationError, match="at least one action"):
        _rule(actions={})


def test_rule_rejects_unknown_actions_and_triggers() -> None:
    with pytest.raises(ValidationError):
        _rule(actions={"create_hubspot_note": {}})
    with pytest.raises(ValidationError):
        _rule(trigger_type="sms_received")


def test_rules_are_inactive_by_default() -> None:
    rule = ProactiveRule(
        user_id="advisor-1",
        name="n",
        description="d",
        trigger_type="calendar_event",
        actions={"send_notification": {}},
    )

    assert rule.is_active is False


@pytest.mark.parametrize(
    ("actual", "expected", "matched"),
    [
        ("Invoice 2291 overdue", "contains:INVOICE", True),
        ("Invoice 2291 overdue", r"regex:\d{4}", True),
        ("Invoice overdue", r"regex:\d{4}", False),
        ("Invoice", "regex:(", False),
        ("Invoice", "Invoice", True),
        ("Invoice", "invoice", False),
        (2, 2, True),
        (2, 3, False),
    ],
)
def test_condition_operators(actual, expected, matched) -> None:
    assert matches_condition(actual, expected) is matched


def test_every_condition_must_hold_including_nested_paths() -> None:
    assert rule_matches_event(_rule(), EVENT)
    assert rule_matches_event(
        _rule(trigger_conditions={"subject": "contains:invoice", "meta.sender.domain": "acme.com"}),
        EVENT,
    )
    assert not rule_matches_event(
        _rule(trigger_conditions={"subject": "contains:invoice", "meta.priority": 1}),
        EVENT,
    )
    assert not rule_matches_event(_rule(trigger_conditions={"meta.missing": "x"}), EVENT)


def test_store_filters_by_user_trigger_and_active_flag() -> None:
    now = datetime.now(UTC)
    older = _rule(name="older", created_at=now - timedelta(minutes=5))
    newer = _rule(name="newer", created_at=now)
    store = InMemoryRuleStore(
        [
            older,
            newer,
            _rule(name="paused", is_active=False),
            _rule(name="calendar", trigger_type="calendar_event"),
            _rule(name="other user", user_id="advisor-2"),
        ]
    )

    matching = store.find_matching("advisor-1", "email_received", EVENT)

    assert [rule.name for rule in matching] == ["newer", "older"]
    assert len(store.list_rules("advisor-1")) == 4


def test_interpolation_keeps_unknown_placeholders() -> None:
    config = {
        "to": ["{{meta.sender.domain}}"],
        "subject": "Re: {{subject}} ({{ meta.priority }})",
        "body": "{{unknown.path}}",
        "count": 3,
    }

    assert interpolate(config, EVENT) == {
        "to": ["acme.com"],
        "subject": "Re: Invoice 2291 overdue (2)",
        "body": "{{unknown.path}}",
        "count": 3,
    }


def test_engine_runs_actions_through_tools(user) -> None:
    workspace = FakeWorkspace()
    rule = _rule(
        actions={
            "send_email": {
                "to": "ops@firm.example",
                "subject": "Fwd: {{subject}}",
                "body": "{{body}}",
            },
            "create_calendar_event": {
                "title": "Review {{subject}}",
                "start_time": "2025-06-24T16:00:00+00:00",
                "end_time": "2025-06-24T16:30:00+00:00",
            },
        }
    )
    engine = RuleEngine(
        store=InMemoryRuleStore([rule]),
        tools=ToolExecutor(registry=workspace.registry(), tool_timeout_s=2.0),
    )

    (result,) = engine.process_event(user, "email_received", EVENT)

    assert result.success is True
    assert [action.success for action in result.actions] == [True, True]
    assert workspace.calls_to("send_email")[0]["subject"] == "Fwd: Invoice 2291 overdue"
    assert workspace.calls_to("create_calendar_event")[0]["title"] == "Review Invoice 2291 overdue"
    assert result.as_dict()["actions_executed"] == 2


def test_failed_actions_are_reported_without_stopping_the_rule(user) -> None:
    workspace = FakeWorkspace(failing={"send_email"})
    rule = _rule(
        actions={
            "send_email": {"to": "ops@firm.example", "subject": "s", "body": "b"},
            "send_notification": {"message": "still runs"},
        }
    )
    engine = RuleEngine(
        store=InMemoryRuleStore([rule]),
        tools=ToolExecutor(registry=workspace.registry(), tool_timeout_s=2.0),
    )

    (result,) = engine.process_event(user, "email_received", EVENT)

    email, notification = result.actions
    assert email.success is False
    assert email.error == "send_email is unavailable"
    assert notification.success is True


def test_one_broken_rule_does_not_block_the_others(user, monkeypatch) -> None:
    broken = _rule(name="broken")
    healthy = _rule(name="healthy", created_at=broken.created_at - timedelta(seconds=1))
    engine = RuleEngine(
        store=InMemoryRuleStore([broken, healthy]),
        tools=ToolExecutor(registry=FakeWorkspace().registry()),
    )
    real_execute = engine._execute_rule

    def flaky_execute(who, rule, event):
        if rule.name == "broken":
            raise RuntimeError("bad template")
        return real_execute(who, rule, event)

    monkeypatch.setattr(engine, "_execute_rule", flaky_execute)

    outcomes = engine.process_event(user, "email_received", EVENT)
    results = {result.rule_name: result for result in outcomes}

    assert results["broken"].success is False
    assert results["broken"].error == "bad template"
    assert results["healthy"].success is True
