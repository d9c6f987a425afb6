"""Evaluate proactive rules against inbound events and run their actions."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from advisor_orchestrator.rules.models import ProactiveRule
from advisor_orchestrator.rules.store import RuleStore, lookup_path
from advisor_orchestrator.tools import ToolExecutor
from advisor_orchestrator.users import UserContext

logger = logging.getLogger(__name__)

# Resume event kinds and the rule trigger each one fires.
TRIGGER_FOR_EVENT_KIND: dict[str, str] = {
    "email_reply": "email_received",
    "calendar_response": "calendar_event",
}
PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")


@dataclass(frozen=True)
class ActionResult:
    action: str
    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "success": self.success,
            "result": self.result,
            "error": self.error,
        }


@dataclass(frozen=True)
class RuleResult:
    rule_id: str
    rule_name: str
    success: bool
    actions: list[ActionResult] = field(default_factory=list)
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "success": self.success,
            "actions_executed": len(self.actions),
            "actions": [action.as_dict() for action in self.actions],
            "error": self.error,
        }


def interpolate(value: Any, event: dict[str, Any]) -> Any:
    """Replace `{{path}}` placeholders with event values; unknown paths stay as written."""
    if isinstance(value, dict):
        return {key: interpolate(item, event) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate(item, event) for item in value]
    if not isinstance(value, str):
        return value

    def _substitute(match: re.Match[str]) -> str:
        found = lookup_path(event, match.group(1))
        return match.group(0) if found is None else str(found)

    return PLACEHOLDER_PATTERN.sub(_substitute, value)


def _email_args(config: dict[str, Any]) -> dict[str, Any]:
    to = config.get("to") or []
    return {
        "to": [to] if isinstance(to, str) else list(to),
        "subject": str(config.get("subject", "")),
        "body": str(config.get("body", "")),
    }


def _calendar_args(config: dict[str, Any]) -> dict[str, Any]:
    return {
        "title": str(config.get("title", "")),
        "description": str(config.get("description", "")),
        "start_time": config.get("start_time"),
        "end_time": config.get("end_time"),
        "attendees": list(config.get("attendees") or []),
    }


def _contact_args(config: dict[str, Any]) -> dict[str, Any]:
    properties = config.get("properties") or config
    args = {
        "email": properties.get("email"),
        "first_name": properties.get("firstname") or properties.get("first_name"),
        "last_name": properties.get("lastname") or properties.get("last_name"),
        "company": properties.get("company"),
        "phone": properties.get("phone"),
    }
    return {key: value for key, value in args.items() if value is not None}


ACTION_TOOLS: dict[str, tuple[str, Callable[[dict[str, Any]], dict[str, Any]]]] = {
    "send_email": ("send_email", _email_args),
    "create_calendar_event": ("create_calendar_event", _calendar_args),
    "create_hubspot_contact": ("upsert_crm_contact", _contact_args),
}


class RuleEngine:
    def __init__(self, *, store: RuleStore, tools: ToolExecutor) -> None:
        self.store = store
        self.tools = tools

    def process_event(
        self,
        user: UserContext,
        trigger_type: str,
        event: dict[str, Any],
    ) -> list[RuleResult]:
        """Run every active matching rule; one rule failing never stops the others."""
        rules = self.store.find_matching(user.user_id, trigger_type, event)
        logger.info(
            "rules event=matched user_id=%s trigger=%s count=%d",
            user.user_id,
            trigger_type,
            len(rules),
        )
        results: list[RuleResult] = []
        for rule in rules:
            try:
                results.append(self._execute_rule(user, rule, event))
            except Exception as exc:  # noqa: BLE001
                logger.exception("rules event=error rule_id=%s", rule.rule_id)
                results.append(RuleResult(rule.rule_id, rule.name, success=False, error=str(exc)))
        return results

    def _execute_rule(
        self,
        user: UserContext,
        rule: ProactiveRule,
        event: dict[str, Any],
    ) -> RuleResult:
        actions = [
            self._execute_action(user, action, interpolate(config, event))
            for action, config in rule.actions.items()
        ]
        logger.info(
            "rules event=executed rule_id=%s name=%s actions=%d failed=%d",
            rule.rule_id,
            rule.name,
            len(actions),
            sum(1 for action in actions if not action.success),
        )
        return RuleResult(rule.rule_id, rule.name, success=True, actions=actions)

    def _execute_action(
        self,
        user: UserContext,
        action: str,
        config: dict[str, Any],
    ) -> ActionResult:
        if action == "send_notification":
            message = str(config.get("message", ""))
            logger.info("rules event=notification user_id=%s message=%s", user.user_id, message)
            return ActionResult(action, success=True, result={"message": message})

        tool_name, build_args = ACTION_TOOLS[action]
        outcome = self.tools.execute(user, tool_name, build_args(config))
        if outcome["status"] != "ok":
            return ActionResult(action, success=False, error=outcome["error"])
        return ActionResult(action, success=True, result=outcome["output"])
