"""Rule storage and trigger-condition matching."""

from __future__ import annotations

import re
import threading
from typing import Any, Protocol

from advisor_orchestrator.rules.models import ProactiveRule


class RuleStore(Protocol):
    def save(self, rule: ProactiveRule) -> ProactiveRule: ...

    def list_rules(self, user_id: str, *, active_only: bool = False) -> list[ProactiveRule]: ...

    def find_matching(
        self, user_id: str, trigger_type: str, event: dict[str, Any]
    ) -> list[ProactiveRule]: ...


class InMemoryRuleStore:
    def __init__(self, rules: list[ProactiveRule] | None = None) -> None:
        self._lock = threading.Lock()
        self._rules: dict[str, ProactiveRule] = {rule.rule_id: rule for rule in rules or []}

    def save(self, rule: ProactiveRule) -> ProactiveRule:
        with self._lock:
            self._rules[rule.rule_id] = rule.model_copy(deep=True)
        return rule

    def list_rules(self, user_id: str, *, active_only: bool = False) -> list[ProactiveRule]:
        """Newest first."""
        with self._lock:
            rules = [
                rule.model_copy(deep=True)
                for rule in self._rules.values()
                if rule.user_id == user_id and (rule.is_active or not active_only)
            ]
        return sorted(rules, key=lambda rule: rule.created_at, reverse=True)

    def find_matching(
        self, user_id: str, trigger_type: str, event: dict[str, Any]
    ) -> list[ProactiveRule]:
        return [
            rule
            for rule in self.list_rules(user_id, active_only=True)
            if rule.trigger_type == trigger_type and rule_matches_event(rule, event)
        ]


def rule_matches_event(rule: ProactiveRule, event: dict[str, Any]) -> bool:
    """Every condition must hold; a rule without conditions matches any event of its trigger."""
    for path, expected in rule.trigger_conditions.items():
        actual = lookup_path(event, path)
        if actual is None or not matches_condition(actual, expected):
            return False
    return True


def matches_condition(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, str):
        return actual == expected
    if expected.startswith("regex:"):
        try:
            return re.search(expected[len("regex:") :], str(actual)) is not None
        except re.error:
            return False
    if expected.startswith("contains:"):
        return expected[len("contains:") :].lower() in str(actual).lower()
    return str(actual) == expected


def lookup_path(data: Any, path: str) -> Any:
    current = data
    for key in path.strip().split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current
