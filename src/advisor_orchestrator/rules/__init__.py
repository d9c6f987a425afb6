"""Proactive trigger/condition/action rules evaluated against inbound webhooks."""

from advisor_orchestrator.rules.engine import TRIGGER_FOR_EVENT_KIND, RuleEngine, RuleResult
from advisor_orchestrator.rules.models import ProactiveRule, ProactiveRuleInput
from advisor_orchestrator.rules.store import InMemoryRuleStore, RuleStore

__all__ = [
    "TRIGGER_FOR_EVENT_KIND",
    "InMemoryRuleStore",
    "ProactiveRule",
    "ProactiveRuleInput",
    "RuleEngine",
    "RuleResult",
    "RuleStore",
]
