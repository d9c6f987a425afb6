"""Proactive rule records: a trigger, match conditions, and the actions to run."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any, Literal, get_args
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

TriggerType = Literal[
    "email_received",
    "calendar_event",
    "hubspot_contact_created",
    "hubspot_note_created",
]
ActionType = Literal[
    "send_email",
    "create_calendar_event",
    "create_hubspot_contact",
    "send_notification",
]

TRIGGER_TYPES: tuple[str, ...] = get_args(TriggerType)
ACTION_TYPES: tuple[str, ...] = get_args(ActionType)


class ProactiveRuleInput(BaseModel):
    """Fields a user supplies when registering a rule.

    `trigger_conditions` maps dotted event paths to an expected value. String
    values may be prefixed with `contains:` (case-insensitive substring) or
    `regex:` (Python regular expression); anything else must match exactly.
    Action configs may reference event fields as `{{path.to.field}}`.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    trigger_type: TriggerType
    trigger_conditions: dict[str, Any] = Field(default_factory=dict)
    actions: dict[ActionType, dict[str, Any]]
    is_active: bool = False

    @model_validator(mode="after")
    def _check_rule(self) -> ProactiveRuleInput:
        if not self.actions:
            raise ValueError("actions must contain at least one action")
        for path, expected in self.trigger_conditions.items():
            if not path.strip():
                raise ValueError("trigger condition paths must not be empty")
            if isinstance(expected, str) and expected.startswith("regex:"):
                try:
                    re.compile(expected[len("regex:") :])
                except re.error as exc:
                    raise ValueError(f"invalid regex for condition '{path}': {exc}") from exc
        return self


class ProactiveRule(ProactiveRuleInput):
    rule_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str = Field(min_length=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
