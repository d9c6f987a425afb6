"""Tool registry mapping tool names to schemas and external adapters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel

from advisor_orchestrator.tools.google import GoogleWorkspaceClient
from advisor_orchestrator.tools.hubspot import HubSpotClient
from advisor_orchestrator.tools.schemas import (
    CreateEventInput,
    CreateEventOutput,
    FindContactInput,
    FindContactOutput,
    SendEmailInput,
    SendEmailOutput,
    UpsertContactInput,
    UpsertContactOutput,
)
from advisor_orchestrator.users import UserContext


@dataclass(frozen=True)
class ToolSpec:
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    fn: Callable[[UserContext, Any], BaseModel | dict[str, Any]]
    description: str = ""


def build_registry(
    *,
    google: GoogleWorkspaceClient | None = None,
    hubspot: HubSpotClient | None = None,
) -> dict[str, ToolSpec]:
    google = google or GoogleWorkspaceClient()
    hubspot = hubspot or HubSpotClient()
    return {
        "find_contact": ToolSpec(
            input_model=FindContactInput,
            output_model=FindContactOutput,
            fn=google.find_contact,
            description="Look up email addresses for a person by name from the user's mailbox.",
        ),
        "send_email": ToolSpec(
            input_model=SendEmailInput,
            output_model=SendEmailOutput,
            fn=google.send_email,
            description="Send an email from the user's Gmail account.",
        ),
        "create_calendar_event": ToolSpec(
            input_model=CreateEventInput,
            output_model=CreateEventOutput,
            fn=google.create_event,
            description="Create an event on the user's primary Google calendar and invite attendees.",
        ),
        "upsert_crm_contact": ToolSpec(
            input_model=UpsertContactInput,
            output_model=UpsertContactOutput,
            fn=hubspot.upsert_contact,
            description="Create or update a HubSpot contact by email address.",
        ),
    }


def list_tools(registry: dict[str, ToolSpec] | None = None) -> list[str]:
    return sorted((registry or build_registry()).keys())


def tool_schemas(registry: dict[str, ToolSpec]) -> list[dict[str, Any]]:
    """Describe the registry as OpenAI function-calling tool definitions."""
    return [
        {
            "type": "function",
            "function": {
                "name": name,
                "description": spec.description,
                "parameters": spec.input_model.model_json_schema(),
            },
        }
        for name, spec in sorted(registry.items())
    ]
