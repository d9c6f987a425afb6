"""HubSpot CRM contact adapter."""

from __future__ import annotations

import logging
from typing import Any

from advisor_orchestrator.errors import ToolInvocationError
from advisor_orchestrator.tools.http import request_json
from advisor_orchestrator.tools.schemas import UpsertContactInput, UpsertContactOutput
from advisor_orchestrator.users import UserContext

logger = logging.getLogger(__name__)


class HubSpotClient:
    def __init__(self, *, base_url: str = "https://api.hubapi.com", timeout_s: float = 15.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def upsert_contact(self, user: UserContext, payload: UpsertContactInput) -> UpsertContactOutput:
        token = user.hubspot_access_token
        if not token:
            raise ToolInvocationError(f"User {user.user_id} has no HubSpot credentials")

        properties = _contact_properties(payload)
        existing_id = self._find_contact_id(token, payload.email)
        if existing_id is not None:
            request_json(
                "PATCH",
                f"{self.base_url}/crm/v3/objects/contacts/{existing_id}",
                token=token,
                payload={"properties": properties},
                timeout_s=self.timeout_s,
            )
            logger.info("tool_call event=crm_update user_id=%s contact_id=%s", user.user_id, existing_id)
            return UpsertContactOutput(contact_id=existing_id, created=False, email=payload.email)

        created = request_json(
            "POST",
            f"{self.base_url}/crm/v3/objects/contacts",
            token=token,
            payload={"properties": properties},
            timeout_s=self.timeout_s,
        )
        contact_id = created.get("id")
        if not contact_id:
            raise ToolInvocationError("HubSpot create response did not include a contact id")
        logger.info("tool_call event=crm_create user_id=%s contact_id=%s", user.user_id, contact_id)
        return UpsertContactOutput(contact_id=str(contact_id), created=True, email=payload.email)

    def _find_contact_id(self, token: str, email: str) -> str | None:
        result = request_json(
            "POST",
            f"{self.base_url}/crm/v3/objects/contacts/search",
            token=token,
            payload={
                "filterGroups": [
                    {"filters": [{"propertyName": "email", "operator": "EQ", "value": email}]}
                ],
                "limit": 1,
            },
            timeout_s=self.timeout_s,
        )
        results = result.get("results") or []
        if results and results[0].get("id"):
            return str(results[0]["id"])
        return None


def _contact_properties(payload: UpsertContactInput) -> dict[str, Any]:
    properties: dict[str, Any] = {"email": payload.email}
    optional = {
        "firstname": payload.first_name,
        "lastname": payload.last_name,
        "company": payload.company,
        "phone": payload.phone,
    }
    properties.update({key: value for key, value in optional.items() if value})
    return properties
