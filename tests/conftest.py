from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from itertools import count
from typing import Any

import pytest
from fastapi.testclient import TestClient

from advisor_orchestrator.api.main import create_app
from advisor_orchestrator.config.settings import Settings
from advisor_orchestrator.errors import ToolInvocationError
from advisor_orchestrator.llm.gateway import LLMReply
from advisor_orchestrator.retrieval import NullContextRetriever
from advisor_orchestrator.storage import InMemoryTaskStorage
from advisor_orchestrator.tools import ToolExecutor, ToolSpec
from advisor_orchestrator.tools.schemas import (
    ContactEmail,
    CreateEventInput,
    CreateEventOutput,
    FindContactInput,
    FindContactOutput,
    SendEmailInput,
    SendEmailOutput,
    UpsertContactInput,
    UpsertContactOutput,
)
from advisor_orchestrator.users import InMemoryUserDirectory, UserContext
from advisor_orchestrator.workflow.coordinator import ResumeCoordinator
from advisor_orchestrator.workflow.engine import WorkflowEngine

FIXED_NOW = datetime(2025, 6, 23, 10, 30, tzinfo=UTC)


class FakeWorkspace:
    """Test double for the Gmail/Calendar/HubSpot adapters that records every call."""

    def __init__(
        self,
        *,
        contacts: dict[str, list[str]] | None = None,
        failing: set[str] | None = None,
        history: dict[str, list[dict[str, Any]]] | None = None,
    ) -> None:
        self.contacts = contacts or {}
        self.failing = failing or set()
        self.history = history or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._ids = count(1)

    def registry(self) -> dict[str, ToolSpec]:
        return {
            "find_contact": ToolSpec(FindContactInput, FindContactOutput, self._find_contact),
            "send_email": ToolSpec(SendEmailInput, SendEmailOutput, self._send_email),
            "create_calendar_event": ToolSpec(CreateEventInput, CreateEventOutput, self._create_event),
            "upsert_crm_contact": ToolSpec(UpsertContactInput, UpsertContactOutput, self._upsert),
        }

    def fetch_new_messages(self, user: UserContext, history_id: str) -> list[dict[str, Any]]:
        self.calls.append(("fetch_new_messages", {"history_id": history_id}))
        return [dict(message) for message in self.history.get(history_id, [])]

    def calls_to(self, tool: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.calls if name == tool]

    def _record(self, tool: str, payload: Any) -> int:
        self.calls.append((tool, payload.model_dump()))
        if tool in self.failing:
            raise ToolInvocationError(f"{tool} is unavailable")
        return next(self._ids)

    def _find_contact(self, user: UserContext, payload: FindContactInput) -> FindContactOutput:
        self._record("find_contact", payload)
        return FindContactOutput(
            emails_found=[
                ContactEmail(email=email, name=payload.name)
                for email in self.contacts.get(payload.name, [])
            ]
        )

    def _send_email(self, user: UserContext, payload: SendEmailInput) -> SendEmailOutput:
        n = self._record("send_email", payload)
        return SendEmailOutput(
            message_id=f"msg-{n}",
            thread_id=f"thread-{n}",
            to=payload.to,
            subject=payload.subject,
        )

    def _create_event(self, user: UserContext, payload: CreateEventInput) -> CreateEventOutput:
        n = self._record("create_calendar_event", payload)
        return CreateEventOutput(
            event_id=f"evt-{n}",
            start_time=payload.start_time,
            end_time=payload.end_time,
            attendees=payload.attendees,
        )

    def _upsert(self, user: UserContext, payload: UpsertContactInput) -> UpsertContactOutput:
        n = self._record("upsert_crm_contact", payload)
        return UpsertContactOutput(contact_id=f"contact-{n}", created=True, email=payload.email)


class FakeLLM:
    def __init__(
        self,
        *,
        analysis: str = "ACCEPTED - the recipient confirmed.",
        replies: list[LLMReply] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.analysis = analysis
        self.replies = list(replies or [])
        self.error = error
        self.prompts: list[str] = []
        self.completions: list[tuple[list[dict[str, Any]], list[dict[str, Any]] | None]] = []

    def analyze(self, user: UserContext, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.analysis

    def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMReply:
        self.completions.append((messages, tools))
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return LLMReply(content="Here is what I found.")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        storage_backend="memory",
        task_max_retries=3,
        tool_timeout_s=2.0,
        meeting_timezone="UTC",
        openai_api_key="test-key",
    )


@pytest.fixture
def storage() -> InMemoryTaskStorage:
    return InMemoryTaskStorage()


@pytest.fixture
def workspace() -> FakeWorkspace:
    return FakeWorkspace(contacts={"John Smith": ["john.smith@example.com"]})


@pytest.fixture
def tools(workspace: FakeWorkspace) -> ToolExecutor:
    return ToolExecutor(registry=workspace.registry(), tool_timeout_s=2.0)


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def user() -> UserContext:
    return UserContext(
        user_id="advisor-1",
        email="advisor@firm.example",
        google_access_token="google-token",
        hubspot_access_token="hubspot-token",
    )


@pytest.fixture
def users(user: UserContext) -> InMemoryUserDirectory:
    return InMemoryUserDirectory([user])


@pytest.fixture
def engine(
    storage: InMemoryTaskStorage,
    tools: ToolExecutor,
    llm: FakeLLM,
    settings: Settings,
) -> WorkflowEngine:
    return WorkflowEngine(
        storage=storage,
        tools=tools,
        llm=llm,
        settings=settings,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def coordinator(storage: InMemoryTaskStorage, engine: WorkflowEngine) -> ResumeCoordinator:
    return ResumeCoordinator(storage=storage, engine=engine)


@pytest.fixture
def client(
    storage: InMemoryTaskStorage,
    settings: Settings,
    users: InMemoryUserDirectory,
    tools: ToolExecutor,
    llm: FakeLLM,
    workspace: FakeWorkspace,
) -> Iterator[TestClient]:
    app = create_app(
        storage=storage,
        settings_override=settings,
        users=users,
        tools=tools,
        llm=llm,
        retriever=NullContextRetriever(),
        message_fetcher=workspace.fetch_new_messages,
    )
    with TestClient(app) as test_client:
        yield test_client
    app.state.resume_queue.shutdown()
