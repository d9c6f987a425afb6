from __future__ import annotations

from advisor_orchestrator.assistant.graph import SimplePathDeps, render_documents
from advisor_orchestrator.assistant.service import AssistantService
from advisor_orchestrator.errors import LLMGatewayError
from advisor_orchestrator.llm.gateway import LLMReply, ToolInvocation
from advisor_orchestrator.retrieval import ContextDocument, NullContextRetriever

from conftest import FakeLLM


class _StaticRetriever:
    def __init__(self, documents: list[ContextDocument]) -> None:
        self.documents = documents
        self.calls: list[tuple[str, str]] = []

    def search(self, user_id: str, query: str, *, limit: int, threshold: float) -> list[ContextDocument]:
        self.calls.append((user_id, query))
        return [doc for doc in self.documents if doc.similarity >= threshold][:limit]


def _service(engine, tools, users, llm, retriever=None) -> AssistantService:
    engine.llm = llm
    deps = SimplePathDeps(
        retriever=retriever or NullContextRetriever(),
        llm=llm,
        tools=tools,
        users=users,
    )
    return AssistantService(engine=engine, deps=deps)


def test_question_is_answered_with_context(engine, tools, users, user) -> None:
    llm = FakeLLM(replies=[LLMReply(content="Sarah prefers afternoon meetings.")])
    retriever = _StaticRetriever(
        [
            ContextDocument("email-1", "Sarah: afternoons work best for me", 0.82, "email"),
            ContextDocument("note-2", "Old note", 0.1, "hubspot_note"),
        ]
    )
    service = _service(engine, tools, users, llm, retriever)

    result = service.handle_request(user, "What did Sarah say about meeting times?")

    assert result["response"] == "Sarah prefers afternoon meetings."
    assert result["task"] is None
    assert result["waiting"] is False
    assert result["context_used"] == [{"document_id": "email-1", "similarity": 0.82}]
    messages, offered_tools = llm.completions[0]
    assert "afternoons work best" in messages[-1]["content"]
    assert "Old note" not in messages[-1]["content"]
    assert offered_tools


def test_simple_path_runs_tool_calls_and_summarizes(engine, tools, users, user, workspace) -> None:
    llm = FakeLLM(
        replies=[
            LLMReply(
                content="",
                tool_calls=[
                    ToolInvocation(
                        "upsert_crm_contact",
                        {"email": "lee@client.example", "first_name": "Lee"},
                        "call-1",
                    )
                ],
            ),
            LLMReply(content="Lee is now in HubSpot."),
        ]
    )
    service = _service(engine, tools, users, llm)

    result = service.handle_request(user, "Is Lee in the CRM? Put them in if not")

    assert result["response"] == "Lee is now in HubSpot."
    assert result["tools_used"] == ["upsert_crm_contact"]
    assert workspace.calls_to("upsert_crm_contact")[0]["email"] == "lee@client.example"
    summary_prompt = llm.completions[1][0][-1]["content"]
    assert "upsert_crm_contact: succeeded" in summary_prompt


def test_workflow_requests_create_tasks(engine, tools, users, user) -> None:
    service = _service(engine, tools, users, FakeLLM())

    result = service.handle_request(user, "Schedule a meeting with sarah@acme.com tomorrow 4-5pm")

    assert result["waiting"] is True
    assert result["task"]["status"] == "waiting"
    assert result["task"]["task_type"] == "meeting_coordination"
    assert result["tools_used"] == ["send_email"]
    assert "waiting for a reply" in result["response"]


def test_llm_outage_returns_apology(engine, tools, users, user) -> None:
    service = _service(engine, tools, users, FakeLLM(error=LLMGatewayError("rate limited")))

    result = service.handle_request(user, "What is on my calendar today?")

    assert result["response"].startswith("Sorry, I couldn't process that request")
    assert result["task"] is None


def test_render_documents_handles_empty_context() -> None:
    assert render_documents([]) == "No relevant documents found."
    rendered = render_documents([{"content": "hello", "similarity": 0.5, "source_type": "email"}])
    assert rendered == "Document 1 (email, similarity: 0.500):\nhello"
