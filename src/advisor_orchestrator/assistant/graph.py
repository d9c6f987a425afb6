"""LangGraph assembly for questions and one-shot actions that need no durable task."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from functools import partial
from typing import Any

from langgraph.graph import END, StateGraph

from advisor_orchestrator.assistant.state import AssistantState
from advisor_orchestrator.llm.gateway import LLMGateway
from advisor_orchestrator.retrieval import ContextRetriever
from advisor_orchestrator.tools import ToolExecutor, tool_schemas
from advisor_orchestrator.users import UserContext, UserDirectory

SYSTEM_PROMPT = (
    "You are an assistant for a financial advisor. Use the context documents about their "
    "clients when they are relevant, and use the Gmail, Google Calendar and HubSpot tools "
    "when the user asks for an action."
)


@dataclass(frozen=True)
class SimplePathDeps:
    retriever: ContextRetriever
    llm: LLMGateway
    tools: ToolExecutor
    users: UserDirectory
    context_limit: int = 5
    similarity_threshold: float = 0.3


def retrieve(state: AssistantState, *, deps: SimplePathDeps) -> AssistantState:
    hits = deps.retriever.search(
        state["user_id"],
        state["question"],
        limit=deps.context_limit,
        threshold=deps.similarity_threshold,
    )
    return {"documents": [asdict(hit) for hit in hits]}


def respond(state: AssistantState, *, deps: SimplePathDeps) -> AssistantState:
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                f"CONTEXT DOCUMENTS:\n{render_documents(state.get('documents', []))}\n\n"
                f"USER REQUEST: {state['question']}"
            ),
        },
    ]
    reply = deps.llm.complete(messages, tools=tool_schemas(deps.tools.registry))
    return {
        "messages": messages,
        "draft": reply.content,
        "tool_calls": [
            {"name": call.name, "arguments": call.arguments, "call_id": call.call_id}
            for call in reply.tool_calls
        ],
    }


def run_tools(state: AssistantState, *, deps: SimplePathDeps) -> AssistantState:
    user = _user(deps, state["user_id"])
    results = [
        deps.tools.execute(user, call["name"], call.get("arguments") or {})
        for call in state.get("tool_calls", [])
    ]
    return {"tool_results": results}


def finalize(state: AssistantState, *, deps: SimplePathDeps) -> AssistantState:
    results = state.get("tool_results", [])
    if not results:
        return {"final_output": state.get("draft") or "I couldn't produce an answer."}

    lines = []
    for item in results:
        if item["status"] == "ok":
            lines.append(f"- {item['tool']}: succeeded with {item['output']}")
        else:
            lines.append(f"- {item['tool']}: failed ({item['error']})")
    messages = [
        *state.get("messages", []),
        {
            "role": "user",
            "content": (
                "The following tool calls were executed:\n"
                + "\n".join(lines)
                + "\n\nSummarize for the user what was accomplished."
            ),
        },
    ]
    reply = deps.llm.complete(messages)
    return {"final_output": reply.content or "\n".join(lines)}


def _should_run_tools(state: AssistantState) -> str:
    return "tools" if state.get("tool_calls") else "done"


def build_simple_graph(deps: SimplePathDeps):
    graph = StateGraph(AssistantState)

    graph.add_node("retrieve", partial(retrieve, deps=deps))
    graph.add_node("respond", partial(respond, deps=deps))
    graph.add_node("run_tools", partial(run_tools, deps=deps))
    graph.add_node("finalize", partial(finalize, deps=deps))

    graph.set_entry_point("retrieve")
    graph.add_edge("retrieve", "respond")
    graph.add_conditional_edges("respond", _should_run_tools, {"tools": "run_tools", "done": "finalize"})
    graph.add_edge("run_tools", "finalize")
    graph.add_edge("finalize", END)

    return graph.compile()


def render_documents(documents: list[dict[str, Any]]) -> str:
    if not documents:
        return "No relevant documents found."
    blocks = [
        f"Document {index} ({doc.get('source_type', 'document')}, "
        f"similarity: {float(doc.get('similarity', 0.0)):.3f}):\n{doc.get('content', '')}"
        for index, doc in enumerate(documents, start=1)
    ]
    return "\n---\n".join(blocks)


def _user(deps: SimplePathDeps, user_id: str) -> UserContext:
    return deps.users.get(user_id) or UserContext(user_id=user_id)
