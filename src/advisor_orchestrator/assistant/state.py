"""Typed state contract for the single-action LangGraph path."""

from typing import Any, TypedDict


class AssistantState(TypedDict, total=False):
    user_id: str
    question: str
    documents: list[dict[str, Any]]
    messages: list[dict[str, Any]]
    draft: str
    tool_calls: list[dict[str, Any]]
    tool_results: list[dict[str, Any]]
    final_output: str | None


def initial_state(user_id: str, question: str) -> AssistantState:
    return {
        "user_id": user_id,
        "question": question,
        "documents": [],
        "messages": [],
        "draft": "",
        "tool_calls": [],
        "tool_results": [],
        "final_output": None,
    }
