"""Entry point for natural-language requests: route to a durable workflow or the simple path."""

from __future__ import annotations

import logging
from typing import Any

from advisor_orchestrator.assistant.graph import SimplePathDeps, build_simple_graph
from advisor_orchestrator.assistant.state import initial_state
from advisor_orchestrator.errors import LLMGatewayError
from advisor_orchestrator.users import UserContext
from advisor_orchestrator.workflow.classifier import WorkflowNeeded, classify
from advisor_orchestrator.workflow.engine import WorkflowEngine

logger = logging.getLogger(__name__)


class AssistantService:
    def __init__(self, *, engine: WorkflowEngine, deps: SimplePathDeps) -> None:
        self.engine = engine
        self.deps = deps
        self.graph = build_simple_graph(deps)

    def handle_request(self, user: UserContext, text: str) -> dict[str, Any]:
        """Return `{response, waiting, task, tools_used, context_used}` for the request."""
        classification = classify(text)
        if isinstance(classification, WorkflowNeeded):
            logger.info(
                "assistant event=workflow user_id=%s type=%s",
                user.user_id,
                classification.workflow_type,
            )
            outcome = self.engine.start(user, text, classification)
            task = outcome.task
            tools_used = [step for step in task.steps_completed if step in self.engine.tools.registry]
            return {
                "response": outcome.summary,
                "waiting": task.status == "waiting",
                "task": task.model_dump(mode="json"),
                "tools_used": tools_used,
                "context_used": [],
            }

        logger.info("assistant event=simple user_id=%s kind=%s", user.user_id, classification.kind)
        try:
            result = self.graph.invoke(initial_state(user.user_id, text))
        except LLMGatewayError as exc:
            logger.warning("assistant event=llm_error user_id=%s error=%s", user.user_id, exc)
            return {
                "response": f"Sorry, I couldn't process that request: {exc}",
                "waiting": False,
                "task": None,
                "tools_used": [],
                "context_used": [],
            }
        return {
            "response": result.get("final_output") or "",
            "waiting": False,
            "task": None,
            "tools_used": [item["tool"] for item in result.get("tool_results", [])],
            "context_used": [
                {"document_id": doc["document_id"], "similarity": doc["similarity"]}
                for doc in result.get("documents", [])
            ],
        }
