"""OpenAI chat-completions gateway used by the assistant and reply analysis."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib import error, request

from advisor_orchestrator.config.settings import Settings
from advisor_orchestrator.errors import LLMGatewayError
from advisor_orchestrator.users import UserContext

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = (
    "You analyze email replies for a financial advisor's assistant. "
    "Answer in plain text and do not call tools."
)


@dataclass(frozen=True)
class ToolInvocation:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass(frozen=True)
class LLMReply:
    content: str
    tool_calls: list[ToolInvocation] = field(default_factory=list)


class LLMGateway(Protocol):
    def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMReply: ...

    def analyze(self, user: UserContext, prompt: str) -> str: ...


class OpenAIChatGateway:
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 20.0,
        max_retries: int = 1,
        backoff_s: float = 0.2,
        max_tokens: int = 1000,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self.max_tokens = max_tokens

    def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMReply:
        if not self.api_key:
            raise LLMGatewayError("OPENAI_API_KEY is missing")

        request_body: dict[str, Any] = {
            "model": self.model,
            "temperature": 0.7,
            "max_tokens": self.max_tokens,
            "messages": messages,
        }
        if tools:
            request_body["tools"] = tools
            request_body["tool_choice"] = "auto"

        response_json = self._request_with_retry(request_body)
        return parse_chat_reply(response_json)

    def analyze(self, user: UserContext, prompt: str) -> str:
        reply = self.complete(
            [
                {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ]
        )
        if not reply.content:
            raise LLMGatewayError(f"LLM analysis for user {user.user_id} returned empty content")
        return reply.content

    def _request_with_retry(self, request_body: dict[str, Any]) -> dict[str, Any]:
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._request_once(request_body)
            except LLMGatewayError as exc:
                last_error = exc
                logger.warning("llm_call event=error attempt=%d error=%s", attempt + 1, exc)
                if attempt < self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)

        if last_error is None:
            raise LLMGatewayError("LLM request failed")
        raise last_error

    def _request_once(self, request_body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        req = request.Request(
            url=url,
            data=json.dumps(request_body).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            message = exc.read().decode("utf-8", errors="replace")
            raise LLMGatewayError(
                f"LLM request failed with status {exc.code}: {message[:400]}"
            ) from exc
        except error.URLError as exc:
            raise LLMGatewayError(f"LLM request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise LLMGatewayError(f"LLM request timed out after {self.timeout_s:.1f}s") from exc

        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise LLMGatewayError("LLM returned non-JSON response") from exc


def parse_chat_reply(response_json: dict[str, Any]) -> LLMReply:
    choices = response_json.get("choices", [])
    if not choices:
        raise LLMGatewayError("LLM response missing choices")

    message = choices[0].get("message", {}) or {}
    content = message.get("content")
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        text = "".join(parts).strip()
    elif isinstance(content, str):
        text = content.strip()
    else:
        text = ""

    invocations: list[ToolInvocation] = []
    for call in message.get("tool_calls") or []:
        function = call.get("function") or {}
        name = function.get("name")
        if not isinstance(name, str) or not name:
            continue
        invocations.append(
            ToolInvocation(
                name=name,
                arguments=_parse_arguments(function.get("arguments")),
                call_id=call.get("id"),
            )
        )

    if not text and not invocations:
        raise LLMGatewayError("LLM response had neither content nor tool calls")
    return LLMReply(content=text, tool_calls=invocations)


def build_llm_gateway(settings: Settings) -> OpenAIChatGateway:
    if settings.llm_provider.lower().strip() != "openai":
        raise ValueError(f"unsupported llm provider: {settings.llm_provider}")
    return OpenAIChatGateway(
        api_key=settings.resolved_openai_api_key(),
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout_s=settings.llm_timeout_s,
        max_retries=settings.llm_max_retries,
        backoff_s=settings.llm_backoff_s,
        max_tokens=settings.llm_max_tokens,
    )


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LLMGatewayError("LLM tool call arguments were not valid JSON") from exc
    if not isinstance(parsed, dict):
        raise LLMGatewayError("LLM tool call arguments must be a JSON object")
    return parsed
