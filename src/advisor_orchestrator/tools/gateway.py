"""Schema-enforcing tool execution gateway with timeout/retry telemetry."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError
from typing import Any

from advisor_orchestrator.errors import ToolInvocationError
from advisor_orchestrator.tools.registry import ToolSpec, build_registry
from advisor_orchestrator.users import UserContext

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Execute registered tools on behalf of a user with strict validation and retry/timeout controls."""

    def __init__(
        self,
        *,
        registry: dict[str, ToolSpec] | None = None,
        tool_timeout_s: float = 15.0,
        max_retries: int = 0,
        backoff_s: float = 0.0,
    ) -> None:
        self.registry = registry or build_registry()
        self.tool_timeout_s = tool_timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s

    def execute(self, user: UserContext, tool_name: str, args: dict[str, Any]) -> dict[str, Any]:
        started_at = time.perf_counter()
        attempts = 0
        final_error = "unknown error"

        for attempt in range(self.max_retries + 1):
            attempts = attempt + 1
            try:
                output = self._execute_once(user, tool_name, args)
                logger.info(
                    "tool_call event=ok tool=%s user_id=%s attempts=%d",
                    tool_name,
                    user.user_id,
                    attempts,
                )
                return {
                    "tool": tool_name,
                    "status": "ok",
                    "output": output,
                    "attempts": attempts,
                    "duration_ms": _duration_ms(started_at),
                }
            except Exception as exc:  # noqa: BLE001
                final_error = str(exc)
                logger.warning(
                    "tool_call event=error tool=%s user_id=%s attempt=%d error=%s",
                    tool_name,
                    user.user_id,
                    attempts,
                    final_error,
                )
                if attempt < self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)

        return {
            "tool": tool_name,
            "status": "failed",
            "error": final_error,
            "attempts": attempts,
            "duration_ms": _duration_ms(started_at),
        }

    def _execute_once(self, user: UserContext, tool_name: str, args: dict[str, Any]) -> dict[str, Any]:
        spec = self.registry.get(tool_name)
        if spec is None:
            raise ToolInvocationError(f"Unknown tool: {tool_name}")

        payload = spec.input_model.model_validate(args)
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"tool-{tool_name}")
        future = pool.submit(spec.fn, user, payload)
        try:
            raw_output = future.result(timeout=self.tool_timeout_s)
        except TimeoutError as exc:
            raise ToolInvocationError(
                f"Tool '{tool_name}' timed out after {self.tool_timeout_s:.2f}s"
            ) from exc
        finally:
            # Never block on a timed-out adapter; its worker finishes on its own.
            pool.shutdown(wait=False, cancel_futures=True)

        validated_output = spec.output_model.model_validate(raw_output)
        return validated_output.model_dump(mode="json")


def _duration_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000.0, 2)
