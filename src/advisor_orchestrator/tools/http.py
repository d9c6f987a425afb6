"""Minimal JSON-over-HTTPS helper used by the Google and HubSpot clients."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib import error, parse, request

from advisor_orchestrator.errors import ToolInvocationError

logger = logging.getLogger(__name__)


def request_json(
    method: str,
    url: str,
    *,
    token: str,
    payload: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    timeout_s: float = 15.0,
) -> dict[str, Any]:
    if params:
        url = f"{url}?{parse.urlencode(params, doseq=True)}"
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    req = request.Request(
        url=url,
        data=data,
        method=method,
        headers={
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        },
    )
    try:
        with request.urlopen(req, timeout=timeout_s) as response:
            body = response.read().decode("utf-8")
    except error.HTTPError as exc:
        raw_error = exc.read().decode("utf-8", errors="replace")
        logger.warning("tool_http event=error method=%s url=%s status=%s", method, url, exc.code)
        raise ToolInvocationError(f"{method} {url} failed with {exc.code}: {raw_error}") from exc
    except (error.URLError, TimeoutError) as exc:
        raise ToolInvocationError(f"{method} {url} failed: {exc}") from exc
    if not body:
        return {}
    parsed = json.loads(body)
    if not isinstance(parsed, dict):
        raise ToolInvocationError(f"{method} {url} returned non-object JSON")
    return parsed
