"""Tooling layer for schema-validated calls to Gmail, Calendar and HubSpot."""

from advisor_orchestrator.tools.gateway import ToolExecutor
from advisor_orchestrator.tools.registry import ToolSpec, build_registry, list_tools, tool_schemas

__all__ = [
    "ToolExecutor",
    "ToolSpec",
    "build_registry",
    "list_tools",
    "tool_schemas",
]
