"""Exception types shared by storage, workflow, and API layers."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for errors raised by this package."""


class TaskNotFoundError(OrchestratorError, KeyError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} does not exist")
        self.task_id = task_id

    def __str__(self) -> str:
        return str(self.args[0])


class TaskOwnershipError(OrchestratorError):
    """Raised when a user touches a task owned by someone else."""


class VersionConflictError(OrchestratorError):
    """Raised when an optimistic update loses the race for a task revision."""

    def __init__(self, task_id: str, expected_version: int, actual_version: int | None) -> None:
        super().__init__(
            f"Task {task_id} version conflict: expected={expected_version} "
            f"actual={actual_version}"
        )
        self.task_id = task_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class TerminalTaskError(OrchestratorError):
    """Raised when mutating a task that is already completed or failed."""


class ToolInvocationError(OrchestratorError):
    """Raised by tool adapters when the remote API call fails."""


class LLMGatewayError(OrchestratorError):
    """Raised when the language model gateway cannot produce a response."""


class ContactResolutionError(OrchestratorError):
    """Raised when no email address can be found for a named recipient."""


class UnsupportedRecipientError(OrchestratorError):
    """Raised for recipient forms the workflow engine does not handle (groups)."""
