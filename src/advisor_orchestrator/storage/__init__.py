"""Storage backends and models."""

from advisor_orchestrator.storage.base import TaskStorage
from advisor_orchestrator.storage.memory import InMemoryTaskStorage
from advisor_orchestrator.storage.models import NewTask, Task, TaskStatus, WaitingFor
from advisor_orchestrator.storage.postgres import PostgresTaskStorage

__all__ = [
    "InMemoryTaskStorage",
    "NewTask",
    "PostgresTaskStorage",
    "Task",
    "TaskStatus",
    "TaskStorage",
    "WaitingFor",
]
