"""Storage backends and models."""

from genai_tasks.storage.base import TaskStorage
from genai_tasks.storage.memory import InMemoryTaskStorage
from genai_tasks.storage.models import FilePayload, TaskRecord, TaskStatusView, TextPayload
from genai_tasks.storage.postgres import PostgresTaskStorage

__all__ = [
    "FilePayload",
    "InMemoryTaskStorage",
    "PostgresTaskStorage",
    "TaskRecord",
    "TaskStatusView",
    "TaskStorage",
    "TextPayload",
]
