"""Read-only projection from stored task records to caller-visible status views."""

from __future__ import annotations

from genai_tasks.errors import TaskNotFoundError
from genai_tasks.storage.base import TaskStorage
from genai_tasks.storage.models import TaskRecord, TaskStatusView


class StatusReader:
    def __init__(self, storage: TaskStorage) -> None:
        self.storage = storage

    def get_status(self, task_id: str) -> TaskStatusView:
        record = self.storage.get_task(task_id)
        if record is None:
            raise TaskNotFoundError(task_id)
        return to_status_view(record)


def to_status_view(record: TaskRecord) -> TaskStatusView:
    """Project id/status plus the one terminal field that matches the status."""
    return TaskStatusView(
        id=record.task_id,
        status=record.status,
        result=record.result if record.status == "completed" else None,
        error=record.error_detail if record.status == "error" else None,
    )
