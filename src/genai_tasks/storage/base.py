"""Storage interface for the generation task lifecycle."""

from __future__ import annotations

from typing import Protocol

from genai_tasks.storage.models import TaskRecord, TaskStatus


class TaskStorage(Protocol):
    def migrate(self) -> None: ...

    def create_task(self, record: TaskRecord) -> TaskRecord: ...

    def get_task(self, task_id: str) -> TaskRecord | None: ...

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        result: str | None = None,
        error_detail: str | None = None,
    ) -> TaskRecord: ...
