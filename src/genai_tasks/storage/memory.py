"""Thread-safe in-memory storage backend for tests and single-process runs."""

from __future__ import annotations

import threading
from datetime import UTC, datetime

from genai_tasks.errors import InvalidTransitionError, PersistenceError
from genai_tasks.storage.models import TaskRecord, TaskStatus, can_transition


class InMemoryTaskStorage:
    """Dict-backed task store guarded by one lock over the whole collection."""

    def __init__(self) -> None:
        self._tasks: dict[str, TaskRecord] = {}
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def create_task(self, record: TaskRecord) -> TaskRecord:
        with self._lock:
            if record.task_id in self._tasks:
                raise PersistenceError(f"Task {record.task_id} already exists")
            self._tasks[record.task_id] = record
        return record

    def get_task(self, task_id: str) -> TaskRecord | None:
        with self._lock:
            return self._tasks.get(task_id)

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        result: str | None = None,
        error_detail: str | None = None,
    ) -> TaskRecord:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise PersistenceError(f"Task {task_id} does not exist")
            if not can_transition(current.status, status):
                raise InvalidTransitionError(task_id, current.status, status)
            updated = current.model_copy(
                update={
                    "status": status,
                    "result": result,
                    "error_detail": error_detail,
                    "updated_at": datetime.now(UTC),
                }
            )
            self._tasks[task_id] = updated
        return updated

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
