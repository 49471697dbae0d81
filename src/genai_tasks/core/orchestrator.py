"""Task lifecycle engine: validation, persistence, background execution.

Lifecycle of one task:
1) `submit_*` validates input and writes a `pending` record synchronously.
2) The record id is returned to the caller right away.
3) A pool worker moves the record to `processing` (best-effort write).
4) The worker calls the generation provider.
5) The worker writes the terminal state: `completed` with a result, or
   `error` with a failure description. This write is authoritative.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import PurePath

from genai_tasks.errors import PersistenceError, ProviderError, TaskValidationError
from genai_tasks.provider.base import GenerationClient
from genai_tasks.storage.base import TaskStorage
from genai_tasks.storage.models import (
    FilePayload,
    TaskPayload,
    TaskRecord,
    TaskStatus,
    TextPayload,
)

logger = logging.getLogger(__name__)

ALLOWED_FILE_MIME_TYPES: frozenset[str] = frozenset(
    {"image/jpeg", "image/png", "application/pdf"}
)
DEFAULT_MAX_FILE_BYTES = 20 * 1024 * 1024


class TaskOrchestrator:
    """Owns the task state machine and the worker pool that drives it."""

    def __init__(
        self,
        *,
        storage: TaskStorage,
        client: GenerationClient,
        max_workers: int = 8,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    ) -> None:
        self.storage = storage
        self.client = client
        self.max_file_bytes = max_file_bytes
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="genai-task")
        self._handles: dict[str, Future[None]] = {}
        self._lock = threading.Lock()
        self._closed = False

    def submit_text(self, prompt: str) -> str:
        """Accept a prompt-only task and return its id without waiting for the provider."""
        return self._submit(TextPayload(prompt=_validate_prompt(prompt)))

    def submit_file(
        self,
        prompt: str,
        *,
        content: bytes,
        filename: str | None,
        mime_type: str | None,
    ) -> str:
        """Accept a prompt plus one attachment and return the new task id."""
        payload = FilePayload(
            prompt=_validate_prompt(prompt),
            content=self._validate_content(content),
            filename=_normalize_filename(filename),
            mime_type=_validate_mime_type(mime_type),
        )
        return self._submit(payload)

    def wait(self, task_id: str, timeout: float | None = None) -> TaskRecord | None:
        """Block until the background unit for `task_id` finishes, then return the record."""
        with self._lock:
            future = self._handles.get(task_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.storage.get_task(task_id)

    def in_flight(self) -> int:
        with self._lock:
            return len(self._handles)

    def shutdown(self, *, wait: bool = True, cancel_pending: bool = True) -> None:
        """Stop accepting work; queued tasks that never started stay `pending`."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        logger.info(
            "task_lifecycle event=shutdown in_flight=%d cancel_pending=%s",
            self.in_flight(),
            cancel_pending,
        )
        self._pool.shutdown(wait=wait, cancel_futures=cancel_pending)

    def _submit(self, payload: TaskPayload) -> str:
        with self._lock:
            if self._closed:
                raise RuntimeError("TaskOrchestrator is shut down")

        now = datetime.now(tz=UTC)
        record = TaskRecord(
            task_id=str(uuid.uuid4()),
            status="pending",
            payload=payload,
            created_at=now,
            updated_at=now,
        )
        try:
            self.storage.create_task(record)
        except PersistenceError:
            logger.error(
                "task_lifecycle event=create_failed task_id=%s kind=%s",
                record.task_id,
                payload.kind,
            )
            raise

        task_id = record.task_id
        # shutdown() flips _closed under the same lock before stopping the pool.
        with self._lock:
            scheduled = not self._closed
            if scheduled:
                future = self._pool.submit(self._execute, task_id, payload)
                self._handles[task_id] = future
        if not scheduled:
            logger.warning("task_lifecycle event=not_scheduled task_id=%s", task_id)
            self._transition(
                task_id, "error", error_detail="Task was not scheduled: service is shutting down"
            )
            raise RuntimeError("TaskOrchestrator is shut down")

        future.add_done_callback(lambda _f: self._forget(task_id))
        logger.info("task_lifecycle event=submitted task_id=%s kind=%s", task_id, payload.kind)
        return task_id

    def _forget(self, task_id: str) -> None:
        with self._lock:
            self._handles.pop(task_id, None)

    def _execute(self, task_id: str, payload: TaskPayload) -> None:
        self._transition(task_id, "processing", best_effort=True)

        try:
            result = self._invoke(payload)
        except ProviderError as exc:
            logger.warning(
                "task_lifecycle event=provider_failed task_id=%s kind=%s reason=%s",
                task_id,
                payload.kind,
                exc,
            )
            self._transition(task_id, "error", error_detail=str(exc) or type(exc).__name__)
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("task_lifecycle event=unexpected_failure task_id=%s", task_id)
            self._transition(task_id, "error", error_detail=f"Unexpected failure: {exc}")
            return

        if not result:
            self._transition(task_id, "error", error_detail="Provider returned an empty result")
            return
        self._transition(task_id, "completed", result=result)

    def _invoke(self, payload: TaskPayload) -> str:
        if isinstance(payload, FilePayload):
            return self.client.generate_with_file(
                payload.prompt,
                content=payload.content,
                filename=payload.filename,
                mime_type=payload.mime_type,
            )
        return self.client.generate_text(payload.prompt)

    def _transition(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        result: str | None = None,
        error_detail: str | None = None,
        best_effort: bool = False,
    ) -> None:
        # Nobody waits on the background unit, so store failures are logged, not raised.
        try:
            self.storage.update_task(
                task_id,
                status=status,
                result=result,
                error_detail=error_detail,
            )
        except Exception:  # noqa: BLE001
            logger.exception(
                "task_lifecycle event=update_failed task_id=%s status=%s best_effort=%s",
                task_id,
                status,
                best_effort,
            )
            return
        logger.info("task_lifecycle event=transition task_id=%s status=%s", task_id, status)

    def _validate_content(self, content: bytes) -> bytes:
        if not content:
            raise TaskValidationError("File is required and must not be empty")
        if len(content) > self.max_file_bytes:
            raise TaskValidationError(
                f"File is too large ({len(content)} bytes, limit {self.max_file_bytes})"
            )
        return content


def _validate_prompt(prompt: str | None) -> str:
    if not isinstance(prompt, str) or not prompt.strip():
        raise TaskValidationError("Prompt is required")
    return prompt


def _validate_mime_type(mime_type: str | None) -> str:
    normalized = (mime_type or "").split(";", 1)[0].strip().lower()
    if normalized not in ALLOWED_FILE_MIME_TYPES:
        allowed = ", ".join(sorted(ALLOWED_FILE_MIME_TYPES))
        raise TaskValidationError(
            f"Unsupported file type '{mime_type or 'unknown'}'; allowed: {allowed}"
        )
    return normalized


def _normalize_filename(filename: str | None) -> str:
    # Browsers may send a full client-side path.
    name = PurePath((filename or "").replace("\\", "/")).name.strip()
    return name or "upload"
