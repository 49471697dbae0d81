"""Task record models shared by the orchestrator, status reader and storage backends.

Beginner terms used in this file:
- Payload: the immutable input of a task (prompt text, optionally a file).
- Discriminated union: pydantic picks `TextPayload` or `FilePayload` by the `kind` field.
- Terminal status: `completed` or `error`; no transition leaves it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

# Task lifecycle states used by storage + API responses.
TaskStatus = Literal["pending", "processing", "completed", "error"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error"})

# Allowed source states per target state. `processing` is a best-effort write,
# so a terminal state may directly follow `pending`.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "processing": frozenset({"pending"}),
    "completed": frozenset({"pending", "processing"}),
    "error": frozenset({"pending", "processing"}),
}


def can_transition(current: str, requested: str) -> bool:
    """Return True when `current -> requested` moves the state machine forward."""
    return current in ALLOWED_TRANSITIONS.get(requested, frozenset())


class TextPayload(BaseModel):
    """Prompt-only task input."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    prompt: str


class FilePayload(BaseModel):
    """Prompt plus one attached binary file."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["file"] = "file"
    prompt: str
    content: bytes = Field(repr=False)
    filename: str
    mime_type: str


TaskPayload = Annotated[Union[TextPayload, FilePayload], Field(discriminator="kind")]


class TaskRecord(BaseModel):
    """Persisted task record (both variants share the lifecycle fields)."""

    task_id: str
    status: TaskStatus = "pending"
    payload: TaskPayload
    result: str | None = None
    error_detail: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def kind(self) -> str:
        return self.payload.kind

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TaskStatusView(BaseModel):
    """Caller-visible projection of a task. Never carries prompt or file bytes."""

    id: str
    status: TaskStatus
    result: str | None = None
    error: str | None = None


class CreateTaskRequest(BaseModel):
    """Request body for POST /tasks."""

    prompt: str


class CreateTaskResponse(BaseModel):
    """Response body for POST /tasks and POST /tasks/file."""

    task_id: str
