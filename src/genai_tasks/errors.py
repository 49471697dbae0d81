"""Error taxonomy shared by the task lifecycle core and its adapters."""

from __future__ import annotations


class GenAITaskError(Exception):
    """Base class for every error raised by the task service."""


class TaskValidationError(GenAITaskError):
    """Caller input was rejected before any task was created."""


class PersistenceError(GenAITaskError):
    """The task store could not be reached or a write failed."""


class InvalidTransitionError(PersistenceError):
    """A status update would move a task backwards or out of a terminal state."""

    def __init__(self, task_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Task {task_id} cannot move from '{current}' to '{requested}'"
        )
        self.task_id = task_id
        self.current = current
        self.requested = requested


class ProviderError(GenAITaskError):
    """The remote generation call failed (auth, network, malformed response)."""


class ProviderConfigurationError(ProviderError):
    """The provider client is missing a credential or other required setting."""


class TaskNotFoundError(GenAITaskError):
    """No task exists for the requested identifier."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id
