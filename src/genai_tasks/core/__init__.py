"""Task lifecycle core."""

from genai_tasks.core.orchestrator import ALLOWED_FILE_MIME_TYPES, TaskOrchestrator
from genai_tasks.core.status import StatusReader

__all__ = ["ALLOWED_FILE_MIME_TYPES", "StatusReader", "TaskOrchestrator"]
