"""Generation provider port and adapters."""

from genai_tasks.provider.base import GenerationClient
from genai_tasks.provider.gemini import GeminiClient, build_generation_client

__all__ = ["GeminiClient", "GenerationClient", "build_generation_client"]
