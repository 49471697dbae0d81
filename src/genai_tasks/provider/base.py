"""Port to the remote content-generation provider."""

from __future__ import annotations

from typing import Protocol


class GenerationClient(Protocol):
    """Text-in/text-out and file+text-in/text-out generation contract."""

    def generate_text(self, prompt: str) -> str: ...

    def generate_with_file(
        self,
        prompt: str,
        *,
        content: bytes,
        filename: str,
        mime_type: str,
    ) -> str: ...
