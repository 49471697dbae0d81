"""Gemini adapter using the generateContent REST API.

Two modes are supported:
- API key mode: Gemini Developer API. Attachments are uploaded through the
  Files API first and referenced by URI in the generation call.
- Vertex mode: regional Vertex AI endpoint with a bearer access token.
  Vertex has no Files API, so attachments travel inline as base64.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any
from urllib import error, parse, request

from genai_tasks.config.settings import Settings
from genai_tasks.errors import ProviderConfigurationError, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"


class GeminiClient:
    """Small Gemini client; one HTTP round trip per call, no retries."""

    def __init__(
        self,
        *,
        api_key: str = "",
        model: str = "gemini-2.5-flash",
        temperature: float | None = 0.5,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 120.0,
        use_vertexai: bool = False,
        vertex_project: str = "",
        vertex_location: str = "us-central1",
        vertex_access_token: str = "",
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.use_vertexai = use_vertexai
        self.vertex_project = vertex_project
        self.vertex_location = vertex_location
        self.vertex_access_token = vertex_access_token

    def configuration_problem(self) -> str | None:
        """Describe missing configuration, or return None when the client is usable."""
        if self.use_vertexai:
            missing = [
                name
                for name, value in (
                    ("GOOGLE_CLOUD_PROJECT", self.vertex_project),
                    ("GOOGLE_CLOUD_LOCATION", self.vertex_location),
                    ("GOOGLE_CLOUD_ACCESS_TOKEN", self.vertex_access_token),
                )
                if not value
            ]
            if missing:
                return f"Vertex AI mode is enabled but {', '.join(missing)} is not set"
            return None
        if not self.api_key:
            return (
                "GEMINI_API_KEY is not configured; set it or enable Vertex AI "
                "(GOOGLE_GENAI_USE_VERTEXAI=true)"
            )
        return None

    def generate_text(self, prompt: str) -> str:
        self._ensure_configured()
        return self._generate([{"text": prompt}])

    def generate_with_file(
        self,
        prompt: str,
        *,
        content: bytes,
        filename: str,
        mime_type: str,
    ) -> str:
        self._ensure_configured()
        if self.use_vertexai:
            file_part: dict[str, Any] = {
                "inline_data": {
                    "mime_type": mime_type,
                    "data": base64.b64encode(content).decode("ascii"),
                }
            }
        else:
            uploaded = self._upload_file(content, filename=filename, mime_type=mime_type)
            file_part = {
                "file_data": {
                    "mime_type": uploaded.get("mimeType") or mime_type,
                    "file_uri": uploaded.get("uri") or uploaded.get("name", ""),
                }
            }
        return self._generate([{"text": prompt}, file_part])

    def _ensure_configured(self) -> None:
        problem = self.configuration_problem()
        if problem:
            raise ProviderConfigurationError(problem)

    def _generate(self, parts: list[dict[str, Any]]) -> str:
        payload: dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        if self.temperature is not None:
            payload["generationConfig"] = {"temperature": self.temperature}
        req = request.Request(
            url=self._generate_url(),
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={"Content-Type": "application/json", **self._auth_headers()},
        )
        _, response_json = self._send(req, operation="generateContent")
        return self._extract_text(response_json)

    def _upload_file(self, content: bytes, *, filename: str, mime_type: str) -> dict[str, Any]:
        start = request.Request(
            url=f"{self.base_url}/upload/v1beta/files",
            data=json.dumps({"file": {"display_name": filename}}).encode("utf-8"),
            method="POST",
            headers={
                "Content-Type": "application/json",
                "X-Goog-Upload-Protocol": "resumable",
                "X-Goog-Upload-Command": "start",
                "X-Goog-Upload-Header-Content-Length": str(len(content)),
                "X-Goog-Upload-Header-Content-Type": mime_type,
                **self._auth_headers(),
            },
        )
        headers, _ = self._send(start, operation="upload start")
        upload_url = headers.get("X-Goog-Upload-URL") if headers is not None else None
        if not upload_url:
            raise ProviderError("Gemini upload start response did not include an upload URL")

        finalize = request.Request(
            url=upload_url,
            data=content,
            method="POST",
            headers={
                "Content-Length": str(len(content)),
                "X-Goog-Upload-Offset": "0",
                "X-Goog-Upload-Command": "upload, finalize",
            },
        )
        _, response_json = self._send(finalize, operation="upload finalize")
        uploaded = response_json.get("file")
        if not isinstance(uploaded, dict) or not (uploaded.get("uri") or uploaded.get("name")):
            raise ProviderError("Gemini upload response did not describe the uploaded file")
        logger.info(
            "gemini event=file_uploaded filename=%s mime_type=%s size=%d",
            filename,
            mime_type,
            len(content),
        )
        return uploaded

    def _generate_url(self) -> str:
        model = parse.quote(self.model, safe="")
        if self.use_vertexai:
            location = self.vertex_location
            return (
                f"https://{location}-aiplatform.googleapis.com/v1/projects/"
                f"{self.vertex_project}/locations/{location}/publishers/google/models/"
                f"{model}:generateContent"
            )
        return f"{self.base_url}/v1beta/models/{model}:generateContent"

    def _auth_headers(self) -> dict[str, str]:
        if self.use_vertexai:
            return {"Authorization": f"Bearer {self.vertex_access_token}"}
        return {"x-goog-api-key": self.api_key}

    def _send(self, req: request.Request, *, operation: str) -> tuple[Any, dict[str, Any]]:
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                headers = response.headers
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            raise ProviderError(
                f"Gemini {operation} failed with HTTP {exc.code}: {raw_error or exc.reason}"
            ) from exc
        except error.URLError as exc:
            raise ProviderError(f"Gemini {operation} network error: {exc.reason}") from exc
        except TimeoutError as exc:
            raise ProviderError(
                f"Gemini {operation} timed out after {self.timeout_s:.1f}s"
            ) from exc

        if not body.strip():
            return headers, {}
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ProviderError(f"Gemini {operation} returned malformed JSON") from exc
        if not isinstance(parsed, dict):
            raise ProviderError(f"Gemini {operation} returned an unexpected payload")
        return headers, parsed

    @staticmethod
    def _extract_text(response_json: dict[str, Any]) -> str:
        feedback = response_json.get("promptFeedback")
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            raise ProviderError(f"Gemini blocked the prompt: {feedback['blockReason']}")

        candidates = response_json.get("candidates") or []
        if not candidates:
            raise ProviderError("Gemini response did not contain candidates")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        text_segments: list[str] = []
        for item in parts:
            if isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str):
                    text_segments.append(text)
        merged = "".join(text_segments)
        if merged.strip():
            return merged

        finish_reason = candidates[0].get("finishReason", "unknown")
        raise ProviderError(f"Gemini response contained no text (finishReason={finish_reason})")


def build_generation_client(settings: Settings) -> GeminiClient:
    client = GeminiClient(
        api_key=settings.resolved_api_key(),
        model=settings.model,
        temperature=settings.temperature,
        base_url=settings.api_base_url,
        timeout_s=settings.request_timeout_s,
        use_vertexai=settings.resolved_use_vertexai(),
        vertex_project=settings.resolved_vertex_project(),
        vertex_location=settings.resolved_vertex_location(),
        vertex_access_token=settings.resolved_vertex_access_token(),
    )
    problem = client.configuration_problem()
    if problem:
        logger.warning("gemini event=misconfigured reason=%s", problem)
    return client
