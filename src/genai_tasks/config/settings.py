"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "genai-task-api"
    log_level: str = "INFO"
    storage_backend: str = "postgres"
    database_url: str = ""
    database_schema: str = "genai"
    max_workers: int = Field(default=8, ge=1)
    max_file_bytes: int = Field(default=20 * 1024 * 1024, ge=1)
    gemini_api_key: str = ""
    use_vertexai: bool = False
    vertex_project: str = ""
    vertex_location: str = ""
    vertex_access_token: str = ""
    model: str = "gemini-2.5-flash"
    temperature: float = Field(default=0.5, ge=0.0, le=2.0)
    api_base_url: str = "https://generativelanguage.googleapis.com"
    request_timeout_s: float = Field(default=120.0, ge=0.5)

    model_config = SettingsConfigDict(
        env_prefix="GENAI_TASKS_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
        protected_namespaces=(),
    )

    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        if os.getenv("DATABASE_URL"):
            return os.getenv("DATABASE_URL", "")
        host = os.getenv("DB_HOST", "")
        if not host:
            return ""
        user = os.getenv("DB_USER", "postgres")
        password = os.getenv("DB_PASSWORD", "")
        name = os.getenv("DB_NAME", "postgres")
        port = os.getenv("DB_PORT", "5432")
        credentials = f"{user}:{password}" if password else user
        return f"postgresql://{credentials}@{host}:{port}/{name}"

    def resolved_api_key(self) -> str:
        return self.gemini_api_key or os.getenv("GEMINI_API_KEY", "")

    def resolved_use_vertexai(self) -> bool:
        if self.use_vertexai:
            return True
        return os.getenv("GOOGLE_GENAI_USE_VERTEXAI", "").strip().lower() in _TRUTHY

    def resolved_vertex_project(self) -> str:
        return self.vertex_project or os.getenv("GOOGLE_CLOUD_PROJECT", "")

    def resolved_vertex_location(self) -> str:
        return self.vertex_location or os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1")

    def resolved_vertex_access_token(self) -> str:
        return self.vertex_access_token or os.getenv("GOOGLE_CLOUD_ACCESS_TOKEN", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
