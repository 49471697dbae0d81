"""FastAPI app entrypoint for the generation task service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, Form, Request, UploadFile

from genai_tasks.api.errors import register_exception_handlers
from genai_tasks.config.settings import Settings, get_settings
from genai_tasks.core.orchestrator import TaskOrchestrator
from genai_tasks.core.status import StatusReader
from genai_tasks.errors import TaskValidationError
from genai_tasks.logging_setup import setup_logging
from genai_tasks.provider.base import GenerationClient
from genai_tasks.provider.gemini import build_generation_client
from genai_tasks.storage.base import TaskStorage
from genai_tasks.storage.memory import InMemoryTaskStorage
from genai_tasks.storage.models import CreateTaskRequest, CreateTaskResponse, TaskStatusView
from genai_tasks.storage.postgres import PostgresTaskStorage

logger = logging.getLogger(__name__)


def _build_storage(settings: Settings) -> TaskStorage:
    backend = settings.storage_backend.strip().lower()
    if backend == "memory":
        return InMemoryTaskStorage()
    if backend != "postgres":
        raise RuntimeError(f"Unknown storage backend: {settings.storage_backend!r}")

    database_url = settings.resolved_database_url()
    if not database_url:
        raise RuntimeError(
            "Missing database URL. Set GENAI_TASKS_DATABASE_URL, DATABASE_URL "
            "or DB_HOST before starting the app."
        )
    return PostgresTaskStorage(database_url, schema=settings.database_schema)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: TaskStorage | None,
    client_override: GenerationClient | None,
) -> None:
    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "storage"):
        app.state.storage = (
            storage_override if storage_override is not None else _build_storage(settings)
        )
        app.state.storage.migrate()

    if not hasattr(app.state, "client"):
        app.state.client = (
            client_override if client_override is not None else build_generation_client(settings)
        )

    if not hasattr(app.state, "orchestrator"):
        app.state.orchestrator = TaskOrchestrator(
            storage=app.state.storage,
            client=app.state.client,
            max_workers=settings.max_workers,
            max_file_bytes=settings.max_file_bytes,
        )

    if not hasattr(app.state, "status_reader"):
        app.state.status_reader = StatusReader(app.state.storage)


def create_app(
    *,
    storage: TaskStorage | None = None,
    client: GenerationClient | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override if settings_override is not None else get_settings()
    setup_logging(settings.log_level)

    def _ensure(app: FastAPI) -> None:
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            client_override=client,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure(app)
        logger.info(
            "app event=startup storage=%s max_workers=%d",
            type(app.state.storage).__name__,
            settings.max_workers,
        )
        yield
        app.state.orchestrator.shutdown(wait=True, cancel_pending=True)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    register_exception_handlers(app)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure(app)

    def _get_orchestrator(request: Request) -> TaskOrchestrator:
        if not hasattr(request.app.state, "orchestrator"):
            _ensure(request.app)
        return request.app.state.orchestrator

    def _get_status_reader(request: Request) -> StatusReader:
        if not hasattr(request.app.state, "status_reader"):
            _ensure(request.app)
        return request.app.state.status_reader

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.post("/tasks", status_code=202, response_model=CreateTaskResponse)
    def create_task(payload: CreateTaskRequest, request: Request) -> CreateTaskResponse:
        task_id = _get_orchestrator(request).submit_text(payload.prompt)
        return CreateTaskResponse(task_id=task_id)

    @app.post("/tasks/file", status_code=202, response_model=CreateTaskResponse)
    def create_file_task(
        request: Request,
        prompt: str = Form(default=""),
        file: UploadFile | None = File(default=None),
    ) -> CreateTaskResponse:
        if file is None:
            raise TaskValidationError("File is required")
        content = file.file.read()
        task_id = _get_orchestrator(request).submit_file(
            prompt,
            content=content,
            filename=file.filename,
            mime_type=file.content_type,
        )
        return CreateTaskResponse(task_id=task_id)

    @app.get(
        "/tasks/{task_id}",
        response_model=TaskStatusView,
        response_model_exclude_none=True,
    )
    def get_task(task_id: str, request: Request) -> TaskStatusView:
        return _get_status_reader(request).get_status(task_id)

    return app


# Module-level app for `uvicorn genai_tasks.api.main:app`.
app = create_app()
