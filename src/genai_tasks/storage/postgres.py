"""PostgreSQL-backed task storage with automatic table migration.

Text tasks and file-bearing tasks live in two tables inside one dedicated
schema. Both tables are keyed by the generated task UUID, so a lookup by id
checks the text table first and then the file table.
"""

from __future__ import annotations

import re
import threading
import uuid
from datetime import UTC, datetime
from typing import Any

from genai_tasks.errors import InvalidTransitionError, PersistenceError
from genai_tasks.storage.models import (
    ALLOWED_TRANSITIONS,
    FilePayload,
    TaskRecord,
    TaskStatus,
    TextPayload,
)

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

TEXT_TABLE = "generation_tasks"
FILE_TABLE = "generation_file_tasks"


class PostgresTaskStorage:
    """Persist generation tasks in PostgreSQL."""

    def __init__(self, database_url: str, *, schema: str = "genai") -> None:
        if not database_url:
            raise ValueError("GENAI_TASKS_DATABASE_URL is required")
        if not _IDENTIFIER_RE.match(schema):
            raise ValueError(f"Invalid database schema name: {schema!r}")
        self.database_url = database_url
        self.schema = schema
        self._lock = threading.Lock()
        self._psycopg, self._dict_row = self._load_psycopg()

    @property
    def text_table(self) -> str:
        return f"{self.schema}.{TEXT_TABLE}"

    @property
    def file_table(self) -> str:
        return f"{self.schema}.{FILE_TABLE}"

    def migrate(self) -> None:
        with self._guard("migrate"), self._lock, self._connect() as conn:
            conn.execute(f"CREATE SCHEMA IF NOT EXISTS {self.schema}")
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.text_table} (
                    task_id UUID PRIMARY KEY,
                    status VARCHAR(20) NOT NULL,
                    prompt TEXT NOT NULL,
                    result TEXT,
                    error_detail TEXT,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.file_table} (
                    task_id UUID PRIMARY KEY,
                    status VARCHAR(20) NOT NULL,
                    prompt TEXT NOT NULL,
                    file_content BYTEA NOT NULL,
                    filename VARCHAR(255) NOT NULL,
                    mime_type VARCHAR(100) NOT NULL,
                    result TEXT,
                    error_detail TEXT,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            for table in (TEXT_TABLE, FILE_TABLE):
                conn.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_status
                    ON {self.schema}.{table}(status)
                    """)
            conn.commit()

    def create_task(self, record: TaskRecord) -> TaskRecord:
        payload = record.payload
        with self._guard("create_task"), self._lock, self._connect() as conn:
            if isinstance(payload, FilePayload):
                conn.execute(
                    f"""
                    INSERT INTO {self.file_table} (
                        task_id,
                        status,
                        prompt,
                        file_content,
                        filename,
                        mime_type,
                        result,
                        error_detail,
                        created_at,
                        updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        record.task_id,
                        record.status,
                        payload.prompt,
                        payload.content,
                        payload.filename,
                        payload.mime_type,
                        record.result,
                        record.error_detail,
                        record.created_at,
                        record.updated_at,
                    ),
                )
            else:
                conn.execute(
                    f"""
                    INSERT INTO {self.text_table} (
                        task_id,
                        status,
                        prompt,
                        result,
                        error_detail,
                        created_at,
                        updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        record.task_id,
                        record.status,
                        payload.prompt,
                        record.result,
                        record.error_detail,
                        record.created_at,
                        record.updated_at,
                    ),
                )
            conn.commit()
        return record

    def get_task(self, task_id: str) -> TaskRecord | None:
        key = _as_uuid(task_id)
        if key is None:
            return None
        with self._guard("get_task"), self._lock, self._connect() as conn:
            for table in (self.text_table, self.file_table):
                row = conn.execute(
                    f"SELECT * FROM {table} WHERE task_id = %s",
                    (key,),
                ).fetchone()
                if row is not None:
                    return self._row_to_task(row)
        return None

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        result: str | None = None,
        error_detail: str | None = None,
    ) -> TaskRecord:
        key = _as_uuid(task_id)
        if key is None:
            raise PersistenceError(f"Task {task_id} does not exist")
        allowed_from = sorted(ALLOWED_TRANSITIONS.get(status, frozenset()))
        updated_at = datetime.now(tz=UTC)
        row = None
        with self._guard("update_task"), self._lock, self._connect() as conn:
            # The status guard makes the write conditional, so a terminal row is never
            # moved back even if two writers race.
            for table in (self.text_table, self.file_table):
                row = conn.execute(
                    f"""
                    UPDATE {table}
                    SET status = %s,
                        result = %s,
                        error_detail = %s,
                        updated_at = %s
                    WHERE task_id = %s
                      AND status = ANY(%s)
                    RETURNING *
                    """,
                    (status, result, error_detail, updated_at, key, allowed_from),
                ).fetchone()
                if row is not None:
                    break
            conn.commit()

        if row is not None:
            return self._row_to_task(row)

        current = self.get_task(task_id)
        if current is None:
            raise PersistenceError(f"Task {task_id} does not exist")
        raise InvalidTransitionError(task_id, current.status, status)

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    def _guard(self, operation: str) -> "_DatabaseErrorGuard":
        return _DatabaseErrorGuard(self._psycopg.Error, operation)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_task(cls, row: Any) -> TaskRecord:
        if "file_content" in row:
            payload: TextPayload | FilePayload = FilePayload(
                prompt=row["prompt"],
                content=bytes(row["file_content"]),
                filename=row["filename"],
                mime_type=row["mime_type"],
            )
        else:
            payload = TextPayload(prompt=row["prompt"])
        return TaskRecord(
            task_id=str(row["task_id"]),
            status=row["status"],
            payload=payload,
            result=row.get("result"),
            error_detail=row.get("error_detail"),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )


def _as_uuid(task_id: str) -> uuid.UUID | None:
    """Parse a task id into the column type, or None when it cannot be a stored id."""
    try:
        return uuid.UUID(str(task_id))
    except ValueError:
        return None


class _DatabaseErrorGuard:
    """Context manager that re-raises driver errors as PersistenceError."""

    def __init__(self, driver_error: type[BaseException], operation: str) -> None:
        self._driver_error = driver_error
        self._operation = operation

    def __enter__(self) -> None:
        return None

    def __exit__(self, exc_type: Any, exc: BaseException | None, tb: Any) -> bool:
        if exc is not None and isinstance(exc, self._driver_error):
            raise PersistenceError(f"{self._operation} failed: {exc}") from exc
        return False
